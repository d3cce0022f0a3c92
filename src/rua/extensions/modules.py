"""
Extension Module Loading

The only place where extension-authored code is imported. The loader receives a
ModuleLoader so hosts can swap in other strategies (subprocess, embedded engine).
"""

import asyncio
import hashlib
import importlib.util
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Union

from ..core.logging import get_logger

logger = get_logger(__name__)

# Any object exposing ``activate(api)`` and optionally ``deactivate()``;
# either may be a coroutine function.
ExtensionModule = Any


class ModuleLoader(ABC):
    """Imports an extension's init module"""

    @abstractmethod
    async def load(self, path: Union[str, Path]) -> ExtensionModule:
        """
        Import the module at ``path``.

        Raises:
            Exception: Whatever the import raised; the caller treats it as an activation failure
        """
        pass

    def release(self, module: ExtensionModule) -> None:
        """Drop any host-side references to a module after unload"""
        pass


class PythonModuleLoader(ModuleLoader):
    """
    Loads Python source files or package directories with importlib.

    Module execution runs in a worker thread so a slow import cannot stall the
    event loop while the loader's deadline is running.
    """

    MODULE_PREFIX = "rua_extension_"

    async def load(self, path: Union[str, Path]) -> ExtensionModule:
        return await asyncio.to_thread(self._load_sync, Path(path))

    def _load_sync(self, path: Path) -> ExtensionModule:
        if not path.exists():
            raise FileNotFoundError(f"Extension module not found: {path}")

        module_name = self.module_name_for(path)
        if path.is_dir():
            spec = importlib.util.spec_from_file_location(
                module_name, path / "__init__.py", submodule_search_locations=[str(path)]
            )
        else:
            spec = importlib.util.spec_from_file_location(module_name, path)

        if spec is None or spec.loader is None:
            raise ImportError(f"Cannot load module from {path}")

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except BaseException:
            sys.modules.pop(module_name, None)
            raise

        logger.debug(f"Imported extension module {module_name} from {path}")
        return module

    def release(self, module: ExtensionModule) -> None:
        name = getattr(module, "__name__", "")
        # A newer load of the same path may own the entry by now
        if name.startswith(self.MODULE_PREFIX) and sys.modules.get(name) is module:
            for loaded_name in [n for n in sys.modules if n == name or n.startswith(f"{name}.")]:
                del sys.modules[loaded_name]

    @classmethod
    def module_name_for(cls, path: Path) -> str:
        digest = hashlib.sha1(str(path.resolve()).encode("utf-8")).hexdigest()[:12]
        return f"{cls.MODULE_PREFIX}{digest}"
