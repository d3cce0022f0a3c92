"""
Extension Registry Storage

Persistence for the registry document and the managed extension store.
"""

import asyncio
import json
import os
import shutil
import tempfile
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..core.config import get_config
from ..core.exceptions import StorageError
from ..core.logging import get_logger
from .models import REGISTRY_STATE_VERSION, RegistryState

logger = get_logger(__name__)

MANIFEST_FILE = "manifest.json"


def write_json_atomic(path: Path, data: Any) -> None:
    """
    Write JSON so that readers see either the old file or the complete new one.

    Raises:
        StorageError: If the file cannot be written
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_name, path)
    except (OSError, TypeError, ValueError) as e:
        try:
            os.unlink(temp_name)
        except OSError:
            pass
        raise StorageError(f"Failed to write JSON to {path}: {e}")


def read_json(path: Path) -> Any:
    """Read a JSON file, mapping every failure to StorageError"""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        raise StorageError(f"File not found: {path}")
    except json.JSONDecodeError as e:
        raise StorageError(f"Invalid JSON in {path}: {e}")
    except OSError as e:
        raise StorageError(f"Failed to read JSON from {path}: {e}")


class RegistryStorage(ABC):
    """
    Storage collaborator used by the extension registry.

    ``save`` must be atomic: a subsequent ``load`` never observes a partial document.
    """

    @abstractmethod
    async def load(self) -> Optional[RegistryState]:
        """Load the registry document, or None if none was saved yet"""
        pass

    @abstractmethod
    async def save(self, state: RegistryState) -> None:
        """Persist the registry document"""
        pass

    @abstractmethod
    def get_extension_dir(self) -> Path:
        """Root of the managed extension store"""
        pass

    def get_extension_path(self, extension_id: str) -> Path:
        """Installed location of an extension"""
        return self.get_extension_dir() / extension_id

    @abstractmethod
    async def copy_extension(self, source_path: Union[str, Path], extension_id: str) -> str:
        """Copy an extension payload into the store, returning the installed path"""
        pass

    @abstractmethod
    async def remove_extension(self, extension_id: str) -> None:
        """Remove an extension payload from the store"""
        pass

    @abstractmethod
    async def read_manifest(self, extension_path: Union[str, Path]) -> str:
        """Read the raw manifest JSON text from an extension directory"""
        pass


class FileRegistryStorage(RegistryStorage):
    """
    Filesystem-backed registry storage.

    Layout::

        <extensions_dir>/registry.json
        <extensions_dir>/<extension-id>/manifest.json
    """

    def __init__(
        self,
        extensions_dir: Optional[Path] = None,
        registry_path: Optional[Path] = None,
    ) -> None:
        """
        Initialize file storage.

        Args:
            extensions_dir: Managed extension store (uses config if None)
            registry_path: Registry document path (defaults to registry.json in the store)
        """
        if extensions_dir is None:
            extensions_dir = get_config().extensions.get_extensions_dir()
        self.extensions_dir = Path(extensions_dir)
        self.registry_path = (
            Path(registry_path)
            if registry_path
            else self.extensions_dir / get_config().extensions.registry_file
        )

    def get_extension_dir(self) -> Path:
        return self.extensions_dir

    def _check_extension_id(self, extension_id: str) -> None:
        # The registry document shares the payload directory by default
        if (
            extension_id == self.registry_path.name
            and self.registry_path.parent.resolve() == self.extensions_dir.resolve()
        ):
            raise StorageError(
                f"Extension id '{extension_id}' collides with the registry document"
            )

    async def load(self) -> Optional[RegistryState]:
        return await asyncio.to_thread(self._load_sync)

    def _load_sync(self) -> Optional[RegistryState]:
        if not self.registry_path.exists():
            return None

        data = read_json(self.registry_path)
        if not isinstance(data, dict):
            raise StorageError(f"Registry document must be an object: {self.registry_path}")

        version = data.get("version", REGISTRY_STATE_VERSION)
        if not isinstance(version, int) or version > REGISTRY_STATE_VERSION:
            raise StorageError(
                f"Unsupported registry schema version: {version}",
                {"supported": REGISTRY_STATE_VERSION},
            )

        try:
            state = RegistryState.model_validate(data)
        except PydanticValidationError as e:
            raise StorageError(f"Corrupt registry document {self.registry_path}: {e}")

        if state.version < REGISTRY_STATE_VERSION:
            logger.info(
                f"Migrating registry from schema {state.version} to {REGISTRY_STATE_VERSION}"
            )
            state.version = REGISTRY_STATE_VERSION

        return state

    async def save(self, state: RegistryState) -> None:
        await asyncio.to_thread(write_json_atomic, self.registry_path, state.to_dict())

    async def copy_extension(self, source_path: Union[str, Path], extension_id: str) -> str:
        self._check_extension_id(extension_id)
        return await asyncio.to_thread(self._copy_sync, Path(source_path), extension_id)

    def _copy_sync(self, source: Path, extension_id: str) -> str:
        if not source.is_dir():
            raise StorageError(f"Extension directory not found: {source}")

        target = self.get_extension_path(extension_id)
        token = uuid.uuid4().hex[:8]
        staging = self.extensions_dir / f".staging-{extension_id}-{token}"
        backup = self.extensions_dir / f".old-{extension_id}-{token}"

        try:
            self.extensions_dir.mkdir(parents=True, exist_ok=True)
            shutil.copytree(source, staging)
        except OSError as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise StorageError(f"Failed to copy extension from {source}: {e}")

        # Swap the fully copied payload into place
        try:
            if target.exists():
                target.rename(backup)
            try:
                staging.rename(target)
            except OSError:
                if backup.exists():
                    backup.rename(target)
                raise
        except OSError as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise StorageError(f"Failed to install extension {extension_id}: {e}")

        shutil.rmtree(backup, ignore_errors=True)
        return str(target)

    async def remove_extension(self, extension_id: str) -> None:
        self._check_extension_id(extension_id)
        target = self.get_extension_path(extension_id)
        try:
            await asyncio.to_thread(self._remove_sync, target)
        except OSError as e:
            raise StorageError(f"Failed to remove extension {extension_id}: {e}")

    @staticmethod
    def _remove_sync(target: Path) -> None:
        if target.exists():
            shutil.rmtree(target)

    async def read_manifest(self, extension_path: Union[str, Path]) -> str:
        manifest_path = Path(extension_path) / MANIFEST_FILE
        try:
            return await asyncio.to_thread(manifest_path.read_text, encoding="utf-8")
        except FileNotFoundError:
            raise StorageError(f"{MANIFEST_FILE} not found in {extension_path}")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Failed to read manifest from {extension_path}: {e}")
