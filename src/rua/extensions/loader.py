"""
Extension Loader

Brings enabled extensions into the loaded state. This is the only component that
runs extension-authored code (``activate`` and ``deactivate``).

Import and activation share a single deadline. When the deadline passes, the work
is abandoned rather than cancelled: it may keep running in the background, but
the extension's API object is revoked and the extension is never recorded as
loaded, so late results have no effect on the host.
"""

import asyncio
import inspect
import logging
from functools import partial
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from ..core.config import get_config
from ..core.exceptions import ActivationError, ExtensionTimeoutError
from ..core.logging import get_logger, log_structured
from .api import ExtensionAPI
from .events import LoadReporter
from .gate import CapabilityGate
from .models import (
    ActionMode,
    ExtensionManifest,
    LoadedExtension,
    LoadResult,
    ManifestDerivedAction,
)
from .modules import ExtensionModule, ModuleLoader, PythonModuleLoader

logger = get_logger(__name__)


def derive_actions(
    manifest: ExtensionManifest, extension_path: Union[str, Path]
) -> List[ManifestDerivedAction]:
    """
    Build the host actions declared by a manifest.

    Pure function of its inputs. View actions resolve to the UI entry with an
    ``action`` query parameter; command actions resolve to their script path.
    """
    base = Path(extension_path)
    ui_entry = manifest.rua.ui.entry if manifest.rua.ui else None
    derived = []

    for action in manifest.rua.actions:
        derived.append(
            ManifestDerivedAction(
                id=f"{manifest.id}.{action.name}",
                title=action.title,
                mode=action.mode,
                extension_id=manifest.id,
                action_name=action.name,
                keywords=list(action.keywords or []),
                icon=action.icon,
                subtitle=action.subtitle,
                shortcut=list(action.shortcut) if action.shortcut else None,
                ui_entry=(
                    f"{(base / ui_entry).as_posix()}?action={action.name}"
                    if action.mode == ActionMode.VIEW and ui_entry
                    else None
                ),
                script=(
                    (base / action.script).as_posix()
                    if action.mode == ActionMode.COMMAND and action.script
                    else None
                ),
            )
        )

    return derived


async def _invoke(func: Callable[..., Any], *args: Any) -> Any:
    result = func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class ExtensionLoader:
    """
    Loads and unloads extensions.

    Owns the map of loaded extensions. Outcomes are reported to a LoadReporter
    (normally the ExtensionRegistry); the loader never reads registry state.
    """

    def __init__(
        self,
        capability_gate: Optional[CapabilityGate] = None,
        module_loader: Optional[ModuleLoader] = None,
        reporter: Optional[LoadReporter] = None,
        load_timeout_ms: Optional[float] = None,
    ):
        self.capability_gate = capability_gate or CapabilityGate()
        self.module_loader = module_loader or PythonModuleLoader()
        self.reporter = reporter

        if load_timeout_ms is None:
            load_timeout_ms = get_config().extensions.load_timeout_ms
        self.load_timeout_ms = load_timeout_ms

        self._loaded: Dict[str, LoadedExtension] = {}
        self._pending: Dict[str, "asyncio.Future[LoadResult]"] = {}
        self._abandoned: Set["asyncio.Future[Any]"] = set()

    async def load(
        self, manifest: ExtensionManifest, extension_path: Union[str, Path]
    ) -> LoadResult:
        """
        Load an extension.

        Idempotent: an extension that is already loaded is returned unchanged and
        ``activate`` is not called again. Concurrent calls for the same id share
        one activation.

        Args:
            manifest: Validated manifest
            extension_path: Installed extension directory

        Returns:
            LoadResult; never raises for failures of extension code
        """
        extension_id = manifest.id

        loaded = self._loaded.get(extension_id)
        if loaded:
            return LoadResult(success=True, extension=loaded)

        pending = self._pending.get(extension_id)
        if pending is None:
            pending = asyncio.ensure_future(self._load(manifest, extension_path))
            self._pending[extension_id] = pending
            pending.add_done_callback(partial(self._forget_pending, extension_id))

        return await asyncio.shield(pending)

    def _forget_pending(self, extension_id: str, task: "asyncio.Future[LoadResult]") -> None:
        if self._pending.get(extension_id) is task:
            del self._pending[extension_id]

    async def _load(
        self, manifest: ExtensionManifest, extension_path: Union[str, Path]
    ) -> LoadResult:
        extension_id = manifest.id
        actions = derive_actions(manifest, extension_path)
        api = self.capability_gate.create_api(extension_id, manifest)
        module: Optional[ExtensionModule] = None
        phase = "import"

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.load_timeout_ms / 1000

        try:
            if manifest.rua.init:
                init_path = Path(extension_path) / manifest.rua.init
                module = await self._race(
                    self.module_loader.load(init_path),
                    deadline,
                    extension_id,
                    self.load_timeout_ms,
                    on_late_result=self.module_loader.release,
                )

                phase = "activate"
                activate = getattr(module, "activate", None)
                if callable(activate):
                    await self._race(
                        _invoke(activate, api), deadline, extension_id, self.load_timeout_ms
                    )

        except ExtensionTimeoutError as e:
            log_structured(
                logger,
                logging.WARNING,
                f"Extension {extension_id} abandoned after its load deadline",
                extension_id=extension_id,
                phase=phase,
                timeout_ms=self.load_timeout_ms,
            )
            self._discard(api, module)
            self._report_error(extension_id, e)
            return LoadResult(success=False, error=e, timed_out=True)

        except Exception as e:
            error = ActivationError(
                extension_id, f"Failed to {phase} extension {extension_id}: {e}", phase
            )
            logger.error(str(error))
            self._discard(api, module)
            self._report_error(extension_id, error)
            return LoadResult(success=False, error=error)

        extension = LoadedExtension(manifest=manifest, module=module, actions=actions, api=api)
        self._loaded[extension_id] = extension
        self._report_loaded(extension_id, True, [action.id for action in actions])

        logger.info(f"Loaded extension {extension_id} with {len(actions)} action(s)")
        return LoadResult(success=True, extension=extension)

    async def _race(
        self,
        work: Awaitable[Any],
        deadline: float,
        extension_id: str,
        timeout_ms: float,
        on_late_result: Optional[Callable[[Any], None]] = None,
    ) -> Any:
        """Await ``work`` until ``deadline``; on timeout abandon it and raise"""
        task = asyncio.ensure_future(work)
        remaining = max(deadline - asyncio.get_running_loop().time(), 0)

        done, _ = await asyncio.wait({task}, timeout=remaining)
        if task in done:
            return task.result()

        self._abandon(task, extension_id, on_late_result)
        raise ExtensionTimeoutError(extension_id, timeout_ms)

    def _abandon(
        self,
        task: "asyncio.Future[Any]",
        extension_id: str,
        on_late_result: Optional[Callable[[Any], None]],
    ) -> None:
        self._abandoned.add(task)
        task.add_done_callback(partial(self._settle_abandoned, extension_id, on_late_result))

    def _settle_abandoned(
        self,
        extension_id: str,
        on_late_result: Optional[Callable[[Any], None]],
        task: "asyncio.Future[Any]",
    ) -> None:
        self._abandoned.discard(task)
        if task.cancelled():
            return

        error = task.exception()
        if error is not None:
            logger.debug(f"Abandoned work for {extension_id} failed late: {error}")
            return

        logger.debug(f"Abandoned work for {extension_id} finished after its deadline")
        if on_late_result is not None:
            try:
                on_late_result(task.result())
            except Exception as e:
                logger.error(f"Error cleaning up late result for {extension_id}: {e}")

    def _discard(self, api: ExtensionAPI, module: Optional[ExtensionModule]) -> None:
        api.dispose()
        if module is not None:
            self.module_loader.release(module)

    async def unload(self, extension_id: str, timeout_ms: Optional[float] = None) -> bool:
        """
        Unload an extension.

        Calls ``deactivate`` when the module has one. Errors and timeouts from
        ``deactivate`` are logged and swallowed; the entry is always removed.

        Args:
            extension_id: Extension to unload
            timeout_ms: Deadline for ``deactivate`` (defaults to the shutdown timeout)

        Returns:
            True if the extension was loaded
        """
        extension = self._loaded.pop(extension_id, None)
        if extension is None:
            return False

        if timeout_ms is None:
            timeout_ms = get_config().extensions.shutdown_timeout_ms

        try:
            deactivate = getattr(extension.module, "deactivate", None)
            if callable(deactivate):
                deadline = asyncio.get_running_loop().time() + timeout_ms / 1000
                await self._race(_invoke(deactivate), deadline, extension_id, timeout_ms)
        except ExtensionTimeoutError:
            logger.warning(f"Extension {extension_id} deactivate timed out after {timeout_ms:g}ms")
        except Exception as e:
            logger.error(f"Error deactivating extension {extension_id}: {e}")
        finally:
            self._discard(extension.api, extension.module)
            self._report_loaded(extension_id, False)

        logger.info(f"Unloaded extension {extension_id}")
        return True

    async def unload_all(self, timeout_ms: Optional[float] = None) -> None:
        """Unload every loaded extension concurrently; used on host shutdown"""
        extension_ids = list(self._loaded)
        if not extension_ids:
            return

        results = await asyncio.gather(
            *(self.unload(extension_id, timeout_ms) for extension_id in extension_ids),
            return_exceptions=True,
        )
        for extension_id, result in zip(extension_ids, results):
            if isinstance(result, BaseException):
                logger.error(f"Error unloading extension {extension_id}: {result}")

    async def load_all(
        self, entries: Iterable[Tuple[ExtensionManifest, Union[str, Path]]]
    ) -> List[LoadResult]:
        """
        Load several extensions concurrently.

        Each load is independent: one failure or timeout does not affect the others.

        Returns:
            One LoadResult per entry, in input order
        """
        entries = list(entries)
        results = await asyncio.gather(
            *(self.load(manifest, path) for manifest, path in entries),
            return_exceptions=True,
        )

        load_results = []
        for (manifest, _), result in zip(entries, results):
            if isinstance(result, Exception):
                logger.error(f"Unexpected error loading extension {manifest.id}: {result}")
                self._report_error(manifest.id, result)
                result = LoadResult(success=False, error=result)
            elif isinstance(result, BaseException):
                raise result
            load_results.append(result)

        return load_results

    def get_loaded(self, extension_id: str) -> Optional[LoadedExtension]:
        """Get a loaded extension"""
        return self._loaded.get(extension_id)

    def get_all_loaded(self) -> List[LoadedExtension]:
        """Get all loaded extensions"""
        return list(self._loaded.values())

    def is_loaded(self, extension_id: str) -> bool:
        return extension_id in self._loaded

    def _report_loaded(
        self, extension_id: str, loaded: bool, actions: Optional[List[str]] = None
    ) -> None:
        if self.reporter is None:
            return
        try:
            self.reporter.set_extension_loaded(extension_id, loaded, actions)
        except Exception as e:
            logger.error(f"Error reporting load state for {extension_id}: {e}")

    def _report_error(self, extension_id: str, error: Exception) -> None:
        if self.reporter is None:
            return
        try:
            self.reporter.set_extension_error(extension_id, error)
        except Exception as e:
            logger.error(f"Error reporting failure for {extension_id}: {e}")
