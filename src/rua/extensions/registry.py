"""
Extension Registry

System of record for installed extensions: persisted enable/disable state plus
the derived runtime state (loaded, actions, error) reported by the loader.
"""

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

from ..core.exceptions import NotFoundError, ValidationError
from ..core.logging import get_logger
from .events import EventEmitter, EventHandler, ExtensionEvent, LoadReporter, RegistryEvent
from .manifest import parse_manifest
from .models import (
    ExtensionInfo,
    ExtensionManifest,
    ExtensionState,
    RegistryState,
    RuaSection,
)
from .storage import RegistryStorage

logger = get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ExtensionRegistry(LoadReporter):
    """
    Tracks installed extensions and their lifecycle.

    Lifecycle per extension: not installed -> installed (enabled or disabled)
    -> uninstalled. Every mutation of the persisted document runs inside one
    lock, so overlapping calls cannot lose each other's updates. A new state
    document is saved before it replaces the in-memory one.
    """

    def __init__(
        self,
        storage: RegistryStorage,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._storage = storage
        self._clock = clock or _utc_now
        self._state = RegistryState()
        self._extensions: Dict[str, ExtensionInfo] = {}
        self._degraded: Set[str] = set()
        self._emitter = EventEmitter("registry")
        self._lock = asyncio.Lock()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """
        Load persisted state and rebuild extension info from installed manifests.

        Idempotent. An extension whose manifest cannot be read or validated is kept
        as a degraded, disabled entry with an error instead of aborting startup.

        Raises:
            StorageError: If the registry document itself cannot be loaded
        """
        async with self._lock:
            if self._initialized:
                return

            saved_state = await self._storage.load()
            if saved_state:
                self._state = saved_state

            entries = await asyncio.gather(
                *(
                    self._read_installed(extension_id, extension_state)
                    for extension_id, extension_state in self._state.extensions.items()
                )
            )

            for extension_id, info, degraded in entries:
                self._extensions[extension_id] = info
                if degraded:
                    self._degraded.add(extension_id)

            self._initialized = True

        logger.info(f"Extension registry ready with {len(self._extensions)} extension(s)")
        self._emitter.emit(RegistryEvent.READY, ExtensionEvent(extension_id=""))

    async def _read_installed(
        self, extension_id: str, extension_state: ExtensionState
    ) -> Tuple[str, ExtensionInfo, bool]:
        extension_path = self._storage.get_extension_path(extension_id)
        try:
            text = await self._storage.read_manifest(extension_path)
            result = parse_manifest(text)
            if not result.valid:
                raise ValidationError(
                    f"Invalid manifest: {result.summary()}", errors=result.errors
                )
            if result.manifest.id != extension_id:
                raise ValidationError(
                    f"Manifest id '{result.manifest.id}' does not match installed id"
                )

            return (
                extension_id,
                ExtensionInfo(
                    manifest=result.manifest,
                    enabled=extension_state.enabled,
                    path=str(extension_path),
                ),
                False,
            )

        except Exception as e:
            logger.error(f"Failed to load extension {extension_id}: {e}")
            placeholder = ExtensionManifest(
                id=extension_id,
                name=extension_id,
                version=extension_state.version,
                rua=RuaSection(engine_version="0.0.0", actions=[]),
            )
            return (
                extension_id,
                ExtensionInfo(
                    manifest=placeholder,
                    enabled=False,
                    path=str(extension_path),
                    error=str(e),
                ),
                True,
            )

    async def install(self, extension_path: Union[str, Path]) -> ExtensionInfo:
        """
        Install an extension from a directory.

        The payload is copied into the managed store before any state is
        persisted. Reinstalling a known id keeps its original install time.

        Args:
            extension_path: Directory containing manifest.json

        Returns:
            Info for the installed extension

        Raises:
            ValidationError: If the manifest is invalid
            StorageError: If reading or copying the payload fails
        """
        await self.initialize()

        async with self._lock:
            result = parse_manifest(await self._storage.read_manifest(extension_path))
            if not result.valid:
                raise ValidationError(
                    f"Invalid manifest in {extension_path}: {result.summary()}",
                    errors=result.errors,
                )

            manifest = result.manifest
            extension_id = manifest.id
            previous = self._state.extensions.get(extension_id)
            if previous:
                logger.info(f"Updating existing extension: {extension_id}")

            installed_path = await self._storage.copy_extension(extension_path, extension_id)

            now = self._clock().isoformat()
            new_state = self._state.model_copy(deep=True)
            new_state.extensions[extension_id] = ExtensionState(
                id=extension_id,
                enabled=True,
                installed_at=previous.installed_at if previous else now,
                updated_at=now,
                version=manifest.version,
                settings=previous.settings if previous else None,
            )
            await self._commit(new_state)

            # Loaded state belongs to the loader; a reinstall does not reset it
            current = self._extensions.get(extension_id)
            info = ExtensionInfo(
                manifest=manifest,
                enabled=True,
                loaded=current.loaded if current else False,
                path=installed_path,
                actions=list(current.actions) if current else [],
            )
            self._extensions[extension_id] = info
            self._degraded.discard(extension_id)

        logger.info(f"Installed extension {extension_id} v{manifest.version}")
        self._emitter.emit(
            RegistryEvent.INSTALLED, ExtensionEvent(extension_id=extension_id, extension=info)
        )
        return info

    async def uninstall(self, extension_id: str) -> None:
        """
        Remove an extension's payload and state.

        A loaded extension must be unloaded by the caller first.

        Raises:
            NotFoundError: If the extension is not installed
            StorageError: If the payload cannot be removed
        """
        await self.initialize()

        async with self._lock:
            info = self._require(extension_id)

            await self._storage.remove_extension(extension_id)

            new_state = self._state.model_copy(deep=True)
            new_state.extensions.pop(extension_id, None)
            await self._commit(new_state)

            del self._extensions[extension_id]
            self._degraded.discard(extension_id)

        logger.info(f"Uninstalled extension {extension_id}")
        self._emitter.emit(
            RegistryEvent.UNINSTALLED, ExtensionEvent(extension_id=extension_id, extension=info)
        )

    async def enable(self, extension_id: str) -> None:
        """
        Enable an extension. No-op if already enabled.

        Raises:
            NotFoundError: If the extension is not installed
        """
        await self._set_enabled(extension_id, True)

    async def disable(self, extension_id: str) -> None:
        """
        Disable an extension. No-op if already disabled.

        Raises:
            NotFoundError: If the extension is not installed
        """
        await self._set_enabled(extension_id, False)

    async def _set_enabled(self, extension_id: str, enabled: bool) -> None:
        await self.initialize()

        async with self._lock:
            info = self._require(extension_id)
            # The persisted flag is the user's choice; degraded rows always show False
            if self._state.extensions[extension_id].enabled == enabled:
                return

            new_state = self._state.model_copy(deep=True)
            new_state.extensions[extension_id].enabled = enabled
            await self._commit(new_state)
            if extension_id not in self._degraded:
                info.enabled = enabled

        event = RegistryEvent.ENABLED if enabled else RegistryEvent.DISABLED
        self._emitter.emit(event, ExtensionEvent(extension_id=extension_id, extension=info))

    def get_settings(self, extension_id: str) -> Dict[str, Any]:
        """
        Get persisted settings for an extension.

        Raises:
            NotFoundError: If the extension is not installed
        """
        self._require(extension_id)
        return dict(self._state.extensions[extension_id].settings or {})

    async def update_settings(self, extension_id: str, settings: Dict[str, Any]) -> None:
        """
        Replace persisted settings for an extension.

        Raises:
            NotFoundError: If the extension is not installed
        """
        await self.initialize()

        async with self._lock:
            self._require(extension_id)
            new_state = self._state.model_copy(deep=True)
            new_state.extensions[extension_id].settings = dict(settings)
            await self._commit(new_state)

    def get_extension(self, extension_id: str) -> Optional[ExtensionInfo]:
        """Get extension info by ID"""
        return self._extensions.get(extension_id)

    def get_all_extensions(self) -> List[ExtensionInfo]:
        """Get all installed extensions"""
        return list(self._extensions.values())

    def get_enabled_extensions(self) -> List[ExtensionInfo]:
        """Get enabled extensions, loaded or not"""
        return [info for info in self._extensions.values() if info.enabled]

    def is_degraded(self, extension_id: str) -> bool:
        """True if the extension's manifest could not be read at startup"""
        return extension_id in self._degraded

    def on(self, event: Union[RegistryEvent, str], handler: EventHandler) -> None:
        """Subscribe to registry events"""
        self._emitter.on(event, handler)

    def off(self, event: Union[RegistryEvent, str], handler: EventHandler) -> None:
        """Unsubscribe from registry events"""
        self._emitter.off(event, handler)

    def set_extension_loaded(
        self, extension_id: str, loaded: bool, actions: Optional[List[str]] = None
    ) -> None:
        """Loader callback: record the loaded flag and the action ids"""
        info = self._extensions.get(extension_id)
        if not info:
            logger.debug(f"Load state reported for unknown extension {extension_id}")
            return

        info.loaded = loaded
        info.actions = list(actions or [])
        if loaded:
            info.error = None

        event = RegistryEvent.LOADED if loaded else RegistryEvent.UNLOADED
        self._emitter.emit(event, ExtensionEvent(extension_id=extension_id, extension=info))

    def set_extension_error(self, extension_id: str, error: Union[Exception, str]) -> None:
        """Loader callback: record a load failure. Never changes ``enabled``."""
        info = self._extensions.get(extension_id)
        if not info:
            logger.debug(f"Error reported for unknown extension {extension_id}: {error}")
            return

        if isinstance(error, str):
            error = RuntimeError(error)
        info.error = str(error)
        info.loaded = False
        self._emitter.emit(
            RegistryEvent.ERROR,
            ExtensionEvent(extension_id=extension_id, extension=info, error=error),
        )

    def _require(self, extension_id: str) -> ExtensionInfo:
        info = self._extensions.get(extension_id)
        if info is None:
            raise NotFoundError(extension_id)
        return info

    async def _commit(self, new_state: RegistryState) -> None:
        await self._storage.save(new_state)
        self._state = new_state
