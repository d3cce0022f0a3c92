"""
Extension Manager

Host-side orchestration of the extension runtime. Wires the registry, the loader
and the capability gate together and drives the lifecycle operations a host
exposes to users.
"""

import asyncio
import inspect
import tempfile
from pathlib import Path
from typing import List, Optional, Union

from ..core.config import RuaConfig, get_config
from ..core.exceptions import NotFoundError, ValidationError
from ..core.logging import get_logger, setup_logging
from .api import ActionStore, AuditLogger, InMemoryActionStore, PlatformAPIs
from .gate import CapabilityGate
from .loader import ExtensionLoader
from .manifest import parse_manifest
from .models import ExtensionInfo, LoadResult
from .modules import ModuleLoader
from .platform import AiohttpHttpPlatform, JSONFileStoragePlatform
from .registry import ExtensionRegistry
from .sources import (
    GITHUB_PREFIX,
    GitHubReleaseFetcher,
    extract_archive,
    is_archive,
    parse_github_source,
)
from .storage import FileRegistryStorage, RegistryStorage

logger = get_logger(__name__)


class ExtensionManager:
    """
    Manages extension lifecycle: installing, enabling, loading and shutdown.

    The registry and the loader stay independent of each other. This class is
    where a registry change turns into a load or unload.
    """

    def __init__(
        self,
        config: Optional[RuaConfig] = None,
        storage: Optional[RegistryStorage] = None,
        platform: Optional[PlatformAPIs] = None,
        action_store: Optional[ActionStore] = None,
        module_loader: Optional[ModuleLoader] = None,
        audit_logger: Optional[AuditLogger] = None,
        source_fetcher: Optional[GitHubReleaseFetcher] = None,
    ):
        self.config = config or get_config()
        extensions_config = self.config.extensions

        if storage is None:
            storage = FileRegistryStorage(
                extensions_config.get_extensions_dir(),
                extensions_config.get_registry_path(),
            )
        if platform is None:
            platform = PlatformAPIs(
                storage=JSONFileStoragePlatform(extensions_config.get_storage_dir()),
                http=AiohttpHttpPlatform(extensions_config.http_timeout_s),
            )

        self.storage = storage
        self.platform = platform
        self.source_fetcher = source_fetcher or GitHubReleaseFetcher(
            extensions_config.http_timeout_s, extensions_config.github_api_url
        )
        self.action_store = action_store if action_store is not None else InMemoryActionStore()
        self.audit_logger = audit_logger or AuditLogger()
        self.registry = ExtensionRegistry(storage)
        self.gate = CapabilityGate(self.action_store, self.platform, self.audit_logger)
        self.loader = ExtensionLoader(
            capability_gate=self.gate,
            module_loader=module_loader,
            reporter=self.registry,
            load_timeout_ms=extensions_config.load_timeout_ms,
        )

    async def start(self, configure_logging: bool = False) -> List[LoadResult]:
        """
        Initialize the registry and load every enabled extension.

        Extensions whose manifest could not be read at startup are skipped.

        Args:
            configure_logging: Set up runtime logging from the config first
        """
        if configure_logging:
            setup_logging(self.config)
            logger.info(f"Environment: {self.config.environment}")
            logger.info(f"Debug mode: {'enabled' if self.config.debug else 'disabled'}")

        await self.registry.initialize()

        entries = [
            (info.manifest, info.path)
            for info in self.registry.get_enabled_extensions()
            if not self.registry.is_degraded(info.id)
        ]
        results = await self.loader.load_all(entries)

        loaded = sum(1 for result in results if result.success)
        logger.info(f"Extension manager started: {loaded}/{len(results)} extension(s) loaded")
        return results

    async def install(self, source: Union[str, Path]) -> ExtensionInfo:
        """
        Install or update an extension.

        ``source`` is an extension directory, a ``.rua`` archive file or a
        ``github:owner/repo[@version]`` release reference. Archives are extracted
        to a scratch directory and installed from there. If the extension is
        currently loaded it is reloaded from the new payload.

        Raises:
            ValidationError: If the source reference or the manifest is invalid
            StorageError: If fetching, extracting or copying the payload fails
        """
        if isinstance(source, str) and source.startswith(GITHUB_PREFIX):
            github = parse_github_source(source)
            if github is None:
                raise ValidationError(f"Invalid GitHub source: {source}")
            archive = await self.source_fetcher.fetch_archive(*github)
            info = await self._install_archive(archive)
        elif is_archive(source):
            info = await self._install_archive(Path(source))
        else:
            info = await self.registry.install(source)

        if self.loader.is_loaded(info.id):
            logger.info(f"Reloading updated extension {info.id}")
            await self.reload(info.id)

        return self.registry.get_extension(info.id) or info

    async def _install_archive(self, archive: Union[bytes, Path]) -> ExtensionInfo:
        with tempfile.TemporaryDirectory(prefix="rua-archive-") as scratch:
            extracted = await asyncio.to_thread(extract_archive, archive, Path(scratch))
            return await self.registry.install(extracted)

    async def load_dev(self, extension_path: Union[str, Path]) -> LoadResult:
        """
        Load an extension straight from a development directory.

        The manifest is validated in place and nothing is copied or persisted;
        the extension is gone after a restart. A loaded extension with the same
        id is unloaded first.

        Raises:
            ValidationError: If the manifest is invalid
            StorageError: If the manifest cannot be read
        """
        extension_path = Path(extension_path).resolve()
        result = parse_manifest(await self.storage.read_manifest(extension_path))
        if not result.valid:
            raise ValidationError(
                f"Invalid manifest in {extension_path}: {result.summary()}",
                errors=result.errors,
            )

        manifest = result.manifest
        if self.loader.is_loaded(manifest.id):
            await self.loader.unload(manifest.id)

        logger.info(f"Loading development extension {manifest.id} from {extension_path}")
        return await self.loader.load(manifest, extension_path)

    async def unload_dev(self, extension_id: str) -> bool:
        """Unload a development extension. Returns False if it was not loaded."""
        return await self.loader.unload(extension_id)

    async def uninstall(self, extension_id: str) -> None:
        """Unload (if loaded) and uninstall an extension"""
        await self._require(extension_id)
        await self.loader.unload(extension_id)
        await self.registry.uninstall(extension_id)

    async def enable(self, extension_id: str) -> LoadResult:
        """Enable an extension and load it"""
        await self.registry.enable(extension_id)
        return await self._load(extension_id)

    async def disable(self, extension_id: str) -> None:
        """Unload an extension and disable it"""
        await self._require(extension_id)
        await self.loader.unload(extension_id)
        await self.registry.disable(extension_id)

    async def reload(self, extension_id: str) -> LoadResult:
        """Unload and load an extension again"""
        await self._require(extension_id)
        await self.loader.unload(extension_id)
        return await self._load(extension_id)

    async def shutdown(self) -> None:
        """Deactivate every loaded extension and release platform resources"""
        await self.loader.unload_all(self.config.extensions.shutdown_timeout_ms)

        for capability in (self.platform.http, self.platform.storage):
            close = getattr(capability, "close", None)
            if close is None:
                continue
            try:
                result = close()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error closing platform capability: {e}")

        logger.info("Extension manager shut down")

    async def _load(self, extension_id: str) -> LoadResult:
        info = await self._require(extension_id)

        if self.registry.is_degraded(extension_id):
            error = ValidationError(f"Extension {extension_id} cannot be loaded: {info.error}")
            logger.warning(str(error))
            return LoadResult(success=False, error=error)

        return await self.loader.load(info.manifest, info.path)

    async def _require(self, extension_id: str) -> ExtensionInfo:
        await self.registry.initialize()
        info = self.registry.get_extension(extension_id)
        if info is None:
            raise NotFoundError(extension_id)
        return info
