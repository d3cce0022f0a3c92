"""
Capability Gate

Builds the API object for an activated extension. Each capability is resolved
once, at construction, to exactly one of:

- forwarded: permission declared and the platform provides it
- denied: the platform provides it but the manifest lacks the permission
- unavailable: the platform does not provide it (regardless of permissions)

Denied and unavailable capabilities reject every call with a descriptive error.
"""

import inspect
from typing import Any, Dict, List, Optional

from ..core.exceptions import (
    CapabilityError,
    CapabilityPermissionError,
    CapabilityUnavailableError,
)
from ..core.logging import get_logger
from .api import (
    ActionStore,
    AuditLogger,
    CapabilityStatus,
    ExtensionAPI,
    HttpResponse,
    InMemoryActionStore,
    NotificationOptions,
    PlatformAPIs,
    ShellResult,
)
from .models import ExtensionManifest, ExtensionPermission

logger = get_logger(__name__)


class Capability:
    """Base class for a gated capability bound to one extension"""

    kind: str = ""
    permission: ExtensionPermission

    def __init__(
        self,
        extension_id: str,
        status: CapabilityStatus,
        impl: Any = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._extension_id = extension_id
        self._status = status
        self._impl = impl if status is CapabilityStatus.FORWARDED else None
        self._audit_logger = audit_logger
        self._revoked = False

    @property
    def status(self) -> CapabilityStatus:
        return self._status

    def revoke(self) -> None:
        """Reject all further calls; used when the owning extension is unloaded"""
        self._revoked = True

    def _rejection(self, method: str) -> CapabilityError:
        if self._status is CapabilityStatus.UNAVAILABLE:
            logger.warning(f"{self.kind}.{method} is not available in this environment")
            return CapabilityUnavailableError(self.kind, method)

        logger.warning(
            f"Extension {self._extension_id} attempted to use {self.kind}.{method} "
            f"without '{self.permission.value}' permission"
        )
        return CapabilityPermissionError(
            self._extension_id, self.kind, method, self.permission.value
        )

    def _audit(self, method: str, success: bool, error: Optional[BaseException] = None) -> None:
        if self._audit_logger:
            self._audit_logger.log(
                extension_id=self._extension_id,
                capability=self.kind,
                method=method,
                success=success,
                error_message=str(error) if error else None,
                details={"status": self._status.value},
            )

    async def _call(self, method: str, *args: Any) -> Any:
        if self._revoked:
            error = CapabilityError(
                f"{self.kind}.{method}: extension '{self._extension_id}' is no longer active",
                self.kind,
                method,
            )
            self._audit(method, False, error)
            raise error

        if self._status is not CapabilityStatus.FORWARDED:
            error = self._rejection(method)
            self._audit(method, False, error)
            raise error

        try:
            result = getattr(self._impl, method)(*args)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            self._audit(method, False, e)
            raise

        self._audit(method, True)
        return result


class ClipboardCapability(Capability):
    kind = "clipboard"
    permission = ExtensionPermission.CLIPBOARD

    async def read(self) -> str:
        """Read text from the clipboard"""
        return await self._call("read")

    async def write(self, text: str) -> None:
        """Write text to the clipboard"""
        await self._call("write", text)


class NotificationCapability(Capability):
    kind = "notification"
    permission = ExtensionPermission.NOTIFICATION

    async def show(self, options: NotificationOptions) -> None:
        """Show a system notification"""
        await self._call("show", options)


class StorageCapability(Capability):
    """Key-value storage; the namespace is always the extension id"""

    kind = "storage"
    permission = ExtensionPermission.STORAGE

    async def get(self, key: str) -> Any:
        return await self._call("get", self._extension_id, key)

    async def set(self, key: str, value: Any) -> None:
        await self._call("set", self._extension_id, key, value)

    async def remove(self, key: str) -> None:
        await self._call("remove", self._extension_id, key)

    async def keys(self) -> List[str]:
        return await self._call("keys", self._extension_id)

    async def clear(self) -> None:
        await self._call("clear", self._extension_id)


class HttpCapability(Capability):
    kind = "http"
    permission = ExtensionPermission.HTTP

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[str] = None,
    ) -> HttpResponse:
        """Perform an HTTP request through the host"""
        return await self._call("request", method, url, headers, body)


class ShellCapability(Capability):
    kind = "shell"
    permission = ExtensionPermission.SHELL

    async def execute(self, program: str, args: Optional[List[str]] = None) -> ShellResult:
        """Run a program through the host"""
        return await self._call("execute", program, list(args or []))


CAPABILITY_TYPES = (
    ClipboardCapability,
    NotificationCapability,
    StorageCapability,
    HttpCapability,
    ShellCapability,
)


class CapabilityGate:
    """
    Constructs per-extension API objects.

    The gate holds no extension state; everything extension-specific lives in
    the ExtensionAPI instance it returns.
    """

    def __init__(
        self,
        action_store: Optional[ActionStore] = None,
        platform: Optional[PlatformAPIs] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.action_store = action_store if action_store is not None else InMemoryActionStore()
        self.platform = platform or PlatformAPIs()
        self.audit_logger = audit_logger or AuditLogger()

    def resolve(self, manifest: ExtensionManifest, kind: str) -> CapabilityStatus:
        """
        Resolve one capability for a manifest.

        Args:
            manifest: Manifest of the extension being activated
            kind: Capability name (clipboard, notification, storage, http, shell)

        Returns:
            The capability's status
        """
        if getattr(self.platform, kind, None) is None:
            return CapabilityStatus.UNAVAILABLE
        if not manifest.has_permission(ExtensionPermission(kind)):
            return CapabilityStatus.DENIED
        return CapabilityStatus.FORWARDED

    def create_api(self, extension_id: str, manifest: ExtensionManifest) -> ExtensionAPI:
        """
        Build the API object for one extension.

        Args:
            extension_id: Namespace for actions and storage
            manifest: Source of declared permissions

        Returns:
            A new ExtensionAPI
        """
        capabilities = {
            capability_type.kind: capability_type(
                extension_id,
                self.resolve(manifest, capability_type.kind),
                getattr(self.platform, capability_type.kind, None),
                self.audit_logger,
            )
            for capability_type in CAPABILITY_TYPES
        }

        logger.debug(
            f"Capabilities for {extension_id}: "
            + ", ".join(f"{kind}={cap.status.value}" for kind, cap in capabilities.items())
        )

        return ExtensionAPI(extension_id, self.action_store, **capabilities)
