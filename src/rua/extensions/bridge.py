"""
RPC Bridge

Adapters between the capability surface and the channel that connects the host
to an extension's execution context. The transport is supplied by the host; this
module only maps capability calls and lifecycle events onto it.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from ..core.exceptions import CapabilityError
from ..core.logging import get_logger
from .api import (
    ClipboardPlatform,
    ExtensionAPI,
    HttpPlatform,
    HttpResponse,
    NotificationOptions,
    NotificationPlatform,
    PlatformAPIs,
    ShellPlatform,
    ShellResult,
    StoragePlatform,
)

logger = get_logger(__name__)


class HostMethod(str, Enum):
    """Host RPC method names, one per capability method"""

    CLIPBOARD_READ_TEXT = "clipboardReadText"
    CLIPBOARD_WRITE_TEXT = "clipboardWriteText"
    NOTIFICATION_SHOW = "notificationShow"
    STORAGE_GET = "storageGet"
    STORAGE_SET = "storageSet"
    STORAGE_REMOVE = "storageRemove"
    STORAGE_KEYS = "storageKeys"
    STORAGE_CLEAR = "storageClear"
    HTTP_REQUEST = "httpRequest"
    SHELL_EXECUTE = "shellExecute"


class HostEvent(str, Enum):
    """Lifecycle events the host pushes to an extension"""

    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"
    ACTION_TRIGGERED = "action-triggered"


class RpcBridge(ABC):
    """
    Bidirectional channel between the host and one extension's context.

    Calls on a single channel are delivered in order.
    """

    @abstractmethod
    async def call_host(self, method: str, args: List[Any]) -> Any:
        """Invoke a host method and return its result"""
        pass

    @abstractmethod
    def on_host_event(self, name: str, handler: Callable[[Any], None]) -> None:
        """Subscribe to events pushed by the host"""
        pass


class _BridgePlatform:
    capability = ""

    def __init__(self, bridge: RpcBridge):
        self._bridge = bridge

    async def _call(self, method: HostMethod, *args: Any) -> Any:
        try:
            return await self._bridge.call_host(method.value, list(args))
        except CapabilityError:
            raise
        except Exception as e:
            logger.error(f"Host call {method.value} failed: {e}")
            raise CapabilityError(
                f"{self.capability}: host call {method.value} failed: {e}",
                self.capability,
                method.value,
            )


class BridgeClipboardPlatform(_BridgePlatform, ClipboardPlatform):
    capability = "clipboard"

    async def read(self) -> str:
        return await self._call(HostMethod.CLIPBOARD_READ_TEXT)

    async def write(self, text: str) -> None:
        await self._call(HostMethod.CLIPBOARD_WRITE_TEXT, text)


class BridgeNotificationPlatform(_BridgePlatform, NotificationPlatform):
    capability = "notification"

    async def show(self, options: NotificationOptions) -> None:
        payload = {key: value for key, value in asdict(options).items() if value is not None}
        await self._call(HostMethod.NOTIFICATION_SHOW, payload)


class BridgeStoragePlatform(_BridgePlatform, StoragePlatform):
    """
    Storage over the bridge.

    A channel belongs to a single extension and the host scopes storage by that
    channel, so the namespace is not sent.
    """

    capability = "storage"

    async def get(self, namespace: str, key: str) -> Any:
        return await self._call(HostMethod.STORAGE_GET, key)

    async def set(self, namespace: str, key: str, value: Any) -> None:
        await self._call(HostMethod.STORAGE_SET, key, value)

    async def remove(self, namespace: str, key: str) -> None:
        await self._call(HostMethod.STORAGE_REMOVE, key)

    async def keys(self, namespace: str) -> List[str]:
        return list(await self._call(HostMethod.STORAGE_KEYS) or [])

    async def clear(self, namespace: str) -> None:
        await self._call(HostMethod.STORAGE_CLEAR)


class BridgeHttpPlatform(_BridgePlatform, HttpPlatform):
    capability = "http"

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[str] = None,
    ) -> HttpResponse:
        result = await self._call(HostMethod.HTTP_REQUEST, method, url, headers, body)
        if isinstance(result, HttpResponse):
            return result
        return HttpResponse(
            status=int(result["status"]),
            headers=dict(result.get("headers") or {}),
            body=result.get("body") or "",
        )


class BridgeShellPlatform(_BridgePlatform, ShellPlatform):
    capability = "shell"

    async def execute(self, program: str, args: List[str]) -> ShellResult:
        result = await self._call(HostMethod.SHELL_EXECUTE, program, list(args))
        if isinstance(result, ShellResult):
            return result
        return ShellResult(
            success=bool(result.get("success")),
            stdout=result.get("stdout") or "",
            stderr=result.get("stderr") or "",
            exit_code=result.get("exitCode", result.get("exit_code")),
        )


def bridge_platform_apis(bridge: RpcBridge) -> PlatformAPIs:
    """
    Build PlatformAPIs whose capabilities forward to the host over ``bridge``.

    Permission checks still happen in the CapabilityGate before any call reaches
    the bridge.
    """
    return PlatformAPIs(
        clipboard=BridgeClipboardPlatform(bridge),
        notification=BridgeNotificationPlatform(bridge),
        storage=BridgeStoragePlatform(bridge),
        http=BridgeHttpPlatform(bridge),
        shell=BridgeShellPlatform(bridge),
    )


def route_host_events(bridge: RpcBridge, api: ExtensionAPI) -> None:
    """Deliver host lifecycle events to an extension's local event handlers"""
    for event in HostEvent:
        bridge.on_host_event(event.value, partial(api.emit, event.value))
