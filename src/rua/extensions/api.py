"""
Extension API

Contracts between the host and an activated extension: the platform
capability interfaces the host supplies, the host action store, and the
per-extension API object handed to ``activate()``.
"""

from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Deque,
    Dict,
    Iterable,
    List,
    Optional,
    Set,
)

from ..core.logging import get_logger
from .events import EventEmitter, EventHandler
from .models import ExtensionAuditLog

if TYPE_CHECKING:
    from .gate import (
        ClipboardCapability,
        HttpCapability,
        NotificationCapability,
        ShellCapability,
        StorageCapability,
    )

logger = get_logger(__name__)


class CapabilityStatus(str, Enum):
    """How a capability was resolved for an extension"""

    FORWARDED = "forwarded"
    DENIED = "denied"
    UNAVAILABLE = "unavailable"


@dataclass
class NotificationOptions:
    """System notification request"""

    title: str
    body: Optional[str] = None
    icon: Optional[str] = None


@dataclass
class HttpResponse:
    """Response returned by the http capability"""

    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""


@dataclass
class ShellResult:
    """Result of a shell command"""

    success: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = None


# Platform implementations. The gate calls these duck-typed, so hosts may pass
# any object with matching coroutine methods.


class ClipboardPlatform(ABC):
    @abstractmethod
    async def read(self) -> str:
        pass

    @abstractmethod
    async def write(self, text: str) -> None:
        pass


class NotificationPlatform(ABC):
    @abstractmethod
    async def show(self, options: NotificationOptions) -> None:
        pass


class StoragePlatform(ABC):
    """Key-value storage partitioned by namespace"""

    @abstractmethod
    async def get(self, namespace: str, key: str) -> Any:
        pass

    @abstractmethod
    async def set(self, namespace: str, key: str, value: Any) -> None:
        pass

    @abstractmethod
    async def remove(self, namespace: str, key: str) -> None:
        pass

    @abstractmethod
    async def keys(self, namespace: str) -> List[str]:
        pass

    @abstractmethod
    async def clear(self, namespace: str) -> None:
        pass


class HttpPlatform(ABC):
    @abstractmethod
    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[str] = None,
    ) -> HttpResponse:
        pass


class ShellPlatform(ABC):
    @abstractmethod
    async def execute(self, program: str, args: List[str]) -> ShellResult:
        pass


@dataclass
class PlatformAPIs:
    """Capability implementations available on this host; None means unavailable"""

    clipboard: Optional[Any] = None
    notification: Optional[Any] = None
    storage: Optional[Any] = None
    http: Optional[Any] = None
    shell: Optional[Any] = None


@dataclass
class ExtensionAction:
    """Action registered at runtime by an extension"""

    id: str
    name: str
    keywords: Optional[str] = None
    icon: Optional[str] = None
    subtitle: Optional[str] = None
    shortcut: Optional[List[str]] = None
    section: Optional[str] = None
    parent: Optional[str] = None
    priority: Optional[int] = None
    perform: Optional[Callable[..., Any]] = None


@dataclass
class RegisteredAction(ExtensionAction):
    """Action as stored by the host, with its namespaced id"""

    original_id: str = ""
    extension_id: str = ""


class ActionStore(ABC):
    """Host-side store of runtime actions"""

    @abstractmethod
    def register(self, actions: List[RegisteredAction]) -> None:
        pass

    @abstractmethod
    def unregister(self, action_ids: List[str]) -> None:
        pass

    @abstractmethod
    def has(self, action_id: str) -> bool:
        pass


class InMemoryActionStore(ActionStore):
    """Dictionary-backed action store"""

    def __init__(self, actions: Optional[Iterable[RegisteredAction]] = None):
        self._actions: Dict[str, RegisteredAction] = {}
        for action in actions or []:
            self._actions[action.id] = action

    def register(self, actions: List[RegisteredAction]) -> None:
        for action in actions:
            self._actions[action.id] = action

    def unregister(self, action_ids: List[str]) -> None:
        for action_id in action_ids:
            self._actions.pop(action_id, None)

    def has(self, action_id: str) -> bool:
        return action_id in self._actions

    def get(self, action_id: str) -> Optional[RegisteredAction]:
        return self._actions.get(action_id)

    def all(self) -> List[RegisteredAction]:
        return list(self._actions.values())


class AuditLogger:
    """Records capability calls made by extensions"""

    def __init__(self, max_entries: int = 10_000):
        self._logs: Deque[ExtensionAuditLog] = deque(maxlen=max_entries)

    def log(
        self,
        extension_id: str,
        capability: str,
        method: str,
        success: bool = True,
        error_message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> ExtensionAuditLog:
        """Create and store an audit log entry"""
        entry = ExtensionAuditLog(
            extension_id=extension_id,
            capability=capability,
            method=method,
            details=details or {},
            success=success,
            error_message=error_message,
        )
        self._logs.append(entry)
        return entry

    def get_logs(
        self,
        extension_id: Optional[str] = None,
        capability: Optional[str] = None,
        success: Optional[bool] = None,
    ) -> List[ExtensionAuditLog]:
        """Retrieve audit logs with optional filtering"""
        logs = list(self._logs)

        if extension_id:
            logs = [log for log in logs if log.extension_id == extension_id]
        if capability:
            logs = [log for log in logs if log.capability == capability]
        if success is not None:
            logs = [log for log in logs if log.success == success]

        return logs


class ExtensionAPI:
    """
    The bounded API object passed to an extension's ``activate()``.

    One instance exists per activated extension. Capabilities are resolved once by
    the CapabilityGate; action ids and storage keys are namespaced by extension id.
    The event methods form a pub-sub local to this instance.
    """

    def __init__(
        self,
        extension_id: str,
        action_store: ActionStore,
        clipboard: "ClipboardCapability",
        notification: "NotificationCapability",
        storage: "StorageCapability",
        http: "HttpCapability",
        shell: "ShellCapability",
    ):
        self.extension_id = extension_id
        self.clipboard = clipboard
        self.notification = notification
        self.storage = storage
        self.http = http
        self.shell = shell
        self._action_store = action_store
        self._registered_action_ids: Set[str] = set()
        self._emitter = EventEmitter(f"extension {extension_id}")
        self._disposed = False

    def _namespace(self, action_id: str) -> str:
        prefix = f"{self.extension_id}."
        return action_id if action_id.startswith(prefix) else f"{prefix}{action_id}"

    def _resolve_parent(self, parent: str) -> str:
        return parent if "." in parent else f"{self.extension_id}.{parent}"

    def register_actions(self, actions: List[ExtensionAction]) -> List[str]:
        """
        Register runtime actions under this extension's namespace.

        An action whose parent is unknown is logged and skipped; the rest of the
        batch is still registered.

        Args:
            actions: Actions with extension-local ids

        Returns:
            Namespaced ids that were registered
        """
        if self._disposed:
            logger.warning(
                f"Extension {self.extension_id}: ignoring action registration after unload"
            )
            return []

        registered: List[RegisteredAction] = []

        for action in actions:
            namespaced_id = f"{self.extension_id}.{action.id}"
            parent_id = None

            if action.parent:
                parent_id = self._resolve_parent(action.parent)
                known = (
                    self._action_store.has(parent_id)
                    or parent_id in self._registered_action_ids
                )
                if not known:
                    logger.error(
                        f"Extension {self.extension_id}: Cannot register action "
                        f"'{action.id}' - parent '{action.parent}' not found"
                    )
                    continue

            fields = {name: getattr(action, name) for name in ExtensionAction.__dataclass_fields__}
            fields.update(id=namespaced_id, parent=parent_id)
            registered.append(
                RegisteredAction(**fields, original_id=action.id, extension_id=self.extension_id)
            )
            self._registered_action_ids.add(namespaced_id)

        if registered:
            self._action_store.register(registered)

        return [action.id for action in registered]

    def unregister_actions(self, action_ids: List[str]) -> None:
        """Unregister actions by extension-local (or own namespaced) ids"""
        namespaced_ids = [self._namespace(action_id) for action_id in action_ids]
        self._action_store.unregister(namespaced_ids)
        self._registered_action_ids.difference_update(namespaced_ids)

    def registered_action_ids(self) -> List[str]:
        """Namespaced ids of actions this extension currently has registered"""
        return sorted(self._registered_action_ids)

    def capability_status(self) -> Dict[str, CapabilityStatus]:
        """Resolved status of each capability"""
        return {
            capability.kind: capability.status
            for capability in self._capabilities()
        }

    def on(self, event: str, handler: EventHandler) -> None:
        self._emitter.on(event, handler)

    def off(self, event: str, handler: EventHandler) -> None:
        self._emitter.off(event, handler)

    def emit(self, event: str, data: Any = None) -> None:
        self._emitter.emit(event, data)

    @property
    def disposed(self) -> bool:
        return self._disposed

    def _capabilities(self) -> tuple:
        return (self.clipboard, self.notification, self.storage, self.http, self.shell)

    def dispose(self) -> None:
        """
        Revoke this API object.

        Unregisters every action the extension registered, drops its listeners and
        makes all capabilities reject further calls.
        """
        self._disposed = True
        for capability in self._capabilities():
            capability.revoke()
        if self._registered_action_ids:
            self._action_store.unregister(sorted(self._registered_action_ids))
            self._registered_action_ids.clear()
        self._emitter.clear()
