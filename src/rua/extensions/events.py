"""
Extension Events

Minimal publish/subscribe used by the registry and by each extension's API object.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Set, Union

from ..core.logging import get_logger
from .models import ExtensionInfo

logger = get_logger(__name__)

EventHandler = Callable[[Any], Any]


class RegistryEvent(str, Enum):
    """Events emitted by the extension registry"""

    READY = "ready"
    INSTALLED = "extension:installed"
    UNINSTALLED = "extension:uninstalled"
    ENABLED = "extension:enabled"
    DISABLED = "extension:disabled"
    LOADED = "extension:loaded"
    UNLOADED = "extension:unloaded"
    ERROR = "extension:error"


@dataclass
class ExtensionEvent:
    """Payload for registry events"""

    extension_id: str
    extension: Optional[ExtensionInfo] = None
    error: Optional[Exception] = None


class EventEmitter:
    """
    String-keyed event emitter.

    Handlers run synchronously in registration order. A handler that raises is
    logged and skipped so the remaining handlers and the emitting caller are unaffected.
    Coroutine handlers are scheduled on the running loop; their failures are
    logged the same way.
    """

    def __init__(self, name: str = "events"):
        self._name = name
        self._listeners: Dict[str, List[EventHandler]] = {}
        self._pending: Set["asyncio.Future[Any]"] = set()

    @staticmethod
    def _key(event: Union[str, Enum]) -> str:
        return event.value if isinstance(event, Enum) else event

    def on(self, event: Union[str, Enum], handler: EventHandler) -> None:
        handlers = self._listeners.setdefault(self._key(event), [])
        if handler not in handlers:
            handlers.append(handler)

    def off(self, event: Union[str, Enum], handler: EventHandler) -> None:
        handlers = self._listeners.get(self._key(event))
        if handlers and handler in handlers:
            handlers.remove(handler)

    def emit(self, event: Union[str, Enum], data: Any = None) -> None:
        key = self._key(event)
        for handler in list(self._listeners.get(key, ())):
            try:
                result = handler(data)
            except Exception as e:
                logger.error(f"Error in {self._name} handler for {key}: {e}")
                continue
            if inspect.isawaitable(result):
                self._schedule(key, result)

    def _schedule(self, key: str, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.error(f"Async {self._name} handler for {key} emitted outside an event loop")
            return

        task = asyncio.ensure_future(awaitable, loop=loop)
        self._pending.add(task)
        task.add_done_callback(partial(self._settle, key))

    def _settle(self, key: str, task: "asyncio.Future[Any]") -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Error in {self._name} handler for {key}: {error}")

    def listener_count(self, event: Union[str, Enum]) -> int:
        return len(self._listeners.get(self._key(event), ()))

    def clear(self) -> None:
        self._listeners.clear()


class LoadReporter(ABC):
    """Receives load outcomes from the extension loader"""

    @abstractmethod
    def set_extension_loaded(
        self, extension_id: str, loaded: bool, actions: Optional[List[str]] = None
    ) -> None:
        pass

    @abstractmethod
    def set_extension_error(self, extension_id: str, error: Union[Exception, str]) -> None:
        pass
