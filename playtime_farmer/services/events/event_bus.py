"""Typed publish/subscribe registry with removable subscriptions."""

import asyncio
import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Union

from loguru import logger

Handler = Callable[..., Any]
Unsubscribe = Callable[[], None]


class FarmerEvent(str, Enum):
    """Events an orchestrator publishes on its bus."""

    CONNECTING = "connecting"
    CHALLENGE_REQUIRED = "challenge_required"
    LOGGED_ON = "logged_on"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    RECONNECTED = "reconnected"
    RECONNECT_FAILED = "reconnect_failed"
    ERROR = "error"
    TARGET_REACHED = "target_reached"
    ACTIVITIES_CHANGED = "activities_changed"
    STOPPED = "stopped"


class ProviderEvent(str, Enum):
    """Events a session provider publishes on its bus."""

    CONNECTED = "connected"
    CHALLENGE_REQUIRED = "challenge_required"
    LOGGED_ON = "logged_on"
    ERROR = "error"
    DISCONNECTED = "disconnected"


EventName = Union[FarmerEvent, ProviderEvent, str]


@dataclass(eq=False)
class _Subscription:
    event: str
    handler: Handler


def _event_key(event: EventName) -> str:
    return event.value if isinstance(event, Enum) else str(event)


class EventBus:
    """
    Synchronous event dispatcher.

    Handlers run in subscription order on the caller's thread. A handler that
    raises is logged and the remaining handlers still run. A handler returning
    an awaitable has it scheduled on the running event loop.
    """

    def __init__(self, name: str = "bus"):
        self.name = name
        self._handlers: Dict[str, List[_Subscription]] = {}
        self._pending: Set["asyncio.Task[Any]"] = set()
        self._disposed = False

    def subscribe(self, event: EventName, handler: Handler) -> Unsubscribe:
        """
        Register a handler.

        Args:
            event: Event name
            handler: Callable invoked with the published arguments

        Returns:
            Function removing exactly this subscription; calling it twice is a no-op
        """
        if self._disposed:
            raise RuntimeError(f"Event bus '{self.name}' is disposed")

        key = _event_key(event)
        subscription = _Subscription(key, handler)
        self._handlers.setdefault(key, []).append(subscription)

        def unsubscribe() -> None:
            handlers = self._handlers.get(key)
            if not handlers:
                return
            try:
                handlers.remove(subscription)
            except ValueError:
                return
            if not handlers:
                del self._handlers[key]

        return unsubscribe

    def publish(self, event: EventName, *args: Any) -> int:
        """
        Dispatch an event to its current subscribers.

        Args:
            event: Event name
            *args: Positional arguments passed to every handler

        Returns:
            Number of handlers invoked
        """
        key = _event_key(event)
        snapshot = list(self._handlers.get(key, ()))
        for subscription in snapshot:
            try:
                result = subscription.handler(*args)
            except Exception:
                logger.exception(f"Handler for '{key}' on {self.name} raised")
                continue
            if inspect.isawaitable(result):
                self._schedule(key, result)
        return len(snapshot)

    def _schedule(self, key: str, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running loop to schedule on
            logger.error(f"Async handler for '{key}' on {self.name} dropped: no running loop")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = asyncio.ensure_future(awaitable, loop=loop)
        self._pending.add(task)

        def _done(t: "asyncio.Task") -> None:
            self._pending.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.opt(exception=exc).error(f"Async handler for '{key}' on {self.name} failed")

        task.add_done_callback(_done)

    def has_subscribers(self, event: EventName) -> bool:
        return bool(self._handlers.get(_event_key(event)))

    def clear(self, event: Optional[EventName] = None) -> None:
        """Drop the handlers of one event, or of every event when none is given."""
        if event is None:
            self._handlers.clear()
        else:
            self._handlers.pop(_event_key(event), None)

    def dispose(self) -> None:
        """Remove every subscription and cancel scheduled async handlers."""
        self._handlers.clear()
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()
        self._disposed = True

    @property
    def disposed(self) -> bool:
        return self._disposed
