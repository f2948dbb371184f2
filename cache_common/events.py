"""
Event emission for connection and cache operation observers.

Listeners are plain callables invoked synchronously on every emit. A listener
that raises is logged and skipped; it never affects the emitter or the other
listeners.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import structlog

from cache_common.logging import get_logger


class EventType(str, Enum):
    """Structured event kinds."""
    CONNECTION_STATE_CHANGED = "connection_state_changed"
    OPERATION_SUCCEEDED = "operation_succeeded"
    OPERATION_FAILED = "operation_failed"


@dataclass(frozen=True)
class CacheEvent:
    """A single observable event."""
    event: EventType
    fields: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


Listener = Callable[[CacheEvent], None]


class EventEmitter:
    """Observer list decoupled from the emitting component's control flow."""

    def __init__(self, name: str = "cache"):
        self.name = name
        self.logger = get_logger(f"{name}.events")
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            self.unsubscribe(listener)

        return _unsubscribe

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, event: EventType, **fields: Any) -> CacheEvent:
        """Deliver an event to every listener."""
        cache_event = CacheEvent(event=event, fields=fields)
        for listener in list(self._listeners):
            try:
                listener(cache_event)
            except Exception as exc:
                self.logger.warning(
                    "Event listener failed",
                    event_type=event.value,
                    listener=getattr(listener, "__name__", repr(listener)),
                    error=str(exc)
                )
        return cache_event

    def __len__(self) -> int:
        return len(self._listeners)


_ERROR_STATES = {"permanently_failed"}
_WARNING_STATES = {"reconnecting"}


def log_events(logger: Optional[structlog.BoundLogger] = None) -> Listener:
    """Build a listener that writes events to a structured logger."""
    logger = logger or get_logger("cache.events")

    def _log(cache_event: CacheEvent) -> None:
        fields = dict(cache_event.fields)
        if cache_event.event is EventType.CONNECTION_STATE_CHANGED:
            current = fields.get("current")
            if current in _ERROR_STATES:
                logger.error("Connection state changed", **fields)
            elif current in _WARNING_STATES:
                logger.warning("Connection state changed", **fields)
            else:
                logger.info("Connection state changed", **fields)
        elif cache_event.event is EventType.OPERATION_FAILED:
            logger.warning("Cache operation failed", **fields)
        else:
            logger.debug("Cache operation succeeded", **fields)

    return _log
