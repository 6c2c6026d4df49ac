"""Notification sink for session and folder lifecycle events."""

from __future__ import annotations

import logging
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

SESSION_CREATED = "session_created"
SESSION_UPDATED = "session_updated"
SESSION_DELETED = "session_deleted"
FOLDER_CREATED = "folder_created"

EVENT_TYPES = frozenset({SESSION_CREATED, SESSION_UPDATED, SESSION_DELETED, FOLDER_CREATED})

Listener = Callable[[str, dict[str, Any]], None]


class NotificationSink(Protocol):
    def emit(self, event: str, payload: dict[str, Any]) -> None:
        ...


class EventBus:
    """Fan events out to subscribed listeners and keep a short history."""

    def __init__(self, *, history_size: int = 200) -> None:
        self._listeners: list[Listener] = []
        self._history: list[tuple[str, dict[str, Any]]] = []
        self._history_size = history_size

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        if event not in EVENT_TYPES:
            raise ValueError(f"Unknown event type '{event}'")
        self._history.append((event, payload))
        del self._history[: -self._history_size]
        logger.debug("Emitting event", extra={"event": event, "session_id": payload.get("id")})
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception:
                # A broken listener must not abort the job that emitted the event.
                logger.exception("Event listener failed", extra={"event": event})

    @property
    def history(self) -> list[tuple[str, dict[str, Any]]]:
        return list(self._history)


__all__ = [
    "EVENT_TYPES",
    "EventBus",
    "FOLDER_CREATED",
    "NotificationSink",
    "SESSION_CREATED",
    "SESSION_DELETED",
    "SESSION_UPDATED",
]
