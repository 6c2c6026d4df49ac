"""Panel registration and the bounded wait that bridges session creation and panel start-up."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from ..sessions.events import SESSION_CREATED, SESSION_DELETED
from ..sessions.models import ToolType

logger = logging.getLogger(__name__)

DEFAULT_WAIT_ATTEMPTS = 15
DEFAULT_WAIT_INTERVAL = 0.2


class PanelNotRegisteredError(RuntimeError):
    """Raised when no panel appeared for a session within the attempt ceiling."""

    def __init__(self, session_id: str, tool_type: ToolType, attempts: int, interval: float) -> None:
        super().__init__(
            f"Panel for session {session_id} ({tool_type.value}) was never registered "
            f"after {attempts} attempts at {int(interval * 1000)}ms"
        )
        self.session_id = session_id
        self.tool_type = tool_type
        self.attempts = attempts
        self.interval = interval


@dataclass(slots=True)
class Panel:
    id: str
    session_id: str
    tool_type: ToolType
    created_at: datetime


class PanelRegistry:
    """Tracks panels bound to sessions.

    Panels are registered by an independent component, possibly after the session
    row is announced. ``wait_for_panel`` polls with a fixed interval and attempt
    ceiling, waking early when a registration for the session arrives.
    """

    def __init__(
        self,
        *,
        attempts: int = DEFAULT_WAIT_ATTEMPTS,
        interval: float = DEFAULT_WAIT_INTERVAL,
    ) -> None:
        self.attempts = attempts
        self.interval = interval
        self._panels: dict[str, Panel] = {}
        self._signals: dict[str, asyncio.Event] = {}

    def register(self, session_id: str, tool_type: ToolType | str, *, panel_id: str | None = None) -> Panel:
        panel = Panel(
            id=panel_id or uuid.uuid4().hex,
            session_id=session_id,
            tool_type=ToolType(tool_type),
            created_at=datetime.now(timezone.utc),
        )
        self._panels[panel.id] = panel
        signal = self._signals.get(session_id)
        if signal is not None:
            signal.set()
        logger.debug("Panel registered", extra={"panel_id": panel.id, "session_id": session_id})
        return panel

    def unregister(self, panel_id: str) -> None:
        self._panels.pop(panel_id, None)

    def get(self, panel_id: str) -> Panel | None:
        return self._panels.get(panel_id)

    def panels_for(self, session_id: str) -> list[Panel]:
        return [panel for panel in self._panels.values() if panel.session_id == session_id]

    def find(self, session_id: str, tool_type: ToolType | str | None = None) -> Panel | None:
        wanted = ToolType(tool_type) if tool_type is not None else None
        for panel in self.panels_for(session_id):
            if wanted is None or panel.tool_type is wanted:
                return panel
        return None

    async def wait_for_panel(self, session_id: str, tool_type: ToolType | str) -> Panel:
        tool = ToolType(tool_type)
        signal = self._signals.setdefault(session_id, asyncio.Event())
        try:
            for attempt in range(1, self.attempts + 1):
                panel = self.find(session_id, tool)
                if panel is not None:
                    return panel
                signal.clear()
                try:
                    await asyncio.wait_for(signal.wait(), self.interval)
                except asyncio.TimeoutError:
                    logger.debug(
                        "Panel not registered yet",
                        extra={"session_id": session_id, "attempt": attempt},
                    )
            panel = self.find(session_id, tool)
            if panel is not None:
                return panel
        finally:
            self._signals.pop(session_id, None)
        raise PanelNotRegisteredError(session_id, tool, self.attempts, self.interval)

    def handle_event(self, event: str, payload: dict[str, Any]) -> None:
        """Event listener that opens a panel for each new session with an agent tool."""

        if event == SESSION_CREATED:
            tool = ToolType(payload.get("tool_type") or ToolType.NONE.value)
            if tool is not ToolType.NONE and self.find(payload["id"], tool) is None:
                self.register(payload["id"], tool)
        elif event == SESSION_DELETED:
            for panel in self.panels_for(payload["id"]):
                self.unregister(panel.id)


__all__ = ["Panel", "PanelNotRegisteredError", "PanelRegistry"]
