"""Session store persisted as Chroma event streams."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from ..sessions.models import ConversationMessage, ExecutionDiff, Folder, Session
from ..sessions.store import MemorySessionStore
from .chroma import ChromaStore

logger = logging.getLogger(__name__)

SESSION_SNAPSHOT = "session_snapshot"
FOLDER_CREATED = "folder_created"
EXECUTION_DIFF = "execution_diff"
CONVERSATION_MESSAGE = "conversation_message"


def session_stream(session_id: str) -> str:
    return f"session::{session_id}"


def folder_stream(folder_id: str) -> str:
    return f"folder::{folder_id}"


def diff_stream(session_id: str) -> str:
    return f"diff::{session_id}"


def message_stream(session_id: str) -> str:
    return f"messages::{session_id}"


class ChromaSessionStore(MemorySessionStore):
    """Every mutation appends a snapshot event; start-up replays the latest snapshot per entity."""

    def __init__(self, chroma: ChromaStore, *, clock: Callable[[], datetime] | None = None) -> None:
        super().__init__(clock=clock)
        self._chroma = chroma
        self._replay()

    def _replay(self) -> None:
        latest: dict[str, tuple[int, dict]] = {}
        for event in self._chroma.search_events(filters={"event_type": SESSION_SNAPSHOT}):
            sequence = event.metadata.get("sequence", 0)
            current = latest.get(event.stream)
            if current is None or sequence >= current[0]:
                latest[event.stream] = (sequence, event.body())
        for _, record in latest.values():
            session = Session.from_record(record)
            self._sessions[session.id] = session

        for event in self._chroma.search_events(filters={"event_type": FOLDER_CREATED}):
            record = event.body()
            self._folders[record["id"]] = Folder(
                id=record["id"],
                name=record["name"],
                project_id=record["project_id"],
                created_at=datetime.fromisoformat(record["created_at"]),
            )

        diffs = [
            ExecutionDiff.from_record(event.body())
            for event in self._chroma.search_events(filters={"event_type": EXECUTION_DIFF})
        ]
        for diff in sorted(diffs, key=lambda item: (item.session_id, item.sequence)):
            self._diffs.setdefault(diff.session_id, []).append(diff)

        for event in self._chroma.search_events(filters={"event_type": CONVERSATION_MESSAGE}):
            record = event.body()
            self._messages.append(
                ConversationMessage(
                    session_id=record["session_id"],
                    role=record["role"],
                    content=record["content"],
                    created_at=datetime.fromisoformat(record["created_at"]),
                    panel_id=record.get("panel_id"),
                )
            )

        logger.info(
            "Replayed session store",
            extra={"sessions": len(self._sessions), "folders": len(self._folders), "diff_streams": len(self._diffs)},
        )

    def _persist_session(self, session: Session) -> None:
        self._chroma.record_event(
            stream=session_stream(session.id),
            event_type=SESSION_SNAPSHOT,
            body=session.to_record(),
            metadata={
                "session_id": session.id,
                "project_id": session.project_id,
                "status": session.status.value,
                "archived": session.archived,
            },
        )

    def _persist_folder(self, folder: Folder) -> None:
        self._chroma.record_event(
            stream=folder_stream(folder.id),
            event_type=FOLDER_CREATED,
            body=folder.to_record(),
            metadata={"folder_id": folder.id, "project_id": folder.project_id},
        )

    def _persist_diff(self, diff: ExecutionDiff) -> None:
        self._chroma.record_event(
            stream=diff_stream(diff.session_id),
            event_type=EXECUTION_DIFF,
            body=diff.to_record(),
            metadata={
                "session_id": diff.session_id,
                "execution_sequence": diff.sequence,
                "files_changed": diff.files_changed_count,
            },
        )

    def _persist_message(self, message: ConversationMessage) -> None:
        self._chroma.record_event(
            stream=message_stream(message.session_id),
            event_type=CONVERSATION_MESSAGE,
            body={
                "session_id": message.session_id,
                "role": message.role,
                "content": message.content,
                "created_at": message.created_at.isoformat(),
                "panel_id": message.panel_id,
            },
            metadata={"session_id": message.session_id, "role": message.role, "panel_id": message.panel_id},
        )


__all__ = [
    "CONVERSATION_MESSAGE",
    "ChromaSessionStore",
    "EXECUTION_DIFF",
    "FOLDER_CREATED",
    "SESSION_SNAPSHOT",
]
