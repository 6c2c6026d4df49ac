"""Session store protocol and the in-memory implementation."""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Protocol

from .models import (
    CommitMode,
    ConversationMessage,
    ExecutionDiff,
    Folder,
    PersistedStatus,
    Session,
    ToolType,
)
from .status import ACTIVE_STATUSES


class SessionNotFoundError(LookupError):
    """Raised when a session id is unknown to the store."""


class SessionStore(Protocol):
    """Persistence operations the orchestration core relies on."""

    def create_session(
        self,
        *,
        name: str,
        worktree_name: str,
        worktree_path: str,
        project_id: str,
        prompt: str = "",
        base_commit: str | None = None,
        base_branch: str | None = None,
        folder_id: str | None = None,
        tool_type: ToolType = ToolType.CLAUDE,
        commit_mode: CommitMode = CommitMode.CHECKPOINT,
        auto_commit: bool = True,
        status: PersistedStatus = PersistedStatus.PENDING,
    ) -> Session:
        ...

    def get_session(self, session_id: str) -> Session | None:
        ...

    def list_sessions(self, *, project_id: str | None = None, include_archived: bool = False) -> list[Session]:
        ...

    def update_session(self, session_id: str, **changes: Any) -> Session:
        ...

    def mark_viewed(self, session_id: str) -> Session:
        ...

    def session_name_exists(self, name: str) -> bool:
        ...

    def worktree_name_exists(self, name: str) -> bool:
        ...

    def active_sessions(self) -> list[Session]:
        ...

    def mark_sessions_stopped(self, session_ids: Iterable[str]) -> None:
        ...

    def create_folder(self, name: str, project_id: str) -> Folder:
        ...

    def list_folders(self, project_id: str | None = None) -> list[Folder]:
        ...

    def next_execution_sequence(self, session_id: str) -> int:
        ...

    def create_execution_diff(self, diff: ExecutionDiff) -> ExecutionDiff:
        ...

    def list_execution_diffs(self, session_id: str) -> list[ExecutionDiff]:
        ...

    def add_conversation_message(
        self, session_id: str, role: str, content: str, *, panel_id: str | None = None
    ) -> ConversationMessage:
        ...

    def get_conversation_messages(self, session_id: str) -> list[ConversationMessage]:
        ...

    def get_panel_conversation_messages(self, panel_id: str) -> list[ConversationMessage]:
        ...


_IMMUTABLE_FIELDS = {"id", "created_at", "updated_at"}


class MemorySessionStore:
    """In-memory session store. Subclasses persist through the ``_persist_*`` hooks."""

    def __init__(self, *, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sessions: dict[str, Session] = {}
        self._folders: dict[str, Folder] = {}
        self._diffs: dict[str, list[ExecutionDiff]] = {}
        self._messages: list[ConversationMessage] = []

    def _persist_session(self, session: Session) -> None:
        pass

    def _persist_folder(self, folder: Folder) -> None:
        pass

    def _persist_diff(self, diff: ExecutionDiff) -> None:
        pass

    def _persist_message(self, message: ConversationMessage) -> None:
        pass

    def create_session(
        self,
        *,
        name: str,
        worktree_name: str,
        worktree_path: str,
        project_id: str,
        prompt: str = "",
        base_commit: str | None = None,
        base_branch: str | None = None,
        folder_id: str | None = None,
        tool_type: ToolType = ToolType.CLAUDE,
        commit_mode: CommitMode = CommitMode.CHECKPOINT,
        auto_commit: bool = True,
        status: PersistedStatus = PersistedStatus.PENDING,
    ) -> Session:
        if any(existing.worktree_path == worktree_path for existing in self._sessions.values()):
            raise ValueError(f"Workspace path already bound to a session: {worktree_path}")
        now = self._clock()
        session = Session(
            id=uuid.uuid4().hex,
            name=name,
            worktree_name=worktree_name,
            worktree_path=worktree_path,
            project_id=project_id,
            status=PersistedStatus(status),
            created_at=now,
            updated_at=now,
            prompt=prompt,
            base_commit=base_commit,
            base_branch=base_branch,
            folder_id=folder_id,
            tool_type=ToolType(tool_type),
            commit_mode=CommitMode(commit_mode),
            auto_commit=auto_commit,
        )
        self._sessions[session.id] = session
        self._persist_session(session)
        return replace(session)

    def _require(self, session_id: str) -> Session:
        try:
            return self._sessions[session_id]
        except KeyError as exc:
            raise SessionNotFoundError(f"Session '{session_id}' not found") from exc

    def get_session(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        return replace(session) if session is not None else None

    def list_sessions(self, *, project_id: str | None = None, include_archived: bool = False) -> list[Session]:
        sessions = [
            replace(session)
            for session in self._sessions.values()
            if (project_id is None or session.project_id == project_id)
            and (include_archived or not session.archived)
        ]
        sessions.sort(key=lambda session: session.created_at)
        return sessions

    def update_session(self, session_id: str, **changes: Any) -> Session:
        session = self._require(session_id)
        invalid = set(changes) & _IMMUTABLE_FIELDS
        if invalid:
            raise ValueError(f"Cannot update fields: {sorted(invalid)}")
        unknown = set(changes) - set(Session.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown session fields: {sorted(unknown)}")
        if "status" in changes:
            changes["status"] = PersistedStatus(changes["status"])
        updated = replace(session, **changes, updated_at=self._clock())
        self._sessions[session_id] = updated
        self._persist_session(updated)
        return replace(updated)

    def mark_viewed(self, session_id: str) -> Session:
        session = self._require(session_id)
        updated = replace(session, last_viewed_at=self._clock())
        self._sessions[session_id] = updated
        self._persist_session(updated)
        return replace(updated)

    def session_name_exists(self, name: str) -> bool:
        return any(session.name == name for session in self._sessions.values())

    def worktree_name_exists(self, name: str) -> bool:
        return any(session.worktree_name == name for session in self._sessions.values())

    def active_sessions(self) -> list[Session]:
        return [replace(session) for session in self._sessions.values() if session.status in ACTIVE_STATUSES]

    def mark_sessions_stopped(self, session_ids: Iterable[str]) -> None:
        for session_id in session_ids:
            self.update_session(session_id, status=PersistedStatus.STOPPED)

    def create_folder(self, name: str, project_id: str) -> Folder:
        folder = Folder(id=uuid.uuid4().hex, name=name, project_id=project_id, created_at=self._clock())
        self._folders[folder.id] = folder
        self._persist_folder(folder)
        return folder

    def list_folders(self, project_id: str | None = None) -> list[Folder]:
        return [
            folder
            for folder in self._folders.values()
            if project_id is None or folder.project_id == project_id
        ]

    def next_execution_sequence(self, session_id: str) -> int:
        diffs = self._diffs.get(session_id, [])
        return (diffs[-1].sequence if diffs else 0) + 1

    def create_execution_diff(self, diff: ExecutionDiff) -> ExecutionDiff:
        self._require(diff.session_id)
        diffs = self._diffs.setdefault(diff.session_id, [])
        if diffs and diff.sequence <= diffs[-1].sequence:
            raise ValueError(
                f"Execution sequence {diff.sequence} is not greater than {diffs[-1].sequence} "
                f"for session {diff.session_id}"
            )
        diffs.append(diff)
        self._persist_diff(diff)
        return diff

    def list_execution_diffs(self, session_id: str) -> list[ExecutionDiff]:
        return list(self._diffs.get(session_id, []))

    def add_conversation_message(
        self, session_id: str, role: str, content: str, *, panel_id: str | None = None
    ) -> ConversationMessage:
        message = ConversationMessage(
            session_id=session_id,
            role=role,
            content=content,
            created_at=self._clock(),
            panel_id=panel_id,
        )
        self._messages.append(message)
        self._persist_message(message)
        return message

    def get_conversation_messages(self, session_id: str) -> list[ConversationMessage]:
        return [message for message in self._messages if message.session_id == session_id]

    def get_panel_conversation_messages(self, panel_id: str) -> list[ConversationMessage]:
        return [message for message in self._messages if message.panel_id == panel_id]


__all__ = ["MemorySessionStore", "SessionNotFoundError", "SessionStore"]
