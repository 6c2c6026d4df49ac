"""Session lifecycle operations on top of the session store."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Sequence

from ..git.utils import communicate_or_kill, sanitize_environment
from ..projects import ProjectLoader
from ..workspaces import WorkspaceManager
from .events import (
    FOLDER_CREATED,
    SESSION_CREATED,
    SESSION_DELETED,
    SESSION_UPDATED,
    NotificationSink,
)
from .models import BuildResult, Folder, PersistedStatus, Session, SessionStatus
from .status import session_status
from .store import SessionNotFoundError, SessionStore

logger = logging.getLogger(__name__)


def session_payload(session: Session) -> dict[str, Any]:
    """Serialize a session with its externally visible status."""

    payload = session.to_record()
    payload["status"] = session_status(session).value
    payload["persisted_status"] = session.status.value
    return payload


class SessionManager:
    """Status transitions, viewed/archive mutators, recovery and build steps."""

    def __init__(
        self,
        store: SessionStore,
        events: NotificationSink,
        workspaces: WorkspaceManager,
        projects: ProjectLoader,
    ) -> None:
        self.store = store
        self._events = events
        self._workspaces = workspaces
        self._projects = projects

    def get_session(self, session_id: str) -> Session:
        session = self.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session '{session_id}' not found")
        return session

    def get_status(self, session_id: str) -> SessionStatus:
        return session_status(self.get_session(session_id))

    def list_sessions(
        self, *, project_id: str | None = None, include_archived: bool = False
    ) -> list[dict[str, Any]]:
        return [
            session_payload(session)
            for session in self.store.list_sessions(project_id=project_id, include_archived=include_archived)
        ]

    def create_session(self, **fields: Any) -> Session:
        """Persist a new session row and announce it."""

        session = self.store.create_session(**fields)
        self._events.emit(SESSION_CREATED, session_payload(session))
        logger.info(
            "Session created",
            extra={"session_id": session.id, "session_name": session.name, "worktree": session.worktree_path},
        )
        return session

    def update_status(
        self,
        session_id: str,
        status: PersistedStatus | str,
        *,
        message: str | None = None,
    ) -> Session:
        changes: dict[str, Any] = {"status": PersistedStatus(status)}
        if message is not None:
            changes["status_message"] = message
        session = self.store.update_session(session_id, **changes)
        self._events.emit(SESSION_UPDATED, session_payload(session))
        logger.info("Session status changed", extra={"session_id": session_id, "status": session.status.value})
        return session

    def set_status_message(self, session_id: str, message: str | None) -> Session:
        session = self.store.update_session(session_id, status_message=message)
        self._events.emit(SESSION_UPDATED, session_payload(session))
        return session

    def stop_session(self, session_id: str) -> Session:
        return self.update_status(session_id, PersistedStatus.STOPPED)

    def mark_viewed(self, session_id: str) -> Session:
        session = self.store.mark_viewed(session_id)
        self._events.emit(SESSION_UPDATED, session_payload(session))
        return session

    async def archive_session(self, session_id: str, *, delete_branch: bool = False) -> Session:
        """Soft-delete a session and release its workspace."""

        session = self.get_session(session_id)
        project = self._projects.get(session.project_id)
        worktree = Path(session.worktree_path)
        await self._workspaces.remove(
            project.path,
            session.worktree_name,
            folder=str(worktree.parent),
            delete_branch=delete_branch,
        )
        archived = self.store.update_session(session_id, archived=True)
        self._events.emit(SESSION_DELETED, {"id": session_id, "project_id": session.project_id})
        logger.info("Session archived", extra={"session_id": session_id, "worktree": session.worktree_path})
        return archived

    def create_folder(self, name: str, project_id: str) -> Folder:
        folder = self.store.create_folder(name, project_id)
        self._events.emit(FOLDER_CREATED, folder.to_record())
        return folder

    def recover_interrupted_sessions(self) -> list[str]:
        """Mark sessions left running or pending by a previous process as stopped."""

        interrupted = [session.id for session in self.store.active_sessions()]
        if interrupted:
            self.store.mark_sessions_stopped(interrupted)
            logger.warning(
                "Stopped sessions interrupted by restart",
                extra={"count": len(interrupted), "session_ids": interrupted},
            )
        return interrupted

    async def run_build_script(
        self,
        session_id: str,
        commands: Sequence[str],
        cwd: Path | str,
    ) -> BuildResult:
        """Run each build command with the shell, continuing past failures."""

        lines = [command for command in commands if command.strip()]
        outputs: list[str] = []
        success = True
        for index, command in enumerate(lines, start=1):
            self.set_status_message(session_id, f"Running build script ({index}/{len(lines)}): {command}")
            outputs.append(f"$ {command}\n")
            process = await asyncio.create_subprocess_shell(
                command,
                cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=sanitize_environment(),
            )
            stdout, _ = await communicate_or_kill(process)
            outputs.append(stdout.decode(errors="replace"))
            if process.returncode != 0:
                success = False
                outputs.append(f"Command failed with exit code {process.returncode}\n")
                logger.warning(
                    "Build command failed",
                    extra={"session_id": session_id, "command": command, "returncode": process.returncode},
                )

        self.set_status_message(
            session_id, "Build script completed" if success else "Build script completed with errors"
        )
        return BuildResult(success=success, output="".join(outputs), commands=lines)


__all__ = ["SessionManager", "session_payload"]
