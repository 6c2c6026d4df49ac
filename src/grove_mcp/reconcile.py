"""Session-level reconciliation: resolve the workspace and main branch, then rebase or squash."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, TypeVar

from .projects import ProjectConfig, ProjectLoader
from .sessions import Session, SessionManager
from .workspaces import ConflictReport, ReconcileError, WorkspaceManager, WorkspaceStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class ReconcileTarget:
    session: Session
    project: ProjectConfig
    main_branch: str

    @property
    def workspace_path(self) -> str:
        return self.session.worktree_path


class Reconciler:
    """Apply workspace reconciliation to sessions under explicit timeouts."""

    def __init__(
        self,
        sessions: SessionManager,
        workspaces: WorkspaceManager,
        projects: ProjectLoader,
        *,
        rebase_timeout: float = 120.0,
        main_branch_timeout: float = 30.0,
        post_rebase_timeout: float = 10.0,
    ) -> None:
        self._sessions = sessions
        self._workspaces = workspaces
        self._projects = projects
        self.rebase_timeout = rebase_timeout
        self.main_branch_timeout = main_branch_timeout
        self.post_rebase_timeout = post_rebase_timeout

    async def _bounded(self, awaitable: Awaitable[T], timeout: float, action: str, target: ReconcileTarget) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError as exc:
            raise ReconcileError(
                f"{action} timed out after {timeout:.0f}s",
                commands=[],
                output="",
                working_directory=target.workspace_path,
                project_path=target.project.path,
            ) from exc

    async def target(self, session_id: str) -> ReconcileTarget:
        session = self._sessions.get_session(session_id)
        project = self._projects.get(session.project_id)
        try:
            main_branch = await asyncio.wait_for(
                self._workspaces.get_main_branch(project.path), self.main_branch_timeout
            )
        except asyncio.TimeoutError as exc:
            raise ReconcileError(
                f"Timed out reading the main branch after {self.main_branch_timeout:.0f}s",
                commands=[f"git branch --show-current (in {project.path})"],
                output="",
                working_directory=session.worktree_path,
                project_path=project.path,
            ) from exc
        return ReconcileTarget(session=session, project=project, main_branch=main_branch)

    async def has_changes(self, session_id: str) -> bool:
        target = await self.target(session_id)
        return await self._workspaces.has_changes_to_rebase(target.workspace_path, target.main_branch)

    async def check_conflicts(self, session_id: str) -> ConflictReport:
        target = await self.target(session_id)
        return await self._workspaces.detect_conflicts(target.workspace_path, target.main_branch)

    async def rebase_main_into_workspace(self, session_id: str) -> dict[str, Any]:
        target = await self.target(session_id)
        await self._bounded(
            self._workspaces.rebase_main_into_workspace(target.workspace_path, target.main_branch),
            self.rebase_timeout,
            f"Rebasing {target.main_branch} into workspace",
            target,
        )
        return await self._after_rebase(target, f"Rebased {target.main_branch} into workspace")

    async def squash_and_rebase_to_main(self, session_id: str, commit_message: str) -> dict[str, Any]:
        target = await self.target(session_id)
        await self._bounded(
            self._workspaces.squash_and_rebase_to_main(
                target.project.path, target.workspace_path, target.main_branch, commit_message
            ),
            self.rebase_timeout,
            f"Squashing workspace into {target.main_branch}",
            target,
        )
        return await self._after_rebase(target, f"Squashed and rebased to {target.main_branch}")

    async def rebase_to_main(self, session_id: str) -> dict[str, Any]:
        target = await self.target(session_id)
        await self._bounded(
            self._workspaces.rebase_to_main(target.project.path, target.workspace_path, target.main_branch),
            self.rebase_timeout,
            f"Rebasing workspace into {target.main_branch}",
            target,
        )
        return await self._after_rebase(target, f"Rebased to {target.main_branch}")

    async def workspace_status(self, session_id: str) -> WorkspaceStatus:
        session = self._sessions.get_session(session_id)
        base_branch = session.base_branch
        if not base_branch or base_branch == "HEAD":
            base_branch = (await self.target(session_id)).main_branch
        return await self._workspaces.status(session.worktree_path, base_branch, session.base_commit)

    async def _after_rebase(self, target: ReconcileTarget, message: str) -> dict[str, Any]:
        self._sessions.set_status_message(target.session.id, message)
        payload: dict[str, Any] = {
            "session_id": target.session.id,
            "main_branch": target.main_branch,
            "workspace_path": str(Path(target.workspace_path)),
            "message": message,
        }
        try:
            status = await asyncio.wait_for(
                self._workspaces.status(target.workspace_path, target.main_branch, target.session.base_commit),
                self.post_rebase_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Post-rebase status refresh timed out",
                extra={"session_id": target.session.id, "timeout": self.post_rebase_timeout},
            )
            payload["git_status"] = None
        else:
            payload["git_status"] = status.to_dict()
        logger.info(message, extra={"session_id": target.session.id})
        return payload


__all__ = ["ReconcileTarget", "Reconciler"]
