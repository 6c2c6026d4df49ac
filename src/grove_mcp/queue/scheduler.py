"""Job scheduler: one bounded pool per job kind and the session creation pipeline."""

from __future__ import annotations

import logging
from typing import Any

from redis.asyncio import Redis

from ..agents import AgentController, AgentUnavailableError, PanelRegistry
from ..config import GroveSettings
from ..locks import SESSION_CREATION_KEY, MutexRegistry
from ..naming import DEFAULT_BATCH_NAME, NameResolver, SessionNamer, names_from_template
from ..projects import ProjectLoader
from ..sessions import PersistedStatus, SessionManager, ToolType, session_payload
from ..workspaces import WorkspaceInfo, WorkspaceManager
from .backends import JobQueue, LocalJobQueue, RedisJobQueue
from .jobs import (
    CONTINUE_SESSION,
    CREATE_SESSION,
    SEND_INPUT,
    ContinueSessionJob,
    CreateSessionJob,
    Job,
    JobHandle,
    SendInputJob,
)

logger = logging.getLogger(__name__)

QUEUE_NAMES = {
    CREATE_SESSION: "sessions",
    SEND_INPUT: "input",
    CONTINUE_SESSION: "continue",
}


def build_queues(settings: GroveSettings, *, redis_client: Redis | None = None) -> dict[str, JobQueue]:
    """Create one queue per job kind, backed by Redis when a URL or client is configured."""

    widths = {
        CREATE_SESSION: settings.effective_session_concurrency,
        SEND_INPUT: settings.input_concurrency,
        CONTINUE_SESSION: settings.continue_concurrency,
    }
    queues: dict[str, JobQueue] = {}
    for kind, width in widths.items():
        name = QUEUE_NAMES[kind]
        if redis_client is not None or settings.redis_url:
            queues[kind] = RedisJobQueue(name, width, client=redis_client, url=settings.redis_url)
        else:
            queues[kind] = LocalJobQueue(name, width)
    return queues


class JobScheduler:
    """Accepts jobs, routes them to their pool and runs them at most once."""

    def __init__(
        self,
        queues: dict[str, JobQueue],
        *,
        projects: ProjectLoader,
        sessions: SessionManager,
        workspaces: WorkspaceManager,
        locks: MutexRegistry,
        namer: SessionNamer,
        panels: PanelRegistry,
        agents: AgentController | None = None,
    ) -> None:
        missing = set(QUEUE_NAMES) - set(queues)
        if missing:
            raise ValueError(f"Missing queues for job kinds: {sorted(missing)}")
        self.queues = queues
        self._projects = projects
        self._sessions = sessions
        self._workspaces = workspaces
        self._locks = locks
        self._namer = namer
        self._resolver = NameResolver(sessions.store, workspaces)
        self._panels = panels
        self._agents = agents
        self._handles: dict[str, JobHandle] = {}
        for queue in queues.values():
            queue.on("active", self._on_active)
            queue.on("completed", self._on_completed)
            queue.on("failed", self._on_failed)

    @property
    def backend(self) -> str:
        return next(iter(self.queues.values())).backend

    def _on_active(self, job_id: str, job: Job | None, detail: Any) -> None:
        handle = self._handles.get(job_id)
        if handle is not None:
            handle.set_active()

    def _on_completed(self, job_id: str, job: Job | None, result: Any) -> None:
        handle = self._handles.pop(job_id, None)
        if handle is not None:
            handle.set_result(result)

    def _on_failed(self, job_id: str, job: Job | None, error: Any) -> None:
        handle = self._handles.pop(job_id, None)
        if handle is not None:
            handle.set_exception(error if isinstance(error, BaseException) else RuntimeError(str(error)))

    async def submit(self, job: Job) -> JobHandle:
        queue = self.queues[job.kind]
        await queue.start(self._process)
        handle = JobHandle(job)
        self._handles[handle.id] = handle
        try:
            await queue.enqueue(handle.id, job)
        except Exception:
            self._handles.pop(handle.id, None)
            raise
        logger.debug("Job submitted", extra={"job_id": handle.id, "kind": job.kind, "queue": queue.name})
        return handle

    async def submit_batch(self, template: CreateSessionJob, count: int) -> list[JobHandle]:
        """Create ``count`` sessions from one template.

        For more than one session a grouping folder is created first and every job
        carries it along with its index in the batch.
        """

        if count < 1:
            raise ValueError("Batch count must be >= 1")
        if count == 1:
            return [await self.submit(template)]

        project = self._projects.resolve(template.project_id)
        if template.name and template.name.strip():
            base_name = template.name.strip()
        elif template.prompt.strip():
            base_name = await self._namer.generate_session_name(template.prompt)
        else:
            base_name = DEFAULT_BATCH_NAME
        folder = self._sessions.create_folder(base_name, project.id)
        logger.info(
            "Batch folder created",
            extra={"folder_id": folder.id, "folder_name": base_name, "count": count},
        )
        return [
            await self.submit(
                template.model_copy(
                    update={"name": base_name, "project_id": project.id, "folder_id": folder.id, "index": index}
                )
            )
            for index in range(count)
        ]

    async def create_workspace(
        self,
        name: str,
        *,
        project_id: str | None = None,
        branch: str | None = None,
        base_branch: str | None = None,
    ) -> WorkspaceInfo:
        """Create a bare workspace under a name no session or directory already uses."""

        project = self._projects.resolve(project_id)
        async with self._locks.acquire(SESSION_CREATION_KEY):
            names = self._resolver.resolve(name, name, project.path, folder=project.worktree_folder)
            return await self._workspaces.create(
                project.path,
                names.worktree_name,
                branch=branch,
                base_branch=base_branch,
                folder=project.worktree_folder,
            )

    async def send_input(self, session_id: str, text: str, *, panel_id: str | None = None) -> JobHandle:
        return await self.submit(SendInputJob(session_id=session_id, text=text, panel_id=panel_id))

    async def continue_session(self, session_id: str, prompt: str, *, panel_id: str | None = None) -> JobHandle:
        return await self.submit(ContinueSessionJob(session_id=session_id, prompt=prompt, panel_id=panel_id))

    async def _process(self, job_id: str, job: Job) -> dict[str, Any]:
        match job:
            case CreateSessionJob():
                return await self._create_session(job)
            case SendInputJob():
                return await self._send_input(job)
            case ContinueSessionJob():
                return await self._continue_session(job)
        raise TypeError(f"Unsupported job kind: {job!r}")

    async def _create_session(self, job: CreateSessionJob) -> dict[str, Any]:
        project = self._projects.resolve(job.project_id)
        if job.name and job.name.strip():
            display, worktree = names_from_template(job.name)
        else:
            display, worktree = await self._namer.derive_names(job.prompt)

        async with self._locks.acquire(SESSION_CREATION_KEY):
            names = self._resolver.resolve(
                display,
                worktree,
                project.path,
                folder=project.worktree_folder,
                index=job.index,
            )
            workspace = await self._workspaces.create(
                project.path,
                names.worktree_name,
                base_branch=job.base_branch,
                folder=project.worktree_folder,
            )
            session = self._sessions.create_session(
                name=names.display_name,
                worktree_name=names.worktree_name,
                worktree_path=workspace.path,
                project_id=project.id,
                prompt=job.prompt,
                base_commit=workspace.base_commit,
                base_branch=workspace.base_branch,
                folder_id=job.folder_id,
                tool_type=job.tool_type,
                commit_mode=job.commit_mode,
                auto_commit=job.auto_commit,
                status=PersistedStatus.PENDING,
            )

        try:
            if project.build_commands:
                build = await self._sessions.run_build_script(session.id, project.build_commands, workspace.path)
                if not build.success:
                    logger.warning("Build script reported failures", extra={"session_id": session.id})
            if job.prompt.strip() and job.tool_type is not ToolType.NONE:
                if self._agents is None:
                    raise AgentUnavailableError("No agent controller configured")
                panel = await self._panels.wait_for_panel(session.id, job.tool_type)
                await self._agents.start_panel(panel, session, job.prompt)
            else:
                self._sessions.update_status(session.id, PersistedStatus.STOPPED)
        except Exception as exc:
            # The session and workspace stay in place so the failure can be inspected.
            self._sessions.update_status(session.id, PersistedStatus.FAILED, message=str(exc))
            raise

        current = self._sessions.get_session(session.id)
        return session_payload(current)

    async def _send_input(self, job: SendInputJob) -> dict[str, Any]:
        if self._agents is None:
            raise AgentUnavailableError("No agent controller configured")
        session = self._sessions.get_session(job.session_id)
        panel = self._panels.get(job.panel_id) if job.panel_id else self._panels.find(session.id, session.tool_type)
        if panel is not None:
            await self._agents.send_input_to_panel(panel, session, job.text)
        else:
            await self._agents.send_input(session, job.text)
        return {"session_id": session.id, "panel_id": panel.id if panel else None}

    async def _continue_session(self, job: ContinueSessionJob) -> dict[str, Any]:
        if self._agents is None:
            raise AgentUnavailableError("No agent controller configured")
        session = self._sessions.get_session(job.session_id)
        panel = self._panels.get(job.panel_id) if job.panel_id else self._panels.find(session.id, session.tool_type)
        if panel is not None:
            await self._agents.continue_panel(panel, session, job.prompt)
        else:
            await self._agents.continue_session(session, job.prompt)
        return {"session_id": session.id, "panel_id": panel.id if panel else None}

    def describe(self) -> dict[str, Any]:
        return {
            "backend": self.backend,
            "pending_handles": len(self._handles),
            "queues": {QUEUE_NAMES[kind]: queue.describe() for kind, queue in self.queues.items()},
        }

    async def close(self) -> None:
        for queue in self.queues.values():
            await queue.close()


__all__ = ["JobScheduler", "QUEUE_NAMES", "build_queues"]
