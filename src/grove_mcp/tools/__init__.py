"""Tool registration for Grove MCP."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Awaitable

from fastmcp import Context, FastMCP

from ..agents import AgentController
from ..git import GitCommandError
from ..projects import ProjectLoader
from ..queue import CreateSessionJob, JobHandle, JobScheduler
from ..reconcile import Reconciler
from ..sessions import CommitMode, ExecutionTracker, SessionManager, ToolType, session_payload
from ..workspaces import ConflictsDetectedError, NothingToReconcileError, ReconcileError, WorkspaceManager

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    create_session: Any
    create_sessions: Any
    continue_session: Any
    send_input: Any
    session_status: Any
    list_sessions: Any
    mark_session_viewed: Any
    archive_session: Any
    create_workspace: Any
    remove_workspace: Any
    list_workspaces: Any
    list_branches: Any
    check_conflicts: Any
    rebase_main_into_workspace: Any
    squash_and_rebase_to_main: Any
    rebase_to_main: Any
    execution_diffs: Any


async def _handle_result(handle: JobHandle, wait: bool) -> dict[str, Any]:
    if not wait:
        return handle.to_dict()
    result = await handle.wait()
    return {**handle.to_dict(), "result": result}


async def _reconcile_result(call: Awaitable[dict[str, Any]]) -> dict[str, Any]:
    """Turn reconciliation errors into payloads that keep their diagnostics."""

    try:
        return {"success": True, **(await call)}
    except NothingToReconcileError as exc:
        return {"success": False, "nothing_to_do": True, **exc.to_payload()}
    except ReconcileError as exc:
        return {"success": False, **exc.to_payload()}
    except ConflictsDetectedError as exc:
        return {"success": False, "error": str(exc), "conflicts": exc.report.to_dict()}


def register_tools(
    server: FastMCP,
    *,
    projects: ProjectLoader,
    workspaces: WorkspaceManager,
    sessions: SessionManager,
    scheduler: JobScheduler,
    reconciler: Reconciler,
    tracker: ExecutionTracker,
    agents: AgentController | None = None,
) -> ToolHandles:
    """Register Grove's MCP tools on the server."""

    async def _create_session(
        prompt: str = "",
        name: str | None = None,
        project_id: str | None = None,
        base_branch: str | None = None,
        tool_type: str = ToolType.CLAUDE.value,
        commit_mode: str = CommitMode.CHECKPOINT.value,
        auto_commit: bool = True,
        wait: bool = True,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Queue a create-session job and optionally wait for it to finish."""

        job = CreateSessionJob(
            prompt=prompt,
            name=name,
            project_id=project_id,
            base_branch=base_branch,
            tool_type=ToolType(tool_type),
            commit_mode=CommitMode(commit_mode),
            auto_commit=auto_commit,
        )
        handle = await scheduler.submit(job)
        _emit_log(context, "info", "Session creation queued", extra={"job_id": handle.id})
        return await _handle_result(handle, wait)

    async def _create_sessions(
        prompt: str,
        count: int,
        name: str | None = None,
        project_id: str | None = None,
        base_branch: str | None = None,
        tool_type: str = ToolType.CLAUDE.value,
        commit_mode: str = CommitMode.CHECKPOINT.value,
        auto_commit: bool = True,
        wait: bool = True,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Create a batch of sessions from one prompt, grouped in a folder."""

        template = CreateSessionJob(
            prompt=prompt,
            name=name,
            project_id=project_id,
            base_branch=base_branch,
            tool_type=ToolType(tool_type),
            commit_mode=CommitMode(commit_mode),
            auto_commit=auto_commit,
        )
        handles = await scheduler.submit_batch(template, count)
        _emit_log(context, "info", "Session batch queued", extra={"count": len(handles)})
        if not wait:
            return {"jobs": [handle.to_dict() for handle in handles]}

        outcomes = await asyncio.gather(*(handle.wait() for handle in handles), return_exceptions=True)
        jobs = []
        for handle, outcome in zip(handles, outcomes):
            entry = handle.to_dict()
            if isinstance(outcome, BaseException):
                entry["error"] = str(outcome)
            else:
                entry["result"] = outcome
            jobs.append(entry)
        return {"jobs": jobs}

    async def _continue_session(
        session_id: str,
        prompt: str,
        panel_id: str | None = None,
        wait: bool = True,
        context: Context | None = None,
    ) -> dict[str, Any]:
        handle = await scheduler.continue_session(session_id, prompt, panel_id=panel_id)
        _emit_log(context, "info", "Continue queued", extra={"session_id": session_id, "job_id": handle.id})
        return await _handle_result(handle, wait)

    async def _send_input(
        session_id: str,
        text: str,
        panel_id: str | None = None,
        wait: bool = True,
        context: Context | None = None,
    ) -> dict[str, Any]:
        handle = await scheduler.send_input(session_id, text, panel_id=panel_id)
        _emit_log(context, "debug", "Input queued", extra={"session_id": session_id, "job_id": handle.id})
        return await _handle_result(handle, wait)

    async def _session_status(session_id: str, context: Context | None = None) -> dict[str, Any]:
        """Session record with visible status and workspace divergence."""

        payload = session_payload(sessions.get_session(session_id))
        try:
            payload["git_status"] = (await reconciler.workspace_status(session_id)).to_dict()
        except (GitCommandError, ReconcileError) as exc:
            payload["git_status"] = None
            payload["git_status_error"] = str(exc)
        _emit_log(context, "debug", "Session status", extra={"session_id": session_id, "status": payload["status"]})
        return payload

    def _list_sessions(
        project_id: str | None = None,
        include_archived: bool = False,
        context: Context | None = None,
    ) -> list[dict[str, Any]]:
        result = sessions.list_sessions(project_id=project_id, include_archived=include_archived)
        _emit_log(context, "debug", "Listing sessions", extra={"count": len(result)})
        return result

    def _mark_session_viewed(session_id: str, context: Context | None = None) -> dict[str, Any]:
        return session_payload(sessions.mark_viewed(session_id))

    async def _archive_session(
        session_id: str,
        delete_branch: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        if agents is not None and await agents.stop(session_id):
            _emit_log(context, "info", "Stopped running agent before archiving", extra={"session_id": session_id})
        session = await sessions.archive_session(session_id, delete_branch=delete_branch)
        _emit_log(context, "info", "Session archived", extra={"session_id": session_id})
        return session_payload(session)

    async def _create_workspace(
        name: str,
        project_id: str | None = None,
        branch: str | None = None,
        base_branch: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        info = await scheduler.create_workspace(
            name, project_id=project_id, branch=branch, base_branch=base_branch
        )
        _emit_log(context, "info", "Workspace created", extra={"path": info.path, "branch": info.branch})
        return asdict(info)

    async def _remove_workspace(
        name: str,
        project_id: str | None = None,
        delete_branch: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        project = projects.resolve(project_id)
        await workspaces.remove(
            project.path,
            name,
            folder=project.worktree_folder,
            delete_branch=delete_branch,
        )
        return {"removed": name, "project_id": project.id}

    async def _list_workspaces(project_id: str | None = None, context: Context | None = None) -> list[dict[str, Any]]:
        project = projects.resolve(project_id)
        return [asdict(entry) for entry in await workspaces.list_workspaces(project.path)]

    async def _list_branches(project_id: str | None = None, context: Context | None = None) -> list[dict[str, Any]]:
        project = projects.resolve(project_id)
        return [asdict(branch) for branch in await workspaces.list_branches(project.path)]

    async def _check_conflicts(session_id: str, context: Context | None = None) -> dict[str, Any]:
        report = await reconciler.check_conflicts(session_id)
        _emit_log(
            context,
            "info",
            "Conflict check",
            extra={"session_id": session_id, "has_conflicts": report.has_conflicts},
        )
        return report.to_dict()

    async def _rebase_main_into_workspace(session_id: str, context: Context | None = None) -> dict[str, Any]:
        return await _reconcile_result(reconciler.rebase_main_into_workspace(session_id))

    async def _squash_and_rebase_to_main(
        session_id: str,
        commit_message: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        return await _reconcile_result(reconciler.squash_and_rebase_to_main(session_id, commit_message))

    async def _rebase_to_main(session_id: str, context: Context | None = None) -> dict[str, Any]:
        return await _reconcile_result(reconciler.rebase_to_main(session_id))

    def _execution_diffs(
        session_id: str,
        combined: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        sessions.get_session(session_id)
        if combined:
            result = tracker.combined_diff(session_id)
            return {"session_id": session_id, "combined": asdict(result)}
        diffs = sessions.store.list_execution_diffs(session_id)
        return {"session_id": session_id, "diffs": [diff.to_record() for diff in diffs]}

    return ToolHandles(
        create_session=server.tool(
            name="create_session",
            description=(
                "Create a session: pick unique names, create a git worktree, persist the "
                "session and start the agent with the prompt."
            ),
        )(_create_session),
        create_sessions=server.tool(
            name="create_sessions",
            description="Create several sessions from one prompt, grouped in a folder.",
        )(_create_sessions),
        continue_session=server.tool(
            name="continue_session",
            description="Queue a follow-up prompt for an existing session.",
        )(_continue_session),
        send_input=server.tool(
            name="send_input",
            description="Deliver input to a session's agent.",
        )(_send_input),
        session_status=server.tool(
            name="session_status",
            description="Return a session's visible status and its ahead/behind counts and diff stats.",
        )(_session_status),
        list_sessions=server.tool(
            name="list_sessions",
            description="List sessions, optionally for one project and including archived ones.",
        )(_list_sessions),
        mark_session_viewed=server.tool(
            name="mark_session_viewed",
            description="Mark a session as viewed, clearing its completed-unviewed status.",
        )(_mark_session_viewed),
        archive_session=server.tool(
            name="archive_session",
            description="Archive a session and remove its workspace.",
        )(_archive_session),
        create_workspace=server.tool(
            name="create_workspace",
            description=(
                "Create a git worktree for a project without creating a session. A name "
                "already used by a session or directory gets a numeric suffix."
            ),
        )(_create_workspace),
        remove_workspace=server.tool(
            name="remove_workspace",
            description="Remove a git worktree. Removing a missing worktree succeeds.",
        )(_remove_workspace),
        list_workspaces=server.tool(
            name="list_workspaces",
            description="List the git worktrees of a project.",
        )(_list_workspaces),
        list_branches=server.tool(
            name="list_branches",
            description="List local branches, worktree-bound branches first.",
        )(_list_branches),
        check_conflicts=server.tool(
            name="check_conflicts",
            description="Predict whether rebasing the session onto main would conflict, without changing anything.",
        )(_check_conflicts),
        rebase_main_into_workspace=server.tool(
            name="rebase_main_into_workspace",
            description="Rebase the session's workspace onto the project's main branch.",
        )(_rebase_main_into_workspace),
        squash_and_rebase_to_main=server.tool(
            name="squash_and_rebase_to_main",
            description="Squash the session's commits into one and move main onto it.",
        )(_squash_and_rebase_to_main),
        rebase_to_main=server.tool(
            name="rebase_to_main",
            description="Move main onto the session's branch, keeping every commit.",
        )(_rebase_to_main),
        execution_diffs=server.tool(
            name="execution_diffs",
            description="Return the per-turn execution diffs of a session, or their combination.",
        )(_execution_diffs),
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["register_tools", "ToolHandles"]
