"""FastMCP server bootstrap for Grove."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastmcp import Context, FastMCP
from redis.asyncio import Redis

from . import __version__
from .agents import AgentController, CliAgentController, PanelRegistry
from .config import GroveSettings, get_settings
from .git import GitRunner
from .locks import MutexRegistry
from .naming import SessionNamer
from .projects import ProjectLoadError, ProjectLoader
from .queue import JobScheduler, build_queues
from .reconcile import Reconciler
from .sessions import (
    EventBus,
    ExecutionTracker,
    MemorySessionStore,
    SessionManager,
    SessionStore,
    ToolType,
    session_status,
)
from .storage import ChromaSessionStore, ChromaStore, ChromaUnavailableError
from .tools import register_tools
from .workspaces import WorkspaceManager


def configure_logging(level: str) -> None:
    """Configure root logging for the Grove server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def create_server(
    settings: Optional[GroveSettings] = None,
    *,
    git: GitRunner | None = None,
    store: SessionStore | None = None,
    redis_client: Redis | None = None,
    agents: AgentController | None = None,
    namer: SessionNamer | None = None,
) -> FastMCP:
    """Wire the orchestration services and expose them as MCP tools."""

    settings = settings or get_settings()
    log = logging.getLogger(__name__)

    git = git or GitRunner(Path(settings.git_path) if settings.git_path else None)

    chroma_metadata = {
        "available": False,
        "path": str(settings.chroma_persist_path),
        "collection": None,
        "error": None,
    }
    if store is None:
        try:
            chroma_store = ChromaStore(settings.chroma_persist_path)
            chroma_store.ping()
            store = ChromaSessionStore(chroma_store)
            chroma_metadata["available"] = True
            chroma_metadata["collection"] = chroma_store.collection_name
        except ChromaUnavailableError as exc:
            chroma_metadata["error"] = str(exc)
            log.warning("Chroma unavailable, sessions will not persist", extra={"error": str(exc)})
            store = MemorySessionStore()

    locks = MutexRegistry()
    events = EventBus()
    projects = ProjectLoader(settings.project_paths)
    workspaces = WorkspaceManager(git, locks, default_folder=settings.worktree_folder)
    sessions = SessionManager(store, events, workspaces, projects)
    tracker = ExecutionTracker(store, git, locks)
    panels = PanelRegistry(attempts=settings.panel_wait_attempts, interval=settings.panel_wait_interval)
    events.subscribe(panels.handle_event)
    if agents is None:
        agents = CliAgentController(
            sessions,
            tracker,
            executables={ToolType.CLAUDE: settings.claude_path, ToolType.CODEX: settings.codex_path},
        )

    scheduler = JobScheduler(
        build_queues(settings, redis_client=redis_client),
        projects=projects,
        sessions=sessions,
        workspaces=workspaces,
        locks=locks,
        namer=namer or SessionNamer(),
        panels=panels,
        agents=agents,
    )
    reconciler = Reconciler(
        sessions,
        workspaces,
        projects,
        rebase_timeout=settings.rebase_timeout,
        main_branch_timeout=settings.main_branch_timeout,
        post_rebase_timeout=settings.post_rebase_timeout,
    )

    recovered = sessions.recover_interrupted_sessions()

    server = FastMCP(
        name="Grove MCP",
        version=__version__,
        instructions=(
            "Grove runs coding agents side by side, each in its own git worktree. Use the "
            "tools to create sessions, follow their status and rebase or squash finished "
            "work back into the main branch."
        ),
    )

    handles = register_tools(
        server,
        projects=projects,
        workspaces=workspaces,
        sessions=sessions,
        scheduler=scheduler,
        reconciler=reconciler,
        tracker=tracker,
        agents=agents,
    )

    def status_payload(request_id: str | None = None) -> dict:
        """Summarize basic runtime state."""

        try:
            project_ids = sorted(projects.load_all().keys())
            project_error: str | None = None
        except ProjectLoadError as exc:
            project_ids = []
            project_error = str(exc)

        status_counts: dict[str, int] = {}
        for session in store.list_sessions():
            visible = session_status(session).value
            status_counts[visible] = status_counts.get(visible, 0) + 1

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "projects": {"count": len(project_ids), "ids": project_ids, "error": project_error},
            "git": {"path": str(git.executable)},
            "queue": scheduler.describe(),
            "panel_wait": {"attempts": panels.attempts, "interval": panels.interval},
            "storage": {"chroma": chroma_metadata},
            "sessions": {
                "count": sum(status_counts.values()),
                "status_counts": status_counts,
                "recovered_on_startup": len(recovered),
            },
            "locks": locks.held_keys,
            "request_id": request_id,
        }
        return payload

    @server.resource(
        "resource://grove/status",
        name="grove_status",
        title="Grove MCP Status",
        description="Provides the current runtime status for the Grove MCP server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        return json.dumps(status_payload(getattr(context, "request_id", None)))

    setattr(server, "projects", projects)
    setattr(server, "session_store", store)
    setattr(server, "session_manager", sessions)
    setattr(server, "workspace_manager", workspaces)
    setattr(server, "scheduler", scheduler)
    setattr(server, "reconciler", reconciler)
    setattr(server, "panels", panels)
    setattr(server, "events", events)
    setattr(server, "chroma_metadata", chroma_metadata)
    setattr(server, "recovered_sessions", recovered)
    setattr(server, "tool_handles", handles)
    setattr(server, "status_payload", status_payload)
    return server


def main() -> None:
    """Entry point for running the Grove MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching Grove MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "queue_backend": getattr(server, "scheduler").backend,
            "chroma_available": getattr(server, "chroma_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
