from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from conftest import write_project
from grove_mcp.projects import ProjectLoader
from grove_mcp.sessions import (
    FOLDER_CREATED,
    SESSION_CREATED,
    SESSION_DELETED,
    SESSION_UPDATED,
    EventBus,
    MemorySessionStore,
    PersistedStatus,
    SessionManager,
    SessionNotFoundError,
    SessionStatus,
    derive_status,
    session_status,
    to_persisted,
)
from grove_mcp.workspaces import WorkspaceManager

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


class SteppingClock:
    """Advance one second on every read so updates are strictly ordered."""

    def __init__(self) -> None:
        self.now = T0

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


def new_session(store: MemorySessionStore, name: str = "Fix Bug", **overrides):
    fields = {
        "name": name,
        "worktree_name": name.lower().replace(" ", "-"),
        "worktree_path": f"/tmp/worktrees/{name.lower().replace(' ', '-')}",
        "project_id": "demo",
    }
    fields.update(overrides)
    return store.create_session(**fields)


@pytest.mark.parametrize(
    ("stored", "viewed", "expected"),
    [
        (PersistedStatus.PENDING, None, SessionStatus.INITIALIZING),
        (PersistedStatus.RUNNING, None, SessionStatus.RUNNING),
        (PersistedStatus.FAILED, None, SessionStatus.ERROR),
        (PersistedStatus.STOPPED, None, SessionStatus.COMPLETED_UNVIEWED),
        (PersistedStatus.COMPLETED, T0 - timedelta(minutes=1), SessionStatus.COMPLETED_UNVIEWED),
        (PersistedStatus.STOPPED, T0, SessionStatus.STOPPED),
        (PersistedStatus.COMPLETED, T0 + timedelta(minutes=1), SessionStatus.STOPPED),
    ],
)
def test_derive_status(stored, viewed, expected) -> None:
    assert derive_status(stored, viewed, T0) is expected


def test_to_persisted() -> None:
    assert to_persisted("initializing") is PersistedStatus.PENDING
    assert to_persisted(SessionStatus.ERROR) is PersistedStatus.FAILED
    assert to_persisted(SessionStatus.COMPLETED_UNVIEWED) is PersistedStatus.STOPPED


def test_store_create_and_update() -> None:
    store = MemorySessionStore(clock=SteppingClock())
    session = new_session(store)

    assert session.status is PersistedStatus.PENDING
    updated = store.update_session(session.id, status="running", status_message="working")

    assert updated.status is PersistedStatus.RUNNING
    assert updated.status_message == "working"
    assert updated.updated_at > session.updated_at
    assert updated.created_at == session.created_at


def test_store_rejects_bad_updates() -> None:
    store = MemorySessionStore()
    session = new_session(store)

    with pytest.raises(ValueError):
        store.update_session(session.id, created_at=T0)
    with pytest.raises(ValueError):
        store.update_session(session.id, colour="blue")
    with pytest.raises(SessionNotFoundError):
        store.update_session("missing", status="running")


def test_store_rejects_shared_workspace_path() -> None:
    store = MemorySessionStore()
    new_session(store, "One", worktree_path="/tmp/shared")

    with pytest.raises(ValueError):
        new_session(store, "Two", worktree_path="/tmp/shared")


def test_store_returns_copies() -> None:
    store = MemorySessionStore()
    session = new_session(store)

    fetched = store.get_session(session.id)
    fetched.name = "mutated"

    assert store.get_session(session.id).name == "Fix Bug"


def test_viewed_overlay_after_completion() -> None:
    store = MemorySessionStore(clock=SteppingClock())
    session = new_session(store)

    store.update_session(session.id, status=PersistedStatus.STOPPED)
    assert session_status(store.get_session(session.id)) is SessionStatus.COMPLETED_UNVIEWED

    viewed = store.mark_viewed(session.id)
    assert viewed.updated_at < viewed.last_viewed_at
    assert session_status(viewed) is SessionStatus.STOPPED

    # New activity after viewing makes the session unviewed again.
    store.update_session(session.id, status=PersistedStatus.COMPLETED)
    assert session_status(store.get_session(session.id)) is SessionStatus.COMPLETED_UNVIEWED


def test_list_sessions_filters_archived_and_project() -> None:
    store = MemorySessionStore(clock=SteppingClock())
    first = new_session(store, "First")
    second = new_session(store, "Second", project_id="other")
    store.update_session(first.id, archived=True)

    assert [s.id for s in store.list_sessions()] == [second.id]
    assert [s.id for s in store.list_sessions(include_archived=True)] == [first.id, second.id]
    assert store.list_sessions(project_id="demo") == []


def test_name_lookups_include_archived_sessions() -> None:
    store = MemorySessionStore()
    session = new_session(store, "Fix Bug")
    store.update_session(session.id, archived=True)

    assert store.session_name_exists("Fix Bug")
    assert store.worktree_name_exists("fix-bug")
    assert not store.worktree_name_exists("fix-bug-1")


def test_conversation_messages_by_session_and_panel() -> None:
    store = MemorySessionStore()
    store.add_conversation_message("s1", "user", "hello", panel_id="p1")
    store.add_conversation_message("s1", "assistant", "hi")
    store.add_conversation_message("s2", "user", "other", panel_id="p2")

    assert [m.content for m in store.get_conversation_messages("s1")] == ["hello", "hi"]
    assert [m.content for m in store.get_panel_conversation_messages("p1")] == ["hello"]


def test_event_bus_history_and_listener_isolation() -> None:
    bus = EventBus(history_size=2)
    seen: list[str] = []

    def broken(event, payload):
        raise RuntimeError("listener bug")

    bus.subscribe(broken)
    unsubscribe = bus.subscribe(lambda event, payload: seen.append(event))
    bus.emit(SESSION_CREATED, {"id": "a"})
    bus.emit(SESSION_UPDATED, {"id": "a"})
    unsubscribe()
    bus.emit(SESSION_DELETED, {"id": "a"})

    assert seen == [SESSION_CREATED, SESSION_UPDATED]
    assert [event for event, _ in bus.history] == [SESSION_UPDATED, SESSION_DELETED]
    with pytest.raises(ValueError):
        bus.emit("session_exploded", {})


@pytest.fixture
def session_manager(tmp_path: Path, repo: Path, manager: WorkspaceManager):
    projects_dir = tmp_path / "projects"
    write_project(projects_dir, "demo", repo)
    store = MemorySessionStore(clock=SteppingClock())
    events = EventBus()
    return SessionManager(store, events, manager, ProjectLoader([projects_dir])), events


def test_manager_emits_lifecycle_events(session_manager) -> None:
    sessions, events = session_manager
    session = sessions.create_session(
        name="Fix Bug", worktree_name="fix-bug", worktree_path="/tmp/fix-bug", project_id="demo"
    )
    sessions.update_status(session.id, PersistedStatus.RUNNING, message="Agent running")
    folder = sessions.create_folder("Batch", "demo")

    kinds = [event for event, _ in events.history]
    assert kinds == [SESSION_CREATED, SESSION_UPDATED, FOLDER_CREATED]
    created = events.history[0][1]
    assert created["status"] == "initializing"
    assert created["persisted_status"] == "pending"
    assert events.history[1][1]["status_message"] == "Agent running"
    assert events.history[2][1]["id"] == folder.id


def test_manager_get_unknown_session(session_manager) -> None:
    sessions, _ = session_manager

    with pytest.raises(SessionNotFoundError):
        sessions.get_session("nope")


def test_recover_interrupted_sessions(session_manager) -> None:
    sessions, _ = session_manager
    store = sessions.store
    pending = new_session(store, "Pending")
    running = new_session(store, "Running", status=PersistedStatus.RUNNING)
    failed = new_session(store, "Failed", status=PersistedStatus.FAILED)

    recovered = sessions.recover_interrupted_sessions()

    assert sorted(recovered) == sorted([pending.id, running.id])
    assert store.get_session(pending.id).status is PersistedStatus.STOPPED
    assert store.get_session(running.id).status is PersistedStatus.STOPPED
    assert store.get_session(failed.id).status is PersistedStatus.FAILED
    assert sessions.recover_interrupted_sessions() == []


def test_archive_session_removes_workspace(session_manager, repo: Path, manager: WorkspaceManager) -> None:
    sessions, events = session_manager
    info = asyncio.run(manager.create(repo, "to-archive"))
    session = sessions.create_session(
        name="To Archive",
        worktree_name="to-archive",
        worktree_path=info.path,
        project_id="demo",
        base_commit=info.base_commit,
    )

    archived = asyncio.run(sessions.archive_session(session.id))

    assert archived.archived
    assert not Path(info.path).exists()
    assert events.history[-1] == (SESSION_DELETED, {"id": session.id, "project_id": "demo"})
    assert sessions.list_sessions() == []


def test_build_script_continues_past_failures(session_manager, tmp_path: Path) -> None:
    sessions, events = session_manager
    session = new_session(sessions.store, "Build")

    result = asyncio.run(
        sessions.run_build_script(session.id, ["echo first", "exit 3", "echo third", "  "], tmp_path)
    )

    assert not result.success
    assert result.commands == ["echo first", "exit 3", "echo third"]
    assert "first" in result.output and "third" in result.output
    assert "exit code 3" in result.output
    messages = [payload["status_message"] for _, payload in events.history]
    assert messages[0] == "Running build script (1/3): echo first"
    assert messages[-1] == "Build script completed with errors"
