from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from conftest import write_project
from grove_mcp.agents import PanelNotRegisteredError, PanelRegistry
from grove_mcp.config import GroveSettings
from grove_mcp.git import GitRunner
from grove_mcp.locks import MutexRegistry
from grove_mcp.naming import SessionNamer
from grove_mcp.projects import ProjectLoader
from grove_mcp.queue import CreateSessionJob, JobScheduler, build_queues
from grove_mcp.sessions import (
    FOLDER_CREATED,
    SESSION_CREATED,
    EventBus,
    MemorySessionStore,
    PersistedStatus,
    SessionManager,
    ToolType,
)
from grove_mcp.workspaces import WorkspaceManager


class RecordingAgents:
    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []

    async def start_panel(self, panel, session, prompt):
        self.calls.append(("start_panel", panel.id, session.id, prompt))

    async def continue_panel(self, panel, session, prompt):
        self.calls.append(("continue_panel", panel.id, session.id, prompt))

    async def send_input_to_panel(self, panel, session, text):
        self.calls.append(("send_input_to_panel", panel.id, session.id, text))

    async def start_session(self, session, prompt):
        self.calls.append(("start_session", session.id, prompt))

    async def continue_session(self, session, prompt):
        self.calls.append(("continue_session", session.id, prompt))

    async def send_input(self, session, text):
        self.calls.append(("send_input", session.id, text))

    def panel_conversation(self, panel_id):
        return []

    def session_conversation(self, session_id):
        return []


class Harness:
    def __init__(self, tmp_path: Path, repo: Path, *, auto_panels: bool = True, **project_extra) -> None:
        write_project(tmp_path / "projects", "demo", repo, active=True, **project_extra)
        self.repo = repo
        self.locks = MutexRegistry()
        self.events = EventBus()
        self.store = MemorySessionStore()
        self.workspaces = WorkspaceManager(GitRunner(), self.locks)
        projects = ProjectLoader([tmp_path / "projects"])
        self.sessions = SessionManager(self.store, self.events, self.workspaces, projects)
        self.panels = PanelRegistry(attempts=3, interval=0.01)
        if auto_panels:
            self.events.subscribe(self.panels.handle_event)
        self.agents = RecordingAgents()
        settings = GroveSettings(GROVE_SESSION_CONCURRENCY=5)
        self.scheduler = JobScheduler(
            build_queues(settings),
            projects=projects,
            sessions=self.sessions,
            workspaces=self.workspaces,
            locks=self.locks,
            namer=SessionNamer(),
            panels=self.panels,
            agents=self.agents,
        )


@pytest.fixture
def harness(tmp_path: Path, repo: Path, monkeypatch: pytest.MonkeyPatch) -> Harness:
    monkeypatch.chdir(tmp_path)
    return Harness(tmp_path, repo)


def test_create_session_starts_agent_in_panel(harness: Harness) -> None:
    async def main():
        handle = await harness.scheduler.submit(CreateSessionJob(prompt="fix the login bug"))
        result = await handle.wait()
        await harness.scheduler.close()
        return handle, result

    handle, result = asyncio.run(main())

    assert handle.state == "completed"
    assert result["name"] == "Fix The Login"
    assert result["worktree_name"] == "fix-the-login"
    assert Path(result["worktree_path"]) == harness.repo / "worktrees" / "fix-the-login"
    assert result["base_branch"] == "main"
    assert Path(result["worktree_path"]).exists()
    panel = harness.panels.find(result["id"])
    assert harness.agents.calls == [("start_panel", panel.id, result["id"], "fix the login bug")]


def test_session_without_prompt_is_stopped(harness: Harness) -> None:
    async def main():
        handle = await harness.scheduler.submit(CreateSessionJob(name="Scratch Space"))
        result = await handle.wait()
        await harness.scheduler.close()
        return result

    result = asyncio.run(main())

    assert result["persisted_status"] == "stopped"
    assert result["status"] == "completed_unviewed"
    assert harness.agents.calls == []


def test_batch_creates_folder_then_indexed_sessions(harness: Harness) -> None:
    template = CreateSessionJob(prompt="repair auth", name="Fix Auth Bug", tool_type=ToolType.NONE)

    async def main():
        handles = await harness.scheduler.submit_batch(template, 2)
        results = [await handle.wait() for handle in handles]
        await harness.scheduler.close()
        return results

    results = asyncio.run(main())

    assert sorted(r["worktree_name"] for r in results) == ["fix-auth-bug-1", "fix-auth-bug-2"]
    assert sorted(r["name"] for r in results) == ["Fix Auth Bug 1", "Fix Auth Bug 2"]
    folder = harness.store.list_folders("demo")[0]
    assert folder.name == "Fix Auth Bug"
    assert {r["folder_id"] for r in results} == {folder.id}
    kinds = [event for event, _ in harness.events.history]
    assert kinds.index(FOLDER_CREATED) < kinds.index(SESSION_CREATED)


def test_batch_of_one_skips_folder(harness: Harness) -> None:
    async def main():
        handles = await harness.scheduler.submit_batch(CreateSessionJob(name="Solo", tool_type=ToolType.NONE), 1)
        await handles[0].wait()
        await harness.scheduler.close()
        return handles

    handles = asyncio.run(main())

    assert len(handles) == 1
    assert harness.store.list_folders() == []
    with pytest.raises(ValueError):
        asyncio.run(harness.scheduler.submit_batch(CreateSessionJob(), 0))


def test_concurrent_same_name_jobs_get_distinct_workspaces(harness: Harness) -> None:
    async def main():
        handles = [
            await harness.scheduler.submit(CreateSessionJob(name="Same Name", tool_type=ToolType.NONE))
            for _ in range(3)
        ]
        results = await asyncio.gather(*(handle.wait() for handle in handles))
        await harness.scheduler.close()
        return results

    results = asyncio.run(main())

    assert sorted(r["worktree_name"] for r in results) == ["same-name", "same-name-1", "same-name-2"]
    assert len({r["worktree_path"] for r in results}) == 3


def test_missing_panel_marks_session_failed(tmp_path: Path, repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    harness = Harness(tmp_path, repo, auto_panels=False)

    async def main():
        handle = await harness.scheduler.submit(CreateSessionJob(prompt="do things"))
        try:
            await handle.wait()
        finally:
            await harness.scheduler.close()

    with pytest.raises(PanelNotRegisteredError):
        asyncio.run(main())

    (session,) = harness.store.list_sessions()
    assert session.status is PersistedStatus.FAILED
    assert "never registered after 3 attempts" in session.status_message
    assert Path(session.worktree_path).exists()
    assert harness.agents.calls == []


def test_build_script_runs_before_agent(tmp_path: Path, repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    harness = Harness(tmp_path, repo, build_script="echo built > built.txt")

    async def main():
        handle = await harness.scheduler.submit(CreateSessionJob(name="Built", tool_type=ToolType.NONE))
        result = await handle.wait()
        await harness.scheduler.close()
        return result

    result = asyncio.run(main())

    assert (Path(result["worktree_path"]) / "built.txt").exists()
    assert result["status_message"] == "Build script completed"


def test_input_prefers_panel_and_falls_back_to_session(harness: Harness) -> None:
    session = harness.store.create_session(
        name="Existing", worktree_name="existing", worktree_path="/tmp/existing", project_id="demo"
    )

    async def main():
        first = await harness.scheduler.send_input(session.id, "hello")
        await first.wait()
        panel = harness.panels.register(session.id, ToolType.CLAUDE)
        second = await harness.scheduler.send_input(session.id, "again")
        await second.wait()
        third = await harness.scheduler.continue_session(session.id, "keep going", panel_id=panel.id)
        await third.wait()
        await harness.scheduler.close()
        return panel

    panel = asyncio.run(main())

    assert harness.agents.calls == [
        ("send_input", session.id, "hello"),
        ("send_input_to_panel", panel.id, session.id, "again"),
        ("continue_panel", panel.id, session.id, "keep going"),
    ]


def test_describe_reports_queues(harness: Harness) -> None:
    described = harness.scheduler.describe()

    assert described["backend"] == "local"
    assert described["queues"]["sessions"]["concurrency"] == 5
    assert set(described["queues"]) == {"sessions", "input", "continue"}
