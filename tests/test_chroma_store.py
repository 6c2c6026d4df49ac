from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from grove_mcp.sessions import ExecutionDiff, PersistedStatus
from grove_mcp.storage import ChromaSessionStore, ChromaStore
from grove_mcp.storage.chroma import build_where


@dataclass
class _Record:
    document: str
    metadata: dict[str, Any]
    id: str


def _matches(metadata: dict[str, Any], where: dict[str, Any]) -> bool:
    if "$and" in where:
        return all(_matches(metadata, clause) for clause in where["$and"])
    return all(metadata.get(key) == value for key, value in where.items())


class StubCollection:
    def __init__(self) -> None:
        self.records: list[_Record] = []

    def add(self, *, documents, metadatas, ids) -> None:  # type: ignore[override]
        for document, metadata, record_id in zip(documents, metadatas, ids):
            assert all(value is not None for value in metadata.values())
            self.records.append(_Record(document=document, metadata=dict(metadata), id=record_id))

    def get(self, *, ids=None, where=None, limit=None):  # type: ignore[override]
        filtered = self.records
        if where:
            filtered = [record for record in filtered if _matches(record.metadata, where)]
        if limit is not None:
            filtered = filtered[:limit]
        return {
            "ids": [record.id for record in filtered],
            "documents": [record.document for record in filtered],
            "metadatas": [record.metadata for record in filtered],
        }


class StubClient:
    def __init__(self) -> None:
        self.collections = defaultdict(StubCollection)

    def get_or_create_collection(self, name: str) -> StubCollection:
        return self.collections[name]


class TickingClock:
    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


def make_store(tmp_path: Path, client: StubClient, clock=None) -> ChromaStore:
    return ChromaStore(tmp_path, client_factory=lambda: client, clock=clock or TickingClock())


def test_build_where() -> None:
    assert build_where(None) is None
    assert build_where({"stream": "a"}) == {"stream": "a"}
    assert build_where({"stream": "a", "event_type": "b"}) == {
        "$and": [{"stream": "a"}, {"event_type": "b"}]
    }


def test_record_and_fetch_stream(tmp_path: Path) -> None:
    store = make_store(tmp_path, StubClient())

    event = store.record_event(
        stream="session::1",
        event_type="session_snapshot",
        body={"name": "Fix Bug"},
        metadata={"status": "pending", "folder_id": None},
    )

    assert event.metadata["sequence"] == 1
    assert "folder_id" not in event.metadata
    events = store.fetch_stream("session::1")
    assert len(events) == 1
    assert events[0].body() == {"name": "Fix Bug"}


def test_sequence_continues_across_instances(tmp_path: Path) -> None:
    client = StubClient()
    first = make_store(tmp_path, client)
    first.record_event(stream="s", event_type="e", body={})
    first.record_event(stream="s", event_type="e", body={})

    second = make_store(tmp_path, client)
    event = second.record_event(stream="s", event_type="e", body={})

    assert event.metadata["sequence"] == 3
    assert second.record_event(stream="other", event_type="e", body={}).metadata["sequence"] == 1


def test_search_events_filters_and_query(tmp_path: Path) -> None:
    store = make_store(tmp_path, StubClient())
    store.record_event(stream="a", event_type="x", body={"text": "alpha"}, metadata={"project_id": "p1"})
    store.record_event(stream="b", event_type="x", body={"text": "beta"}, metadata={"project_id": "p2"})
    store.record_event(stream="c", event_type="y", body={"text": "alpha"}, metadata={"project_id": "p1"})

    filtered = store.search_events(filters={"event_type": "x", "project_id": "p1"})
    queried = store.search_events("alpha")

    assert [event.stream for event in filtered] == ["a"]
    assert [event.stream for event in queried] == ["a", "c"]
    assert len(store.search_events(limit=2)) == 2


def test_session_store_replays_latest_state(tmp_path: Path) -> None:
    client = StubClient()
    clock = TickingClock()
    store = ChromaSessionStore(make_store(tmp_path, client, clock), clock=clock)
    session = store.create_session(
        name="Fix Bug", worktree_name="fix-bug", worktree_path="/w/fix-bug", project_id="demo"
    )
    store.update_session(session.id, status=PersistedStatus.RUNNING, status_message="Agent running")
    store.mark_viewed(session.id)
    folder = store.create_folder("Batch", "demo")
    store.create_execution_diff(
        ExecutionDiff(
            session_id=session.id,
            sequence=1,
            git_diff="diff --git a/x b/x",
            files_changed=[{"path": "x", "additions": 1, "deletions": 0}],
            additions=1,
            deletions=0,
            files_changed_count=1,
            before_commit="abc",
            after_commit="def",
            created_at=clock(),
        )
    )
    store.add_conversation_message(session.id, "user", "hello", panel_id="panel-1")

    replayed = ChromaSessionStore(make_store(tmp_path, client, clock), clock=clock)

    restored = replayed.get_session(session.id)
    assert restored.status is PersistedStatus.RUNNING
    assert restored.status_message == "Agent running"
    assert restored.last_viewed_at is not None
    assert [f.id for f in replayed.list_folders("demo")] == [folder.id]
    assert [d.sequence for d in replayed.list_execution_diffs(session.id)] == [1]
    assert replayed.next_execution_sequence(session.id) == 2
    assert [m.content for m in replayed.get_panel_conversation_messages("panel-1")] == ["hello"]
    assert replayed.active_sessions()[0].id == session.id


def test_replayed_diff_sequence_stays_monotonic(tmp_path: Path) -> None:
    client = StubClient()
    clock = TickingClock()
    store = ChromaSessionStore(make_store(tmp_path, client, clock), clock=clock)
    session = store.create_session(name="S", worktree_name="s", worktree_path="/w/s", project_id="demo")

    def diff(sequence: int) -> ExecutionDiff:
        return ExecutionDiff(
            session_id=session.id,
            sequence=sequence,
            git_diff="d",
            files_changed=[],
            additions=0,
            deletions=0,
            files_changed_count=0,
            before_commit=None,
            after_commit=None,
            created_at=clock(),
        )

    store.create_execution_diff(diff(1))
    store.create_execution_diff(diff(3))
    replayed = ChromaSessionStore(make_store(tmp_path, client, clock), clock=clock)

    with pytest.raises(ValueError):
        replayed.create_execution_diff(diff(2))
    assert replayed.create_execution_diff(diff(4)).sequence == 4
