from __future__ import annotations

import asyncio
from typing import Any

import pytest
from pydantic import ValidationError
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from grove_mcp.config import GroveSettings
from grove_mcp.queue import (
    CreateSessionJob,
    LocalJobQueue,
    QueueBackendError,
    RedisJobQueue,
    SendInputJob,
    build_queues,
    parse_job,
)


def test_parse_job_dispatches_on_kind() -> None:
    job = parse_job('{"kind": "send-input", "session_id": "s1", "text": "hi"}')

    assert isinstance(job, SendInputJob)
    assert job.panel_id is None
    with pytest.raises(ValidationError):
        parse_job('{"kind": "explode"}')
    with pytest.raises(ValidationError):
        parse_job('{"kind": "create-session", "index": -1}')


def test_local_queue_respects_width_and_reports_lifecycle() -> None:
    queue = LocalJobQueue("input", 2)
    events: list[tuple[str, str]] = []
    for event in ("waiting", "active", "completed", "failed"):
        queue.on(event, lambda job_id, job, detail, event=event: events.append((event, job_id)))
    running = 0
    peak = 0

    async def processor(job_id: str, job):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.02)
        running -= 1
        if job.text == "bad":
            raise RuntimeError("agent crashed")
        return job.text

    async def main() -> None:
        await queue.start(processor)
        for index, text in enumerate(["a", "b", "c", "bad", "e"]):
            await queue.enqueue(f"job-{index}", SendInputJob(session_id="s1", text=text))
        await queue.join()
        await queue.close()

    asyncio.run(main())

    assert peak == 2
    assert queue.counts == {"waiting": 5, "active": 5, "completed": 4, "failed": 1}
    assert ("failed", "job-3") in events
    assert events.index(("waiting", "job-0")) < events.index(("active", "job-0"))
    assert queue.in_flight == 0


def test_queue_rejects_unknown_event_and_bad_width() -> None:
    with pytest.raises(ValueError):
        LocalJobQueue("input", 0)
    with pytest.raises(ValueError):
        LocalJobQueue("input", 1).on("exploded", lambda *args: None)


def test_build_queues_widths(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.chdir(tmp_path)
    settings = GroveSettings(GROVE_SESSION_CONCURRENCY=1)

    queues = build_queues(settings)

    assert {kind: (q.name, q.concurrency, q.backend) for kind, q in queues.items()} == {
        "create-session": ("sessions", 1, "local"),
        "send-input": ("input", 10, "local"),
        "continue-session": ("continue", 10, "local"),
    }


class StubRedis:
    """In-memory stand-in for the stream commands the queue uses."""

    def __init__(self, *, group_exists: bool = False) -> None:
        self.entries: asyncio.Queue[tuple[bytes, dict[bytes, bytes]]] | None = None
        self.groups: list[tuple[str, str]] = []
        self.acked: list[bytes] = []
        self.added: list[tuple[str, dict[str, Any]]] = []
        self.group_exists = group_exists
        self.closed = False
        self.fail_reads = 0
        self._counter = 0

    def _queue(self) -> asyncio.Queue:
        if self.entries is None:
            self.entries = asyncio.Queue()
        return self.entries

    async def xgroup_create(self, stream, group, id="$", mkstream=False):
        if self.group_exists:
            raise ResponseError("BUSYGROUP Consumer Group name already exists")
        self.groups.append((stream, group))
        return True

    async def xadd(self, stream, fields):
        self._counter += 1
        message_id = f"{self._counter}-0".encode()
        self.added.append((stream, fields))
        await self._queue().put(
            (message_id, {key.encode(): str(value).encode() for key, value in fields.items()})
        )
        return message_id

    async def xreadgroup(self, group, consumer, streams, count=None, block=None):
        if self.fail_reads:
            self.fail_reads -= 1
            raise RedisConnectionError("connection reset")
        (stream,) = streams
        try:
            entry = await asyncio.wait_for(self._queue().get(), (block or 0) / 1000)
        except asyncio.TimeoutError:
            return []
        return [[stream.encode(), [entry]]]

    async def xack(self, stream, group, *message_ids):
        self.acked.extend(message_ids)
        return len(message_ids)

    async def aclose(self):
        self.closed = True


def run_redis_queue(client: StubRedis, jobs, *, raw_entries=()) -> tuple[RedisJobQueue, list]:
    queue = RedisJobQueue("sessions", 1, client=client, block_ms=20, retry_interval=0.01)
    seen: list = []
    queue.on("completed", lambda job_id, job, detail: seen.append(("completed", job_id, detail)))
    queue.on("failed", lambda job_id, job, detail: seen.append(("failed", job_id, detail)))

    async def processor(job_id, job):
        return job.prompt.upper()

    async def main() -> None:
        await queue.start(processor)
        for job_id, job in jobs:
            await queue.enqueue(job_id, job)
        for message_id, fields in raw_entries:
            await client._queue().put((message_id, fields))
        for _ in range(100):
            if len(seen) == len(jobs) + len(raw_entries):
                break
            await asyncio.sleep(0.01)
        await queue.close()

    asyncio.run(main())
    return queue, seen


def test_redis_queue_round_trip() -> None:
    client = StubRedis()

    queue, seen = run_redis_queue(client, [("job-1", CreateSessionJob(prompt="fix bug"))])

    assert client.groups == [("grove:jobs:sessions", "grove-workers")]
    assert client.added[0][0] == "grove:jobs:sessions"
    assert client.added[0][1]["id"] == "job-1"
    assert seen == [("completed", "job-1", "FIX BUG")]
    assert client.acked == [b"1-0"]
    assert client.closed
    assert queue.describe()["backend"] == "redis"


def test_redis_queue_tolerates_existing_group_and_read_errors() -> None:
    client = StubRedis(group_exists=True)
    client.fail_reads = 2

    _, seen = run_redis_queue(client, [("job-1", CreateSessionJob(prompt="go"))])

    assert seen == [("completed", "job-1", "GO")]


def test_redis_queue_fails_malformed_entries() -> None:
    client = StubRedis()
    raw = [
        (b"9-0", {b"id": b"job-x", b"payload": b'{"kind": "nope"}'}),
        (b"10-0", {b"id": b"job-y"}),
    ]

    _, seen = run_redis_queue(client, [], raw_entries=raw)

    assert [(event, job_id) for event, job_id, _ in seen] == [("failed", "job-x"), ("failed", "job-y")]
    assert all(isinstance(detail, QueueBackendError) for _, _, detail in seen)


def test_redis_queue_requires_connection_details() -> None:
    with pytest.raises(ValueError):
        RedisJobQueue("sessions", 1)


def test_redis_group_creation_error() -> None:
    class BrokenRedis(StubRedis):
        async def xgroup_create(self, *args, **kwargs):
            raise RedisConnectionError("refused")

    queue = RedisJobQueue("sessions", 1, client=BrokenRedis())

    async def processor(job_id, job):
        return None

    with pytest.raises(QueueBackendError):
        asyncio.run(queue.start(processor))
