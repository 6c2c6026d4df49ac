"""Queue backends with a shared job lifecycle.

``LocalJobQueue`` is an in-process FIFO worker pool. ``RedisJobQueue`` persists jobs
in a Redis stream read through a consumer group. Both emit ``waiting``, ``active``,
``completed`` and ``failed`` notifications to registered listeners.
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
from typing import Any, Awaitable, Callable

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError, ResponseError

from .jobs import Job, parse_job

logger = logging.getLogger(__name__)

LIFECYCLE_EVENTS = ("waiting", "active", "completed", "failed")

Processor = Callable[[str, Job], Awaitable[Any]]
Listener = Callable[[str, Job | None, Any], None]


class QueueBackendError(RuntimeError):
    """Raised when the queue backend is unreachable or delivers a malformed payload."""


class JobQueue:
    """Bounded worker pool for one job kind."""

    backend = "abstract"

    def __init__(self, name: str, concurrency: int) -> None:
        if concurrency < 1:
            raise ValueError("Queue concurrency must be >= 1")
        self.name = name
        self.concurrency = concurrency
        self._listeners: dict[str, list[Listener]] = {event: [] for event in LIFECYCLE_EVENTS}
        self._processor: Processor | None = None
        self._workers: list[asyncio.Task[None]] = []
        self.counts: dict[str, int] = {event: 0 for event in LIFECYCLE_EVENTS}
        self.in_flight = 0

    def on(self, event: str, listener: Listener) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unknown queue event '{event}'")
        self._listeners[event].append(listener)

    def _emit(self, event: str, job_id: str, job: Job | None, detail: Any = None) -> None:
        self.counts[event] += 1
        for listener in self._listeners[event]:
            try:
                listener(job_id, job, detail)
            except Exception:
                logger.exception("Queue listener failed", extra={"queue": self.name, "event": event})

    async def _execute(self, job_id: str, job: Job) -> None:
        assert self._processor is not None
        self.in_flight += 1
        self._emit("active", job_id, job)
        try:
            result = await self._processor(job_id, job)
        except asyncio.CancelledError:
            self._emit("failed", job_id, job, QueueBackendError("Job cancelled during shutdown"))
            raise
        except Exception as exc:
            logger.warning(
                "Job failed",
                extra={"queue": self.name, "job_id": job_id, "kind": job.kind, "error": str(exc)},
            )
            self._emit("failed", job_id, job, exc)
        else:
            self._emit("completed", job_id, job, result)
        finally:
            self.in_flight -= 1

    @property
    def started(self) -> bool:
        return bool(self._workers)

    async def start(self, processor: Processor) -> None:
        raise NotImplementedError

    async def enqueue(self, job_id: str, job: Job) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()

    def describe(self) -> dict[str, Any]:
        return {
            "backend": self.backend,
            "concurrency": self.concurrency,
            "in_flight": self.in_flight,
            "counts": dict(self.counts),
        }


class LocalJobQueue(JobQueue):
    """In-process FIFO queue drained by ``concurrency`` worker tasks."""

    backend = "local"

    def __init__(self, name: str, concurrency: int) -> None:
        super().__init__(name, concurrency)
        self._queue: asyncio.Queue[tuple[str, Job]] = asyncio.Queue()

    async def start(self, processor: Processor) -> None:
        if self._workers:
            return
        self._processor = processor
        self._workers = [
            asyncio.create_task(self._worker(), name=f"{self.name}-worker-{index}")
            for index in range(self.concurrency)
        ]

    async def _worker(self) -> None:
        while True:
            job_id, job = await self._queue.get()
            try:
                await self._execute(job_id, job)
            finally:
                self._queue.task_done()

    async def enqueue(self, job_id: str, job: Job) -> None:
        await self._queue.put((job_id, job))
        self._emit("waiting", job_id, job)

    async def join(self) -> None:
        await self._queue.join()


class RedisJobQueue(JobQueue):
    """Jobs stored in a Redis stream and consumed through a consumer group.

    Entries are acknowledged as soon as they are read, so a job is delivered at
    most once even if the process dies while running it.
    """

    backend = "redis"

    def __init__(
        self,
        name: str,
        concurrency: int,
        *,
        client: Redis | None = None,
        url: str | None = None,
        group: str = "grove-workers",
        stream_prefix: str = "grove:jobs",
        block_ms: int = 1000,
        retry_interval: float = 1.0,
    ) -> None:
        super().__init__(name, concurrency)
        if client is None and url is None:
            raise ValueError("RedisJobQueue requires a client or a url")
        self._client = client if client is not None else Redis.from_url(url)
        self.stream = f"{stream_prefix}:{name}"
        self.group = group
        self._block_ms = block_ms
        self._retry_interval = retry_interval
        self._consumer_prefix = f"{socket.gethostname()}-{os.getpid()}"

    async def _ensure_group(self) -> None:
        try:
            await self._client.xgroup_create(self.stream, self.group, id="0", mkstream=True)
            logger.info("Created consumer group", extra={"stream": self.stream, "group": self.group})
        except ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise QueueBackendError(f"Cannot create consumer group on {self.stream}: {exc}") from exc
        except RedisError as exc:
            raise QueueBackendError(f"Redis unavailable for queue {self.name}: {exc}") from exc

    async def start(self, processor: Processor) -> None:
        if self._workers:
            return
        self._processor = processor
        await self._ensure_group()
        self._workers = [
            asyncio.create_task(self._worker(f"{self._consumer_prefix}-{index}"), name=f"{self.name}-redis-{index}")
            for index in range(self.concurrency)
        ]

    async def enqueue(self, job_id: str, job: Job) -> None:
        try:
            await self._client.xadd(self.stream, {"id": job_id, "payload": job.model_dump_json()})
        except RedisError as exc:
            raise QueueBackendError(f"Failed to enqueue job on {self.stream}: {exc}") from exc
        self._emit("waiting", job_id, job)

    @staticmethod
    def _decode(value: Any) -> str:
        return value.decode() if isinstance(value, bytes) else str(value)

    async def _worker(self, consumer: str) -> None:
        while True:
            try:
                raw = await self._client.xreadgroup(
                    self.group,
                    consumer,
                    {self.stream: ">"},
                    count=1,
                    block=self._block_ms,
                )
            except RedisError as exc:
                logger.warning("Redis read failed", extra={"stream": self.stream, "error": str(exc)})
                await asyncio.sleep(self._retry_interval)
                continue
            if not raw:
                continue
            for _stream, entries in raw:
                for message_id, fields in entries:
                    await self._client.xack(self.stream, self.group, message_id)
                    await self._handle_entry(self._decode(message_id), fields)

    async def _handle_entry(self, message_id: str, fields: dict[Any, Any]) -> None:
        job_id_raw = fields.get(b"id") or fields.get("id")
        payload_raw = fields.get(b"payload") or fields.get("payload")
        job_id = self._decode(job_id_raw) if job_id_raw is not None else message_id
        if payload_raw is None:
            self._emit("failed", job_id, None, QueueBackendError(f"Stream entry {message_id} has no payload"))
            return
        try:
            job = parse_job(payload_raw)
        except ValidationError as exc:
            logger.warning("Discarding malformed job", extra={"stream": self.stream, "message_id": message_id})
            self._emit("failed", job_id, None, QueueBackendError(f"Malformed job payload: {exc}"))
            return
        await self._execute(job_id, job)

    async def close(self) -> None:
        await super().close()
        await self._client.aclose()


__all__ = ["JobQueue", "LIFECYCLE_EVENTS", "LocalJobQueue", "QueueBackendError", "RedisJobQueue"]
