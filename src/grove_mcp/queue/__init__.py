"""Job models, queue backends and the scheduler."""

from .backends import JobQueue, LIFECYCLE_EVENTS, LocalJobQueue, QueueBackendError, RedisJobQueue
from .jobs import (
    CONTINUE_SESSION,
    CREATE_SESSION,
    SEND_INPUT,
    ContinueSessionJob,
    CreateSessionJob,
    Job,
    JobHandle,
    SendInputJob,
    parse_job,
)
from .scheduler import JobScheduler, QUEUE_NAMES, build_queues

__all__ = [
    "CONTINUE_SESSION",
    "CREATE_SESSION",
    "ContinueSessionJob",
    "CreateSessionJob",
    "Job",
    "JobHandle",
    "JobQueue",
    "JobScheduler",
    "LIFECYCLE_EVENTS",
    "LocalJobQueue",
    "QUEUE_NAMES",
    "QueueBackendError",
    "RedisJobQueue",
    "SEND_INPUT",
    "SendInputJob",
    "build_queues",
    "parse_job",
]
