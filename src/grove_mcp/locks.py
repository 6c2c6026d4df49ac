"""Named advisory locks shared by scheduler jobs and workspace operations."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

logger = logging.getLogger(__name__)

SESSION_CREATION_KEY = "session-creation"


class LockTimeoutError(RuntimeError):
    """Raised when a named lock cannot be acquired within the requested timeout."""

    def __init__(self, key: str, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:.1f}s waiting for lock '{key}'")
        self.key = key
        self.timeout = timeout


def workspace_lock_key(path: str) -> str:
    return f"workspace:{path}"


def session_lock_key(session_id: str) -> str:
    return f"session:{session_id}"


class MutexRegistry:
    """Registry of asyncio locks keyed by arbitrary resource strings.

    Locks are not re-entrant: a holder must not acquire the same key again.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @property
    def held_keys(self) -> list[str]:
        return sorted(key for key, lock in self._locks.items() if lock.locked())

    @asynccontextmanager
    async def acquire(self, key: str, *, timeout: float | None = None) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the ``async with`` block."""

        lock = self._lock_for(key)
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            if timeout is None:
                await lock.acquire()
            else:
                try:
                    await asyncio.wait_for(lock.acquire(), timeout)
                except asyncio.TimeoutError as exc:
                    raise LockTimeoutError(key, timeout) from exc
        finally:
            self._waiters[key] -= 1

        logger.debug("Acquired lock", extra={"lock_key": key})
        try:
            yield
        finally:
            lock.release()
            # Drop idle locks so the registry does not grow with every workspace path.
            if not self._waiters.get(key) and not lock.locked():
                self._locks.pop(key, None)
                self._waiters.pop(key, None)
            logger.debug("Released lock", extra={"lock_key": key})


__all__ = [
    "LockTimeoutError",
    "MutexRegistry",
    "SESSION_CREATION_KEY",
    "session_lock_key",
    "workspace_lock_key",
]
