"""Per-turn execution tracking: checkpoint commits and immutable execution diffs."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Callable

from ..git import GitRunner
from ..locks import MutexRegistry, session_lock_key
from ..workspaces import DiffResult, DiffStats, FileChange, GitDiffCapture, combine_diffs
from .models import CommitMode, ExecutionDiff
from .store import SessionNotFoundError, SessionStore

logger = logging.getLogger(__name__)

CHECKPOINT_PREFIX = "checkpoint: "
CHECKPOINT_PROMPT_LIMIT = 50


@dataclass(slots=True)
class ExecutionContext:
    session_id: str
    sequence: int
    worktree_path: str
    before_commit: str
    started_at: datetime


def checkpoint_message(prompt: str | None) -> str:
    text = " ".join((prompt or "").split())
    if len(text) > CHECKPOINT_PROMPT_LIMIT:
        text = text[:CHECKPOINT_PROMPT_LIMIT] + "..."
    return CHECKPOINT_PREFIX + (text or "agent changes")


class ExecutionTracker:
    """Capture one diff per completed agent turn.

    Sequence numbers are reserved under the ``session:{id}`` lock so concurrent turns
    on the same session never share or reuse a number.
    """

    def __init__(
        self,
        store: SessionStore,
        git: GitRunner,
        locks: MutexRegistry,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._git = git
        self._locks = locks
        self._diffs = GitDiffCapture(git)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._active: dict[str, ExecutionContext] = {}
        self._reserved: dict[str, int] = {}

    def is_tracking(self, session_id: str) -> bool:
        return session_id in self._active

    async def start_execution(self, session_id: str) -> ExecutionContext:
        async with self._locks.acquire(session_lock_key(session_id)):
            session = self._store.get_session(session_id)
            if session is None:
                raise SessionNotFoundError(f"Session '{session_id}' not found")
            sequence = max(
                self._store.next_execution_sequence(session_id),
                self._reserved.get(session_id, 0) + 1,
            )
            self._reserved[session_id] = sequence
            before = await self._diffs.current_commit(session.worktree_path)
            context = ExecutionContext(
                session_id=session_id,
                sequence=sequence,
                worktree_path=session.worktree_path,
                before_commit=before,
                started_at=self._clock(),
            )
            self._active[session_id] = context
        logger.debug("Execution started", extra={"session_id": session_id, "sequence": sequence})
        return context

    async def end_execution(self, session_id: str, prompt: str | None = None) -> ExecutionDiff | None:
        """Finish the running turn and persist its diff. Returns None when nothing changed."""

        async with self._locks.acquire(session_lock_key(session_id)):
            context = self._active.pop(session_id, None)
            if context is None:
                logger.warning("No execution in progress", extra={"session_id": session_id})
                return None
            session = self._store.get_session(session_id)
            if session is None:
                raise SessionNotFoundError(f"Session '{session_id}' not found")

            path = context.worktree_path
            if (
                session.commit_mode is CommitMode.CHECKPOINT
                and session.auto_commit
                and await self._diffs.has_changes(path)
            ):
                await self._git.run("add", "-A", cwd=path)
                await self._git.run("commit", "-m", checkpoint_message(prompt), cwd=path)

            after = await self._diffs.current_commit(path)
            if after == context.before_commit:
                result = await self._diffs.capture_working_directory_diff(path)
            else:
                result = await self._diffs.capture_commit_diff(path, context.before_commit, after)

            if not result.diff.strip():
                logger.debug("Execution produced no changes", extra={"session_id": session_id})
                return None

            diff = ExecutionDiff(
                session_id=session_id,
                sequence=context.sequence,
                git_diff=result.diff,
                files_changed=[asdict(change) for change in result.changed_files],
                additions=result.stats.additions,
                deletions=result.stats.deletions,
                files_changed_count=result.stats.files_changed,
                before_commit=context.before_commit,
                after_commit=result.after_hash,
                created_at=self._clock(),
            )
            self._store.create_execution_diff(diff)

        logger.info(
            "Execution diff recorded",
            extra={"session_id": session_id, "sequence": diff.sequence, "files_changed": diff.files_changed_count},
        )
        return diff

    def cancel_execution(self, session_id: str) -> None:
        self._active.pop(session_id, None)

    def combined_diff(self, session_id: str) -> DiffResult:
        results = [
            DiffResult(
                diff=stored.git_diff,
                stats=DiffStats(stored.additions, stored.deletions, stored.files_changed_count),
                changed_files=[FileChange(**change) for change in stored.files_changed],
                before_hash=stored.before_commit,
                after_hash=stored.after_commit,
            )
            for stored in self._store.list_execution_diffs(session_id)
        ]
        return combine_diffs(results)


__all__ = ["CHECKPOINT_PREFIX", "ExecutionContext", "ExecutionTracker", "checkpoint_message"]
