"""Diff capture for execution tracking and status summaries."""

from __future__ import annotations

from pathlib import Path

from ..git import GitRunner
from .models import DiffResult, DiffStats, FileChange


def parse_numstat(output: str) -> list[FileChange]:
    """Parse ``git diff --numstat`` output. Binary files count as zero lines."""

    changes: list[FileChange] = []
    for line in output.splitlines():
        parts = line.split("\t")
        if len(parts) < 3:
            continue
        added, deleted, path = parts[0], parts[1], "\t".join(parts[2:])
        changes.append(
            FileChange(
                path=path,
                additions=int(added) if added.isdigit() else 0,
                deletions=int(deleted) if deleted.isdigit() else 0,
            )
        )
    return changes


def summarize(changes: list[FileChange]) -> DiffStats:
    return DiffStats(
        additions=sum(change.additions for change in changes),
        deletions=sum(change.deletions for change in changes),
        files_changed=len(changes),
    )


class GitDiffCapture:
    """Capture working-tree and commit-range diffs for a workspace."""

    def __init__(self, git: GitRunner) -> None:
        self._git = git

    async def current_commit(self, path: Path | str) -> str:
        return await self._git.output("rev-parse", "HEAD", cwd=path)

    async def has_changes(self, path: Path | str) -> bool:
        status = await self._git.output("status", "--porcelain", cwd=path)
        return bool(status)

    async def capture_working_directory_diff(self, path: Path | str) -> DiffResult:
        """Diff HEAD against the working tree, including untracked files."""

        head = await self.current_commit(path)
        untracked_output = await self._git.output(
            "ls-files", "--others", "--exclude-standard", cwd=path
        )
        untracked = [line for line in untracked_output.splitlines() if line]
        if untracked:
            # Intent-to-add makes untracked files visible to ``git diff`` without staging content.
            await self._git.run("add", "--intent-to-add", "--", *untracked, cwd=path)
        try:
            diff = await self._git.run("diff", "HEAD", cwd=path)
            numstat = await self._git.run("diff", "--numstat", "HEAD", cwd=path)
        finally:
            if untracked:
                await self._git.run("reset", "--quiet", "--", *untracked, cwd=path, check=False)
        changes = parse_numstat(numstat.stdout)
        return DiffResult(
            diff=diff.stdout,
            stats=summarize(changes),
            changed_files=changes,
            before_hash=head,
            after_hash=None,
        )

    async def capture_commit_diff(self, path: Path | str, from_commit: str, to_commit: str) -> DiffResult:
        diff = await self._git.run("diff", f"{from_commit}..{to_commit}", cwd=path)
        numstat = await self._git.run("diff", "--numstat", f"{from_commit}..{to_commit}", cwd=path)
        changes = parse_numstat(numstat.stdout)
        return DiffResult(
            diff=diff.stdout,
            stats=summarize(changes),
            changed_files=changes,
            before_hash=from_commit,
            after_hash=to_commit,
        )

    async def stats_since(self, path: Path | str, commit: str) -> DiffStats:
        """Working tree stats measured from ``commit``."""

        numstat = await self._git.run("diff", "--numstat", commit, cwd=path)
        return summarize(parse_numstat(numstat.stdout))


def combine_diffs(diffs: list[DiffResult]) -> DiffResult:
    """Concatenate diffs in order, merging per-file stats."""

    merged: dict[str, FileChange] = {}
    for result in diffs:
        for change in result.changed_files:
            existing = merged.get(change.path)
            if existing is None:
                merged[change.path] = FileChange(change.path, change.additions, change.deletions)
            else:
                existing.additions += change.additions
                existing.deletions += change.deletions
    changes = list(merged.values())
    return DiffResult(
        diff="\n".join(result.diff for result in diffs if result.diff),
        stats=DiffStats(
            additions=sum(result.stats.additions for result in diffs),
            deletions=sum(result.stats.deletions for result in diffs),
            files_changed=len(changes),
        ),
        changed_files=changes,
        before_hash=diffs[0].before_hash if diffs else None,
        after_hash=diffs[-1].after_hash if diffs else None,
    )


__all__ = ["GitDiffCapture", "combine_diffs", "parse_numstat", "summarize"]
