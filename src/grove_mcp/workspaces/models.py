"""Workspace data models and error types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class WorkspaceError(RuntimeError):
    """Base class for workspace manager errors."""


class BaseBranchNotFoundError(WorkspaceError):
    """Raised when an explicitly requested base branch does not exist."""

    def __init__(self, branch: str) -> None:
        super().__init__(f"Base branch '{branch}' does not exist")
        self.branch = branch


class DetachedHeadError(WorkspaceError):
    """Raised when the project root has no current branch."""


class WorkspaceInUseError(WorkspaceError):
    """Raised when creation would replace a worktree holding uncommitted changes."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Workspace {path} already exists and has uncommitted changes")
        self.path = path


class ReconcileError(WorkspaceError):
    """Raised when a rebase or squash fails.

    Carries every git command that ran plus the raw output of the failing step.
    """

    def __init__(
        self,
        message: str,
        *,
        commands: list[str],
        output: str,
        working_directory: str,
        project_path: str | None = None,
    ) -> None:
        super().__init__(message)
        self.commands = list(commands)
        self.output = output
        self.working_directory = working_directory
        self.project_path = project_path

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": str(self),
            "commands": self.commands,
            "output": self.output,
            "working_directory": self.working_directory,
            "project_path": self.project_path,
        }


class NothingToReconcileError(ReconcileError):
    """The workspace is already up to date with its base branch."""


class NothingToSquashError(NothingToReconcileError):
    """Squash requested with zero commits ahead of the base branch."""


class NothingToRebaseError(NothingToReconcileError):
    """Rebase requested with zero commits to move."""


class ConflictsDetectedError(WorkspaceError):
    """Raised when a pre-flight check finds the rebase would conflict."""

    def __init__(self, report: "ConflictReport") -> None:
        files = ", ".join(report.conflicting_files) or "unknown files"
        super().__init__(f"Rebase would result in conflicts: {files}")
        self.report = report


@dataclass(slots=True)
class WorkspaceInfo:
    """Result of materializing a workspace."""

    path: str
    branch: str
    base_commit: str
    base_branch: str


@dataclass(slots=True)
class WorktreeEntry:
    path: str
    branch: str


@dataclass(slots=True)
class BranchInfo:
    name: str
    is_current: bool
    has_workspace: bool


@dataclass(slots=True)
class ConflictReport:
    """Outcome of a non-destructive conflict check."""

    has_conflicts: bool
    can_auto_merge: bool
    conflicting_files: list[str] = field(default_factory=list)
    ours_commits: list[str] = field(default_factory=list)
    theirs_commits: list[str] = field(default_factory=list)
    method: str = "merge-tree"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "has_conflicts": self.has_conflicts,
            "can_auto_merge": self.can_auto_merge,
            "method": self.method,
        }
        if self.conflicting_files:
            payload["conflicting_files"] = self.conflicting_files
        if self.ours_commits or self.theirs_commits:
            payload["conflicting_commits"] = {
                "ours": self.ours_commits,
                "theirs": self.theirs_commits,
            }
        return payload


@dataclass(slots=True)
class FileChange:
    path: str
    additions: int
    deletions: int


@dataclass(slots=True)
class DiffStats:
    additions: int = 0
    deletions: int = 0
    files_changed: int = 0


@dataclass(slots=True)
class DiffResult:
    """A captured diff with per-file stats."""

    diff: str
    stats: DiffStats
    changed_files: list[FileChange]
    before_hash: str | None = None
    after_hash: str | None = None


@dataclass(slots=True)
class WorkspaceStatus:
    """Divergence summary for one workspace.

    ``ahead``/``behind`` are measured against the live base branch ref, while the
    diff stats are measured from the base commit fixed at creation time.
    """

    ahead: int
    behind: int
    has_uncommitted_changes: bool
    has_untracked_files: bool
    stats: DiffStats

    def to_dict(self) -> dict[str, Any]:
        return {
            "ahead": self.ahead,
            "behind": self.behind,
            "has_uncommitted_changes": self.has_uncommitted_changes,
            "has_untracked_files": self.has_untracked_files,
            "additions": self.stats.additions,
            "deletions": self.stats.deletions,
            "files_changed": self.stats.files_changed,
        }


__all__ = [
    "BaseBranchNotFoundError",
    "BranchInfo",
    "ConflictReport",
    "ConflictsDetectedError",
    "DetachedHeadError",
    "DiffResult",
    "DiffStats",
    "FileChange",
    "NothingToRebaseError",
    "NothingToReconcileError",
    "NothingToSquashError",
    "ReconcileError",
    "WorkspaceError",
    "WorkspaceInfo",
    "WorkspaceStatus",
    "WorktreeEntry",
]
