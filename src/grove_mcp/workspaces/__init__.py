"""Workspace (git worktree) management."""

from .diffs import GitDiffCapture, combine_diffs
from .manager import WorkspaceManager
from .models import (
    BaseBranchNotFoundError,
    BranchInfo,
    ConflictReport,
    ConflictsDetectedError,
    DetachedHeadError,
    DiffResult,
    DiffStats,
    FileChange,
    NothingToRebaseError,
    NothingToReconcileError,
    NothingToSquashError,
    ReconcileError,
    WorkspaceError,
    WorkspaceInUseError,
    WorkspaceInfo,
    WorkspaceStatus,
    WorktreeEntry,
)

__all__ = [
    "BaseBranchNotFoundError",
    "BranchInfo",
    "ConflictReport",
    "ConflictsDetectedError",
    "DetachedHeadError",
    "DiffResult",
    "DiffStats",
    "FileChange",
    "GitDiffCapture",
    "NothingToRebaseError",
    "NothingToReconcileError",
    "NothingToSquashError",
    "ReconcileError",
    "WorkspaceError",
    "WorkspaceInUseError",
    "WorkspaceInfo",
    "WorkspaceManager",
    "WorkspaceStatus",
    "WorktreeEntry",
    "combine_diffs",
]
