"""Session data models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class SessionStatus(str, Enum):
    """Externally visible session status."""

    INITIALIZING = "initializing"
    RUNNING = "running"
    COMPLETED_UNVIEWED = "completed_unviewed"
    STOPPED = "stopped"
    ERROR = "error"


class PersistedStatus(str, Enum):
    """Status as stored in the session store."""

    PENDING = "pending"
    RUNNING = "running"
    STOPPED = "stopped"
    COMPLETED = "completed"
    FAILED = "failed"


class ToolType(str, Enum):
    CLAUDE = "claude"
    CODEX = "codex"
    NONE = "none"


class CommitMode(str, Enum):
    DISABLED = "disabled"
    CHECKPOINT = "checkpoint"
    AGENT_MANAGED = "agent_managed"


@dataclass(slots=True)
class Session:
    id: str
    name: str
    worktree_name: str
    worktree_path: str
    project_id: str
    status: PersistedStatus
    created_at: datetime
    updated_at: datetime
    prompt: str = ""
    base_commit: str | None = None
    base_branch: str | None = None
    folder_id: str | None = None
    tool_type: ToolType = ToolType.CLAUDE
    commit_mode: CommitMode = CommitMode.CHECKPOINT
    auto_commit: bool = True
    archived: bool = False
    status_message: str | None = None
    last_viewed_at: datetime | None = None

    def to_record(self) -> dict[str, Any]:
        record = asdict(self)
        record["status"] = self.status.value
        record["tool_type"] = self.tool_type.value
        record["commit_mode"] = self.commit_mode.value
        for key in ("created_at", "updated_at", "last_viewed_at"):
            value = record[key]
            record[key] = value.isoformat() if value is not None else None
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Session":
        data = dict(record)
        data["status"] = PersistedStatus(data["status"])
        data["tool_type"] = ToolType(data.get("tool_type") or ToolType.CLAUDE.value)
        data["commit_mode"] = CommitMode(data.get("commit_mode") or CommitMode.CHECKPOINT.value)
        for key in ("created_at", "updated_at", "last_viewed_at"):
            value = data.get(key)
            data[key] = datetime.fromisoformat(value) if isinstance(value, str) else value
        known = set(cls.__dataclass_fields__)
        return cls(**{key: value for key, value in data.items() if key in known})


@dataclass(slots=True)
class Folder:
    id: str
    name: str
    project_id: str
    created_at: datetime

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "project_id": self.project_id,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(slots=True)
class ExecutionDiff:
    """An immutable per-turn diff. ``sequence`` is strictly increasing per session."""

    session_id: str
    sequence: int
    git_diff: str
    files_changed: list[dict[str, Any]]
    additions: int
    deletions: int
    files_changed_count: int
    before_commit: str | None
    after_commit: str | None
    created_at: datetime

    def to_record(self) -> dict[str, Any]:
        record = asdict(self)
        record["created_at"] = self.created_at.isoformat()
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "ExecutionDiff":
        data = dict(record)
        data["created_at"] = datetime.fromisoformat(data["created_at"])
        return cls(**data)


@dataclass(slots=True)
class ConversationMessage:
    session_id: str
    role: str
    content: str
    created_at: datetime
    panel_id: str | None = None


@dataclass(slots=True)
class BuildResult:
    success: bool
    output: str
    commands: list[str] = field(default_factory=list)


__all__ = [
    "BuildResult",
    "CommitMode",
    "ConversationMessage",
    "ExecutionDiff",
    "Folder",
    "PersistedStatus",
    "Session",
    "SessionStatus",
    "ToolType",
]
