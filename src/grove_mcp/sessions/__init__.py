"""Session records, status derivation and lifecycle management."""

from .events import (
    FOLDER_CREATED,
    SESSION_CREATED,
    SESSION_DELETED,
    SESSION_UPDATED,
    EventBus,
    NotificationSink,
)
from .execution import ExecutionContext, ExecutionTracker, checkpoint_message
from .manager import SessionManager, session_payload
from .models import (
    BuildResult,
    CommitMode,
    ConversationMessage,
    ExecutionDiff,
    Folder,
    PersistedStatus,
    Session,
    SessionStatus,
    ToolType,
)
from .status import ACTIVE_STATUSES, derive_status, session_status, to_persisted
from .store import MemorySessionStore, SessionNotFoundError, SessionStore

__all__ = [
    "ACTIVE_STATUSES",
    "BuildResult",
    "CommitMode",
    "ConversationMessage",
    "EventBus",
    "ExecutionContext",
    "ExecutionDiff",
    "ExecutionTracker",
    "FOLDER_CREATED",
    "Folder",
    "MemorySessionStore",
    "NotificationSink",
    "PersistedStatus",
    "SESSION_CREATED",
    "SESSION_DELETED",
    "SESSION_UPDATED",
    "Session",
    "SessionManager",
    "SessionNotFoundError",
    "SessionStatus",
    "SessionStore",
    "ToolType",
    "checkpoint_message",
    "derive_status",
    "session_payload",
    "session_status",
    "to_persisted",
]
