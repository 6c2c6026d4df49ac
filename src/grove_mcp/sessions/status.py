"""Mapping between stored and externally visible session status."""

from __future__ import annotations

from datetime import datetime

from .models import PersistedStatus, Session, SessionStatus

ACTIVE_STATUSES = frozenset({PersistedStatus.PENDING, PersistedStatus.RUNNING})


def derive_status(
    stored: PersistedStatus | str,
    last_viewed_at: datetime | None,
    updated_at: datetime | None,
) -> SessionStatus:
    """Compute the visible status, including the completed-but-unviewed overlay."""

    status = PersistedStatus(stored)
    if status is PersistedStatus.PENDING:
        return SessionStatus.INITIALIZING
    if status is PersistedStatus.RUNNING:
        return SessionStatus.RUNNING
    if status is PersistedStatus.FAILED:
        return SessionStatus.ERROR
    if last_viewed_at is None or (updated_at is not None and last_viewed_at < updated_at):
        return SessionStatus.COMPLETED_UNVIEWED
    return SessionStatus.STOPPED


def session_status(session: Session) -> SessionStatus:
    return derive_status(session.status, session.last_viewed_at, session.updated_at)


def to_persisted(status: SessionStatus | str) -> PersistedStatus:
    """Map a visible status back to the value stored for it."""

    visible = SessionStatus(status)
    if visible is SessionStatus.INITIALIZING:
        return PersistedStatus.PENDING
    if visible is SessionStatus.RUNNING:
        return PersistedStatus.RUNNING
    if visible is SessionStatus.ERROR:
        return PersistedStatus.FAILED
    return PersistedStatus.STOPPED


__all__ = ["ACTIVE_STATUSES", "derive_status", "session_status", "to_persisted"]
