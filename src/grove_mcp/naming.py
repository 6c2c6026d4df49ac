"""Session naming: prompt-derived names and three-way uniqueness resolution."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable

from .sessions.store import SessionStore
from .workspaces import WorkspaceManager

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 30
DEFAULT_SESSION_NAME = "New Task"
DEFAULT_BATCH_NAME = "multi-session"

Suggester = Callable[[str], Awaitable[str | None]]

_SESSION_NAME_DISALLOWED = re.compile(r"[^A-Za-z0-9 \-]+")
_WORKTREE_NAME_DISALLOWED = re.compile(r"[^a-z0-9]+")


def sanitize_session_name(name: str) -> str:
    cleaned = _SESSION_NAME_DISALLOWED.sub("", name)
    cleaned = " ".join(cleaned.split())
    return cleaned[:MAX_NAME_LENGTH].strip()


def to_worktree_name(name: str) -> str:
    """Lower-case kebab-case form of ``name`` suitable for a branch and directory."""

    slug = _WORKTREE_NAME_DISALLOWED.sub("-", name.lower()).strip("-")
    return slug[:MAX_NAME_LENGTH].strip("-") or "session"


def fallback_session_name(prompt: str) -> str:
    words = [word for word in re.findall(r"[A-Za-z0-9]+", prompt) if len(word) > 2][:3]
    if not words:
        return DEFAULT_SESSION_NAME
    return " ".join(word.capitalize() for word in words)


def names_from_template(template: str) -> tuple[str, str]:
    """Split a caller supplied name into (display name, workspace name)."""

    template = " ".join(template.split())
    return template, to_worktree_name(template)


class SessionNamer:
    """Derive a short session title from a prompt.

    The optional suggester is an external naming service. Its absence, failure, timeout
    or empty answer falls back to the first three meaningful words of the prompt.
    """

    def __init__(self, suggester: Suggester | None = None, *, timeout: float = 10.0) -> None:
        self._suggester = suggester
        self._timeout = timeout

    async def generate_session_name(self, prompt: str) -> str:
        if self._suggester is not None:
            try:
                suggestion = await asyncio.wait_for(self._suggester(prompt), self._timeout)
            except asyncio.TimeoutError:
                logger.warning("Name suggester timed out", extra={"timeout": self._timeout})
                suggestion = None
            except Exception as exc:
                logger.warning("Name suggester failed", extra={"error": str(exc)})
                suggestion = None
            if suggestion:
                name = sanitize_session_name(suggestion)
                if name:
                    return name
        return sanitize_session_name(fallback_session_name(prompt)) or DEFAULT_SESSION_NAME

    async def generate_worktree_name(self, prompt: str) -> str:
        return to_worktree_name(await self.generate_session_name(prompt))

    async def derive_names(self, prompt: str, template: str | None = None) -> tuple[str, str]:
        if template and template.strip():
            return names_from_template(template)
        display = await self.generate_session_name(prompt)
        return display, to_worktree_name(display)


@dataclass(slots=True)
class ResolvedNames:
    display_name: str
    worktree_name: str
    worktree_path: Path


class NameResolver:
    """Pick a (display, workspace) name pair free in the store and on disk.

    Callers must hold the session-creation lock from resolution until the session
    row is persisted.
    """

    def __init__(self, store: SessionStore, workspaces: WorkspaceManager) -> None:
        self._store = store
        self._workspaces = workspaces

    def _is_taken(self, display: str, worktree: str, path: Path) -> bool:
        return (
            self._store.session_name_exists(display)
            or self._store.worktree_name_exists(worktree)
            or path.exists()
        )

    def resolve(
        self,
        base_display: str,
        base_worktree: str,
        project_path: Path | str,
        *,
        folder: str | None = None,
        index: int | None = None,
    ) -> ResolvedNames:
        display, worktree = base_display, base_worktree
        if index is not None:
            display = f"{base_display} {index + 1}"
            worktree = f"{base_worktree}-{index + 1}"

        candidate_display, candidate_worktree = display, worktree
        counter = 0
        while True:
            path = self._workspaces.workspace_path(project_path, candidate_worktree, folder)
            if not self._is_taken(candidate_display, candidate_worktree, path):
                break
            counter += 1
            candidate_display = f"{display} {counter}"
            candidate_worktree = f"{worktree}-{counter}"

        if counter:
            logger.debug(
                "Disambiguated session name",
                extra={"requested": worktree, "resolved": candidate_worktree},
            )
        return ResolvedNames(candidate_display, candidate_worktree, path)


__all__ = [
    "DEFAULT_BATCH_NAME",
    "NameResolver",
    "ResolvedNames",
    "SessionNamer",
    "fallback_session_name",
    "names_from_template",
    "sanitize_session_name",
    "to_worktree_name",
]
