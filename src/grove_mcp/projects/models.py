"""Project models for Grove project definitions."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator


class ProjectConfig(BaseModel):
    """A repository that Grove creates sessions and workspaces in."""

    id: str = Field(..., description="Stable identifier for the project.")
    name: str = Field(..., description="Display name for the project.")
    path: str = Field(..., description="Absolute path to the project's git repository.")
    worktree_folder: str | None = Field(
        default=None,
        description="Folder (relative to the project or absolute) that holds workspaces.",
    )
    build_script: str | None = Field(
        default=None,
        description="Newline-separated commands run in a fresh workspace before the agent starts.",
    )
    run_script: str | None = Field(
        default=None,
        description="Newline-separated commands used to run the project from a workspace.",
    )
    main_branch: str | None = Field(
        default=None,
        description="Informational only; the checked-out branch of the project root is authoritative.",
    )
    active: bool = Field(default=False, description="Use this project when a job names none.")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", "name", "path")
    @classmethod
    def _require_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Project id, name and path must not be empty")
        return normalized

    @property
    def build_commands(self) -> list[str]:
        if not self.build_script:
            return []
        return [line for line in self.build_script.splitlines() if line.strip()]


__all__ = ["ProjectConfig"]
