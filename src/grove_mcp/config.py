"""Configuration management for Grove MCP."""

from __future__ import annotations

import os
import platform
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def default_session_concurrency(system: str | None = None) -> int:
    """Return the session-creation pool width for the host platform.

    Linux has stricter pseudo-terminal and file-descriptor limits, so session
    creation is serialized there.
    """

    name = (system or platform.system()).lower()
    return 1 if name == "linux" else 5


class GroveSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    log_level: str = Field(default="INFO", validation_alias="GROVE_LOG_LEVEL")
    project_paths: tuple[Path, ...] = Field(
        default=(Path("projects"),), validation_alias="GROVE_PROJECT_PATHS"
    )
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    redis_url: str | None = Field(default=None, validation_alias="GROVE_REDIS_URL")
    session_concurrency: int | None = Field(
        default=None, validation_alias="GROVE_SESSION_CONCURRENCY"
    )
    input_concurrency: int = Field(default=10, validation_alias="GROVE_INPUT_CONCURRENCY")
    continue_concurrency: int = Field(default=10, validation_alias="GROVE_CONTINUE_CONCURRENCY")
    panel_wait_attempts: int = Field(default=15, validation_alias="GROVE_PANEL_WAIT_ATTEMPTS")
    panel_wait_interval: float = Field(default=0.2, validation_alias="GROVE_PANEL_WAIT_INTERVAL")
    worktree_folder: str = Field(default="worktrees", validation_alias="GROVE_WORKTREE_FOLDER")
    rebase_timeout: float = Field(default=120.0, validation_alias="GROVE_REBASE_TIMEOUT")
    main_branch_timeout: float = Field(default=30.0, validation_alias="GROVE_MAIN_BRANCH_TIMEOUT")
    post_rebase_timeout: float = Field(default=10.0, validation_alias="GROVE_POST_REBASE_TIMEOUT")
    git_path: str | None = Field(default=None, validation_alias="GROVE_GIT_PATH")
    claude_path: str | None = Field(default=None, validation_alias="GROVE_CLAUDE_PATH")
    codex_path: str | None = Field(default=None, validation_alias="GROVE_CODEX_PATH")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "GROVE_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("project_paths", mode="before")
    @classmethod
    def _parse_project_paths(cls, value):
        if value is None or value == "":
            return (Path("projects"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("projects"),)
        raise TypeError("GROVE_PROJECT_PATHS must be a list of paths or a path-separated string")

    @field_validator("session_concurrency", "input_concurrency", "continue_concurrency")
    @classmethod
    def _validate_concurrency(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("Worker pool concurrency must be >= 1")
        return value

    @field_validator("panel_wait_attempts")
    @classmethod
    def _validate_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("GROVE_PANEL_WAIT_ATTEMPTS must be >= 1")
        return value

    @field_validator(
        "panel_wait_interval", "rebase_timeout", "main_branch_timeout", "post_rebase_timeout"
    )
    @classmethod
    def _validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Intervals and timeouts must be > 0")
        return value

    @property
    def effective_session_concurrency(self) -> int:
        return self.session_concurrency or default_session_concurrency()


@lru_cache(maxsize=1)
def get_settings() -> GroveSettings:
    """Return cached settings instance."""

    settings = GroveSettings()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    settings.project_paths = tuple(path.expanduser().resolve() for path in settings.project_paths)
    return settings


__all__ = ["GroveSettings", "default_session_concurrency", "get_settings"]
