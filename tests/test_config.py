from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from grove_mcp.config import GroveSettings, default_session_concurrency


def test_defaults(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    settings = GroveSettings()

    assert settings.log_level == "INFO"
    assert settings.project_paths == (Path("projects"),)
    assert settings.redis_url is None
    assert settings.input_concurrency == 10
    assert settings.continue_concurrency == 10
    assert settings.panel_wait_attempts == 15
    assert settings.panel_wait_interval == pytest.approx(0.2)
    assert settings.worktree_folder == "worktrees"


def test_session_concurrency_depends_on_platform() -> None:
    assert default_session_concurrency("Linux") == 1
    assert default_session_concurrency("Darwin") == 5
    assert default_session_concurrency("Windows") == 5


def test_session_concurrency_override(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GROVE_SESSION_CONCURRENCY", "3")

    assert GroveSettings().effective_session_concurrency == 3


def test_project_paths_split_on_path_separator(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GROVE_PROJECT_PATHS", os.pathsep.join(["one", "two"]))

    assert GroveSettings().project_paths == (Path("one"), Path("two"))


def test_log_level_is_normalized(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GROVE_LOG_LEVEL", " debug ")

    assert GroveSettings().log_level == "DEBUG"


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("GROVE_LOG_LEVEL", "chatty"),
        ("GROVE_INPUT_CONCURRENCY", "0"),
        ("GROVE_PANEL_WAIT_ATTEMPTS", "0"),
        ("GROVE_REBASE_TIMEOUT", "-1"),
    ],
)
def test_invalid_values_are_rejected(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, name: str, value: str
) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        GroveSettings()
