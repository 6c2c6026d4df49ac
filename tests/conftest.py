from __future__ import annotations

import subprocess
from pathlib import Path

import pytest
import yaml

from grove_mcp.git import GitRunner
from grove_mcp.locks import MutexRegistry
from grove_mcp.workspaces import WorkspaceManager


@pytest.fixture(autouse=True)
def git_identity(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Isolate git from the user's configuration and give commits an author."""

    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(tmp_path / "gitconfig"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CONFIG_COUNT", "1")
    monkeypatch.setenv("GIT_CONFIG_KEY_0", "init.defaultBranch")
    monkeypatch.setenv("GIT_CONFIG_VALUE_0", "main")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Grove Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "grove@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Grove Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "grove@example.com")


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=str(cwd),
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


def commit_file(cwd: Path, name: str, content: str, message: str) -> str:
    path = cwd / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    git(cwd, "add", name)
    git(cwd, "commit", "-m", message)
    return git(cwd, "rev-parse", "HEAD")


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    """A repository on ``main`` with one commit."""

    root = tmp_path / "project"
    root.mkdir()
    git(root, "init")
    commit_file(root, "README.md", "hello\n", "Initial commit")
    return root


@pytest.fixture
def manager() -> WorkspaceManager:
    return WorkspaceManager(GitRunner(), MutexRegistry())


def write_project(directory: Path, project_id: str, path: Path, **extra: object) -> Path:
    """Write a project definition YAML into ``directory``."""

    directory.mkdir(parents=True, exist_ok=True)
    document = {"id": project_id, "name": project_id.title(), "path": str(path), **extra}
    target = directory / f"{project_id}.yml"
    target.write_text(yaml.safe_dump(document), encoding="utf-8")
    return target
