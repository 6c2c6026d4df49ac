"""Project loading utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import yaml
from pydantic import ValidationError

from .models import ProjectConfig


class ProjectLoadError(RuntimeError):
    """Raised when one or more project files cannot be parsed."""


class ProjectNotFoundError(ProjectLoadError):
    """Raised when a job targets a project that is not configured."""


class ProjectLoader:
    """Loads project definitions from YAML files on disk."""

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]

    @property
    def search_paths(self) -> list[Path]:
        """Return the normalized search paths."""

        return list(self._search_paths)

    def load_all(self) -> dict[str, ProjectConfig]:
        """Load projects from all configured search paths.

        Later search paths override earlier ones when project ids collide.
        """

        if not self._search_paths:
            return {}

        projects: dict[str, ProjectConfig] = {}
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")):
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:  # pragma: no cover - library type
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue

                if document is None:
                    continue

                try:
                    project = ProjectConfig.model_validate(document)
                except ValidationError as exc:
                    errors.append(f"Project validation error in {path}: {exc}")
                    continue

                projects[project.id] = project

        if errors:
            raise ProjectLoadError("; ".join(errors))

        return projects

    def get(self, project_id: str) -> ProjectConfig:
        """Return a single project by id."""

        projects = self.load_all()
        try:
            return projects[project_id]
        except KeyError as exc:
            raise ProjectNotFoundError(f"Project '{project_id}' not found") from exc

    def active(self) -> ProjectConfig | None:
        """Return the project flagged active, if any."""

        for project in self.load_all().values():
            if project.active:
                return project
        return None

    def resolve(self, project_id: str | None) -> ProjectConfig:
        """Return the named project, or the active one when no id is given."""

        if project_id:
            return self.get(project_id)
        project = self.active()
        if project is None:
            raise ProjectNotFoundError("No project specified and no active project selected")
        return project


__all__ = ["ProjectConfig", "ProjectLoadError", "ProjectLoader", "ProjectNotFoundError"]
