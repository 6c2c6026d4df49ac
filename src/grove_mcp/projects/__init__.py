"""Project configuration models and loader exports."""

from .loader import ProjectLoadError, ProjectLoader, ProjectNotFoundError
from .models import ProjectConfig

__all__ = [
    "ProjectConfig",
    "ProjectLoadError",
    "ProjectLoader",
    "ProjectNotFoundError",
]
