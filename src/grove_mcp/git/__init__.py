"""Async git command execution."""

from .runner import CommandLog, GitCommandError, GitNotFoundError, GitResult, GitRunner

__all__ = [
    "CommandLog",
    "GitCommandError",
    "GitNotFoundError",
    "GitResult",
    "GitRunner",
]
