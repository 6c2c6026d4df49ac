"""Async runner for the git CLI."""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from .utils import communicate_or_kill, sanitize_environment

logger = logging.getLogger(__name__)


class GitNotFoundError(RuntimeError):
    """Raised when the git executable cannot be located."""


class GitCommandError(RuntimeError):
    """Raised when a git command exits with a non-zero status."""

    def __init__(
        self,
        args: tuple[str, ...],
        *,
        cwd: Path,
        returncode: int,
        stdout: str,
        stderr: str,
    ) -> None:
        detail = (stderr or stdout).strip()
        message = f"git {' '.join(args)} failed with exit code {returncode} in {cwd}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.git_args = args
        self.cwd = cwd
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    @property
    def output(self) -> str:
        return self.stderr or self.stdout


@dataclass(slots=True)
class GitResult:
    """Holds the outcome of a git invocation."""

    args: tuple[str, ...]
    cwd: Path
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return self.stdout or self.stderr


@dataclass(slots=True)
class CommandLog:
    """Records the commands run by a multi-step git operation for diagnostics."""

    commands: list[str] = field(default_factory=list)
    last_output: str = ""

    def record(self, args: tuple[str, ...], cwd: Path) -> None:
        self.commands.append(f"git {' '.join(args)} (in {cwd})")

    def capture(self, result: GitResult) -> None:
        self.last_output = result.output


class GitRunner:
    """Execute git commands asynchronously."""

    def __init__(self, executable: Path | None = None) -> None:
        self._executable_path = self._resolve_executable(executable)

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise GitNotFoundError(f"git executable not found at {candidate}")

        binary = shutil.which("git")
        if binary is None:
            raise GitNotFoundError("git executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def version(self) -> GitResult:
        return await self.run("--version", cwd=Path.cwd())

    async def run(
        self,
        *args: str,
        cwd: Path | str,
        check: bool = True,
        log: CommandLog | None = None,
    ) -> GitResult:
        """Run ``git <args>`` in ``cwd``.

        When ``log`` is given the command and its output are recorded on it so callers
        can attach the full command history to any error they raise.
        """

        workdir = Path(cwd)
        if log is not None:
            log.record(args, workdir)
        process = await asyncio.create_subprocess_exec(
            str(self._executable_path),
            *args,
            cwd=str(workdir),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment(),
        )
        stdout_bytes, stderr_bytes = await communicate_or_kill(process)
        result = GitResult(
            args=tuple(args),
            cwd=workdir,
            returncode=process.returncode,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
        )
        if log is not None:
            log.capture(result)
        logger.debug(
            "git command finished",
            extra={"git_args": list(args), "cwd": str(workdir), "returncode": result.returncode},
        )
        if check and not result.ok:
            raise GitCommandError(
                result.args,
                cwd=workdir,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result

    async def output(self, *args: str, cwd: Path | str, log: CommandLog | None = None) -> str:
        """Run a command that must succeed and return its stripped stdout."""

        result = await self.run(*args, cwd=cwd, log=log)
        return result.stdout.strip()

    async def succeeds(self, *args: str, cwd: Path | str) -> bool:
        result = await self.run(*args, cwd=cwd, check=False)
        return result.ok


__all__ = ["CommandLog", "GitCommandError", "GitNotFoundError", "GitResult", "GitRunner"]
