"""Agent start/continue/input capability and its CLI-backed implementation."""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Protocol, Sequence

from ..git.utils import communicate_or_kill, sanitize_environment
from ..sessions.execution import ExecutionTracker
from ..sessions.manager import SessionManager
from ..sessions.models import ConversationMessage, PersistedStatus, Session, ToolType
from .panels import Panel

logger = logging.getLogger(__name__)


class AgentError(RuntimeError):
    """Base class for agent controller errors."""


class AgentUnavailableError(AgentError):
    """Raised when the CLI for a tool type cannot be located."""


class AgentStartError(AgentError):
    """Raised when the agent process could not be launched."""


class AgentController(Protocol):
    """Agent operations in both panel-scoped and session-scoped form.

    Callers pick the panel-scoped variant when a panel is registered for the
    session and the session-scoped variant otherwise.
    """

    async def start_panel(self, panel: Panel, session: Session, prompt: str) -> None:
        ...

    async def continue_panel(self, panel: Panel, session: Session, prompt: str) -> None:
        ...

    async def send_input_to_panel(self, panel: Panel, session: Session, text: str) -> None:
        ...

    async def start_session(self, session: Session, prompt: str) -> None:
        ...

    async def continue_session(self, session: Session, prompt: str) -> None:
        ...

    async def send_input(self, session: Session, text: str) -> None:
        ...

    def panel_conversation(self, panel_id: str) -> list[ConversationMessage]:
        ...

    def session_conversation(self, session_id: str) -> list[ConversationMessage]:
        ...

    async def stop(self, session_id: str) -> bool:
        """Stop the session's running turn, returning whether one was running."""
        ...


@dataclass(slots=True)
class AgentRunResult:
    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


_DEFAULT_BINARIES = {ToolType.CLAUDE: "claude", ToolType.CODEX: "codex"}


class CliAgentController:
    """Launch the agent CLI non-interactively in the session workspace.

    Each prompt is one turn: the process runs in the background, its output is
    stored as a conversation message, and an execution diff is captured when it
    exits.
    """

    def __init__(
        self,
        sessions: SessionManager,
        tracker: ExecutionTracker,
        *,
        executables: Mapping[ToolType, Path | str | None] | None = None,
    ) -> None:
        self._sessions = sessions
        self._tracker = tracker
        self._explicit = dict(executables or {})
        self._runs: dict[str, asyncio.Task[AgentRunResult]] = {}
        self._turn_locks: dict[str, asyncio.Lock] = {}
        self._processes: dict[str, asyncio.subprocess.Process] = {}

    def _resolve_executable(self, tool_type: ToolType) -> Path:
        if tool_type is ToolType.NONE:
            raise AgentUnavailableError("Session has no agent tool configured")
        explicit = self._explicit.get(tool_type)
        if explicit:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise AgentUnavailableError(f"{tool_type.value} executable not found at {candidate}")
        binary = shutil.which(_DEFAULT_BINARIES[tool_type])
        if binary is None:
            raise AgentUnavailableError(f"{tool_type.value} CLI executable not found on PATH")
        return Path(binary)

    @staticmethod
    def build_args(tool_type: ToolType, prompt: str, *, resume: bool) -> list[str]:
        if tool_type is ToolType.CODEX:
            return ["exec", "resume", "--last", prompt] if resume else ["exec", prompt]
        return ["--continue", "-p", prompt] if resume else ["-p", prompt]

    def is_running(self, session_id: str) -> bool:
        task = self._runs.get(session_id)
        return task is not None and not task.done()

    async def wait_idle(self, session_id: str) -> AgentRunResult | None:
        task = self._runs.get(session_id)
        if task is None:
            return None
        return await task

    async def _launch(self, session: Session, prompt: str, *, panel_id: str | None, resume: bool) -> None:
        # Held until the new turn is registered in _runs; later input queues behind it.
        lock = self._turn_locks.setdefault(session.id, asyncio.Lock())
        async with lock:
            while self.is_running(session.id):
                await asyncio.wait({self._runs[session.id]})
            await self._start_turn(session, prompt, panel_id=panel_id, resume=resume)

    async def _start_turn(self, session: Session, prompt: str, *, panel_id: str | None, resume: bool) -> None:
        executable = self._resolve_executable(session.tool_type)
        args = [str(executable), *self.build_args(session.tool_type, prompt, resume=resume)]
        self._sessions.store.add_conversation_message(session.id, "user", prompt, panel_id=panel_id)
        await self._tracker.start_execution(session.id)
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=session.worktree_path,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=sanitize_environment(),
            )
        except OSError as exc:
            self._tracker.cancel_execution(session.id)
            raise AgentStartError(f"Failed to start {session.tool_type.value}: {exc}") from exc

        self._processes[session.id] = process
        self._sessions.update_status(session.id, PersistedStatus.RUNNING, message=None)
        self._runs[session.id] = asyncio.create_task(
            self._wait(session, process, tuple(args), prompt, panel_id)
        )
        logger.info(
            "Agent started",
            extra={"session_id": session.id, "tool": session.tool_type.value, "panel_id": panel_id},
        )

    async def _wait(
        self,
        session: Session,
        process: asyncio.subprocess.Process,
        args: Sequence[str],
        prompt: str,
        panel_id: str | None,
    ) -> AgentRunResult:
        try:
            stdout_bytes, stderr_bytes = await communicate_or_kill(process)
        except asyncio.CancelledError:
            self._tracker.cancel_execution(session.id)
            raise
        result = AgentRunResult(
            args=tuple(args),
            returncode=process.returncode,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
        )
        if result.stdout:
            self._sessions.store.add_conversation_message(
                session.id, "assistant", result.stdout, panel_id=panel_id
            )
        try:
            await self._tracker.end_execution(session.id, prompt)
        except Exception:
            logger.exception("Failed to capture execution diff", extra={"session_id": session.id})

        if result.ok:
            self._sessions.update_status(session.id, PersistedStatus.STOPPED, message=None)
        else:
            self._sessions.update_status(
                session.id,
                PersistedStatus.FAILED,
                message=(result.stderr.strip() or f"Agent exited with code {result.returncode}")[:500],
            )
        self._processes.pop(session.id, None)
        logger.info("Agent finished", extra={"session_id": session.id, "returncode": result.returncode})
        return result

    async def start_panel(self, panel: Panel, session: Session, prompt: str) -> None:
        await self._launch(session, prompt, panel_id=panel.id, resume=False)

    async def continue_panel(self, panel: Panel, session: Session, prompt: str) -> None:
        await self._launch(session, prompt, panel_id=panel.id, resume=True)

    async def send_input_to_panel(self, panel: Panel, session: Session, text: str) -> None:
        await self._launch(session, text, panel_id=panel.id, resume=True)

    async def start_session(self, session: Session, prompt: str) -> None:
        await self._launch(session, prompt, panel_id=None, resume=False)

    async def continue_session(self, session: Session, prompt: str) -> None:
        await self._launch(session, prompt, panel_id=None, resume=True)

    async def send_input(self, session: Session, text: str) -> None:
        await self._launch(session, text, panel_id=None, resume=True)

    def panel_conversation(self, panel_id: str) -> list[ConversationMessage]:
        return self._sessions.store.get_panel_conversation_messages(panel_id)

    def session_conversation(self, session_id: str) -> list[ConversationMessage]:
        return self._sessions.store.get_conversation_messages(session_id)

    async def stop(self, session_id: str) -> bool:
        task = self._runs.get(session_id)
        if task is None or task.done():
            return False
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        # A task cancelled before its first step never reached communicate_or_kill.
        process = self._processes.pop(session_id, None)
        if process is not None and process.returncode is None:
            process.kill()
            await process.wait()
        self._tracker.cancel_execution(session_id)
        self._sessions.update_status(session_id, PersistedStatus.STOPPED, message="Agent stopped")
        logger.info("Agent stopped", extra={"session_id": session_id})
        return True


__all__ = [
    "AgentController",
    "AgentError",
    "AgentRunResult",
    "AgentStartError",
    "AgentUnavailableError",
    "CliAgentController",
]
