"""Job payloads, one model per job kind, discriminated by ``kind``."""

from __future__ import annotations

import asyncio
import uuid
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from ..sessions.models import CommitMode, ToolType

CREATE_SESSION = "create-session"
SEND_INPUT = "send-input"
CONTINUE_SESSION = "continue-session"


class CreateSessionJob(BaseModel):
    kind: Literal["create-session"] = CREATE_SESSION
    prompt: str = ""
    name: str | None = Field(default=None, description="Explicit name template; generated from the prompt when absent.")
    project_id: str | None = None
    base_branch: str | None = None
    folder_id: str | None = None
    index: int | None = Field(default=None, ge=0, description="Position within a batch.")
    auto_commit: bool = True
    tool_type: ToolType = ToolType.CLAUDE
    commit_mode: CommitMode = CommitMode.CHECKPOINT


class SendInputJob(BaseModel):
    kind: Literal["send-input"] = SEND_INPUT
    session_id: str
    text: str
    panel_id: str | None = None


class ContinueSessionJob(BaseModel):
    kind: Literal["continue-session"] = CONTINUE_SESSION
    session_id: str
    prompt: str
    panel_id: str | None = None


Job = Annotated[Union[CreateSessionJob, SendInputJob, ContinueSessionJob], Field(discriminator="kind")]

JOB_ADAPTER: TypeAdapter[Job] = TypeAdapter(Job)


def parse_job(raw: str | bytes) -> Job:
    return JOB_ADAPTER.validate_json(raw)


class JobHandle:
    """Caller-side view of a submitted job."""

    def __init__(self, job: Job, *, job_id: str | None = None) -> None:
        self.id = job_id or uuid.uuid4().hex
        self.job = job
        self.state = "waiting"
        self._future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

    @property
    def kind(self) -> str:
        return self.job.kind

    @property
    def done(self) -> bool:
        return self._future.done()

    def set_active(self) -> None:
        self.state = "active"

    def set_result(self, result: Any) -> None:
        self.state = "completed"
        if not self._future.done():
            self._future.set_result(result)

    def set_exception(self, error: BaseException) -> None:
        self.state = "failed"
        if not self._future.done():
            self._future.set_exception(error)

    async def wait(self) -> Any:
        """Wait for the job to finish, re-raising its error on failure."""

        return await asyncio.shield(self._future)

    def to_dict(self) -> dict[str, Any]:
        return {"job_id": self.id, "kind": self.kind, "state": self.state}


__all__ = [
    "CONTINUE_SESSION",
    "CREATE_SESSION",
    "ContinueSessionJob",
    "CreateSessionJob",
    "JOB_ADAPTER",
    "Job",
    "JobHandle",
    "SEND_INPUT",
    "SendInputJob",
    "parse_job",
]
