"""Request, response and push-event models for process runs."""

import os
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class RunCommand(str, Enum):
    """Push event kinds emitted during a run."""

    RUN = "run"
    RUN_DONE = "run-done"


class RunRequest(BaseModel):
    """Body of POST /run."""

    sid: str = Field(..., min_length=1, description="Session identifier")
    executable: str = Field(..., min_length=1, description="Absolute executable path")

    @field_validator("executable")
    @classmethod
    def validate_absolute(cls, v):
        """Only absolute paths are accepted; the working dir is derived from it."""
        if not os.path.isabs(v):
            raise ValueError("executable must be an absolute path")
        return v


class StopRequest(BaseModel):
    """Body of POST /stop."""

    sid: str = Field(..., min_length=1, description="Session identifier")
    pid: int = Field(..., description="Process id returned by the run event")


class SuccResponse(BaseModel):
    """Plain success flag returned by run/stop."""

    succ: bool = True


class RunEvent(BaseModel):
    """Payload pushed to a session's output channel."""

    cmd: RunCommand
    output: str = ""
    pid: Optional[int] = None

    def to_wire(self) -> dict:
        """JSON-ready dict; pid is omitted when unknown."""
        data = {"cmd": self.cmd.value, "output": self.output}
        if self.pid is not None:
            data["pid"] = self.pid
        return data


class SessionCreate(BaseModel):
    """Body of POST /sessions."""

    username: str = Field(default="anonymous", min_length=1, max_length=64)


class SessionCreateResponse(BaseModel):
    succ: bool = True
    sid: str


class SessionInfoResponse(BaseModel):
    succ: bool = True
    sid: str
    username: str
    processes: List[int] = Field(default_factory=list)
    output_attached: bool = False
