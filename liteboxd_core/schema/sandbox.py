from enum import StrEnum
from datetime import datetime, timezone
from pydantic import BaseModel, Field

# Stand-in for "no timestamp" when a pod's created-at annotation is unusable.
ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


class SandboxStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNKNOWN = "unknown"


class Sandbox(BaseModel):
    """Logical sandbox, derived from its backing pod on every read."""

    id: str
    image: str
    cpu: str = ""
    memory: str = ""
    ttl: int = 0
    env: dict[str, str] = Field(default_factory=dict)
    status: SandboxStatus = SandboxStatus.UNKNOWN
    created_at: datetime = ZERO_TIME
    expires_at: datetime = ZERO_TIME


class CreateSandboxRequest(BaseModel):
    image: str = Field(..., min_length=1)
    cpu: str = ""
    memory: str = ""
    ttl: int = 0  # <= 0 picks the configured default
    env: dict[str, str] = Field(default_factory=dict)


class ExecRequest(BaseModel):
    command: list[str] = Field(..., min_length=1)
    timeout: int = 0  # seconds, <= 0 picks the configured default


class ExecResult(BaseModel):
    exit_code: int
    stdout: str
    stderr: str


class SandboxListResponse(BaseModel):
    items: list[Sandbox]


class LogsResponse(BaseModel):
    logs: str = ""
    events: list[str] = Field(default_factory=list)
