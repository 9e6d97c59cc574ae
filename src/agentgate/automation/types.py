"""Request, result, and status models for the automation queue.

Wire-facing models use camelCase aliases so the HTTP gateway can accept and
emit the same JSON shape its clients already speak, while Python code works
with snake_case attribute names.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WorkerState(str, Enum):
    """Worker lifecycle states.

    State transitions:
        INITIALIZING → READY ⇄ BUSY
              ↓
            ERROR          (start failure)
        any state → DISPOSED (terminal)
    """

    INITIALIZING = "initializing"
    READY = "ready"
    BUSY = "busy"
    ERROR = "error"
    DISPOSED = "disposed"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RunRequest(_CamelModel):
    """A prompt submitted for execution.

    Attributes:
        prompt: Text sent to the agent
        session_id: Session key; when set the request is session-affine
        user_id: Caller identity used for workspace isolation
        timeout_ms: Hard timeout override in milliseconds
        idle_timeout_ms: Accepted for client compatibility, not enforced
    """

    prompt: str
    session_id: str | None = None
    user_id: str | None = None
    timeout_ms: int | None = Field(default=None, gt=0)
    idle_timeout_ms: int | None = Field(default=None, gt=0)


class RunResult(_CamelModel):
    """Outcome of one execute call.

    Attributes:
        success: Mirrors the agent runtime's own error flag
        output: Agent text, error text, or empty on timeout
        duration_ms: Wall time spent inside execute
        timed_out: Whether the hard timeout fired
        timeout_type: Which timeout fired, if any
    """

    success: bool
    output: str
    duration_ms: int
    timed_out: bool = False
    timeout_type: Literal["idle", "hard"] | None = None


class WorkerStatus(_CamelModel):
    id: str
    state: WorkerState
    busy_since: float | None = None


class SessionSummary(_CamelModel):
    id: str
    last_activity: float
    processing: bool


class QueueStatus(_CamelModel):
    """Point-in-time view of the anonymous pool and backlog."""

    workers: list[WorkerStatus]
    queue_length: int
    max_queue_size: int
    total_processed: int
    total_errors: int


class WorkerCounts(_CamelModel):
    total: int
    ready: int
    busy: int
    error: int


class QueueOccupancy(_CamelModel):
    length: int
    max_size: int


class HealthSummary(_CamelModel):
    """Aggregated pool health.

    ``status`` is ``ok`` while at least one worker is ready or busy.
    ``workers.error`` counts both errored and disposed slots.
    """

    status: Literal["ok", "degraded"]
    workers: WorkerCounts
    queue: QueueOccupancy
    uptime: int
