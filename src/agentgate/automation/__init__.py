"""Automation queue for Agentgate.

This module multiplexes run requests onto a small pool of agent workers:
single-use anonymous workers behind a bounded backlog, and dedicated
per-session workers with strict per-session ordering.
"""

from __future__ import annotations

from agentgate.automation.errors import (
    AdmissionError,
    AutomationError,
    QueueFullError,
    QueueShutdownError,
    SessionCapacityError,
    SessionClosedError,
    WorkerNotReadyError,
)
from agentgate.automation.queue import DispatchQueue, QueueItem, WorkerSlot
from agentgate.automation.session_manager import SessionEntry, SessionManager
from agentgate.automation.types import (
    HealthSummary,
    QueueStatus,
    RunRequest,
    RunResult,
    SessionSummary,
    WorkerState,
    WorkerStatus,
)
from agentgate.automation.worker import AutomationWorker, WorkerFactory, make_worker_factory

__all__ = [
    # Errors
    "AutomationError",
    "AdmissionError",
    "QueueFullError",
    "SessionCapacityError",
    "WorkerNotReadyError",
    "QueueShutdownError",
    "SessionClosedError",
    # Queue
    "DispatchQueue",
    "QueueItem",
    "WorkerSlot",
    # Sessions
    "SessionManager",
    "SessionEntry",
    # Worker
    "AutomationWorker",
    "WorkerFactory",
    "make_worker_factory",
    # Types
    "RunRequest",
    "RunResult",
    "WorkerState",
    "WorkerStatus",
    "QueueStatus",
    "HealthSummary",
    "SessionSummary",
]
