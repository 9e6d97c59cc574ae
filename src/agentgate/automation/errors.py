"""Exceptions raised by the automation queue, sessions, and workers."""

from __future__ import annotations


class AutomationError(Exception):
    """Base class for automation queue errors."""


class AdmissionError(AutomationError):
    """A request was rejected outright because a capacity limit was reached.

    Admission errors are retryable by the caller and are mapped by the
    gateway to a distinct status code.
    """


class QueueFullError(AdmissionError):
    def __init__(self, max_queue_size: int) -> None:
        super().__init__(f"Automation queue is full (max {max_queue_size})")
        self.max_queue_size = max_queue_size


class SessionCapacityError(AdmissionError):
    def __init__(self, max_sessions: int) -> None:
        super().__init__(f"Too many active sessions (max {max_sessions})")
        self.max_sessions = max_sessions


class WorkerNotReadyError(AutomationError):
    """execute() was called on a worker that is not in the READY state."""


class QueueShutdownError(AutomationError):
    def __init__(self) -> None:
        super().__init__("Queue shutting down")


class SessionClosedError(AutomationError):
    """The session was closed while the request was queued or running."""

    def __init__(self, session_id: str, reason: str = "closed") -> None:
        super().__init__(f"Session {session_id[:8]} {reason}")
        self.session_id = session_id
        self.reason = reason
