"""Session-affine execution on dedicated, reused workers.

Each session id maps to one worker that keeps its agent conversation for
the lifetime of the session. Requests on the same session are executed
strictly one at a time in submission order; different sessions run
independently. Sessions idle for longer than the configured threshold are
collected by a background sweep.

Closing, collecting, or shutting down a session rejects every request still
waiting on it with ``SessionClosedError``, including the one in flight.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field

import structlog

from agentgate.automation.errors import SessionCapacityError, SessionClosedError
from agentgate.automation.types import RunRequest, RunResult, SessionSummary
from agentgate.automation.worker import AutomationWorker, WorkerFactory

logger = structlog.get_logger(__name__)

DEFAULT_MAX_SESSIONS = 20
DEFAULT_IDLE_TIMEOUT_SECONDS = 30 * 60
DEFAULT_GC_INTERVAL_SECONDS = 60.0


@dataclass
class PendingItem:
    request: RunRequest
    future: asyncio.Future[RunResult]


@dataclass
class SessionEntry:
    """Bookkeeping for one open session.

    Attributes:
        session_id: Caller-supplied session key
        user_id: Identity the worker's workspace was derived from
        worker: Dedicated worker for this session
        start_task: In-flight (or finished) worker start
        last_activity: Epoch seconds of the last submission or completion
        pending: Requests waiting for their turn, oldest first
        processing: True while a drain loop owns the worker
        current: Request currently executing, if any
        drain_task: Task running the drain loop, if any
    """

    session_id: str
    user_id: str | None
    worker: AutomationWorker
    start_task: asyncio.Task[None]
    last_activity: float = field(default_factory=time.time)
    pending: deque[PendingItem] = field(default_factory=deque)
    processing: bool = False
    current: PendingItem | None = None
    drain_task: asyncio.Task[None] | None = None


def _settle_error(future: asyncio.Future[RunResult], error: BaseException) -> None:
    if not future.done():
        future.set_exception(error)


class SessionManager:
    """Maps session ids to dedicated workers and serializes their calls.

    Attributes:
        max_sessions: Cap on concurrently open sessions
        idle_timeout_seconds: Inactivity after which a session is collected
        gc_interval_seconds: Seconds between idle sweeps
    """

    def __init__(
        self,
        worker_factory: WorkerFactory,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        idle_timeout_seconds: float = DEFAULT_IDLE_TIMEOUT_SECONDS,
        gc_interval_seconds: float = DEFAULT_GC_INTERVAL_SECONDS,
    ) -> None:
        self._worker_factory = worker_factory
        self.max_sessions = max_sessions
        self.idle_timeout_seconds = idle_timeout_seconds
        self.gc_interval_seconds = gc_interval_seconds
        self._sessions: dict[str, SessionEntry] = {}
        self._running = False
        self._gc_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[None]] = set()
        self._logger = logger.bind(component="SessionManager")

    async def start(self) -> None:
        """Start the idle collection loop. No-op if already running."""
        if self._running:
            return
        self._running = True
        self._gc_task = asyncio.create_task(self._gc_loop(), name="session-gc")
        self._logger.info("session_gc_started", interval_seconds=self.gc_interval_seconds)

    async def run(
        self, session_id: str, request: RunRequest, user_id: str | None = None
    ) -> RunResult:
        """Execute a request on the session's worker, after earlier ones.

        Creates the session (and starts its worker) on first use.

        Raises:
            SessionCapacityError: If a new session would exceed max_sessions
            SessionClosedError: If the session is closed before completion
            Exception: The worker's start error, if its startup failed
        """
        entry = self._sessions.get(session_id)

        if entry is None:
            if len(self._sessions) >= self.max_sessions:
                self._logger.warning(
                    "session_capacity_reached",
                    session_id=session_id[:8],
                    max_sessions=self.max_sessions,
                )
                raise SessionCapacityError(self.max_sessions)
            entry = self._open(session_id, user_id)

        entry.last_activity = time.time()
        future: asyncio.Future[RunResult] = asyncio.get_running_loop().create_future()
        entry.pending.append(PendingItem(request=request, future=future))

        if self._started_ok(entry) and self._sessions.get(session_id) is entry:
            self._schedule_drain(entry)

        return await future

    def _open(self, session_id: str, user_id: str | None) -> SessionEntry:
        worker = self._worker_factory(f"ses-{session_id[:8]}", user_id)
        start_task = asyncio.create_task(worker.start(), name=f"session-start-{session_id[:8]}")
        entry = SessionEntry(
            session_id=session_id,
            user_id=user_id,
            worker=worker,
            start_task=start_task,
        )
        self._sessions[session_id] = entry
        start_task.add_done_callback(lambda task: self._on_started(entry, task))
        self._logger.info("session_opened", session_id=session_id[:8], user_id=user_id)
        return entry

    @staticmethod
    def _started_ok(entry: SessionEntry) -> bool:
        task = entry.start_task
        return task.done() and not task.cancelled() and task.exception() is None

    def _on_started(self, entry: SessionEntry, task: asyncio.Task[None]) -> None:
        error: BaseException | None
        if task.cancelled():
            error = SessionClosedError(entry.session_id)
        else:
            error = task.exception()

        if self._sessions.get(entry.session_id) is not entry:
            return
        if error is None:
            self._schedule_drain(entry)
            return

        self._logger.error(
            "session_start_failed",
            session_id=entry.session_id[:8],
            error=str(error),
            rejected=len(entry.pending),
        )
        while entry.pending:
            _settle_error(entry.pending.popleft().future, error)
        del self._sessions[entry.session_id]
        self._dispose_later(entry.worker)

    def _dispose_later(self, worker: AutomationWorker) -> None:
        dispose_task = asyncio.get_running_loop().create_task(worker.dispose())
        self._background.add(dispose_task)
        dispose_task.add_done_callback(self._background.discard)

    def _schedule_drain(self, entry: SessionEntry) -> None:
        if entry.processing:
            return
        entry.processing = True
        entry.drain_task = asyncio.create_task(
            self._drain(entry), name=f"session-drain-{entry.session_id[:8]}"
        )

    async def _drain(self, entry: SessionEntry) -> None:
        """Execute pending items one at a time until the backlog is empty."""
        try:
            while entry.pending:
                item = entry.pending.popleft()
                if item.future.done():
                    # caller went away before its turn
                    continue

                if entry.worker.tainted:
                    try:
                        await self._recycle_worker(entry)
                    except Exception as e:
                        self._fail_session(entry, item, e)
                        return

                entry.current = item
                try:
                    result = await entry.worker.execute(item.request)
                except Exception as e:
                    _settle_error(item.future, e)
                else:
                    entry.last_activity = time.time()
                    if not item.future.done():
                        item.future.set_result(result)
                finally:
                    entry.current = None
        finally:
            entry.processing = False
            entry.drain_task = None

    async def _recycle_worker(self, entry: SessionEntry) -> None:
        """Replace a worker whose conversation was abandoned by a timeout."""
        self._logger.warning("session_worker_recycled", session_id=entry.session_id[:8])
        await entry.worker.dispose()
        entry.worker = self._worker_factory(entry.worker.id, entry.user_id)
        await entry.worker.start()

    def _fail_session(self, entry: SessionEntry, item: PendingItem, error: Exception) -> None:
        self._logger.error(
            "session_restart_failed", session_id=entry.session_id[:8], error=str(error)
        )
        _settle_error(item.future, error)
        while entry.pending:
            _settle_error(entry.pending.popleft().future, error)
        if self._sessions.get(entry.session_id) is entry:
            del self._sessions[entry.session_id]
        self._dispose_later(entry.worker)

    async def close(self, session_id: str) -> bool:
        """Close a session, rejecting its queued and in-flight requests.

        Returns:
            True if the session existed
        """
        entry = self._sessions.pop(session_id, None)
        if entry is None:
            return False
        await self._teardown(entry, SessionClosedError(session_id))
        self._logger.info("session_closed", session_id=session_id[:8])
        return True

    async def _teardown(self, entry: SessionEntry, error: SessionClosedError) -> None:
        if entry.current is not None:
            _settle_error(entry.current.future, error)
        while entry.pending:
            _settle_error(entry.pending.popleft().future, error)

        if not entry.start_task.done():
            entry.start_task.cancel()
        if entry.drain_task is not None and not entry.drain_task.done():
            entry.drain_task.cancel()

        await entry.worker.dispose()

    async def collect_idle(self, now: float | None = None) -> list[str]:
        """Close sessions idle past the threshold that are not draining.

        Returns:
            Ids of the sessions that were collected
        """
        now = time.time() if now is None else now
        # unregister every victim before the first await; a session touched
        # during a teardown must not be collected
        expired = [
            entry
            for entry in self._sessions.values()
            if not entry.processing and now - entry.last_activity > self.idle_timeout_seconds
        ]
        for entry in expired:
            del self._sessions[entry.session_id]

        for entry in expired:
            self._logger.info(
                "session_gc",
                session_id=entry.session_id[:8],
                idle_seconds=round(now - entry.last_activity, 1),
            )
            await self._teardown(entry, SessionClosedError(entry.session_id, "expired"))

        return [entry.session_id for entry in expired]

    async def _gc_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.gc_interval_seconds)
                await self.collect_idle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._logger.error("session_gc_error", error=str(e), exc_info=True)

    def get_active(self) -> list[SessionSummary]:
        return [
            SessionSummary(
                id=session_id,
                last_activity=entry.last_activity,
                processing=entry.processing,
            )
            for session_id, entry in self._sessions.items()
        ]

    async def shutdown(self) -> None:
        """Stop the sweep and close every session."""
        self._running = False
        if self._gc_task is not None:
            self._gc_task.cancel()
            try:
                await self._gc_task
            except asyncio.CancelledError:
                pass
            self._gc_task = None

        sessions = list(self._sessions.values())
        self._sessions.clear()
        for entry in sessions:
            await self._teardown(entry, SessionClosedError(entry.session_id, "shut down"))

        self._logger.info("session_manager_shutdown", closed=len(sessions))
