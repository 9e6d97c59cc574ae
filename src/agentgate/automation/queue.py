"""Dispatch queue: admission control and the anonymous worker pool.

The queue is the entry point for every run request. Session-affine requests
are handed to the ``SessionManager``. Anonymous requests run on a fixed-size
pool of single-use workers: each worker serves exactly one request, then it
is disposed and a fresh worker is started in the same slot, so no state leaks
between unrelated callers. When no worker is ready, requests wait in a
bounded FIFO backlog; a full backlog rejects new requests with
``QueueFullError``.

All bookkeeping runs on the event loop thread. Check-then-act sequences on
the slot table and backlog never cross an ``await``, which is what makes
them safe without locks.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import deque
from dataclasses import dataclass, field

import structlog

from agentgate.automation.errors import QueueFullError, QueueShutdownError
from agentgate.automation.session_manager import SessionManager
from agentgate.automation.types import (
    HealthSummary,
    QueueOccupancy,
    QueueStatus,
    RunRequest,
    RunResult,
    WorkerCounts,
    WorkerState,
)
from agentgate.automation.worker import AutomationWorker, WorkerFactory
from agentgate.config import GatewayConfig

logger = structlog.get_logger(__name__)

DEFAULT_POOL_SIZE = 1
DEFAULT_MAX_QUEUE_SIZE = 20
DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS = 60.0


@dataclass
class WorkerSlot:
    """One stable position in the anonymous pool.

    Attributes:
        index: Slot number; also names the worker (``worker-<index>``)
        worker: Worker currently provisioned in this slot
        claimed: The current worker already has its one request
    """

    index: int
    worker: AutomationWorker
    claimed: bool = False


@dataclass
class QueueItem:
    """An anonymous request waiting for a free worker.

    Attributes:
        id: Generated request id, for tracing only
        request: Original request payload
        future: Settled with the eventual result or error
        enqueued_at: Epoch seconds when the request was queued
    """

    request: RunRequest
    future: asyncio.Future[RunResult]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    enqueued_at: float = field(default_factory=time.time)


class DispatchQueue:
    """Routes run requests and manages the anonymous worker pool.

    Attributes:
        pool_size: Number of anonymous worker slots
        max_queue_size: Backlog capacity
        health_check_interval_seconds: Seconds between pool health sweeps
        sessions: Session manager handling session-affine requests
        total_processed: Anonymous requests that produced a result
        total_errors: Anonymous requests that failed or raised
    """

    def __init__(
        self,
        worker_factory: WorkerFactory,
        sessions: SessionManager | None = None,
        pool_size: int = DEFAULT_POOL_SIZE,
        max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE,
        health_check_interval_seconds: float = DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS,
    ) -> None:
        self._worker_factory = worker_factory
        self.sessions = sessions if sessions is not None else SessionManager(worker_factory)
        self.pool_size = pool_size
        self.max_queue_size = max_queue_size
        self.health_check_interval_seconds = health_check_interval_seconds
        self.total_processed = 0
        self.total_errors = 0

        self._slots: list[WorkerSlot] = []
        self._backlog: deque[QueueItem] = deque()
        self._background: set[asyncio.Task[None]] = set()
        self._health_task: asyncio.Task[None] | None = None
        self._closed = False
        self._started_at = time.monotonic()
        self._logger = logger.bind(component="DispatchQueue")

    @classmethod
    def from_config(cls, config: GatewayConfig, worker_factory: WorkerFactory) -> DispatchQueue:
        sessions = SessionManager(
            worker_factory,
            max_sessions=config.sessions.max_sessions,
            idle_timeout_seconds=config.sessions.idle_timeout_seconds,
            gc_interval_seconds=config.sessions.gc_interval_seconds,
        )
        return cls(
            worker_factory,
            sessions=sessions,
            pool_size=config.queue.pool_size,
            max_queue_size=config.queue.max_queue_size,
            health_check_interval_seconds=config.queue.health_check_interval_seconds,
        )

    @property
    def slots(self) -> list[WorkerSlot]:
        return list(self._slots)

    @property
    def queue_length(self) -> int:
        return len(self._backlog)

    async def initialize(self) -> None:
        """Provision the pool and start the background sweeps.

        Workers that fail to start are logged and left in ERROR for the
        health check to replace.
        """
        self._logger.info("pool_initializing", pool_size=self.pool_size)

        for index in range(self.pool_size):
            slot = WorkerSlot(index=index, worker=self._worker_factory(f"worker-{index}", None))
            self._slots.append(slot)
            try:
                await slot.worker.start()
            except Exception as e:
                self._logger.error(
                    "worker_start_failed", worker_id=slot.worker.id, error=str(e)
                )

        self._health_task = asyncio.create_task(self._health_loop(), name="pool-health")
        await self.sessions.start()

        ready = sum(1 for slot in self._slots if slot.worker.state is WorkerState.READY)
        self._logger.info("pool_initialized", ready=ready, pool_size=self.pool_size)

        # requests may have queued while the pool was starting
        for _ in range(ready):
            self._spawn(self._dispatch_next())

    async def run(self, request: RunRequest) -> RunResult:
        """Execute a request, waiting in the backlog if needed.

        Raises:
            QueueFullError: If no worker is ready and the backlog is full
            SessionCapacityError: If a new session would exceed the cap
            QueueShutdownError: If the queue shuts down while waiting
        """
        if self._closed:
            raise QueueShutdownError()

        if request.session_id:
            return await self.sessions.run(request.session_id, request, request.user_id)

        slot = self._find_ready_slot()
        if slot is None and len(self._backlog) >= self.max_queue_size:
            self._logger.warning(
                "queue_full", queue_length=len(self._backlog), max_size=self.max_queue_size
            )
            raise QueueFullError(self.max_queue_size)

        future: asyncio.Future[RunResult] = asyncio.get_running_loop().create_future()
        item = QueueItem(request=request, future=future)
        if slot is not None:
            # runs in its own task so a caller that goes away does not abort the agent call
            slot.claimed = True
            self._spawn(self._run_item(slot, item))
        else:
            self._backlog.append(item)
            self._logger.debug(
                "request_queued", request_id=item.id, queue_length=len(self._backlog)
            )
        return await future

    def _find_ready_slot(self) -> WorkerSlot | None:
        for slot in self._slots:
            if not slot.claimed and slot.worker.state is WorkerState.READY:
                return slot
        return None

    async def _run_on_worker_once(self, slot: WorkerSlot, request: RunRequest) -> RunResult:
        """Run one request, then retire the worker and refill its slot."""
        worker = slot.worker
        try:
            result = await worker.execute(request)
            self.total_processed += 1
            if not result.success:
                self.total_errors += 1
            return result
        except Exception:
            self.total_errors += 1
            raise
        finally:
            await worker.dispose()
            self._replace_worker(slot)

    def _replace_worker(self, slot: WorkerSlot) -> None:
        if self._closed:
            return
        worker = self._worker_factory(f"worker-{slot.index}", None)
        slot.worker = worker
        slot.claimed = False
        self._spawn(self._start_replacement(worker))

    async def _start_replacement(self, worker: AutomationWorker) -> None:
        try:
            await worker.start()
        except Exception as e:
            self._logger.error("worker_replacement_failed", worker_id=worker.id, error=str(e))
            return
        await self._dispatch_next()

    async def _dispatch_next(self) -> None:
        """Hand the oldest live backlog entry to a ready worker, if any."""
        while self._backlog and self._backlog[0].future.done():
            # caller gave up while waiting
            self._backlog.popleft()
        if not self._backlog:
            return

        slot = self._find_ready_slot()
        if slot is None:
            return

        item = self._backlog.popleft()
        slot.claimed = True
        self._logger.debug(
            "request_dispatched",
            request_id=item.id,
            waited_ms=int((time.time() - item.enqueued_at) * 1000),
        )
        await self._run_item(slot, item)

    async def _run_item(self, slot: WorkerSlot, item: QueueItem) -> None:
        """Run a request for a waiting caller and settle its future."""
        try:
            result = await self._run_on_worker_once(slot, item.request)
        except asyncio.CancelledError:
            if not item.future.done():
                item.future.set_exception(QueueShutdownError())
            raise
        except Exception as e:
            if not item.future.done():
                item.future.set_exception(e)
        else:
            if not item.future.done():
                item.future.set_result(result)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def health_check(self) -> int:
        """Replace every worker stuck in ERROR.

        Returns:
            Number of slots refilled
        """
        replaced = 0
        for slot in self._slots:
            if slot.worker.state is WorkerState.ERROR:
                self._logger.info("worker_replacing_errored", worker_id=slot.worker.id)
                await slot.worker.dispose()
                self._replace_worker(slot)
                replaced += 1
        return replaced

    async def _health_loop(self) -> None:
        while not self._closed:
            try:
                await asyncio.sleep(self.health_check_interval_seconds)
                await self.health_check()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._logger.error("pool_health_check_error", error=str(e), exc_info=True)

    async def restart_workers(self) -> int:
        """Recycle idle and errored workers so they pick up new credentials.

        Busy workers are replaced anyway once their request completes.

        Returns:
            Number of slots recycled
        """
        restarted = 0
        for slot in self._slots:
            if not slot.claimed and slot.worker.state in (WorkerState.READY, WorkerState.ERROR):
                await slot.worker.dispose()
                self._replace_worker(slot)
                restarted += 1
        self._logger.info("pool_restarted", restarted=restarted)
        return restarted

    def get_status(self) -> QueueStatus:
        return QueueStatus(
            workers=[slot.worker.status for slot in self._slots],
            queue_length=len(self._backlog),
            max_queue_size=self.max_queue_size,
            total_processed=self.total_processed,
            total_errors=self.total_errors,
        )

    def get_health_summary(self) -> HealthSummary:
        states = [slot.worker.state for slot in self._slots]
        ready = states.count(WorkerState.READY)
        busy = states.count(WorkerState.BUSY)
        return HealthSummary(
            status="ok" if ready or busy else "degraded",
            workers=WorkerCounts(
                total=len(states),
                ready=ready,
                busy=busy,
                error=states.count(WorkerState.ERROR) + states.count(WorkerState.DISPOSED),
            ),
            queue=QueueOccupancy(length=len(self._backlog), max_size=self.max_queue_size),
            uptime=int((time.monotonic() - self._started_at) * 1000),
        )

    async def shutdown(self) -> None:
        """Reject the backlog, dispose the pool, and close all sessions."""
        self._logger.info("queue_shutting_down", queue_length=len(self._backlog))
        self._closed = True

        if self._health_task is not None:
            self._health_task.cancel()
            try:
                await self._health_task
            except asyncio.CancelledError:
                pass
            self._health_task = None

        while self._backlog:
            item = self._backlog.popleft()
            if not item.future.done():
                item.future.set_exception(QueueShutdownError())

        pending = list(self._background)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        for slot in self._slots:
            await slot.worker.dispose()
        self._slots.clear()

        await self.sessions.shutdown()
        self._logger.info("queue_shutdown_complete")
