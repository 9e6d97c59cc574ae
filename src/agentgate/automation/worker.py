"""Automation worker: one provisioned agent conversation.

A worker owns exactly one conversation with the agent runtime. It is
started once (workspace preparation plus a warm-up exchange), executes
prompts one at a time under a hard timeout, and is disposed when its owner
is done with it.

State transitions:
    INITIALIZING → READY ⇄ BUSY
    INITIALIZING → ERROR            (start failure)
    any state    → DISPOSED         (terminal)
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional

import structlog

from agentgate.agents.runtime import AgentConversation, AgentRuntime, first_outcome, outcome_text
from agentgate.agents.workspace import WorkspaceLayout
from agentgate.automation.errors import WorkerNotReadyError
from agentgate.automation.types import RunRequest, RunResult, WorkerState, WorkerStatus

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_MS = 120_000

WorkerFactory = Callable[[str, Optional[str]], "AutomationWorker"]


class AutomationWorker:
    """Wraps a single agent conversation with explicit lifecycle states.

    Attributes:
        id: Stable label (``worker-<slot>`` or ``ses-<session prefix>``)
        user_id: Caller identity the workspace is derived from, if any
        busy_since: Epoch seconds when the current execute began, else None
        tainted: Set after a hard timeout; the conversation may still be
            processing the abandoned prompt and should not be reused
    """

    def __init__(
        self,
        worker_id: str,
        runtime: AgentRuntime,
        workspace: WorkspaceLayout,
        user_id: str | None = None,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        self.id = worker_id
        self.user_id = user_id
        self.runtime = runtime
        self.workspace = workspace
        self.default_timeout_ms = default_timeout_ms
        self.busy_since: float | None = None
        self.tainted = False
        self._state = WorkerState.INITIALIZING
        self._conversation: AgentConversation | None = None
        self._logger = logger.bind(worker_id=worker_id)

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def status(self) -> WorkerStatus:
        return WorkerStatus(id=self.id, state=self._state, busy_since=self.busy_since)

    async def start(self) -> None:
        """Open the conversation and warm it up.

        Raises:
            Exception: Whatever workspace preparation, the runtime, or the
                warm-up exchange raised; the worker is left in ERROR.
            WorkerNotReadyError: If the worker is or becomes disposed.
        """
        if self._state is WorkerState.DISPOSED:
            raise WorkerNotReadyError(f"Worker {self.id} is disposed")
        self._state = WorkerState.INITIALIZING
        directory = self.workspace.directory_for(self.user_id)

        self._logger.info("worker_starting", cwd=str(directory), user_id=self.user_id)

        try:
            await asyncio.to_thread(self.workspace.prepare, directory)
            self._conversation = await self.runtime.open_session(directory)
            await self._warmup(self.workspace.warmup_prompt(directory))
        except Exception as e:
            if self._state is not WorkerState.DISPOSED:
                self._state = WorkerState.ERROR
            await self._close_conversation()
            self._logger.error("worker_start_failed", error=str(e))
            raise

        if self._state is WorkerState.DISPOSED:
            # dispose() ran while we were warming up
            await self._close_conversation()
            raise WorkerNotReadyError(f"Worker {self.id} was disposed during start")

        self._state = WorkerState.READY
        self._logger.info("worker_ready")

    async def _warmup(self, prompt: str) -> None:
        if self._conversation is None:
            raise RuntimeError("No session")
        await self._conversation.send(prompt)
        await first_outcome(self._conversation)

    async def _ask(self, prompt: str):
        if self._conversation is None:
            raise RuntimeError("No session")
        await self._conversation.send(prompt)
        outcome = await first_outcome(self._conversation)
        if outcome is None:
            raise RuntimeError("Session ended without result")
        return outcome

    async def execute(self, request: RunRequest) -> RunResult:
        """Run one prompt under the hard timeout.

        Timeouts and runtime errors are reported through the returned result
        rather than raised.

        Raises:
            WorkerNotReadyError: If the worker is not READY or has no session
        """
        if self._state is not WorkerState.READY:
            raise WorkerNotReadyError(
                f"Worker {self.id} is not ready (state: {self._state.value})"
            )
        if self._conversation is None:
            raise WorkerNotReadyError(f"Worker {self.id} has no session")

        self._state = WorkerState.BUSY
        self.busy_since = time.time()
        started = time.monotonic()
        timeout_ms = request.timeout_ms if request.timeout_ms is not None else self.default_timeout_ms

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            outcome = await asyncio.wait_for(self._ask(request.prompt), timeout=timeout_ms / 1000)
            return RunResult(
                success=not outcome.is_error,
                output=outcome_text(outcome),
                duration_ms=elapsed_ms(),
                timed_out=False,
            )
        except asyncio.TimeoutError:
            self.tainted = True
            self._logger.warning("worker_hard_timeout", timeout_ms=timeout_ms)
            return RunResult(
                success=False,
                output="",
                duration_ms=elapsed_ms(),
                timed_out=True,
                timeout_type="hard",
            )
        except Exception as e:
            self._logger.warning("worker_execute_failed", error=str(e))
            return RunResult(
                success=False,
                output=str(e),
                duration_ms=elapsed_ms(),
                timed_out=False,
            )
        finally:
            if self._state is WorkerState.BUSY:
                self._state = WorkerState.READY
            self.busy_since = None

    async def dispose(self) -> None:
        """Move to DISPOSED and close the conversation.

        Close errors are logged and swallowed. Safe to call repeatedly.
        """
        already_disposed = self._state is WorkerState.DISPOSED
        self._state = WorkerState.DISPOSED
        await self._close_conversation()
        if not already_disposed:
            self._logger.info("worker_disposed")

    async def _close_conversation(self) -> None:
        conversation, self._conversation = self._conversation, None
        if conversation is None:
            return
        try:
            await conversation.close()
        except Exception as e:
            self._logger.warning("worker_close_error", error=str(e))


def make_worker_factory(
    runtime: AgentRuntime,
    workspace: WorkspaceLayout,
    default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> WorkerFactory:
    """Bind runtime and workspace so owners only supply id and user."""

    def factory(worker_id: str, user_id: str | None = None) -> AutomationWorker:
        return AutomationWorker(
            worker_id,
            runtime,
            workspace,
            user_id=user_id,
            default_timeout_ms=default_timeout_ms,
        )

    return factory
