"""Shared fixtures for unit tests.

Provides an in-memory agent runtime whose conversations answer prompts
with ``echo: <prompt>`` and can be told to fail, hang, or wait on a gate,
so worker, session, and queue behaviour can be driven deterministically.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Mapping
from pathlib import Path
from typing import Any

import pytest

from agentgate.agents.runtime import ResultError, ResultSuccess
from agentgate.agents.workspace import WorkspaceLayout
from agentgate.automation.worker import AutomationWorker, make_worker_factory


class FakeConversation:
    """Conversation that treats its first prompt as the warm-up."""

    def __init__(self, runtime: FakeRuntime, number: int, cwd: Path) -> None:
        self.runtime = runtime
        self.number = number
        self.cwd = cwd
        self.prompts: list[str] = []
        self.closed = False
        self.warmed = False

    async def send(self, prompt: str) -> None:
        if self.closed:
            raise RuntimeError("Conversation is closed")
        self.prompts.append(prompt)

    async def stream(self) -> AsyncIterator[Any]:
        prompt = self.prompts[-1]
        runtime = self.runtime

        if not self.warmed:
            if runtime.warmup_gate is not None:
                await runtime.warmup_gate.wait()
            if runtime.fail_warmup:
                raise RuntimeError("warm-up failed")
            self.warmed = True
            yield ResultSuccess(text="ok")
            return

        runtime.log.append((self.number, prompt))
        runtime.active += 1
        runtime.max_active = max(runtime.max_active, runtime.active)
        try:
            yield {"type": "assistant", "text": "thinking"}
            if runtime.hang:
                await asyncio.Event().wait()
            if runtime.gate is not None:
                await runtime.gate.wait()
        finally:
            runtime.active -= 1

        if prompt in runtime.errors:
            yield ResultError(errors=runtime.errors[prompt])
        else:
            yield ResultSuccess(text=f"echo: {prompt}")

    async def close(self) -> None:
        if self.runtime.close_gate is not None:
            await self.runtime.close_gate.wait()
        if self.runtime.fail_close:
            raise RuntimeError("close failed")
        self.closed = True


class FakeRuntime:
    """AgentRuntime double.

    Attributes:
        opened: Every conversation opened, in order
        log: ``(conversation number, prompt)`` for every non-warm-up prompt
        active: Prompts currently being answered
        max_active: Highest concurrent value of ``active``
        gate: When set, prompts wait on this event before answering
        warmup_gate: When set, warm-ups wait on this event
        close_gate: When set, close() waits on this event
        hang: Prompts never answer
        errors: Prompts answered with a ResultError carrying these messages
        fail_open: Raised from open_session when set
        fail_warmup: Warm-up raises when True
        fail_close: close() raises when True
    """

    def __init__(self) -> None:
        self.opened: list[FakeConversation] = []
        self.log: list[tuple[int, str]] = []
        self.active = 0
        self.max_active = 0
        self.gate: asyncio.Event | None = None
        self.warmup_gate: asyncio.Event | None = None
        self.close_gate: asyncio.Event | None = None
        self.hang = False
        self.errors: dict[str, list[str]] = {}
        self.fail_open: Exception | None = None
        self.fail_warmup = False
        self.fail_close = False

    async def open_session(
        self, cwd: Path, env: Mapping[str, str] | None = None
    ) -> FakeConversation:
        if self.fail_open is not None:
            raise self.fail_open
        conversation = FakeConversation(self, len(self.opened) + 1, cwd)
        self.opened.append(conversation)
        return conversation


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def workspace(tmp_path: Path) -> WorkspaceLayout:
    """Workspace layout that runs every worker in the current directory."""
    return WorkspaceLayout(
        users_base=tmp_path / "users",
        claude_home=tmp_path / "claude",
        isolate=False,
    )


@pytest.fixture
def created_workers() -> list[AutomationWorker]:
    return []


@pytest.fixture
def worker_factory(
    runtime: FakeRuntime,
    workspace: WorkspaceLayout,
    created_workers: list[AutomationWorker],
) -> Callable[[str, str | None], AutomationWorker]:
    """Worker factory that records every worker it creates."""
    factory = make_worker_factory(runtime, workspace)

    def tracking_factory(worker_id: str, user_id: str | None = None) -> AutomationWorker:
        worker = factory(worker_id, user_id)
        created_workers.append(worker)
        return worker

    return tracking_factory


@pytest.fixture
def eventually() -> Callable[..., Any]:
    """Poll a predicate on the event loop until it holds."""

    async def wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not reached in time")
            await asyncio.sleep(0.005)

    return wait
