"""Agent runtime boundary for Agentgate.

This module provides a Protocol-based abstraction over the agent runtime,
so workers can be driven by the real Claude Agent SDK in production and by
lightweight fakes in tests.

A conversation yields a stream of messages after each prompt. Intermediate
messages are opaque; the stream for one prompt ends with an ``AgentOutcome``,
a tagged union of exactly two variants:

- ``ResultSuccess``: the agent finished and produced text
- ``ResultError``: the agent finished with one or more error messages
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from pathlib import Path
from typing import Annotated, Any, Literal, Protocol, Union, runtime_checkable

from pydantic import BaseModel, Field


class ResultSuccess(BaseModel):
    """Terminal message for a prompt that completed.

    Attributes:
        kind: Union tag
        text: Final text produced by the agent
        is_error: Runtime error flag (a completed turn may still be flagged)
    """

    kind: Literal["success"] = "success"
    text: str = ""
    is_error: bool = False


class ResultError(BaseModel):
    """Terminal message for a prompt that ended in an error.

    Attributes:
        kind: Union tag
        errors: Error messages reported by the runtime
        is_error: Runtime error flag
    """

    kind: Literal["error"] = "error"
    errors: list[str] = Field(default_factory=list)
    is_error: bool = True


AgentOutcome = Annotated[Union[ResultSuccess, ResultError], Field(discriminator="kind")]


def is_outcome(message: Any) -> bool:
    """Return True if a streamed message terminates the current prompt."""
    return isinstance(message, (ResultSuccess, ResultError))


def outcome_text(outcome: ResultSuccess | ResultError) -> str:
    """Render the caller-facing text of a terminal message.

    Error variants join their messages with newlines and fall back to
    ``"Error"`` when the runtime supplied none.
    """
    if isinstance(outcome, ResultSuccess):
        return outcome.text
    return "\n".join(outcome.errors) or "Error"


@runtime_checkable
class AgentConversation(Protocol):
    """An open session with the agent runtime.

    A conversation is exclusively owned by one worker.
    """

    async def send(self, prompt: str) -> None:
        """Send a prompt to the agent.

        Raises:
            RuntimeError: If the conversation is closed
        """
        ...

    def stream(self) -> AsyncIterator[Any]:
        """Iterate messages produced for the most recent prompt.

        The iterator ends after yielding an ``AgentOutcome``, or earlier if
        the underlying session terminates.
        """
        ...

    async def close(self) -> None:
        """Close the conversation and release the agent process.

        Multiple calls to close() should be idempotent.
        """
        ...


@runtime_checkable
class AgentRuntime(Protocol):
    """Factory for agent conversations bound to a working directory."""

    async def open_session(
        self, cwd: Path, env: Mapping[str, str] | None = None
    ) -> AgentConversation:
        """Open a new conversation rooted at ``cwd``.

        Args:
            cwd: Working directory the agent operates in
            env: Extra environment entries layered over the runtime defaults

        Returns:
            A connected conversation

        Raises:
            RuntimeError: If the agent process could not be started
        """
        ...


async def first_outcome(conversation: AgentConversation) -> ResultSuccess | ResultError | None:
    """Consume the stream until the terminal message of the current prompt.

    Returns:
        The terminal message, or None if the stream ended without one
    """
    async for message in conversation.stream():
        if is_outcome(message):
            return message
    return None
