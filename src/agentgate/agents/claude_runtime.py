"""Claude Agent SDK implementation of the agent runtime Protocols.

Each conversation owns one ``ClaudeSDKClient``, which in turn owns one
``claude`` CLI subprocess running in bypass-permissions mode inside the
worker's workspace.
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator, Mapping
from pathlib import Path
from typing import Any

import structlog
from claude_agent_sdk import ClaudeAgentOptions, ClaudeSDKClient, ResultMessage

from agentgate.agents.runtime import ResultError, ResultSuccess
from agentgate.config import RuntimeConfig

logger = structlog.get_logger(__name__)

EXECUTABLE_CANDIDATES = ("/usr/local/bin/claude", "/usr/bin/claude")

# The SDK layers options.env over os.environ, so stripped keys are blanked.
_STRIPPED_ALWAYS = ("CLAUDECODE",)
_STRIPPED_UNLESS_API_KEY = ("ANTHROPIC_API_KEY",)


def find_claude_executable(explicit: str | None = None) -> str:
    """Locate the claude CLI.

    Checks the explicit path, the well-known install locations, then
    ``$CLAUDE_EXECUTABLE``; falls back to ``claude`` on ``$PATH``.
    """
    candidates = [explicit, *EXECUTABLE_CANDIDATES, os.environ.get("CLAUDE_EXECUTABLE")]
    for candidate in candidates:
        if candidate and os.access(candidate, os.X_OK):
            return candidate
    return "claude"


def build_agent_env(use_api_key: bool, extra: Mapping[str, str] | None = None) -> dict[str, str]:
    """Environment overrides for the agent subprocess.

    Without ``use_api_key`` the API key is blanked so the CLI falls back to
    the subscription credentials in its home directory.
    """
    env = {
        "CLAUDE_CODE_SKIP_BYPASS_PERMISSIONS_WARNING": "1",
        "DISABLE_INSTALLATION_CHECKS": "1",
    }
    for key in _STRIPPED_ALWAYS:
        env[key] = ""
    if not use_api_key:
        for key in _STRIPPED_UNLESS_API_KEY:
            env[key] = ""
    if extra:
        env.update(extra)
    return env


def to_outcome(message: ResultMessage) -> ResultSuccess | ResultError:
    """Convert the SDK's result message into the tagged outcome union."""
    if message.subtype == "success":
        return ResultSuccess(text=message.result or "", is_error=bool(message.is_error))

    errors = list(getattr(message, "errors", None) or [])
    if not errors and message.result:
        errors = [message.result]
    return ResultError(errors=errors, is_error=True)


class ClaudeConversation:
    """AgentConversation backed by a connected ClaudeSDKClient."""

    def __init__(self, client: ClaudeSDKClient) -> None:
        self._client = client
        self._closed = False

    async def send(self, prompt: str) -> None:
        if self._closed:
            raise RuntimeError("Conversation is closed")
        await self._client.query(prompt)

    async def stream(self) -> AsyncIterator[Any]:
        async for message in self._client.receive_response():
            if isinstance(message, ResultMessage):
                yield to_outcome(message)
                return
            yield message

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.disconnect()


class ClaudeAgentRuntime:
    """AgentRuntime that spawns one claude CLI process per conversation.

    Attributes:
        model: Claude model identifier
        executable: Resolved path of the claude CLI
        use_api_key: Whether ANTHROPIC_API_KEY is passed through
    """

    def __init__(self, model: str, executable: str | None = None, use_api_key: bool = False):
        self.model = model
        self.executable = find_claude_executable(executable)
        self.use_api_key = use_api_key

    @classmethod
    def from_config(cls, config: RuntimeConfig) -> ClaudeAgentRuntime:
        return cls(
            model=config.model,
            executable=config.executable,
            use_api_key=config.use_api_key,
        )

    async def open_session(
        self, cwd: Path, env: Mapping[str, str] | None = None
    ) -> ClaudeConversation:
        options = ClaudeAgentOptions(
            model=self.model,
            cli_path=self.executable,
            permission_mode="bypassPermissions",
            cwd=str(cwd),
            env=build_agent_env(self.use_api_key, env),
        )
        logger.info(
            "agent_session_opening",
            model=self.model,
            executable=self.executable,
            cwd=str(cwd),
        )
        client = ClaudeSDKClient(options=options)
        await client.connect()
        return ClaudeConversation(client)
