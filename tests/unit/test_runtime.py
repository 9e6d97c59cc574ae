"""Unit tests for the agent runtime boundary and the Claude SDK adapter."""

from __future__ import annotations

import os
from types import SimpleNamespace

import pytest
from pydantic import TypeAdapter

from agentgate.agents.claude_runtime import build_agent_env, find_claude_executable, to_outcome
from agentgate.agents.runtime import (
    AgentConversation,
    AgentOutcome,
    ResultError,
    ResultSuccess,
    first_outcome,
    is_outcome,
    outcome_text,
)


class ScriptedConversation:
    def __init__(self, messages: list) -> None:
        self.messages = messages

    async def send(self, prompt: str) -> None:
        pass

    async def stream(self):
        for message in self.messages:
            yield message

    async def close(self) -> None:
        pass


class TestOutcomeUnion:
    def test_discriminates_on_kind(self) -> None:
        adapter = TypeAdapter(AgentOutcome)

        success = adapter.validate_python({"kind": "success", "text": "done"})
        error = adapter.validate_python({"kind": "error", "errors": ["bad"]})

        assert isinstance(success, ResultSuccess)
        assert isinstance(error, ResultError)
        assert error.is_error is True

    def test_is_outcome(self) -> None:
        assert is_outcome(ResultSuccess(text="x"))
        assert is_outcome(ResultError())
        assert not is_outcome({"type": "assistant"})

    def test_outcome_text(self) -> None:
        assert outcome_text(ResultSuccess(text="hello")) == "hello"
        assert outcome_text(ResultError(errors=["a", "b"])) == "a\nb"
        assert outcome_text(ResultError()) == "Error"


class TestFirstOutcome:
    async def test_skips_intermediate_messages(self) -> None:
        conversation = ScriptedConversation(
            [{"type": "assistant"}, ResultSuccess(text="final"), ResultSuccess(text="late")]
        )

        outcome = await first_outcome(conversation)

        assert outcome == ResultSuccess(text="final")

    async def test_stream_without_outcome(self) -> None:
        assert await first_outcome(ScriptedConversation([{"type": "assistant"}])) is None

    def test_scripted_conversation_satisfies_protocol(self) -> None:
        assert isinstance(ScriptedConversation([]), AgentConversation)


class TestClaudeAdapter:
    def test_success_message(self) -> None:
        message = SimpleNamespace(subtype="success", result="done", is_error=False)
        assert to_outcome(message) == ResultSuccess(text="done")

    def test_success_flagged_as_error(self) -> None:
        message = SimpleNamespace(subtype="success", result="partial", is_error=True)
        outcome = to_outcome(message)
        assert isinstance(outcome, ResultSuccess)
        assert outcome.is_error is True

    def test_error_message(self) -> None:
        message = SimpleNamespace(
            subtype="error_max_turns", result=None, is_error=True, errors=["too many turns"]
        )
        assert to_outcome(message) == ResultError(errors=["too many turns"])

    def test_error_falls_back_to_result_text(self) -> None:
        message = SimpleNamespace(subtype="error_during_execution", result="crashed", is_error=True)
        assert to_outcome(message) == ResultError(errors=["crashed"])

    def test_env_blanks_api_key_by_default(self) -> None:
        env = build_agent_env(use_api_key=False)
        assert env["ANTHROPIC_API_KEY"] == ""
        assert env["CLAUDECODE"] == ""
        assert env["CLAUDE_CODE_SKIP_BYPASS_PERMISSIONS_WARNING"] == "1"

    def test_env_keeps_api_key_when_enabled(self) -> None:
        env = build_agent_env(use_api_key=True, extra={"EXTRA": "1"})
        assert "ANTHROPIC_API_KEY" not in env
        assert env["EXTRA"] == "1"

    def test_find_executable_prefers_explicit(self, tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
        executable = tmp_path / "claude"
        executable.write_text("#!/bin/sh\n")
        executable.chmod(0o755)

        assert find_claude_executable(str(executable)) == str(executable)

    def test_find_executable_from_env(self, tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
        executable = tmp_path / "my-claude"
        executable.write_text("#!/bin/sh\n")
        executable.chmod(0o755)
        monkeypatch.setenv("CLAUDE_EXECUTABLE", str(executable))
        monkeypatch.setattr(os, "access", lambda path, mode: path == str(executable))

        assert find_claude_executable() == str(executable)

    def test_find_executable_fallback(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("CLAUDE_EXECUTABLE", raising=False)
        monkeypatch.setattr(os, "access", lambda path, mode: False)

        assert find_claude_executable() == "claude"
