"""Agent runtime integration for Agentgate.

This module defines the boundary with the agent runtime and the per-user
workspace convention workers run in. The Claude Agent SDK implementation
lives in ``agentgate.agents.claude_runtime``.
"""

from agentgate.agents.runtime import (
    AgentConversation,
    AgentOutcome,
    AgentRuntime,
    ResultError,
    ResultSuccess,
    first_outcome,
    outcome_text,
)
from agentgate.agents.workspace import WorkspaceLayout, sanitize_user_id

__all__ = [
    # Runtime boundary
    "AgentConversation",
    "AgentRuntime",
    "AgentOutcome",
    "ResultSuccess",
    "ResultError",
    "first_outcome",
    "outcome_text",
    # Workspaces
    "WorkspaceLayout",
    "sanitize_user_id",
]
