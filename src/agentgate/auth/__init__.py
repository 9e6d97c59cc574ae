"""Authentication for the Agentgate HTTP gateway.

Callers authenticate with short-lived HMAC bearer tokens; operators log the
agent runtime into a Claude subscription through the OAuth PKCE flow.
"""

from agentgate.auth.oauth import (
    ClaudeOAuthFlow,
    OAuthError,
    OAuthStateStore,
    PendingLogin,
    check_auth_status,
)
from agentgate.auth.tokens import bearer_token, issue_token, verify_token

__all__ = [
    "bearer_token",
    "issue_token",
    "verify_token",
    "ClaudeOAuthFlow",
    "OAuthError",
    "OAuthStateStore",
    "PendingLogin",
    "check_auth_status",
]
