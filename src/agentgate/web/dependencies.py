"""FastAPI dependencies shared by the gateway routes.

Collaborators are created once in the application lifespan and stored on
``app.state``; these dependencies hand them to route handlers.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from agentgate.agents.workspace import WorkspaceLayout
from agentgate.auth.oauth import ClaudeOAuthFlow
from agentgate.auth.tokens import bearer_token, verify_token
from agentgate.automation.queue import DispatchQueue
from agentgate.config import GatewayConfig


def get_config(request: Request) -> GatewayConfig:
    return request.app.state.config  # type: ignore[no-any-return]


def get_queue(request: Request) -> DispatchQueue:
    return request.app.state.queue  # type: ignore[no-any-return]


def get_workspace(request: Request) -> WorkspaceLayout:
    return request.app.state.workspace  # type: ignore[no-any-return]


def get_oauth(request: Request) -> ClaudeOAuthFlow:
    return request.app.state.oauth  # type: ignore[no-any-return]


def require_user(
    request: Request,
    config: GatewayConfig = Depends(get_config),  # noqa: B008
) -> str:
    """Authenticate the caller from its bearer token.

    Returns:
        Caller identity

    Raises:
        HTTPException: 401 if the token is missing, malformed, or expired
    """
    token = bearer_token(request.headers.get("Authorization"))
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization token",
        )

    user_id = verify_token(token, config.auth.secret, ttl_seconds=config.auth.token_ttl_seconds)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return user_id
