"""Agent login endpoints.

Lets an operator check whether the agent CLI is authenticated and, if not,
run the subscription OAuth flow from the browser. A successful exchange
restarts the anonymous pool so new workers pick up the fresh credentials.
"""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from agentgate.agents.claude_runtime import find_claude_executable
from agentgate.auth.oauth import ClaudeOAuthFlow, OAuthError, check_auth_status
from agentgate.automation.queue import DispatchQueue
from agentgate.config import GatewayConfig
from agentgate.logging import get_logger
from agentgate.web.dependencies import get_config, get_oauth, get_queue, require_user

logger = get_logger(__name__)


class ExchangeBody(BaseModel):
    code: str = Field(..., min_length=1)


async def _restart_pool(queue: DispatchQueue) -> None:
    try:
        restarted = await queue.restart_workers()
        logger.info("pool_restarted_after_login", restarted=restarted)
    except Exception as e:
        logger.error("pool_restart_failed", error=str(e), exc_info=True)


def create_auth_router() -> APIRouter:
    """Create auth routes.

    Routes:
        GET /auth/status - Whether the agent CLI is logged in
        POST /auth/login - Start an OAuth login, returns the authorize URL
        POST /auth/exchange - Finish the login with the ``CODE#STATE`` string
    """
    router = APIRouter(prefix="/auth", tags=["auth"])

    @router.get("/status")
    async def auth_status(
        _user_id: str = Depends(require_user),
        config: GatewayConfig = Depends(get_config),  # noqa: B008
    ) -> dict[str, Any]:
        executable = find_claude_executable(config.runtime.executable)
        return await check_auth_status(executable, config.runtime.use_api_key)

    @router.post("/login")
    async def login(
        _user_id: str = Depends(require_user),
        oauth: ClaudeOAuthFlow = Depends(get_oauth),  # noqa: B008
    ) -> dict[str, Any]:
        return {"url": oauth.begin_login()}

    @router.post("/exchange")
    async def exchange(
        body: ExchangeBody,
        request: Request,
        _user_id: str = Depends(require_user),
        oauth: ClaudeOAuthFlow = Depends(get_oauth),  # noqa: B008
        queue: DispatchQueue = Depends(get_queue),  # noqa: B008
    ) -> dict[str, Any]:
        """Exchange the callback code for tokens.

        Raises:
            HTTPException: 400 if the code is malformed, unknown, expired, or
                rejected by the token endpoint
        """
        try:
            await oauth.exchange(body.code.strip())
        except OAuthError as e:
            logger.warning("oauth_exchange_failed", error=str(e))
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

        tasks: set[asyncio.Task[None]] = request.app.state.background_tasks
        task = asyncio.create_task(_restart_pool(queue))
        tasks.add(task)
        task.add_done_callback(tasks.discard)
        return {"success": True}

    return router
