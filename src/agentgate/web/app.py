"""FastAPI application factory for Agentgate.

The lifespan builds the agent runtime, the workspace layout, the dispatch
queue (anonymous pool plus session manager) and the OAuth flow, stores them
on ``app.state`` for the route dependencies, and shuts the queue down on
exit.

Example usage:
    >>> from agentgate.config import GatewayConfig
    >>> from agentgate.web.app import create_app
    >>>
    >>> app = create_app(GatewayConfig())
    >>>
    >>> import uvicorn
    >>> uvicorn.run(app, host="0.0.0.0", port=8080)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agentgate import __version__
from agentgate.agents.workspace import WorkspaceLayout
from agentgate.auth.oauth import ClaudeOAuthFlow
from agentgate.automation.queue import DispatchQueue
from agentgate.automation.worker import make_worker_factory
from agentgate.config import GatewayConfig
from agentgate.logging import get_logger
from agentgate.web.middleware import RequestLoggingMiddleware
from agentgate.web.routes import (
    create_auth_router,
    create_automation_router,
    create_health_router,
    create_profile_router,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from agentgate.agents.runtime import AgentRuntime

logger = get_logger(__name__)

APP_VERSION = __version__


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the worker pool on startup and drain it on shutdown."""
    config: GatewayConfig = app.state.config

    logger.info("app_startup_begin", host=config.web.host, port=config.web.port)

    runtime: AgentRuntime | None = app.state.runtime
    if runtime is None:
        from agentgate.agents.claude_runtime import ClaudeAgentRuntime

        runtime = ClaudeAgentRuntime.from_config(config.runtime)

    workspace = WorkspaceLayout.from_config(config.runtime)
    worker_factory = make_worker_factory(
        runtime, workspace, default_timeout_ms=config.runtime.default_timeout_ms
    )
    queue = DispatchQueue.from_config(config, worker_factory)

    app.state.workspace = workspace
    app.state.queue = queue
    app.state.oauth = ClaudeOAuthFlow(config.auth)

    await queue.initialize()
    logger.info(
        "app_startup_complete",
        pool_size=config.queue.pool_size,
        max_sessions=config.sessions.max_sessions,
    )

    try:
        yield
    finally:
        logger.info("app_shutdown_begin")
        for task in list(app.state.background_tasks):
            task.cancel()
        await queue.shutdown()
        logger.info("app_shutdown_complete")


def create_app(
    config: GatewayConfig | None = None,
    runtime: AgentRuntime | None = None,
) -> FastAPI:
    """Create and configure the gateway application.

    Args:
        config: Gateway configuration; defaults are used when None
        runtime: Agent runtime for workers; the Claude runtime is built from
            ``config.runtime`` when None

    Returns:
        Configured FastAPI application instance
    """
    if config is None:
        config = GatewayConfig()

    app = FastAPI(
        title="Agentgate",
        version=APP_VERSION,
        description="HTTP gateway to a pool of warm coding-agent workers",
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.runtime = runtime
    app.state.background_tasks = set()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.web.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(create_health_router())
    app.include_router(create_automation_router())
    app.include_router(create_profile_router())
    app.include_router(create_auth_router())

    logger.info("app_created", cors_origins=config.web.cors_origins, version=APP_VERSION)

    return app
