"""Health endpoint for Agentgate.

``GET /health`` needs no authentication and is meant for load balancers and
container probes: it answers 200 while at least one pool worker is ready or
busy, and 503 when the pool is degraded.

Example:
    >>> from fastapi import FastAPI
    >>> from agentgate.web.routes.health import create_health_router
    >>>
    >>> app = FastAPI()
    >>> app.include_router(create_health_router())
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from agentgate.automation.queue import DispatchQueue
from agentgate.automation.types import HealthSummary
from agentgate.logging import get_logger
from agentgate.web.dependencies import get_queue

logger = get_logger(__name__)


def create_health_router() -> APIRouter:
    """Create health check router.

    Routes:
        GET /health - Pool health summary (200 ok / 503 degraded)
    """
    router = APIRouter(tags=["health"])

    @router.get(
        "/health",
        response_model=HealthSummary,
        responses={503: {"model": HealthSummary, "description": "Pool degraded"}},
    )
    async def health(
        queue: DispatchQueue = Depends(get_queue),  # noqa: B008
    ) -> JSONResponse:
        summary = queue.get_health_summary()
        if summary.status != "ok":
            logger.warning("health_degraded", workers=summary.workers.model_dump())
        return JSONResponse(
            status_code=status.HTTP_200_OK if summary.status == "ok" else status.HTTP_503_SERVICE_UNAVAILABLE,
            content=summary.model_dump(mode="json", by_alias=True),
        )

    return router
