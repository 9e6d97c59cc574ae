"""Run, status, and session endpoints for Agentgate.

This module exposes the dispatch queue over HTTP:
- Run a prompt, anonymously or within a session
- Close a session explicitly
- Inspect pool, backlog, and session state

Admission errors (full backlog, too many sessions) map to 429 so clients
can back off and retry.

Example:
    >>> from fastapi import FastAPI
    >>> from agentgate.web.routes.automation import create_automation_router
    >>>
    >>> app = FastAPI()
    >>> app.include_router(create_automation_router())
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from agentgate.automation.errors import AdmissionError, QueueShutdownError, SessionClosedError
from agentgate.automation.queue import DispatchQueue
from agentgate.automation.types import QueueStatus, RunRequest, RunResult, SessionSummary
from agentgate.config import GatewayConfig
from agentgate.logging import bind_session_context, get_logger, short_id
from agentgate.web.dependencies import get_config, get_queue, require_user

logger = get_logger(__name__)


class RunBody(BaseModel):
    """Run request body.

    The caller identity always comes from the bearer token, never the body.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    prompt: str = Field(..., min_length=1)
    session_id: str | None = Field(default=None, min_length=1)
    timeout_ms: int | None = Field(default=None, gt=0)
    idle_timeout_ms: int | None = Field(default=None, gt=0)


class CloseSessionBody(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_id: str = Field(..., min_length=1)


class GatewayStatus(QueueStatus):
    """Queue status plus the open sessions (ids truncated)."""

    sessions: list[SessionSummary]


def create_automation_router() -> APIRouter:
    """Create automation routes.

    Routes:
        POST /run - Execute a prompt
        GET /status - Pool, backlog, and session state
        DELETE /session - Close a session
    """
    router = APIRouter(tags=["automation"])

    @router.post("/run", response_model=RunResult)
    async def run(
        body: RunBody,
        user_id: str = Depends(require_user),
        queue: DispatchQueue = Depends(get_queue),  # noqa: B008
        config: GatewayConfig = Depends(get_config),  # noqa: B008
    ) -> RunResult:
        """Execute a prompt and wait for its result.

        Raises:
            HTTPException: 400 on an oversized prompt, 429 on admission
                rejection, 409 if the session was closed mid-request, 503
                during shutdown, 500 on unexpected errors
        """
        max_length = config.runtime.max_prompt_length
        if len(body.prompt) > max_length:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Prompt exceeds {max_length} characters",
            )

        bind_session_context(body.session_id, user_id)
        logger.info("run_received", prompt_preview=body.prompt[:30])

        request = RunRequest(
            prompt=body.prompt,
            session_id=body.session_id,
            user_id=user_id,
            timeout_ms=body.timeout_ms,
            idle_timeout_ms=body.idle_timeout_ms,
        )

        try:
            result = await queue.run(request)
        except AdmissionError as exc:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f"{exc}, try again later",
            ) from exc
        except SessionClosedError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        except QueueShutdownError as exc:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
            ) from exc
        except Exception as exc:
            logger.error("run_failed", error=str(exc), exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Internal server error",
            ) from exc

        logger.info(
            "run_completed",
            success=result.success,
            duration_ms=result.duration_ms,
            timed_out=result.timed_out,
        )
        return result

    @router.get("/status", response_model=GatewayStatus)
    async def get_status(
        _user_id: str = Depends(require_user),
        queue: DispatchQueue = Depends(get_queue),  # noqa: B008
    ) -> GatewayStatus:
        queue_status = queue.get_status()
        sessions = [
            SessionSummary(
                id=short_id(session.id),
                last_activity=session.last_activity,
                processing=session.processing,
            )
            for session in queue.sessions.get_active()
        ]
        return GatewayStatus(**queue_status.model_dump(), sessions=sessions)

    @router.delete("/session")
    async def close_session(
        body: CloseSessionBody = Body(...),  # noqa: B008
        _user_id: str = Depends(require_user),
        queue: DispatchQueue = Depends(get_queue),  # noqa: B008
    ) -> dict[str, Any]:
        """Close a session; closing an unknown session is not an error."""
        existed = await queue.sessions.close(body.session_id)
        logger.info("session_close_requested", session_id=short_id(body.session_id), existed=existed)
        return {"closed": True}

    return router
