"""Per-user profile endpoints.

The profile is the ``CLAUDE.md`` file in the caller's workspace. It seeds
the warm-up prompt of every new worker started for that user.
"""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from agentgate.agents.workspace import WorkspaceLayout
from agentgate.logging import get_logger
from agentgate.web.dependencies import get_workspace, require_user

logger = get_logger(__name__)


class ProfileBody(BaseModel):
    content: str


def create_profile_router() -> APIRouter:
    """Create profile routes.

    Routes:
        GET /user-claude - Read the caller's profile
        PUT /user-claude - Replace the caller's profile
    """
    router = APIRouter(tags=["profile"])

    @router.get("/user-claude")
    async def read_profile(
        user_id: str = Depends(require_user),
        workspace: WorkspaceLayout = Depends(get_workspace),  # noqa: B008
    ) -> dict[str, Any]:
        try:
            content = await asyncio.to_thread(workspace.read_profile, user_id)
        except OSError as e:
            logger.error("profile_read_failed", user_id=user_id, error=str(e))
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to read profile",
            ) from e
        return {"content": content}

    @router.put("/user-claude")
    async def write_profile(
        body: ProfileBody,
        user_id: str = Depends(require_user),
        workspace: WorkspaceLayout = Depends(get_workspace),  # noqa: B008
    ) -> dict[str, Any]:
        try:
            await asyncio.to_thread(workspace.write_profile, user_id, body.content)
        except OSError as e:
            logger.error("profile_write_failed", user_id=user_id, error=str(e))
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to save profile",
            ) from e
        return {"saved": True}

    return router
