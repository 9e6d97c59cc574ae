"""HTTP route factories for the gateway."""

from __future__ import annotations

from agentgate.web.routes.auth import create_auth_router
from agentgate.web.routes.automation import create_automation_router
from agentgate.web.routes.health import create_health_router
from agentgate.web.routes.profile import create_profile_router

__all__ = [
    "create_auth_router",
    "create_automation_router",
    "create_health_router",
    "create_profile_router",
]
