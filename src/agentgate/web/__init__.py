"""HTTP surface of the gateway: FastAPI app, routes and middleware."""

from __future__ import annotations

from agentgate.web.app import create_app
from agentgate.web.middleware import RequestLoggingMiddleware

__all__ = [
    "create_app",
    "RequestLoggingMiddleware",
]
