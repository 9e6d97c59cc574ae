"""Request logging middleware for Agentgate.

Logs every HTTP request with method, path, status code and duration, and
binds a correlation id (taken from ``X-Correlation-ID`` or freshly
generated) to all log lines emitted while the request is handled.
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware

from agentgate.logging import get_logger, set_correlation_id

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from starlette.requests import Request
    from starlette.responses import Response

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs requests with timing and echoes the correlation id back.

    Health probes are logged at debug level so container checks do not
    flood the request log.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        set_correlation_id(correlation_id)

        log = logger.debug if request.url.path == "/health" else logger.info
        start_time = time.perf_counter()
        log("request_started", method=request.method, path=request.url.path)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                error=str(exc),
                exc_info=True,
            )
            raise
        else:
            log(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            response.headers[CORRELATION_HEADER] = correlation_id
            return response
        finally:
            set_correlation_id(None)
