"""
Telemetry Middleware
====================

Correlation IDs and request timing.
"""

import re
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from observability.logging_config import bind_context, clear_context, get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Caller-supplied IDs end up in logs and audit records
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def _request_id(request: Request) -> str:
    supplied = request.headers.get(REQUEST_ID_HEADER)
    if supplied and _REQUEST_ID_PATTERN.match(supplied):
        return supplied
    return str(uuid.uuid4())


class TelemetryMiddleware(BaseHTTPMiddleware):
    """
    Propagates ``X-Request-ID`` and times every request.

    The request ID is stored on ``request.state`` and bound to the logging
    context, so pipeline log lines for a question share it.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = _request_id(request)
        request.state.request_id = request_id
        clear_context()
        bind_context(request_id=request_id)

        started = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
        finally:
            duration_ms = (time.perf_counter() - started) * 1000
            log = logger.warning if status >= 500 else logger.info
            log(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status=status,
                duration_ms=round(duration_ms, 2),
            )
            clear_context()

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Response-Time-Ms"] = f"{duration_ms:.2f}"
        return response
