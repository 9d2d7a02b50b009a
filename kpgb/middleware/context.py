"""
Request context middleware for log correlation.

Injects request_id and correlation_id into every request so all log lines
emitted while handling it can be grouped together.

Headers:
- X-Request-ID: Unique ID for this request (generated if not provided)
- X-Correlation-ID: ID spanning multiple services (passed through)
"""

import re
import time
from typing import Optional

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from kpgb.core.context import (
    clear_context,
    generate_request_id,
    set_correlation_id,
    set_request_id,
)

logger = structlog.get_logger(__name__)

# Threshold above which a request is logged at warning level (ms)
SLOW_REQUEST_THRESHOLD_MS = 500.0

# Request ID validation to prevent log injection attacks
MAX_ID_LENGTH = 64
SAFE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_\-]+$")


def _validate_id(value: Optional[str]) -> Optional[str]:
    """
    Validate request/correlation IDs supplied by the client.

    Returns None if invalid (a generated ID is used instead). Rejects
    control characters, newlines and anything longer than MAX_ID_LENGTH.
    """
    if not value:
        return None
    if len(value) > MAX_ID_LENGTH:
        return None
    if not SAFE_ID_PATTERN.match(value):
        return None
    return value


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Binds request_id / correlation_id to structlog for the request's lifetime
    and echoes them back in the response headers.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = _validate_id(request.headers.get("X-Request-ID")) or generate_request_id()
        set_request_id(request_id)
        request.state.request_id = request_id

        correlation_id = _validate_id(request.headers.get("X-Correlation-ID"))
        if correlation_id:
            set_correlation_id(correlation_id)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            correlation_id=correlation_id,
            path=request.url.path,
            method=request.method,
        )

        start_time = time.perf_counter()
        status_code = 500  # Default to error in case of exception

        try:
            response = await call_next(request)
            status_code = response.status_code

            response.headers["X-Request-ID"] = request_id
            if correlation_id:
                response.headers["X-Correlation-ID"] = correlation_id

            return response
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            if not request.url.path.startswith("/health"):
                log = logger.warning if duration_ms >= SLOW_REQUEST_THRESHOLD_MS else logger.debug
                log("Request handled", status_code=status_code, duration_ms=round(duration_ms, 1))

            # Clean up context to prevent leaking to next request
            clear_context()
            structlog.contextvars.clear_contextvars()
