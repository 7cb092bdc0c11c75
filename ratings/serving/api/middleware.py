"""
API Middleware

Request logging binds the request id and caller id into the structlog
context, so every log line a service call emits can be traced back to the
request. Security headers are added on the way out.
"""

import time
import uuid
from typing import Callable, Dict

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ratings.config import get_settings
from ratings.metrics import REQUEST_DURATION

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

SECURITY_HEADERS: Dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One line per finished request, with status and latency"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        user_id = request.headers.get(get_settings().security.user_id_header)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, user_id=user_id)

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "Unhandled error",
                method=request.method,
                path=request.url.path,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            raise

        elapsed = time.perf_counter() - started
        duration_ms = round(elapsed * 1000, 2)
        REQUEST_DURATION.labels(method=request.method, status_code=str(response.status_code)).observe(elapsed)
        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            "Request handled",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add SECURITY_HEADERS to every response"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response
