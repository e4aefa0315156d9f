"""
RequestContext Middleware - request ID, client IP and user agent.

Sets request.state.request_id / ip_address / user_agent (read by the
audit helpers and the rate limiter) and binds request_id into the
structlog context so every log line of the request carries it.
"""

import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from waypoint.config import settings
from waypoint.infrastructure.observability.logging import (
    bind_request_context,
    clear_request_context,
    get_logger,
)

logger = get_logger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        ip_address = self._extract_client_ip(request)

        request.state.request_id = request_id
        request.state.ip_address = ip_address
        request.state.user_agent = request.headers.get("user-agent")

        clear_request_context()
        bind_request_context(request_id=request_id, path=request.url.path)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)

        logger.info(
            "Request completed",
            method=request.method,
            status_code=response.status_code,
            duration_ms=duration_ms,
            ip_address=ip_address,
        )
        response.headers["X-Request-ID"] = request_id

        rate_limit_info = getattr(request.state, "rate_limit_info", None)
        if rate_limit_info:
            response.headers["X-RateLimit-Limit"] = str(rate_limit_info["limit"])
            response.headers["X-RateLimit-Remaining"] = str(rate_limit_info["remaining"])

        clear_request_context()
        return response

    def _extract_client_ip(self, request: Request) -> str | None:
        """
        X-Forwarded-For is honoured only when enabled and the direct peer
        is a trusted proxy; otherwise clients could spoof their IP past
        the signup limiter.
        """
        direct = request.client.host if request.client else None
        if not settings.TRUST_X_FORWARDED_FOR:
            return direct

        if direct in settings.TRUSTED_PROXY_IPS:
            forwarded_for = request.headers.get("x-forwarded-for")
            if forwarded_for:
                return forwarded_for.split(",")[0].strip()

        return direct
