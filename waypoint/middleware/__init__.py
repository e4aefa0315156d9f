"""
Middleware components for request processing.

- Request context (request ID, client IP, user agent, log binding)
- Rate limiting for public endpoints
"""

from waypoint.middleware.rate_limit_dependencies import rate_limit_waitlist_signup
from waypoint.middleware.rate_limiter import rate_limiter
from waypoint.middleware.request_context import RequestContextMiddleware

__all__ = [
    "RequestContextMiddleware",
    "rate_limiter",
    "rate_limit_waitlist_signup",
]
