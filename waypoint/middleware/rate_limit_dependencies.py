"""
Rate limit dependencies for public endpoints.

Usage:
    @router.post("/waitlist")
    async def join_waitlist(
        request: Request,
        _rate: None = Depends(rate_limit_waitlist_signup),
    ):
        ...
"""

from fastapi import HTTPException, Request, status

from waypoint.config import settings
from waypoint.infrastructure.observability.logging import get_logger
from waypoint.middleware.rate_limiter import rate_limiter

logger = get_logger(__name__)


async def rate_limit_waitlist_signup(request: Request) -> None:
    """Per-IP limit on waitlist signups. Raises 429 when exceeded."""
    if not settings.RATE_LIMIT_ENABLED:
        return

    ip_address = getattr(request.state, "ip_address", None)
    if not ip_address:
        logger.warning("Rate limit check skipped - no IP address")
        return

    allowed, info = await rate_limiter.check_ip_rate_limit(
        "waitlist_signup",
        ip_address,
        limit=settings.WAITLIST_SIGNUP_RATE_LIMIT,
        window_seconds=settings.WAITLIST_SIGNUP_RATE_WINDOW_SECONDS,
    )
    request.state.rate_limit_info = info

    if not allowed:
        logger.warning(
            "Waitlist signup rate limit exceeded",
            ip_address=ip_address,
            limit=info["limit"],
            retry_after=info["retry_after"],
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "rate_limit_exceeded",
                "message": f"Too many requests. Try again in {info['retry_after']} seconds.",
                "retry_after": info["retry_after"],
            },
            headers={"Retry-After": str(info["retry_after"])},
        )
