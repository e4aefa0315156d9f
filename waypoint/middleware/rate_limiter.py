"""
Rate Limiter - Redis-based sliding window limiting for public endpoints.

Waitlist signup is unauthenticated, so it is limited per client IP.
Entries live in a Redis sorted set scored by timestamp; the check and
the insert run in one Lua script so concurrent requests cannot both
slip under the limit.

Fails open by default: if Redis is unreachable the request is allowed.

Usage:
    from waypoint.middleware.rate_limiter import rate_limiter

    allowed, info = await rate_limiter.check_rate_limit(
        key="waitlist_signup:ip:203.0.113.7",
        limit=5,
        window_seconds=60,
    )
"""

import time

from waypoint.config import settings
from waypoint.infrastructure.observability.logging import get_logger
from waypoint.services.redis_client import fast_redis

logger = get_logger(__name__)


class RateLimiter:
    """Sliding window limiter backed by Redis sorted sets."""

    # Returns {allowed (0 or 1), count, oldest score or 0}
    SLIDING_WINDOW_SCRIPT = """
    local key = KEYS[1]
    local limit = tonumber(ARGV[1])
    local window = tonumber(ARGV[2])
    local now = tonumber(ARGV[3])
    local member = ARGV[4]

    redis.call('ZREMRANGEBYSCORE', key, 0, now - window)
    local count = redis.call('ZCARD', key)

    if count >= limit then
        local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
        local oldest_score = 0
        if #oldest > 0 then
            oldest_score = tonumber(oldest[2])
        end
        return {0, count, oldest_score}
    end

    redis.call('ZADD', key, now, member)
    redis.call('EXPIRE', key, window * 2)
    return {1, count + 1, 0}
    """

    def __init__(self, default_limit: int, window_seconds: int, fail_open: bool = True):
        self.default_limit = default_limit
        self.window_seconds = window_seconds
        self.fail_open = fail_open

    async def check_rate_limit(
        self,
        key: str,
        limit: int | None = None,
        window_seconds: int | None = None,
    ) -> tuple[bool, dict]:
        """
        Record one request against `key` and report whether it is allowed.

        Returns:
            (allowed, info) where info carries limit, remaining and,
            when rejected, retry_after in seconds.
        """
        limit = limit or self.default_limit
        window_seconds = window_seconds or self.window_seconds
        now = int(time.time())

        try:
            if not fast_redis.client:
                return self._degraded(limit, "redis_not_initialized")

            result = await fast_redis.client.eval(
                self.SLIDING_WINDOW_SCRIPT,
                1,
                f"ratelimit:{key}",
                limit,
                window_seconds,
                now,
                f"{now}:{time.time_ns()}",
            )
        except Exception as e:
            logger.error(
                "Rate limiter Redis error",
                error=str(e),
                error_type=type(e).__name__,
                key=key,
            )
            return self._degraded(limit, "rate_limiter_error")

        allowed = bool(result[0])
        count = int(result[1])
        oldest = int(result[2]) if result[2] else 0

        if not allowed:
            retry_after = max(1, oldest + window_seconds - now) if oldest else window_seconds
            return False, self._info(False, limit, 0, retry_after=retry_after)

        return True, self._info(True, limit, max(0, limit - count))

    async def check_ip_rate_limit(
        self,
        scope: str,
        ip_address: str,
        limit: int | None = None,
        window_seconds: int | None = None,
    ) -> tuple[bool, dict]:
        return await self.check_rate_limit(
            key=f"{scope}:ip:{ip_address}",
            limit=limit,
            window_seconds=window_seconds,
        )

    def _degraded(self, limit: int, error: str) -> tuple[bool, dict]:
        if self.fail_open:
            logger.warning("Rate limiter unavailable, failing open", reason=error)
            return True, self._info(True, limit, limit, error=error)
        return False, self._info(False, limit, 0, error=error)

    @staticmethod
    def _info(
        allowed: bool,
        limit: int,
        remaining: int,
        retry_after: int | None = None,
        error: str | None = None,
    ) -> dict:
        info = {
            "allowed": allowed,
            "limit": limit,
            "remaining": remaining,
            "retry_after": retry_after,
        }
        if error:
            info["error"] = error
        return info


rate_limiter = RateLimiter(
    default_limit=settings.WAITLIST_SIGNUP_RATE_LIMIT,
    window_seconds=settings.WAITLIST_SIGNUP_RATE_WINDOW_SECONDS,
    fail_open=settings.RATE_LIMIT_FAIL_OPEN,
)
