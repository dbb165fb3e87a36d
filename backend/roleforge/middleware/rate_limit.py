"""
Redis-backed sliding window rate limiter middleware.

Counts requests per client IP over a 60 s window. Login attempts get their
own, tighter budget. When Redis is unreachable the limiter fails open and
waits before trying to reconnect.
"""

import time
import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

import redis.asyncio as aioredis

from roleforge.config import settings

logger = logging.getLogger(__name__)

EXEMPT_PATHS = frozenset({"/api/health", "/metrics"})
LOGIN_PATH = "/api/auth/login"
RECONNECT_DELAY = 30.0  # seconds


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app):
        super().__init__(app)
        self._redis: aioredis.Redis | None = None
        self._retry_at = 0.0
        self.window = 60

    async def _get_redis(self) -> aioredis.Redis | None:
        if self._redis is not None:
            return self._redis
        if time.monotonic() < self._retry_at:
            return None
        client = aioredis.from_url(settings.redis_url, decode_responses=True)
        try:
            await client.ping()
        except (aioredis.RedisError, OSError) as exc:
            logger.warning("Rate limiter: Redis unavailable (%s), passing through", exc)
            await client.aclose()
            self._retry_at = time.monotonic() + RECONNECT_DELAY
            return None
        self._redis = client
        return client

    def _bucket(self, request: Request) -> tuple[str, int]:
        client_ip = request.client.host if request.client else "unknown"
        if request.url.path == LOGIN_PATH:
            return f"ratelimit:login:{client_ip}", settings.login_rate_limit_per_minute
        return f"ratelimit:{client_ip}", settings.rate_limit_per_minute

    async def dispatch(self, request: Request, call_next):
        if not settings.rate_limit_enabled or request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        r = await self._get_redis()
        if r is None:
            return await call_next(request)

        key, limit = self._bucket(request)
        now = time.time()
        try:
            pipe = r.pipeline()
            pipe.zremrangebyscore(key, 0, now - self.window)
            pipe.zadd(key, {str(now): now})
            pipe.zcard(key)
            pipe.expire(key, self.window)
            results = await pipe.execute()
            request_count = results[2]
        except (aioredis.RedisError, OSError) as exc:
            logger.warning("Rate limiter Redis error: %s", exc)
            await r.aclose()
            self._redis = None
            self._retry_at = time.monotonic() + RECONNECT_DELAY
            return await call_next(request)

        if request_count > limit:
            logger.warning("Rate limit exceeded for %s (%d/%d)", key, request_count, limit)
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests. Please try again later.", "error": "rate_limited"},
                headers={"Retry-After": str(self.window)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, limit - request_count))
        return response
