"""
Redis-backed sliding window rate limiter.

Each client IP gets `max_requests` per `window_s` seconds across the whole
API. /health is never limited. Without Redis, requests pass through.
"""

import logging
import time
from typing import Callable

from fastapi import Request, Response
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from .schemas import envelope

logger = logging.getLogger(__name__)

EXEMPT_PATHS = ("/health",)


def client_key(request: Request) -> str:
    """Client identifier: first X-Forwarded-For hop, else the peer address."""
    client_ip = request.client.host if request.client else "unknown"
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        client_ip = forwarded.split(",")[0].strip()
    return f"ip:{client_ip}"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding window rate limiter backed by Redis sorted sets."""

    def __init__(self, app, redis_client=None, max_requests: int = 100, window_s: int = 900):
        super().__init__(app)
        self.redis = redis_client
        self.max_requests = max_requests
        self.window_s = window_s

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in EXEMPT_PATHS or self.redis is None:
            return await call_next(request)

        window_key = f"ratelimit:{client_key(request)}"
        now = time.time()
        window_start = now - self.window_s

        try:
            pipe = self.redis.pipeline()
            # Remove expired entries
            pipe.zremrangebyscore(window_key, 0, window_start)
            # Count current entries
            pipe.zcard(window_key)
            # Add current request
            pipe.zadd(window_key, {f"{now}:{id(request)}": now})
            pipe.expire(window_key, self.window_s * 2)
            results = await pipe.execute()
        except RedisError:
            logger.warning("Rate limiter unavailable; letting request through", exc_info=True)
            return await call_next(request)

        current_count = results[1]
        headers = {
            "X-RateLimit-Limit": str(self.max_requests),
            "X-RateLimit-Remaining": str(max(0, self.max_requests - current_count - 1)),
            "X-RateLimit-Reset": str(int(now + self.window_s)),
        }

        if current_count >= self.max_requests:
            headers["Retry-After"] = str(self.window_s)
            logger.info("Rate limit exceeded for %s", window_key)
            return JSONResponse(
                status_code=429,
                content=envelope(False, error="Too many requests, try again later."),
                headers=headers,
            )

        response = await call_next(request)
        for key, value in headers.items():
            response.headers[key] = value
        return response
