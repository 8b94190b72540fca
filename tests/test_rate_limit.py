"""
Rate limiter middleware with a mocked Redis pipeline.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from weather_api.main import create_app
from weather_api.rate_limit import RateLimitMiddleware
from tests.conftest import make_settings


def _redis_with_count(count: int):
    """Pipeline whose ZCARD step reports `count` requests already in the window."""
    redis = AsyncMock()
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[0, count, 1, True])
    redis.pipeline = MagicMock(return_value=pipe)
    return redis


def _app(redis, max_requests: int = 3) -> FastAPI:
    app = FastAPI()

    @app.get("/ping")
    async def ping():
        return {"ok": True}

    @app.get("/health")
    async def health():
        return {"ok": True}

    app.add_middleware(RateLimitMiddleware, redis_client=redis, max_requests=max_requests, window_s=900)
    return app


async def _get(app: FastAPI, path: str, **kwargs):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        return await client.get(path, **kwargs)


class TestRateLimitMiddleware:
    async def test_under_limit(self):
        r = await _get(_app(_redis_with_count(1)), "/ping")
        assert r.status_code == 200
        assert r.headers["X-RateLimit-Limit"] == "3"
        assert r.headers["X-RateLimit-Remaining"] == "1"

    async def test_over_limit(self):
        r = await _get(_app(_redis_with_count(3)), "/ping")
        assert r.status_code == 429
        assert r.json() == {"success": False, "error": "Too many requests, try again later."}
        assert r.headers["Retry-After"] == "900"

    async def test_health_is_exempt(self):
        redis = _redis_with_count(99)
        r = await _get(_app(redis), "/health")
        assert r.status_code == 200
        redis.pipeline.assert_not_called()

    async def test_keyed_by_forwarded_ip(self):
        redis = _redis_with_count(0)
        await _get(_app(redis), "/ping", headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
        pipe = redis.pipeline.return_value
        assert pipe.zcard.call_args.args[0] == "ratelimit:ip:203.0.113.7"

    async def test_no_redis_passes_through(self):
        r = await _get(_app(None), "/ping")
        assert r.status_code == 200

    async def test_redis_failure_passes_through(self):
        redis = _redis_with_count(0)
        redis.pipeline.return_value.execute = AsyncMock(side_effect=RedisConnectionError("down"))
        r = await _get(_app(redis), "/ping")
        assert r.status_code == 200


class TestAppWiring:
    # Limited before the auth gate runs; otherwise the gate answers 401.
    @pytest.mark.parametrize("enabled,expected", [(True, 429), (False, 401)])
    async def test_setting_toggles_limiter(self, provider, enabled, expected):
        app = create_app(
            make_settings(rate_limit_enabled=enabled),
            redis_client=_redis_with_count(500),
            weather_client=provider.client(),
        )
        r = await _get(app, "/api/weather/history")
        assert r.status_code == expected
