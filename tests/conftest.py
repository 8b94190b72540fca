"""
Shared test fixtures.

Provides:
- FakeRedis: dict-backed stand-in for the redis.asyncio calls we make
- FakeProvider: httpx.MockTransport serving OpenWeather-shaped payloads
- an app wired to both plus in-memory SQLite, and an async client for it
- a plain SQLAlchemy session for service-level tests

No external services are needed.
"""

from __future__ import annotations

import fnmatch
from typing import Any

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from weather_api import crud
from weather_api.cache import WeatherCache
from weather_api.db import Base, make_engine, make_session_factory
from weather_api.main import create_app
from weather_api.models import UserRole
from weather_api.security import TokenService, hash_password
from weather_api.services import AuthService, WeatherService
from weather_api.settings import Settings
from weather_api.weather_clients import OpenWeatherClient

TEST_SECRET = "test-secret"
PROVIDER_BASE = "http://provider.test/data/2.5"


# ---------------------------------------------------------------------------
# FakeRedis
# ---------------------------------------------------------------------------

class FakeRedis:
    """
    Minimal dict-backed Redis fake implementing:
      get, setex, delete, keys, ping, aclose
    """

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self.store[key] = value
        self.ttls[key] = ttl

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def keys(self, pattern: str) -> list[str]:
        return [k for k in self.store if fnmatch.fnmatchcase(k, pattern)]

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Fake weather provider
# ---------------------------------------------------------------------------

def owm_payload(
    name: str = "Istanbul",
    country: str = "TR",
    temp: float = 18.5,
    humidity: int = 72,
    description: str = "clear sky",
    icon: str = "01d",
) -> dict[str, Any]:
    """Factory for OpenWeatherMap /weather response dicts."""
    return {
        "name": name,
        "sys": {"country": country},
        "main": {"temp": temp, "humidity": humidity},
        "weather": [{"description": description, "icon": icon}],
    }


class FakeProvider:
    """
    Serves /weather for known cities, 404 for unknown ones and 503 for
    anything registered in `failing`. Every request is recorded.
    """

    def __init__(self) -> None:
        self.cities: dict[str, dict[str, Any]] = {
            "istanbul": owm_payload(),
            "london": owm_payload("London", "GB", 11.2, 81, "light rain", "10d"),
        }
        self.failing: set[str] = set()
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        city = request.url.params.get("q", "").lower()
        if city in self.failing:
            return httpx.Response(503, json={"cod": 503, "message": "unavailable"})
        payload = self.cities.get(city)
        if payload is None:
            return httpx.Response(404, json={"cod": "404", "message": "city not found"})
        return httpx.Response(200, json=payload)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def client(self) -> OpenWeatherClient:
        return OpenWeatherClient(
            "test-key",
            base_url=PROVIDER_BASE,
            timeout_s=2.0,
            transport=httpx.MockTransport(self.handler),
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "openweather_api_key": "test-key",
        "openweather_base_url": PROVIDER_BASE,
        "database_url": "sqlite://",
        "environment": "test",
        "jwt_secret": TEST_SECRET,
        "bcrypt_rounds": 4,
        "rate_limit_enabled": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def app(settings, fake_redis, provider):
    return create_app(settings, redis_client=fake_redis, weather_client=provider.client())


@pytest.fixture
async def client(app):
    """Async HTTP client bound to the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def db_session():
    """Standalone in-memory database for service-level tests."""
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    session = make_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def tokens() -> TokenService:
    return TokenService(TEST_SECRET)


@pytest.fixture
def auth_service(tokens) -> AuthService:
    return AuthService(tokens, bcrypt_rounds=4)


@pytest.fixture
def weather_service(provider, fake_redis) -> WeatherService:
    return WeatherService(provider.client(), WeatherCache(fake_redis))


def make_user(db, email: str = "user@example.com", name: str = "Test User", role: UserRole = UserRole.USER):
    return crud.create_user(db, email=email, password_hash=hash_password("secret123", rounds=4), name=name, role=role)


async def register_and_login(
    client: AsyncClient,
    email: str = "user@example.com",
    password: str = "secret123",
    name: str = "Test User",
    role: str | None = None,
) -> str:
    """Register through the API and return a bearer token."""
    body = {"email": email, "password": password, "name": name}
    if role:
        body["role"] = role
    r = await client.post("/api/auth/register", json=body)
    assert r.status_code == 201, r.text
    r = await client.post("/api/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return r.json()["data"]["token"]


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
