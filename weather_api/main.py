"""
FastAPI entrypoint.

This file focuses on:
- routing
- request/response handling
- wiring together DB + cache + provider client + services

Run with:
    uvicorn weather_api.main:create_app --factory
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from .cache import WeatherCache
from .db import Base, get_db, make_engine, make_session_factory
from .deps import get_auth_service, get_weather_service, require_admin, require_user
from .errors import AppError, ValidationError
from .rate_limit import RateLimitMiddleware
from .schemas import UserCreate, UserLogin, WeatherRequest, envelope
from .security import Identity, TokenService, parse_duration
from .services import AuthService, WeatherService
from .settings import Settings, get_settings
from .weather_clients import OpenWeatherClient

logger = logging.getLogger(__name__)

MASKED_ERROR = "Server error"

# Defaults applied to every response unless a route already set them.
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Referrer-Policy": "no-referrer",
    "X-DNS-Prefetch-Control": "off",
    "X-Permitted-Cross-Domain-Policies": "none",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
}

router = APIRouter()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


# -------------------------
# Auth APIs
# -------------------------

@router.post("/api/auth/register", status_code=201)
def register(payload: UserCreate, db: Session = Depends(get_db), auth: AuthService = Depends(get_auth_service)):
    """Create a user account (role defaults to USER)."""
    try:
        user = auth.register(db, payload)
    except AppError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return envelope(True, data=user, message="User created successfully")


@router.post("/api/auth/login")
def login(payload: UserLogin, db: Session = Depends(get_db), auth: AuthService = Depends(get_auth_service)):
    """Exchange email + password for a bearer token."""
    try:
        result = auth.login(db, payload)
    except AppError as e:
        raise HTTPException(status_code=401, detail=e.message)
    return envelope(True, data=result, message="Login successful")


@router.get("/api/auth/users")
def list_users(
    _: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    try:
        users = auth.list_users(db)
    except AppError as e:
        raise HTTPException(status_code=500, detail=e.message)
    return envelope(True, data=users, message="Users retrieved successfully")


@router.get("/api/auth/users/{user_id}")
def get_user(
    user_id: str,
    _: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    try:
        user = auth.get_user(db, user_id)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except AppError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return envelope(True, data=user, message="User retrieved successfully")


@router.delete("/api/auth/users/{user_id}")
def delete_user(
    user_id: str,
    _: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    """Delete a user and their weather history."""
    try:
        deleted = auth.delete_user(db, user_id)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except AppError as e:
        raise HTTPException(status_code=500, detail=e.message)
    return envelope(True, data=deleted, message="User deleted successfully")


# -------------------------
# Weather APIs
# -------------------------

@router.post("/api/weather/current")
async def current_weather(
    payload: WeatherRequest,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
    weather: WeatherService = Depends(get_weather_service),
):
    """Current weather for a city (cached for a few minutes)."""
    try:
        reading = await weather.get_weather(db, payload.city, identity.user_id)
    except AppError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return envelope(True, data=reading, message=f"Weather data for {payload.city} retrieved successfully")


@router.get("/api/weather/history")
def weather_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
    weather: WeatherService = Depends(get_weather_service),
):
    """Past lookups: admins see everyone's, users only their own."""
    try:
        history = weather.get_history(db, identity.user_id, identity.role, page=page, limit=limit)
    except AppError as e:
        raise HTTPException(status_code=500, detail=e.message)
    return envelope(True, data=history, message="Weather queries retrieved successfully")


@router.delete("/api/weather/cache")
async def clear_weather_cache(
    city: Optional[str] = Query(None),
    _: Identity = Depends(require_admin),
    weather: WeatherService = Depends(get_weather_service),
):
    try:
        await weather.clear_cache(city)
    except AppError as e:
        raise HTTPException(status_code=500, detail=e.message)
    message = f"Cache cleared for {city}" if city else "All weather cache cleared"
    return envelope(True, message=message)


@router.get("/health")
async def health():
    body = envelope(True, message="API is running")
    body["timestamp"] = datetime.now(timezone.utc).isoformat()
    return body


# -------------------------
# App factory
# -------------------------

def _error_message(settings: Settings, status_code: int, message: str) -> str:
    """Production hides 500-class details; everything else keeps its message."""
    if settings.is_production and status_code >= 500:
        return MASKED_ERROR
    return message


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Validation error"
    first = errors[0]
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    msg = first.get("msg", "Validation error")
    return f"{'.'.join(loc)}: {msg}" if loc else msg


def create_app(
    settings: Optional[Settings] = None,
    redis_client=None,
    weather_client: Optional[OpenWeatherClient] = None,
) -> FastAPI:
    """
    Build the application. Services are constructed once here and shared
    through app.state; tests pass their own Redis / provider client.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    engine = make_engine(settings.database_url)
    # Create tables automatically.
    Base.metadata.create_all(bind=engine)

    if redis_client is None:
        redis_client = aioredis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
        )

    if weather_client is None:
        weather_client = OpenWeatherClient(
            settings.openweather_api_key,
            base_url=settings.openweather_base_url,
            timeout_s=settings.openweather_timeout_s,
        )

    tokens = TokenService(settings.jwt_secret, parse_duration(settings.jwt_expires_in))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            await redis_client.ping()
            logger.info("Redis connected")
        except RedisError:
            logger.warning("Redis ping failed; cache misses will go to the provider", exc_info=True)
        logger.info("%s started (%s)", settings.app_name, settings.environment)

        yield

        logger.info("Shutting down...")
        try:
            await redis_client.aclose()
        except RedisError:
            logger.warning("Failed to close Redis client", exc_info=True)
        engine.dispose()
        logger.info("Shutdown complete")

    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)
    app.state.redis = redis_client
    app.state.token_service = tokens
    app.state.auth_service = AuthService(tokens, bcrypt_rounds=settings.bcrypt_rounds)
    app.state.weather_service = WeatherService(
        weather_client,
        WeatherCache(redis_client, ttl_seconds=settings.cache_ttl_seconds),
    )

    app.include_router(router)

    # -- Middleware (last added = outermost) --

    if settings.rate_limit_enabled:
        app.add_middleware(
            RateLimitMiddleware,
            redis_client=redis_client,
            max_requests=settings.rate_limit_max_requests,
            window_s=settings.rate_limit_window_s,
        )

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
        request.state.request_id = request_id
        started = time.perf_counter()

        response = await call_next(request)

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info("%s %s %d %.1fms", request.method, request.url.path, response.status_code, elapsed_ms)
        response.headers["X-Request-ID"] = request_id
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -- Exception handlers --

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
        if exc.status_code == 404 and detail == "Not Found":
            detail = "Route not found"
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, detail)
        return JSONResponse(
            status_code=exc.status_code,
            content=envelope(False, error=_error_message(settings, exc.status_code, detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content=envelope(False, error=_validation_message(exc)))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=envelope(False, error=_error_message(settings, 500, str(exc))),
        )

    return app
