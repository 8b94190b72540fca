"""
Service layer.

AuthService handles registration, login and user management.
WeatherService runs the cache-aside weather lookup, records query history
and serves paginated history.

Both are constructed once in create_app() and shared by all requests.
"""

from __future__ import annotations

import logging
import math
from typing import Optional

from fastapi.concurrency import run_in_threadpool
from redis.exceptions import RedisError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud
from .cache import WeatherCache
from .errors import AuthError, ConflictError, DependencyError, NotFoundError, ValidationError
from .models import UserRole
from .schemas import (
    DeletedUser,
    HistoryPage,
    LoginResult,
    LoginUser,
    Pagination,
    UserCreate,
    UserLogin,
    UserOut,
    WeatherQueryOut,
    WeatherReading,
)
from .security import TokenService, check_password, hash_password
from .weather_clients import CityNotFound, OpenWeatherClient, WeatherError

logger = logging.getLogger(__name__)

# Same message for unknown email and wrong password.
INVALID_CREDENTIALS = "Invalid email or password"


def _require_id(user_id: str) -> None:
    if not user_id or not user_id.strip():
        raise ValidationError("User ID is required")


class AuthService:
    def __init__(self, tokens: TokenService, bcrypt_rounds: int = 12):
        self.tokens = tokens
        self.bcrypt_rounds = bcrypt_rounds

    def register(self, db: Session, payload: UserCreate) -> UserOut:
        """
        CREATE user:
        - reject duplicate email
        - hash password (bcrypt)
        - store with role USER unless one was given
        """
        if crud.get_user_by_email(db, payload.email) is not None:
            raise ConflictError("User with this email already exists")

        password_hash = hash_password(payload.password, rounds=self.bcrypt_rounds)
        try:
            user = crud.create_user(
                db,
                email=payload.email,
                password_hash=password_hash,
                name=payload.name,
                role=payload.role or UserRole.USER,
            )
        except IntegrityError as e:
            # Lost a race with a concurrent registration for the same email.
            db.rollback()
            raise ConflictError("User with this email already exists") from e

        logger.info("User created: %s", user.email)
        return UserOut.model_validate(user)

    def login(self, db: Session, payload: UserLogin) -> LoginResult:
        user = crud.get_user_by_email(db, payload.email)
        if user is None or not check_password(payload.password, user.password):
            logger.info("Failed login for %s", payload.email)
            raise AuthError(INVALID_CREDENTIALS)

        token = self.tokens.issue(user.id, user.email, user.role)
        logger.info("User logged in: %s", user.email)
        return LoginResult(user=LoginUser.model_validate(user), token=token)

    def list_users(self, db: Session) -> list[UserOut]:
        try:
            users = crud.list_users(db)
        except SQLAlchemyError as e:
            logger.error("Error fetching users", exc_info=True)
            raise DependencyError("Failed to fetch users") from e
        return [UserOut.model_validate(u) for u in users]

    def get_user(self, db: Session, user_id: str) -> UserOut:
        _require_id(user_id)
        user = crud.get_user(db, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return UserOut.model_validate(user)

    def delete_user(self, db: Session, user_id: str) -> DeletedUser:
        """DELETE user and, by cascade, their weather history."""
        _require_id(user_id)
        user = crud.get_user(db, user_id)
        if user is None:
            logger.warning("Delete requested for unknown user %s", user_id)
            raise DependencyError("Failed to delete user")

        summary = DeletedUser.model_validate(user)
        try:
            crud.delete_user(db, user)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Error deleting user %s", user_id, exc_info=True)
            raise DependencyError("Failed to delete user") from e

        logger.info("User deleted successfully: %s", summary.email)
        return summary


class WeatherService:
    """
    Cache-aside weather lookups.

    Usage:
        service = WeatherService(OpenWeatherClient(key), WeatherCache(redis))
        reading = await service.get_weather(db, "Istanbul", user_id)
    """

    def __init__(self, client: OpenWeatherClient, cache: WeatherCache):
        self.client = client
        self.cache = cache

    async def get_weather(self, db: Session, city: str, user_id: str) -> WeatherReading:
        """
        - Check cache first (key: weather:{lowercased city})
        - On hit: record history, return cached reading
        - On miss: call the provider, cache the reading, record history, return it

        Concurrent misses for the same city are not coalesced; each one calls
        the provider and the last cache write wins.
        """
        cached = await self.cache.get(city)
        if cached is not None:
            logger.info("Weather data for %s retrieved from cache", city)
            await run_in_threadpool(self._record_history, db, cached, user_id)
            return cached

        try:
            reading = await self.client.current_weather(city)
        except CityNotFound as e:
            logger.info("Provider has no weather for %r", city)
            raise NotFoundError(str(e)) from e
        except WeatherError as e:
            logger.error("Error fetching weather data for %s: %s", city, e)
            raise DependencyError("Failed to fetch weather data") from e

        await self.cache.set(city, reading)
        logger.info("Weather data for %s cached successfully", city)

        await run_in_threadpool(self._record_history, db, reading, user_id)
        return reading

    def _record_history(self, db: Session, reading: WeatherReading, user_id: str) -> None:
        """
        Best-effort: a failed insert is logged and the lookup still succeeds.
        Blocking; get_weather runs it in the thread pool.
        """
        try:
            crud.create_weather_query(db, reading, user_id)
        except SQLAlchemyError:
            db.rollback()
            logger.error("Error saving weather query for user %s", user_id, exc_info=True)
            return
        logger.info("Weather query saved for user %s", user_id)

    def get_history(
        self,
        db: Session,
        user_id: str,
        role: UserRole,
        page: int = 1,
        limit: int = 10,
    ) -> HistoryPage:
        """
        Admins see every record; everyone else only their own.
        Pages are 1-indexed, newest first.
        """
        owner_id = None if role == UserRole.ADMIN else user_id
        offset = (page - 1) * limit

        try:
            records = crud.list_weather_queries(db, owner_id, limit=limit, offset=offset)
            total = crud.count_weather_queries(db, owner_id)
        except SQLAlchemyError as e:
            logger.error("Error fetching weather queries", exc_info=True)
            raise DependencyError("Failed to fetch weather queries") from e

        return HistoryPage(
            records=[WeatherQueryOut.model_validate(r) for r in records],
            pagination=Pagination(
                page=page,
                limit=limit,
                total=total,
                total_pages=math.ceil(total / limit),
            ),
        )

    async def clear_cache(self, city: Optional[str] = None) -> None:
        try:
            if city:
                await self.cache.delete(city)
                logger.info("Cache cleared for %s", city)
            else:
                removed = await self.cache.clear()
                if removed:
                    logger.info("Cleared %d cache entries", removed)
        except RedisError as e:
            logger.error("Error clearing cache", exc_info=True)
            raise DependencyError("Failed to clear cache") from e
