"""
Weather cache — Redis-backed, keyed per city.

Cache key format:  weather:{lowercased city}
TTL:               300 seconds by default

Values are JSON-serialized WeatherReading objects. The cache is purely an
optimization; lookups treat any Redis fault as a miss.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from .schemas import WeatherReading

logger = logging.getLogger(__name__)

KEY_PREFIX = "weather:"
DEFAULT_TTL_SECONDS = 300


def cache_key(city: str) -> str:
    """Case-insensitive key: 'Istanbul' and 'ISTANBUL' share an entry."""
    return f"{KEY_PREFIX}{city.lower()}"


class WeatherCache:
    """
    Usage:
        cache = WeatherCache(redis_client)
        reading = await cache.get("Tokyo")
        if reading is None:
            reading = await fetch_from_api(...)
            await cache.set("Tokyo", reading)
    """

    def __init__(self, redis, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        """
        Args:
            redis: An async Redis client (redis.asyncio compatible) created with
                   decode_responses=True. May be None: reads miss, writes are skipped.
        """
        self._redis = redis
        self.ttl_seconds = ttl_seconds

    async def get(self, city: str) -> Optional[WeatherReading]:
        """Return the cached reading for city, or None on miss / unavailable."""
        if self._redis is None:
            return None

        key = cache_key(city)
        try:
            raw = await self._redis.get(key)
        except RedisError:
            logger.warning("Weather cache GET failed for key=%s", key, exc_info=True)
            return None

        if raw is None:
            logger.debug("Weather cache miss: %s", key)
            return None

        try:
            reading = WeatherReading.model_validate_json(raw)
        except PydanticValidationError:
            logger.warning("Discarding unreadable cache entry: %s", key)
            return None
        logger.debug("Weather cache hit: %s", key)
        return reading

    async def set(self, city: str, reading: WeatherReading) -> None:
        """Write a reading with the configured TTL."""
        if self._redis is None:
            return

        key = cache_key(city)
        try:
            await self._redis.setex(key, self.ttl_seconds, reading.model_dump_json())
            logger.debug("Weather cached: key=%s ttl=%ds", key, self.ttl_seconds)
        except RedisError:
            logger.warning("Weather cache SETEX failed for key=%s", key, exc_info=True)

    async def delete(self, city: str) -> None:
        """Evict one city. Redis errors propagate."""
        if self._redis is None:
            return
        await self._redis.delete(cache_key(city))

    async def clear(self) -> int:
        """Evict every weather:* entry in one DEL. Returns how many keys were removed."""
        if self._redis is None:
            return 0
        keys = await self._redis.keys(f"{KEY_PREFIX}*")
        if not keys:
            return 0
        await self._redis.delete(*keys)
        return len(keys)
