"""
Weather provider client.

We intentionally separate API logic from FastAPI endpoints:
- easier to test in isolation
- cleaner services/main
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from .schemas import WeatherReading

logger = logging.getLogger(__name__)


class WeatherError(RuntimeError):
    """Raised when the provider call fails."""
    pass


class CityNotFound(WeatherError):
    """Provider answered 404 for the requested city."""

    def __init__(self, city: str):
        super().__init__(f"City '{city}' not found")
        self.city = city


def parse_current_weather(data: Dict[str, Any]) -> WeatherReading:
    """
    Map an OpenWeather /weather payload onto a WeatherReading.

    Description and icon come from the first condition and default to ""
    when the provider sends an empty list.
    """
    conditions = data.get("weather") or []
    first = conditions[0] if conditions else {}
    main = data["main"]
    return WeatherReading(
        city=data["name"],
        country=(data.get("sys") or {}).get("country"),
        temperature=float(main["temp"]),
        humidity=main.get("humidity"),
        description=first.get("description", ""),
        icon=first.get("icon", ""),
    )


class OpenWeatherClient:
    """
    OpenWeatherMap wrapper.

    Endpoint used:
        {base}/weather?q=...&appid=KEY&units=metric
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openweathermap.org/data/2.5",
        timeout_s: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport

    async def current_weather(self, city: str) -> WeatherReading:
        """
        Retrieves current weather (metric units) for a city name.
        """
        params = {"q": city, "appid": self.api_key, "units": "metric"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                r = await client.get(f"{self.base}/weather", params=params)
        except httpx.HTTPError as e:
            raise WeatherError(f"Current weather request failed: {e!r}") from e

        if r.status_code == 404:
            raise CityNotFound(city)
        if r.status_code != 200:
            raise WeatherError(f"Current weather failed ({r.status_code}): {r.text[:200]}")

        try:
            return parse_current_weather(r.json())
        except (ValueError, KeyError, TypeError) as e:
            raise WeatherError(f"Unexpected current weather payload: {e!r}") from e
