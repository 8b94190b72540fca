from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized configuration.

    Loaded from:
    - environment variables
    - .env file (if present)
    """
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Required key (the app should fail fast if missing)
    openweather_api_key: str
    openweather_base_url: str = "https://api.openweathermap.org/data/2.5"
    openweather_timeout_s: float = 10.0

    app_name: str = "Weather API"
    environment: str = Field(default="development", pattern=r"^(development|test|production)$")
    log_level: str = "INFO"

    database_url: str = "sqlite:///weather_api.sqlite3"
    redis_url: str = "redis://localhost:6379/0"

    # Unset secret falls back to a weak constant (local/dev only)
    jwt_secret: Optional[str] = None
    jwt_expires_in: str = "24h"
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    cache_ttl_seconds: int = 300

    # 100 requests per 15 minutes per client
    rate_limit_enabled: bool = True
    rate_limit_window_s: int = 900
    rate_limit_max_requests: int = 100

    cors_origins: List[str] = ["*"]

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def get_settings() -> Settings:
    return Settings()
