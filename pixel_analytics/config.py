"""
Runtime configuration for the pixel tracking service.

Settings are loaded (highest priority first) from environment variables,
a ``.env`` file in the working directory, and the defaults below.

Example:
    ```python
    from pixel_analytics.config import get_settings

    settings = get_settings()
    print(settings.DATABASE_URL)
    ```
"""

from functools import lru_cache
from typing import Any

from pydantic import ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """
    Service settings.

    Attributes:
        SERVICE_NAME: Used for log file names and the health payload.
        ENVIRONMENT: "DEV" or "PROD".
        DEBUG: When on, unexpected error messages are echoed to the caller.
        LOG_LEVEL: Minimum loguru level.
        LOG_DIR: Directory for rotated log files. Empty disables file logging.
        DATABASE_URL: SQLAlchemy URL of the event store.
        CAPI_TIMEOUT_SECONDS: Upper bound for one Conversions API call.
        GEO_LOOKUP_URL: ip-api style endpoint, ``{ip}`` is substituted.
        PIXEL_CACHE_TTL_SECONDS: How long a pixel configuration snapshot is reused.
        PUBLIC_BASE_URL: Origin the storefront script posts events back to.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    SERVICE_NAME: str = "pixel-analytics"
    SERVICE_VERSION: str = "0.1.0"
    ENVIRONMENT: str = "DEV"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    DATABASE_URL: str = "sqlite:///./pixel_analytics.db"
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 5

    META_GRAPH_BASE_URL: str = "https://graph.facebook.com"
    META_GRAPH_API_VERSION: str = "v20.0"
    CAPI_TIMEOUT_SECONDS: float = 5.0

    GEO_LOOKUP_ENABLED: bool = True
    GEO_LOOKUP_URL: str = (
        "http://ip-api.com/json/{ip}?fields=status,message,city,regionName,country,countryCode,timezone"
    )
    GEO_TIMEOUT_SECONDS: float = 2.0

    PIXEL_CACHE_TTL_SECONDS: int = 60
    PUBLIC_BASE_URL: str = "http://localhost:8001"

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: Any) -> str:
        level = str(v or "INFO").strip().upper()
        if level not in LOG_LEVELS:
            msg = f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got: {v}"
            raise ValueError(msg)
        return level

    @field_validator("CAPI_TIMEOUT_SECONDS", "GEO_TIMEOUT_SECONDS")
    @classmethod
    def validate_timeout(cls, v: float, info: ValidationInfo) -> float:
        if v <= 0:
            msg = f"{info.field_name} must be a positive number of seconds"
            raise ValueError(msg)
        return v

    @field_validator("DATABASE_POOL_SIZE", "DATABASE_MAX_OVERFLOW", "PIXEL_CACHE_TTL_SECONDS")
    @classmethod
    def validate_non_negative(cls, v: int, info: ValidationInfo) -> int:
        if v < 0:
            msg = f"{info.field_name} must be a positive integer"
            raise ValueError(msg)
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance (cached)."""
    return Settings()
