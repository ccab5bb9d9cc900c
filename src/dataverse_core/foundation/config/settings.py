"""Process-wide knobs for cache lifetimes, HTTP transport, retries and logging.

Every group reads its own ``DATAVERSE_*`` prefix, and a ``.env`` file in the
working directory is honored. Values are validated once and cached.

Example:
    >>> from dataverse_core.foundation.config import get_settings
    >>> settings = get_settings()
    >>> settings.cache.table_description_ttl
    86400.0
    >>> settings.http.timeout
    120.0

    # Or with environment variables:
    # DATAVERSE_CACHE_IMPORTANT_COLUMNS_TTL=3600
    # DATAVERSE_RETRY_MAX_RETRIES=5
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING, Annotated, Literal

from pydantic import Field, PositiveFloat, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from dataverse_core.io.cache import CacheClass

DAY: float = 24 * 60 * 60


class CacheSettings(BaseSettings):
    """Per-class metadata cache TTLs (seconds)."""

    model_config = SettingsConfigDict(
        env_prefix="DATAVERSE_CACHE_",
        extra="ignore",
    )

    table_list_ttl: PositiveFloat = DAY
    table_description_ttl: PositiveFloat = DAY
    entity_set_name_ttl: PositiveFloat = Field(default=DAY, description="Applies to forward and reverse mappings")
    important_columns_ttl: PositiveFloat = DAY
    readable_entity_names_ttl: PositiveFloat = DAY

    def ttl_for(self, cache_class: CacheClass) -> float:
        """TTL for a cache class; both entity-set-name directions share one setting."""
        from dataverse_core.io.cache import CacheClass

        return {
            CacheClass.TABLE_LIST: self.table_list_ttl,
            CacheClass.TABLE_DESCRIPTION: self.table_description_ttl,
            CacheClass.ENTITY_SET_NAME: self.entity_set_name_ttl,
            CacheClass.REVERSE_ENTITY_SET_NAME: self.entity_set_name_ttl,
            CacheClass.IMPORTANT_COLUMNS: self.important_columns_ttl,
            CacheClass.READABLE_ENTITY_NAMES: self.readable_entity_names_ttl,
        }[cache_class]


class HttpSettings(BaseSettings):
    """Web API client configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DATAVERSE_HTTP_",
        extra="ignore",
    )

    timeout: PositiveFloat = Field(default=120.0, description="Per-call timeout in seconds")
    api_version: str = "9.2"
    user_agent: str = "dataverse-core/0.1"


class RetrySettings(BaseSettings):
    """Rate-limit retry configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DATAVERSE_RETRY_",
        extra="ignore",
    )

    max_retries: Annotated[int, Field(ge=0, le=10)] = 3
    base_delay: PositiveFloat = Field(default=1.0, description="Base delay in seconds")
    multiplier: PositiveFloat = Field(default=2.0, description="Exponential backoff factor")
    max_delay: PositiveFloat = Field(default=60.0, description="Cap for computed and server-directed delays")


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DATAVERSE_LOG_",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["json", "text"] = "text"

    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v


class DataverseSettings(BaseSettings):
    """Root settings.

    Loads configuration from environment variables with DATAVERSE_ prefix.

    Example environment variables:
        DATAVERSE_HTTP_TIMEOUT=60
        DATAVERSE_RETRY_MAX_RETRIES=5
        DATAVERSE_LOG_FORMAT=json
    """

    model_config = SettingsConfigDict(
        env_prefix="DATAVERSE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        validate_default=True,
    )

    cache: CacheSettings = Field(default_factory=CacheSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@lru_cache(maxsize=1)
def get_settings() -> DataverseSettings:
    """Get the process-wide settings instance (cached)."""
    return DataverseSettings()


def clear_settings_cache() -> None:
    """Force settings to be re-read from the environment on next access."""
    get_settings.cache_clear()
