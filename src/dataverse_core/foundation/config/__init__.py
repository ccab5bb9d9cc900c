"""Configuration: environment settings, instance handles and connection strings."""

from .instance import (
    ConnectionParams,
    InstanceConfig,
    parse_connection_string,
    validate_oauth_connection,
)
from .settings import (
    CacheSettings,
    DataverseSettings,
    HttpSettings,
    LoggingSettings,
    RetrySettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "DataverseSettings", "CacheSettings", "HttpSettings", "RetrySettings", "LoggingSettings",
    "get_settings", "clear_settings_cache",
    "InstanceConfig", "ConnectionParams", "parse_connection_string", "validate_oauth_connection",
]
