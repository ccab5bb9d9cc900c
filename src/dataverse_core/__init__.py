"""Dataverse Core - metadata resolution and payload normalization for the Dataverse Web API.

Resolves loosely-typed table names and record values supplied by callers into
the canonical identifiers and wire formats the Web API requires, backed by a
TTL metadata cache and a rate-limit aware request client.

Quick Start:
    >>> from dataverse_core import DataverseCore
    >>>
    >>> core = DataverseCore()
    >>> async with core.connect("https://org.crm.dynamics.com", get_token) as client:
    ...     await core.resolve_identifier(client, "accounts")
    ...     'account'
    ...     await core.describe_table(client, "account")
    ...     await core.create_record(client, "contact", {
    ...         "lastname": "Smith",
    ...         "parentcustomerid": "account=00000000-0000-0000-0000-000000000001",
    ...         "preferredcontactmethodcode": "Email",
    ...     })

Configuration:
    >>> from dataverse_core import get_settings, configure_logging
    >>> configure_logging(get_settings().logging)
    # DATAVERSE_RETRY_MAX_RETRIES=5, DATAVERSE_CACHE_TABLE_LIST_TTL=3600, DATAVERSE_LOG_FORMAT=json

Errors:
    Every failure is a DataverseException subclass carrying a DataverseError
    (operation, message, code, context) that can be rendered for the caller.
"""

from .client import DataverseCore, parse_entity_id
from .foundation.config import (
    ConnectionParams,
    DataverseSettings,
    InstanceConfig,
    get_settings,
    parse_connection_string,
)
from .foundation.errors import (
    AmbiguousMatch,
    AmbiguousOptionSet,
    AmbiguousPolymorphicLookup,
    AuthenticationError,
    ConfigurationError,
    DataverseError,
    DataverseException,
    ErrorCode,
    InvalidQuery,
    MissingRequiredAttributes,
    NetworkError,
    NotFound,
    PayloadResolutionError,
    RateLimitExceeded,
    RemoteApiError,
    RequestTimeout,
    UnresolvedLookup,
    UnresolvedOptionSet,
)
from .io.cache import CacheClass, CacheStats, MetadataCache
from .io.http import CredentialProvider, WebApiClient
from .runtime.observability import configure_logging, get_logger
from .runtime.retry import ExponentialBackoff, RetryPolicy
from .schema import (
    AttributeDescription,
    AttributeType,
    OptionValue,
    TableDescription,
    TableFormatDescription,
    TableMetadata,
    WhoAmI,
)
from .services import ImportantFieldsScorer, MetadataResolver, PayloadResolver, QueryExecutor

__version__ = "0.1.0"

__all__ = [
    # Facade
    "DataverseCore", "parse_entity_id",
    # Client
    "WebApiClient", "CredentialProvider", "RetryPolicy", "ExponentialBackoff",
    # Services
    "MetadataResolver", "PayloadResolver", "QueryExecutor", "ImportantFieldsScorer",
    # Cache
    "MetadataCache", "CacheClass", "CacheStats",
    # Schema
    "AttributeType", "AttributeDescription", "OptionValue", "TableDescription",
    "TableFormatDescription", "TableMetadata", "WhoAmI",
    # Config
    "DataverseSettings", "get_settings", "InstanceConfig", "ConnectionParams", "parse_connection_string",
    # Logging
    "configure_logging", "get_logger",
    # Errors
    "ErrorCode", "DataverseError", "DataverseException",
    "ConfigurationError", "AuthenticationError", "RateLimitExceeded", "RemoteApiError",
    "RequestTimeout", "NetworkError", "NotFound", "AmbiguousMatch", "AmbiguousPolymorphicLookup",
    "AmbiguousOptionSet", "MissingRequiredAttributes", "UnresolvedLookup", "UnresolvedOptionSet",
    "InvalidQuery", "PayloadResolutionError",
]
