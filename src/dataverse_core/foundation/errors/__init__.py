"""Unified error handling for dataverse_core.

- ErrorCode: Standard error codes
- DataverseError: Structured, serializable error payload
- DataverseException and subclasses: the typed errors raised by every layer
"""

from .errors import (
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
    classify_exception,
)

__all__ = [
    # Core
    "ErrorCode", "DataverseError", "DataverseException", "classify_exception",
    # Request layer
    "ConfigurationError", "AuthenticationError", "RateLimitExceeded", "RemoteApiError",
    "RequestTimeout", "NetworkError",
    # Resolution
    "NotFound", "AmbiguousMatch", "AmbiguousPolymorphicLookup", "AmbiguousOptionSet",
    "MissingRequiredAttributes", "UnresolvedLookup", "UnresolvedOptionSet",
    "InvalidQuery", "PayloadResolutionError",
]
