"""Error taxonomy for metadata resolution and Web API calls.

Provides error codes, a structured error model for caller feedback and the
exception hierarchy raised by the client, resolvers and executors.
"""

from __future__ import annotations

import traceback
from enum import StrEnum
from functools import lru_cache
from typing import Annotated, Any, Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
)


class ErrorCode(StrEnum):
    """Machine-readable error classification.

    Used for programmatic handling and to decide what the request layer retries.
    """
    CONFIGURATION = "CONFIGURATION"
    AUTHENTICATION = "AUTHENTICATION"
    RATE_LIMITED = "RATE_LIMITED"
    REMOTE_API_ERROR = "REMOTE_API_ERROR"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    NOT_FOUND = "NOT_FOUND"
    AMBIGUOUS_MATCH = "AMBIGUOUS_MATCH"
    MISSING_REQUIRED = "MISSING_REQUIRED"
    UNRESOLVED_LOOKUP = "UNRESOLVED_LOOKUP"
    UNRESOLVED_OPTION_SET = "UNRESOLVED_OPTION_SET"
    INVALID_QUERY = "INVALID_QUERY"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    UNKNOWN = "UNKNOWN"


# Ordered pattern -> code mapping, first hit wins
_PATTERN_CODES: dict[str, ErrorCode] = {
    "timeout": ErrorCode.TIMEOUT,
    "connect": ErrorCode.NETWORK_ERROR,
    "network": ErrorCode.NETWORK_ERROR,
    "ratelimit": ErrorCode.RATE_LIMITED,
    "429": ErrorCode.RATE_LIMITED,
    "auth": ErrorCode.AUTHENTICATION,
    "credential": ErrorCode.AUTHENTICATION,
    "forbidden": ErrorCode.AUTHENTICATION,
    "notfound": ErrorCode.NOT_FOUND,
    "not found": ErrorCode.NOT_FOUND,
    "config": ErrorCode.CONFIGURATION,
}
_PATTERN_KEYS = tuple(_PATTERN_CODES.keys())


@lru_cache(maxsize=256)
def _classify_cached(exc_key: str) -> ErrorCode:
    haystack = exc_key.lower()
    for pattern in _PATTERN_KEYS:
        if pattern in haystack:
            return _PATTERN_CODES[pattern]
    return ErrorCode.UNKNOWN


def classify_exception(exc: BaseException) -> ErrorCode:
    """Map exception to error code, typed errors first, then name/message patterns."""
    if isinstance(exc, DataverseException):
        return exc.code
    return _classify_cached(f"{type(exc).__name__} {exc}")


# Codes a caller may reasonably retry later (the request layer itself retries only RATE_LIMITED)
_RECOVERABLE_CODES: frozenset[ErrorCode] = frozenset({
    ErrorCode.RATE_LIMITED,
    ErrorCode.TIMEOUT,
    ErrorCode.NETWORK_ERROR,
})


class DataverseError(BaseModel):
    """Structured error for caller feedback.

    Attributes:
        operation: Operation that failed (e.g. ``describe_table``)
        message: Human-readable message naming the table/field/identifier involved
        code: Machine-readable error code
        recoverable: Whether a later retry might succeed
        details: Optional verbose detail (response body, stack trace)
        context: Identifiers the caller needs to self-correct
    """

    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        validate_default=True,
        json_schema_extra={
            "title": "Dataverse Error",
            "examples": [{
                "operation": "create_record",
                "message": "Missing required attributes for table 'account': name (Account Name)",
                "code": "MISSING_REQUIRED",
                "recoverable": False,
            }],
        },
    )

    operation: Annotated[str, Field(min_length=1)]
    message: Annotated[str, Field(min_length=1)]
    code: ErrorCode = ErrorCode.UNKNOWN
    recoverable: bool = False
    details: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)

    @field_validator("message", mode="before")
    @classmethod
    def _ensure_message(cls, v: str | Exception) -> str:
        return str(v) if isinstance(v, Exception) else v

    @computed_field
    @property
    def is_retryable(self) -> bool:
        return self.code in _RECOVERABLE_CODES

    @computed_field
    @property
    def severity(self) -> str:
        if self.code in (ErrorCode.RATE_LIMITED, ErrorCode.TIMEOUT):
            return "warning"
        if self.code in (ErrorCode.AUTHENTICATION, ErrorCode.CONFIGURATION):
            return "critical"
        return "error"

    @classmethod
    def from_exception(cls, operation: str, exc: BaseException, *, include_trace: bool = False) -> Self:
        """Build from any exception, reusing the payload of typed errors."""
        if isinstance(exc, DataverseException):
            return exc.error.model_copy(update={"operation": operation})
        code = classify_exception(exc)
        return cls(
            operation=operation,
            message=str(exc) or type(exc).__name__,
            code=code,
            recoverable=code in _RECOVERABLE_CODES,
            details=traceback.format_exc() if include_trace else None,
        )

    def render(self) -> str:
        parts = [f"**Dataverse Error ({self.operation}):** {self.message}"]
        if self.recoverable:
            parts.append("\n_This error may be transient - retrying later may succeed._")
        if self.details:
            parts.append(f"\n\nDetails:\n```\n{self.details}\n```")
        return "".join(parts)

    __str__ = render


class DataverseException(Exception):
    """Base exception carrying a DataverseError."""

    code: ErrorCode = ErrorCode.UNKNOWN
    recoverable: bool = False

    def __init__(
        self,
        message: str,
        *,
        operation: str = "dataverse",
        details: str | None = None,
        **context: Any,
    ) -> None:
        self.error = DataverseError(
            operation=operation,
            message=message,
            code=self.code,
            recoverable=self.recoverable,
            details=details,
            context=context,
        )
        super().__init__(message)

    @property
    def message(self) -> str:
        return self.error.message

    @property
    def context(self) -> dict[str, Any]:
        return self.error.context


class ConfigurationError(DataverseException):
    """Malformed instance URL, API version or connection string."""
    code = ErrorCode.CONFIGURATION


class AuthenticationError(DataverseException):
    """Credential acquisition failed, or the remote answered 401/403."""
    code = ErrorCode.AUTHENTICATION


class RemoteApiError(DataverseException):
    """Non-2xx response that is neither a rate limit nor an auth failure."""
    code = ErrorCode.REMOTE_API_ERROR

    def __init__(self, status: int, body: str, *, operation: str = "send", **context: Any) -> None:
        self.status = status
        self.body = body
        super().__init__(
            f"Dataverse API request failed with status {status}: {body}",
            operation=operation,
            status=status,
            **context,
        )


class RateLimitExceeded(DataverseException):
    """Still rate limited after the retry budget was spent."""
    code = ErrorCode.RATE_LIMITED
    recoverable = True


class RequestTimeout(DataverseException):
    code = ErrorCode.TIMEOUT
    recoverable = True


class NetworkError(DataverseException):
    code = ErrorCode.NETWORK_ERROR
    recoverable = True


class NotFound(DataverseException):
    """Table, record, view or identifier does not exist."""
    code = ErrorCode.NOT_FOUND


class AmbiguousMatch(DataverseException):
    """Several candidates where exactly one was required."""
    code = ErrorCode.AMBIGUOUS_MATCH


class AmbiguousPolymorphicLookup(AmbiguousMatch):
    """Bare GUID supplied for a lookup with more than one target table."""


class AmbiguousOptionSet(AmbiguousMatch):
    """Choice label matches more than one option."""


class MissingRequiredAttributes(DataverseException):
    """Aggregated list of every required attribute absent from a create payload."""
    code = ErrorCode.MISSING_REQUIRED

    def __init__(self, table: str, missing: list[tuple[str, str]], *, operation: str = "validate_required_attributes") -> None:
        self.table = table
        self.missing = missing
        field_list = "\n".join(f"  - {name} ({display})" for name, display in missing)
        super().__init__(
            f"Cannot create record in table '{table}': Missing required attributes:\n{field_list}\n\n"
            "Use describe_table_format to see all required fields and their data types.",
            operation=operation,
            table=table,
            missing=[name for name, _ in missing],
        )

    @property
    def missing_names(self) -> list[str]:
        return [name for name, _ in self.missing]


class UnresolvedLookup(DataverseException):
    code = ErrorCode.UNRESOLVED_LOOKUP


class UnresolvedOptionSet(DataverseException):
    code = ErrorCode.UNRESOLVED_OPTION_SET


class InvalidQuery(DataverseException):
    """Structured query rejected by the remote (HTTP 400)."""
    code = ErrorCode.INVALID_QUERY


class PayloadResolutionError(DataverseException):
    """Several attributes of one payload failed to resolve."""
    code = ErrorCode.INVALID_PAYLOAD

    def __init__(self, table: str, errors: list[DataverseException], *, operation: str = "resolve_payload") -> None:
        self.table = table
        self.errors = errors
        listing = "\n".join(f"  - {e.message}" for e in errors)
        super().__init__(
            f"Could not resolve {len(errors)} attribute(s) for table '{table}':\n{listing}",
            operation=operation,
            table=table,
            codes=[e.code.value for e in errors],
        )
