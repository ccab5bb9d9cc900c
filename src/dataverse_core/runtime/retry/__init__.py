"""Retry policies and backoff strategies for rate-limited requests."""

from .backoff import Backoff, ConstantBackoff, ExponentialBackoff, parse_retry_after
from .policy import NO_RETRY, RetryPolicy

__all__ = [
    "RetryPolicy", "NO_RETRY",
    "Backoff", "ExponentialBackoff", "ConstantBackoff", "parse_retry_after",
]
