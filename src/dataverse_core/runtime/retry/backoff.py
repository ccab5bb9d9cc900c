"""Backoff strategies for rate-limit retries.

- ExponentialBackoff: base * multiplier ^ attempt, capped, optional jitter
- ConstantBackoff: Fixed delay
- parse_retry_after: server-directed delay from a ``Retry-After`` header
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Protocol, runtime_checkable


@runtime_checkable
class Backoff(Protocol):
    """Delay calculation; attempt numbers are 0-indexed (first retry = attempt 0)."""

    def delay(self, attempt: int) -> float: ...


@dataclass(frozen=True, slots=True)
class ExponentialBackoff:
    """Exponential backoff.

    Delay = min(base * (multiplier ^ attempt), max_delay), times a 0.5-1.5
    factor when jitter is enabled.

    Attributes:
        base: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay cap in seconds (default: 60.0)
        multiplier: Exponential growth factor (default: 2.0)
        jitter: Randomize delays (default: False, so waits are 1s, 2s, 4s ...)
    """

    base: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: bool = False

    def delay(self, attempt: int) -> float:
        d = min(self.base * (self.multiplier ** attempt), self.max_delay)
        return d * (0.5 + random.random()) if self.jitter else d


@dataclass(frozen=True, slots=True)
class ConstantBackoff:
    delay_seconds: float = 1.0

    def delay(self, attempt: int) -> float:
        return self.delay_seconds


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Seconds to wait from a ``Retry-After`` header (delta-seconds or HTTP date).

    Returns None when absent, unparseable or non-finite so the caller falls back
    to backoff.
    """
    if value is None or not value.strip():
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        return max(seconds, 0.0) if math.isfinite(seconds) else None
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max((when - (now or datetime.now(UTC))).total_seconds(), 0.0)
