"""Retry policy for the Web API client.

Only rate-limit responses are retried. The policy decides how many times and
how long to wait; the server's ``Retry-After`` wins over computed backoff
up to ``max_retry_after``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated, Callable

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, computed_field

from .backoff import Backoff, ExponentialBackoff

if TYPE_CHECKING:
    from dataverse_core.foundation.config import RetrySettings


class RetryPolicy(BaseModel):
    """Bounded retry configuration.

    Attributes:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1)
        backoff: Delay strategy used when the server gives no retry delay
        max_retry_after: Ceiling on a server-directed delay
        on_retry: Optional callback ``(attempt, delay)`` for observability

    Example:
        >>> policy = RetryPolicy(max_retries=3)
        >>> policy.get_delay(0, retry_after=None)
        1.0
        >>> policy.get_delay(2, retry_after=5.0)
        5.0
    """

    model_config = ConfigDict(
        frozen=True,
        arbitrary_types_allowed=True,
        extra="forbid",
    )

    max_retries: Annotated[int, Field(ge=0, le=10)] = 3
    backoff: Backoff = Field(default_factory=ExponentialBackoff, repr=False)
    max_retry_after: PositiveFloat = 60.0
    on_retry: Callable[[int, float], None] | None = Field(default=None, exclude=True, repr=False)

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        return cls(
            max_retries=settings.max_retries,
            backoff=ExponentialBackoff(
                base=settings.base_delay,
                multiplier=settings.multiplier,
                max_delay=settings.max_delay,
            ),
            max_retry_after=settings.max_delay,
        )

    @computed_field
    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def should_retry(self, attempt: int) -> bool:
        """Whether another attempt is allowed after 0-indexed ``attempt`` was rate limited."""
        return attempt < self.max_retries

    def get_delay(self, attempt: int, retry_after: float | None = None) -> float:
        if retry_after is None:
            return self.backoff.delay(attempt)
        return min(retry_after, self.max_retry_after)

    def __hash__(self) -> int:
        return hash((self.max_retries, self.backoff, self.max_retry_after))


NO_RETRY = RetryPolicy(max_retries=0)
