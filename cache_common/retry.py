"""
Backoff policy for reconnect attempts.
"""

from dataclasses import dataclass
from typing import Union

from cache_common.config import ConnectionConfig


@dataclass(frozen=True)
class Delay:
    """Wait this long before the next connect attempt."""

    attempt: int
    milliseconds: int

    @property
    def seconds(self) -> float:
        return self.milliseconds / 1000.0


@dataclass(frozen=True)
class PermanentFailure:
    """Retry budget exhausted; no further automatic attempts."""

    attempt: int
    max_retries: int


class BackoffPolicy:
    """Linear backoff capped at ``max_delay_ms``, without jitter.

    ``next_delay`` is pure: the same attempt number always yields the same
    outcome, so the policy can be shared and tested on its own.
    """

    def __init__(self,
                 base_delay_ms: int,
                 max_delay_ms: int,
                 max_retries: int,
                 retry_forever: bool = False):
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.max_retries = max_retries
        self.retry_forever = retry_forever

    @classmethod
    def from_config(cls, config: ConnectionConfig) -> "BackoffPolicy":
        return cls(
            base_delay_ms=config.base_delay_ms,
            max_delay_ms=config.max_delay_ms,
            max_retries=config.max_retries,
            retry_forever=config.retry_forever,
        )

    def next_delay(self, attempt: int) -> Union[Delay, PermanentFailure]:
        """Return the delay before retry number ``attempt`` (1-based)."""
        if attempt < 0:
            raise ValueError(f"attempt must be >= 0, got {attempt}")

        if attempt > self.max_retries:
            if self.retry_forever:
                return Delay(attempt=attempt, milliseconds=self.max_delay_ms)
            return PermanentFailure(attempt=attempt, max_retries=self.max_retries)

        return Delay(
            attempt=attempt,
            milliseconds=min(self.base_delay_ms * attempt, self.max_delay_ms),
        )

    def __repr__(self) -> str:
        return (
            f"BackoffPolicy(base_delay_ms={self.base_delay_ms}, "
            f"max_delay_ms={self.max_delay_ms}, max_retries={self.max_retries}, "
            f"retry_forever={self.retry_forever})"
        )
