"""
Exponential backoff policy for failed analysis attempts.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from mediaqueue.config.settings import Settings


@dataclass(frozen=True)
class RetryPolicy:
    """Maps an attempt count to a backoff delay and a retry decision."""

    base_delay_s: float = 5.0
    max_delay_s: float = 300.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            base_delay_s=settings.retry_base_delay_s,
            max_delay_s=settings.retry_max_delay_s,
        )

    def delay_for(self, attempt: int) -> float:
        """Exponential backoff: base * 2^attempt, capped."""
        return min(self.max_delay_s, self.base_delay_s * (2**attempt))

    def should_retry(self, attempt: int, max_attempts: int) -> bool:
        return attempt < max_attempts

    def next_run_at(self, attempt: int, now: datetime) -> datetime:
        return now + timedelta(seconds=self.delay_for(attempt))
