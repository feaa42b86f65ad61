"""
Poll and retry policy shared by every settlement phase.
"""
import time
from dataclasses import dataclass, field
from typing import Callable, Iterator


@dataclass(frozen=True)
class PollPolicy:
    """How often to poll an external system and when to give up.

    ``max_attempts`` is the hard upper bound enforced by the transfer
    orchestrator for both attestation polling and mint retries.
    """
    max_attempts: int = 60
    interval_seconds: float = 2.0
    backoff_factor: float = 1.5
    max_interval_seconds: float = 15.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False, compare=False)

    @classmethod
    def from_settings(cls) -> 'PollPolicy':
        from django.conf import settings

        return cls(
            max_attempts=settings.GIFTS_POLL_MAX_ATTEMPTS,
            interval_seconds=settings.GIFTS_POLL_INTERVAL_SECONDS,
            backoff_factor=settings.GIFTS_POLL_BACKOFF_FACTOR,
            max_interval_seconds=settings.GIFTS_POLL_MAX_INTERVAL_SECONDS,
        )

    @classmethod
    def for_submission(cls) -> 'PollPolicy':
        from django.conf import settings

        return cls(
            max_attempts=settings.GIFTS_SUBMIT_MAX_ATTEMPTS,
            interval_seconds=1.0,
            backoff_factor=2.0,
            max_interval_seconds=8.0,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after ``attempt`` (1-based) before the next one."""
        delay = self.interval_seconds * (self.backoff_factor ** max(attempt - 1, 0))
        return min(delay, self.max_interval_seconds)

    def exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts

    def attempts(self) -> Iterator[int]:
        """Yield attempt numbers, sleeping between them."""
        for attempt in range(1, self.max_attempts + 1):
            yield attempt
            if attempt < self.max_attempts:
                self.sleep(self.delay_for(attempt))
