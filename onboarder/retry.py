"""
Retry policy for queued onboarding jobs.

Attempts are counted by the queue; the policy only decides whether a failed
attempt gets another try and how long the message waits before it.
"""

from dataclasses import dataclass

from .config import BACKOFF_SECONDS, MAX_TRIES


@dataclass(frozen=True)
class RetryPolicy:
    """
    Fixed-backoff retry policy.

    Args:
        tries: Total attempts per job, the first one included
        backoff: Seconds between attempts
    """

    tries: int = MAX_TRIES
    backoff: float = BACKOFF_SECONDS

    def __post_init__(self):
        if self.tries < 1:
            raise ValueError("tries must be at least 1")
        if self.backoff < 0:
            raise ValueError("backoff must not be negative")

    def should_retry(self, attempts: int, retryable: bool = True) -> bool:
        """
        Check if a job that failed on its ``attempts``-th try runs again.

        Args:
            attempts: Attempts made so far, including the failed one
            retryable: False for failures that no retry can fix
        """
        return retryable and attempts < self.tries

    def delay_for(self, attempts: int) -> float:
        """Seconds to wait before the next attempt. Fixed, whatever the count."""
        return float(self.backoff)

    def remaining(self, attempts: int) -> int:
        return max(0, self.tries - attempts)
