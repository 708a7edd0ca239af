"""
Exception hierarchy for the onboarding pipeline.

Structural validation problems are not exceptions: they are returned as
error maps by ``onboarder.schema`` before anything is persisted.
"""

from typing import Optional


class OnboarderError(Exception):
    """Base class for all pipeline errors."""
    pass


class ConfigError(OnboarderError):
    """Raised when an environment setting cannot be parsed."""
    pass


class IngestionError(OnboarderError):
    """
    Raised when a chunk upsert fails.

    Chunks committed before the failure stay persisted; ``batch_id`` lets the
    caller correlate the partial batch with the logs.
    """

    def __init__(self, message: str, batch_id: str, chunks_committed: int = 0):
        super().__init__(message)
        self.batch_id = batch_id
        self.chunks_committed = chunks_committed


class QueueUnavailableError(OnboarderError):
    """Raised by the work queue when it no longer accepts messages."""
    pass


class DispatchError(OnboarderError):
    """Raised when onboarding jobs cannot be enqueued."""

    def __init__(self, message: str, dispatched: int = 0):
        super().__init__(message)
        self.dispatched = dispatched


class OnboardingError(OnboarderError):
    """
    Raised by a worker attempt after the failure was recorded on the entity.

    ``retryable`` tells the queue layer whether another attempt is worth
    scheduling.
    """

    def __init__(self, message: str, retryable: bool = True, organization_id: Optional[int] = None):
        super().__init__(message)
        self.retryable = retryable
        self.organization_id = organization_id
