"""
Onboarding worker.

Drains the onboarding queue and moves each organization through
pending -> processing -> completed | failed. The move into processing is a
conditional update, so when the same job is delivered twice only one
attempt runs the onboarding procedure.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from threading import Event
from typing import Optional

from email_validator import EmailNotValidError, validate_email

from .config import BACKOFF_SECONDS, MAX_TRIES, PROCESSING_DELAY, QUEUE_NAME
from .database import STATUS_COMPLETED, STATUS_PROCESSING, Organization, get_session
from .errors import OnboardingError
from .logger import get_logger
from .retry import RetryPolicy
from .storage import claim_for_processing, find_organization, force_failed, mark_completed, mark_failed
from .work_queue import QueuedMessage, WorkQueue

logger = get_logger()


class Outcome(str, Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class OnboardingResult:
    """What the onboarding procedure decided for one attempt."""

    outcome: Outcome
    reason: Optional[str] = None

    @classmethod
    def success(cls) -> "OnboardingResult":
        return cls(Outcome.SUCCESS)

    @classmethod
    def failure(cls, reason: str, retryable: bool = True) -> "OnboardingResult":
        return cls(Outcome.RETRYABLE if retryable else Outcome.TERMINAL, reason)

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def retryable(self) -> bool:
        return self.outcome is Outcome.RETRYABLE


def is_valid_email(address: str) -> bool:
    """Syntax check only; no DNS lookup."""
    try:
        validate_email(address, check_deliverability=False, globally_deliverable=False)
    except EmailNotValidError:
        return False
    return True


def perform_onboarding(
    organization: Organization,
    delay: float = PROCESSING_DELAY,
    retry_validation_errors: bool = True,
) -> OnboardingResult:
    """
    Run the onboarding procedure for one organization.

    The delay stands in for the external systems an organization is
    provisioned in and blocks the calling thread.

    Args:
        organization: Row as read at the start of the attempt
        delay: Seconds spent on simulated external work
        retry_validation_errors: Whether validation failures go through the
            retry path like any other failure
    """
    if delay > 0:
        time.sleep(delay)

    if not organization.domain or not organization.domain.strip():
        return OnboardingResult.failure("Domain is required for onboarding", retry_validation_errors)

    if organization.contact_email and not is_valid_email(organization.contact_email):
        return OnboardingResult.failure("Invalid email format", retry_validation_errors)

    return OnboardingResult.success()


class OnboardingJob:
    """
    One onboarding attempt for one organization.

    The queue owns retries: ``handle`` records the outcome of a single
    attempt and raises ``OnboardingError`` on failure; ``failed`` runs once
    after the last attempt.
    """

    queue = QUEUE_NAME
    tries = MAX_TRIES
    backoff = BACKOFF_SECONDS

    def __init__(
        self,
        organization_id: int,
        attempt: int = 1,
        processing_delay: float = PROCESSING_DELAY,
        retry_validation_errors: bool = True,
    ):
        self.organization_id = organization_id
        self.attempt = attempt
        self.processing_delay = processing_delay
        self.retry_validation_errors = retry_validation_errors

    def attempts(self) -> int:
        return self.attempt

    def handle(self, db_path: Path) -> Optional[str]:
        """
        Process the organization once.

        Returns:
            "completed" when this attempt finished onboarding, None when it
            was a no-op (missing row, already completed or in flight)

        Raises:
            OnboardingError: After the failure was written to the row
        """
        with get_session(db_path) as session:
            organization = find_organization(session, self.organization_id)

            if organization is None:
                logger.warning(
                    "Organization not found for processing",
                    organization_id=self.organization_id,
                )
                return None

            context = {
                "batch_id": organization.batch_id,
                "organization_id": organization.id,
                "domain": organization.domain,
            }

            if organization.status == STATUS_COMPLETED:
                logger.info("Organization already processed, skipping", **context)
                return None

            if organization.status == STATUS_PROCESSING:
                logger.info("Organization already being processed, skipping", **context)
                return None

            if not claim_for_processing(session, organization.id):
                session.rollback()
                logger.info("Organization claimed by another attempt, skipping", **context)
                return None
            # Visible before the procedure runs, so a crash leaves "processing"
            session.commit()

            logger.record_started()
            logger.info(
                "Processing organization onboarding",
                status=STATUS_PROCESSING,
                attempt=self.attempt,
                **context,
            )

            cause = None
            try:
                result = perform_onboarding(
                    organization,
                    delay=self.processing_delay,
                    retry_validation_errors=self.retry_validation_errors,
                )
            except Exception as e:
                cause = e
                result = OnboardingResult.failure(str(e) or type(e).__name__, retryable=True)

            if result.ok:
                if not mark_completed(session, organization.id):
                    session.rollback()
                    logger.warning("Organization left processing before completion", **context)
                    return None
                session.commit()
                logger.record_completed()
                logger.info("Organization onboarding completed", status=STATUS_COMPLETED, **context)
                return STATUS_COMPLETED

            if not mark_failed(session, organization.id, result.reason):
                session.rollback()
                logger.warning(
                    "Organization left processing before failure was recorded",
                    error=result.reason,
                    **context,
                )
                return None
            session.commit()
            logger.record_failure(result.reason)
            logger.error(
                "Organization onboarding failed",
                status="failed",
                error=result.reason,
                retryable=result.retryable,
                attempt=self.attempt,
                **context,
            )
            raise OnboardingError(
                result.reason,
                retryable=result.retryable,
                organization_id=organization.id,
            ) from cause

    def failed(self, db_path: Path, exception: BaseException, attempts: Optional[int] = None) -> bool:
        """
        Record a permanent failure after the last attempt.

        Overwrites whatever status the row has. Safe to call repeatedly.

        Returns:
            False if the organization no longer exists
        """
        attempts = attempts if attempts is not None else self.attempt
        reason = str(exception) or type(exception).__name__

        with get_session(db_path) as session:
            organization = find_organization(session, self.organization_id)
            if organization is None:
                logger.warning(
                    "Organization not found for permanent failure",
                    organization_id=self.organization_id,
                    error=reason,
                )
                return False

            force_failed(session, organization.id, reason)
            session.commit()

        logger.record_permanent_failure()
        logger.error(
            "Organization onboarding job failed permanently",
            batch_id=organization.batch_id,
            organization_id=organization.id,
            domain=organization.domain,
            error=reason,
            attempts=attempts,
        )
        return True


class Worker:
    """
    Pulls messages off a queue and runs them as onboarding jobs.

    Several workers can share one queue; each should run in its own thread.
    """

    def __init__(
        self,
        queue: WorkQueue,
        db_path: Path,
        policy: Optional[RetryPolicy] = None,
        processing_delay: float = PROCESSING_DELAY,
        retry_validation_errors: bool = True,
    ):
        self.queue = queue
        self.db_path = db_path
        self.policy = policy or RetryPolicy(tries=OnboardingJob.tries, backoff=OnboardingJob.backoff)
        self.processing_delay = processing_delay
        self.retry_validation_errors = retry_validation_errors

    def make_job(self, message: QueuedMessage) -> OnboardingJob:
        return OnboardingJob(
            message.organization_id,
            attempt=message.attempts,
            processing_delay=self.processing_delay,
            retry_validation_errors=self.retry_validation_errors,
        )

    def process(self, message: QueuedMessage) -> str:
        """
        Run one delivery of a message.

        Returns:
            "completed", "skipped", "released" (retry scheduled) or
            "failed" (attempts exhausted)
        """
        job = self.make_job(message)
        try:
            status = job.handle(self.db_path)
        except OnboardingError as e:
            return self._handle_failure(message, job, e, e.retryable)
        except Exception as e:
            logger.error(
                "Onboarding attempt raised",
                organization_id=message.organization_id,
                attempt=message.attempts,
                error=str(e),
                error_type=type(e).__name__,
            )
            return self._handle_failure(message, job, e, True)

        self.queue.delete(message)
        return status or "skipped"

    def _handle_failure(self, message: QueuedMessage, job: OnboardingJob, error: Exception, retryable: bool) -> str:
        if self.policy.should_retry(message.attempts, retryable):
            delay = self.policy.delay_for(message.attempts)
            self.queue.release(message, delay=delay)
            logger.record_retry()
            logger.warning(
                "Onboarding attempt failed, retry scheduled",
                organization_id=message.organization_id,
                attempt=message.attempts,
                attempts_left=self.policy.remaining(message.attempts),
                retry_in=delay,
            )
            return "released"

        try:
            job.failed(self.db_path, error, attempts=message.attempts)
        finally:
            self.queue.delete(message)
        return "failed"

    def work(
        self,
        stop_when_drained: bool = True,
        poll_interval: float = 0.1,
        stop_event: Optional[Event] = None,
    ) -> int:
        """
        Process messages until the queue is drained or ``stop_event`` is set.

        Returns:
            Number of deliveries processed by this worker
        """
        processed = 0
        while stop_event is None or not stop_event.is_set():
            message = self.queue.pop(timeout=poll_interval)
            if message is None:
                if stop_when_drained and self.queue.is_drained():
                    break
                continue
            try:
                self.process(message)
            except Exception as e:
                logger.error(
                    "Worker failed to finish message",
                    organization_id=message.organization_id,
                    attempt=message.attempts,
                    error=str(e),
                )
            processed += 1
        return processed


def run_workers(queue: WorkQueue, db_path: Path, count: int = 2, **worker_kwargs) -> int:
    """
    Drain the queue with ``count`` worker threads.

    Returns:
        Total deliveries processed
    """
    with ThreadPoolExecutor(max_workers=count, thread_name_prefix="onboarding-worker") as pool:
        futures = [
            pool.submit(Worker(queue, db_path, **worker_kwargs).work)
            for _ in range(count)
        ]
        total = sum(f.result() for f in futures)

    logger.info("Workers finished", queue=queue.name, workers=count, deliveries=total)
    return total
