"""
Enqueue onboarding work for ingested organizations.

One message per organization, carrying only the id; the worker re-reads the
row so it never acts on a stale snapshot.
"""

from pathlib import Path
from typing import Iterable, Optional

from .database import Organization, get_session
from .errors import DispatchError, QueueUnavailableError
from .logger import get_logger
from .storage import list_pending
from .work_queue import WorkQueue

logger = get_logger()


def dispatch_onboarding(queue: WorkQueue, organizations: Iterable[Organization]) -> int:
    """
    Push one onboarding job per organization.

    Returns:
        Number of jobs dispatched

    Raises:
        DispatchError: If the queue rejects a message. Rows already written
            stay pending; ``redispatch_pending`` picks them up later.
    """
    dispatched = 0
    for organization in organizations:
        try:
            queue.push(organization.id)
        except QueueUnavailableError as e:
            logger.error(
                "Dispatch failed",
                queue=queue.name,
                organization_id=organization.id,
                batch_id=organization.batch_id,
                dispatched=dispatched,
                error=str(e),
            )
            raise DispatchError(str(e), dispatched=dispatched) from e
        dispatched += 1

    logger.record_dispatched(dispatched)
    logger.debug("Jobs dispatched", queue=queue.name, jobs=dispatched)
    return dispatched


def redispatch_pending(db_path: Path, queue: WorkQueue, batch_id: Optional[str] = None) -> int:
    """Re-enqueue organizations still pending, e.g. after a failed dispatch."""
    with get_session(db_path) as session:
        pending = list_pending(session, batch_id=batch_id)

    count = dispatch_onboarding(queue, pending)
    logger.info("Pending organizations re-dispatched", batch_id=batch_id, jobs=count)
    return count
