"""
Bulk onboarding entry point.

Takes a decoded request body, returns an HTTP-style status code and a JSON
body. Onboarding itself continues on the queue after this returns.
"""

from pathlib import Path
from typing import Any, Dict, Tuple

from .config import CHUNK_SIZE
from .dispatch import dispatch_onboarding
from .errors import DispatchError, IngestionError
from .ingest import ingest_organizations, new_batch_id
from .logger import get_logger
from .schema import clean_records, validate_bulk_request
from .work_queue import WorkQueue

logger = get_logger()

HTTP_ACCEPTED = 202
HTTP_UNPROCESSABLE = 422
HTTP_SERVER_ERROR = 500


def bulk_onboard(
    payload: Any,
    db_path: Path,
    queue: WorkQueue,
    chunk_size: int = CHUNK_SIZE,
) -> Tuple[int, Dict[str, Any]]:
    """
    Validate, ingest and dispatch a batch of organizations.

    Args:
        payload: ``{"organizations": [{"name", "domain", "contact_email"?}]}``
        db_path: Path to SQLite database file
        queue: Onboarding queue
        chunk_size: Records per upsert transaction

    Returns:
        (status_code, body). 202 with batch_id and organizations_count,
        422 with per-field errors, or 500 with the batch_id only.
    """
    errors = validate_bulk_request(payload)
    if errors:
        logger.warning("Bulk onboard request rejected", errors=len(errors))
        return HTTP_UNPROCESSABLE, {"message": "The given data was invalid.", "errors": errors}

    records = clean_records(payload["organizations"])
    batch_id = new_batch_id()

    logger.info(
        "Bulk onboard request received",
        batch_id=batch_id,
        organization_count=len(records),
    )

    try:
        result = ingest_organizations(records, db_path, chunk_size=chunk_size, batch_id=batch_id)
        dispatched = dispatch_onboarding(queue, result.organizations)
    except (IngestionError, DispatchError) as e:
        logger.error(
            "Bulk onboard request failed",
            batch_id=batch_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        return HTTP_SERVER_ERROR, {
            "error": "Failed to process bulk onboarding request",
            "batch_id": batch_id,
        }

    logger.info(
        "Bulk onboard request processed",
        batch_id=batch_id,
        organizations_created=result.count,
        jobs_dispatched=dispatched,
    )
    return HTTP_ACCEPTED, {
        "batch_id": batch_id,
        "message": "Bulk onboarding initiated successfully",
        "organizations_count": result.count,
    }
