"""
Organization store operations.

Every function takes an open session and leaves transaction control to the
caller, except where noted. Status writes are conditional UPDATE statements
so concurrent workers cannot both win the same transition.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from .database import (
    CLAIMABLE_STATUSES,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    STATUSES,
    Organization,
)

# Columns rewritten when an ingested domain already exists. id and created_at
# are never touched.
UPSERT_OVERWRITE_COLUMNS = ("name", "contact_email", "batch_id", "status", "updated_at")
UPSERT_PRESERVE_COLUMNS = ("id", "created_at")
# Outcome of the previous onboarding run, discarded on re-ingestion
UPSERT_CLEAR_COLUMNS = ("processed_at", "failed_reason")


def upsert_organizations(session: Session, records: Iterable[Dict[str, Any]], batch_id: str) -> int:
    """
    Insert or update organizations keyed on domain, as one statement.

    Records sharing a domain collapse to the last one. Existing rows keep
    their id and created_at and go back to pending.

    Args:
        session: Open session; caller commits
        records: Dicts with name, domain and optional contact_email
        batch_id: Batch that now owns the rows

    Returns:
        Number of distinct rows written
    """
    now = datetime.now()
    rows_by_domain: Dict[str, Dict[str, Any]] = {}
    for record in records:
        rows_by_domain[record["domain"]] = {
            "name": record["name"],
            "domain": record["domain"],
            "contact_email": record.get("contact_email"),
            "status": STATUS_PENDING,
            "batch_id": batch_id,
            "processed_at": None,
            "failed_reason": None,
            "created_at": now,
            "updated_at": now,
        }
    if not rows_by_domain:
        return 0

    rows = list(rows_by_domain.values())
    stmt = sqlite_insert(Organization).values(rows)
    overwrite = {column: stmt.excluded[column] for column in UPSERT_OVERWRITE_COLUMNS}
    overwrite.update({column: None for column in UPSERT_CLEAR_COLUMNS})
    stmt = stmt.on_conflict_do_update(index_elements=["domain"], set_=overwrite)
    session.execute(stmt)
    return len(rows)


def find_organization(session: Session, organization_id: int) -> Optional[Organization]:
    return session.get(Organization, organization_id, populate_existing=True)


def for_batch(query: Select, batch_id: str) -> Select:
    return query.where(Organization.batch_id == batch_id)


def with_status(query: Select, status: str) -> Select:
    if status not in STATUSES:
        raise ValueError(f"Unknown status: {status!r}")
    return query.where(Organization.status == status)


def list_by_batch(session: Session, batch_id: str, status: Optional[str] = None) -> List[Organization]:
    """Return the organizations of a batch ordered by id, optionally by status."""
    query = for_batch(select(Organization), batch_id)
    if status is not None:
        query = with_status(query, status)
    return list(session.scalars(query.order_by(Organization.id)))


def list_pending(session: Session, batch_id: Optional[str] = None) -> List[Organization]:
    query = with_status(select(Organization), STATUS_PENDING)
    if batch_id is not None:
        query = for_batch(query, batch_id)
    return list(session.scalars(query.order_by(Organization.id)))


def batch_summary(session: Session, batch_id: str) -> Dict[str, int]:
    """Count a batch's organizations per status. Every status is present."""
    query = (
        select(Organization.status, func.count(Organization.id))
        .where(Organization.batch_id == batch_id)
        .group_by(Organization.status)
    )
    counts = {status: 0 for status in STATUSES}
    for status, count in session.execute(query):
        counts[status] = count
    return counts


def claim_for_processing(session: Session, organization_id: int) -> bool:
    """
    Move an organization into processing if it is pending or failed.

    Returns:
        True if this call won the transition, False if another attempt
        already moved the row (or the row is gone)
    """
    stmt = (
        update(Organization)
        .where(Organization.id == organization_id)
        .where(Organization.status.in_(CLAIMABLE_STATUSES))
        .values(
            status=STATUS_PROCESSING,
            failed_reason=None,
            processed_at=None,
            updated_at=datetime.now(),
        )
        .execution_options(synchronize_session=False)
    )
    return session.execute(stmt).rowcount == 1


def mark_completed(session: Session, organization_id: int) -> bool:
    """Complete a processing organization. Returns False if it was not processing."""
    now = datetime.now()
    stmt = (
        update(Organization)
        .where(Organization.id == organization_id)
        .where(Organization.status == STATUS_PROCESSING)
        .values(status=STATUS_COMPLETED, processed_at=now, failed_reason=None, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return session.execute(stmt).rowcount == 1


def mark_failed(session: Session, organization_id: int, reason: str) -> bool:
    """Fail a processing organization. Returns False if it was not processing."""
    stmt = (
        update(Organization)
        .where(Organization.id == organization_id)
        .where(Organization.status == STATUS_PROCESSING)
        .values(status=STATUS_FAILED, failed_reason=reason, processed_at=None, updated_at=datetime.now())
        .execution_options(synchronize_session=False)
    )
    return session.execute(stmt).rowcount == 1


def force_failed(session: Session, organization_id: int, reason: str) -> bool:
    """
    Set failed regardless of the current status.

    Used once retries are exhausted. Safe to repeat.

    Returns:
        False if the organization no longer exists
    """
    stmt = (
        update(Organization)
        .where(Organization.id == organization_id)
        .values(status=STATUS_FAILED, failed_reason=reason, updated_at=datetime.now())
        .execution_options(synchronize_session=False)
    )
    return session.execute(stmt).rowcount == 1
