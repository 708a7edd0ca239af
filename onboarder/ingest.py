"""
Batch ingestion of organization records.

Records are written in fixed-size chunks, one transaction per chunk, in
input order. A failing chunk stops the run; chunks already committed stay
in the database and a resubmission of the same payload completes the batch.
"""

import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from .config import CHUNK_SIZE
from .database import Organization, get_session
from .errors import IngestionError
from .logger import get_logger
from .storage import list_by_batch, upsert_organizations

logger = get_logger()


@dataclass
class IngestResult:
    batch_id: str
    organizations: List[Organization] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.organizations)


def new_batch_id() -> str:
    return str(uuid.uuid4())


def chunked(records: Sequence[Dict[str, Any]], size: int) -> Iterator[Sequence[Dict[str, Any]]]:
    """Yield consecutive slices of at most ``size`` records."""
    if size < 1:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(records), size):
        yield records[start:start + size]


def ingest_organizations(
    records: Sequence[Dict[str, Any]],
    db_path: Path,
    chunk_size: int = CHUNK_SIZE,
    batch_id: Optional[str] = None,
) -> IngestResult:
    """
    Upsert records under a fresh batch id and read the batch back.

    Args:
        records: Validated records (name, domain, optional contact_email)
        db_path: Path to SQLite database file
        chunk_size: Records per transaction
        batch_id: Override for the generated batch id

    Returns:
        IngestResult with the organizations now tagged with the batch id

    Raises:
        IngestionError: If any chunk fails; carries the batch id
    """
    batch_id = batch_id or new_batch_id()
    committed = 0

    with get_session(db_path) as session:
        for index, chunk in enumerate(chunked(records, chunk_size)):
            try:
                written = upsert_organizations(session, chunk, batch_id)
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(
                    "Chunk upsert failed",
                    batch_id=batch_id,
                    chunk=index,
                    chunks_committed=committed,
                    error=str(e),
                )
                raise IngestionError(
                    f"Chunk {index} of batch {batch_id} failed: {e}",
                    batch_id=batch_id,
                    chunks_committed=committed,
                ) from e
            committed += 1
            logger.debug("Chunk upserted", batch_id=batch_id, chunk=index, rows=written)

        try:
            organizations = list_by_batch(session, batch_id)
        except SQLAlchemyError as e:
            raise IngestionError(
                f"Could not read back batch {batch_id}: {e}",
                batch_id=batch_id,
                chunks_committed=committed,
            ) from e

    logger.record_received(len(organizations))
    logger.info(
        "Batch ingested",
        batch_id=batch_id,
        records=len(records),
        chunks=committed,
        organizations=len(organizations),
    )
    return IngestResult(batch_id=batch_id, organizations=organizations)
