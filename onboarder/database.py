"""
Database schema and connection management.

Uses SQLite with SQLAlchemy for the organizations table.
"""

from datetime import datetime
from functools import lru_cache
from pathlib import Path

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

Base = declarative_base()

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

STATUSES = (STATUS_PENDING, STATUS_PROCESSING, STATUS_COMPLETED, STATUS_FAILED)

# States a worker may move into processing
CLAIMABLE_STATUSES = (STATUS_PENDING, STATUS_FAILED)


class Organization(Base):
    """Organization being onboarded. One row per domain."""

    __tablename__ = "organizations"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_organizations_status",
        ),
        Index("ix_organizations_batch_id_status", "batch_id", "status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    domain = Column(String(255), nullable=False, unique=True)
    contact_email = Column(String(255), nullable=True)
    status = Column(String(16), nullable=False, default=STATUS_PENDING)
    batch_id = Column(String(36), nullable=False, index=True)
    processed_at = Column(DateTime, nullable=True)
    failed_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    def __repr__(self) -> str:
        return f"<Organization id={self.id} domain={self.domain!r} status={self.status}>"


@lru_cache(maxsize=None)
def get_engine(db_path: Path) -> Engine:
    """
    Return the engine for a database file, creating it once per path.

    Args:
        db_path: Path to SQLite database file
    """
    return create_engine(f"sqlite:///{db_path}", connect_args={"timeout": 30})


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(get_engine(db_path))


def get_session(db_path: Path) -> Session:
    """
    Get database session.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy session
    """
    factory = sessionmaker(bind=get_engine(db_path), expire_on_commit=False)
    return factory()
