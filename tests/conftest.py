"""
Pytest configuration and shared fixtures.
"""

import pytest
from pathlib import Path
from typing import Any, Dict, List

from onboarder.database import Organization, get_session, init_database
from onboarder.logger import get_logger
from onboarder.work_queue import WorkQueue


@pytest.fixture(autouse=True)
def fresh_metrics():
    """Each test starts with zeroed logger counters."""
    get_logger().reset_metrics()
    yield


@pytest.fixture
def db_path(tmp_path) -> Path:
    """Initialized temporary database."""
    path = tmp_path / "onboarding.db"
    init_database(path)
    return path


@pytest.fixture
def db_session(db_path):
    session = get_session(db_path)
    yield session
    session.close()


@pytest.fixture
def make_organization(db_path):
    """Insert an organization directly, bypassing ingestion."""

    def _make(**overrides) -> Organization:
        data = {
            "name": "Test Organization",
            "domain": "test.com",
            "contact_email": "test@test.com",
            "status": "pending",
            "batch_id": "test-batch-id",
        }
        data.update(overrides)
        organization = Organization(**data)
        with get_session(db_path) as session:
            session.add(organization)
            session.commit()
        return organization

    return _make


@pytest.fixture
def fetch(db_path):
    """Read an organization fresh from the database."""

    def _fetch(organization_id: int) -> Organization:
        with get_session(db_path) as session:
            return session.get(Organization, organization_id)

    return _fetch


@pytest.fixture
def queue() -> WorkQueue:
    return WorkQueue("onboarding")


@pytest.fixture
def two_organizations() -> List[Dict[str, Any]]:
    return [
        {
            "name": "Organization 1",
            "domain": "organization1.com",
            "contact_email": "contact1@organization1.com",
        },
        {
            "name": "Organization 2",
            "domain": "organization2.com",
            "contact_email": "contact2@organization2.com",
        },
    ]


@pytest.fixture
def many_organizations() -> List[Dict[str, Any]]:
    """1500 records, three chunks of 500."""
    return [
        {"name": f"Organization {i}", "domain": f"organization{i}.com"}
        for i in range(1500)
    ]
