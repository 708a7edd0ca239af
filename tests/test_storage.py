"""
Tests for storage.py - upserts, queries and conditional status updates.
"""

import pytest
from datetime import datetime, timedelta
from sqlalchemy import select

from onboarder.database import Organization
from onboarder.storage import (
    batch_summary,
    claim_for_processing,
    find_organization,
    for_batch,
    force_failed,
    list_by_batch,
    list_pending,
    mark_completed,
    mark_failed,
    upsert_organizations,
    with_status,
)


class TestUpsert:

    def test_inserts_new_rows(self, db_session, two_organizations):
        written = upsert_organizations(db_session, two_organizations, "batch-1")
        db_session.commit()

        assert written == 2
        rows = list_by_batch(db_session, "batch-1")
        assert [r.domain for r in rows] == ["organization1.com", "organization2.com"]
        assert all(r.status == "pending" for r in rows)

    def test_missing_contact_email_stored_as_null(self, db_session):
        upsert_organizations(db_session, [{"name": "A", "domain": "a.com"}], "batch-1")
        db_session.commit()

        assert list_by_batch(db_session, "batch-1")[0].contact_email is None

    def test_duplicate_domain_in_one_call_last_write_wins(self, db_session):
        records = [
            {"name": "A", "domain": "a.com"},
            {"name": "A2", "domain": "a.com"},
        ]
        written = upsert_organizations(db_session, records, "batch-1")
        db_session.commit()

        assert written == 1
        rows = db_session.scalars(select(Organization)).all()
        assert len(rows) == 1
        assert rows[0].name == "A2"

    def test_existing_domain_is_overwritten_in_place(self, db_session, make_organization):
        old = make_organization(
            name="Organization 4",
            domain="organization4.com",
            contact_email="existing@existing.com",
            status="failed",
            batch_id="existing-batch-id",
            failed_reason="Invalid email format",
            created_at=datetime.now() - timedelta(days=3),
        )

        upsert_organizations(
            db_session,
            [{"name": "Org Four", "domain": "organization4.com", "contact_email": "contact4@organization4.com"}],
            "batch-2",
        )
        db_session.commit()

        row = find_organization(db_session, old.id)
        assert row.id == old.id
        assert row.created_at == old.created_at
        assert row.name == "Org Four"
        assert row.contact_email == "contact4@organization4.com"
        assert row.batch_id == "batch-2"
        assert row.status == "pending"
        assert row.failed_reason is None
        assert row.updated_at > old.created_at
        assert db_session.query(Organization).count() == 1

    def test_reingest_discards_completed_outcome(self, db_session, make_organization):
        old = make_organization(status="completed", processed_at=datetime.now())

        upsert_organizations(db_session, [{"name": "Again", "domain": old.domain}], "batch-2")
        db_session.commit()

        row = find_organization(db_session, old.id)
        assert row.status == "pending"
        assert row.processed_at is None

    def test_empty_input_writes_nothing(self, db_session):
        assert upsert_organizations(db_session, [], "batch-1") == 0


class TestQueries:

    def test_find_missing_returns_none(self, db_session):
        assert find_organization(db_session, 99999) is None

    def test_list_by_batch_filters_batch_and_status(self, db_session, make_organization):
        make_organization(domain="a.com", batch_id="b1", status="pending")
        make_organization(domain="b.com", batch_id="b1", status="completed")
        make_organization(domain="c.com", batch_id="b2", status="pending")

        assert [o.domain for o in list_by_batch(db_session, "b1")] == ["a.com", "b.com"]
        assert [o.domain for o in list_by_batch(db_session, "b1", status="completed")] == ["b.com"]

    def test_query_filters_compose(self, db_session, make_organization):
        make_organization(domain="a.com", batch_id="b1", status="failed")
        make_organization(domain="b.com", batch_id="b2", status="failed")

        query = with_status(for_batch(select(Organization), "b2"), "failed")
        assert [o.domain for o in db_session.scalars(query)] == ["b.com"]

    def test_with_status_rejects_unknown_status(self):
        with pytest.raises(ValueError):
            with_status(select(Organization), "archived")

    def test_list_pending_across_batches(self, db_session, make_organization):
        make_organization(domain="a.com", batch_id="b1", status="pending")
        make_organization(domain="b.com", batch_id="b2", status="pending")
        make_organization(domain="c.com", batch_id="b2", status="processing")

        assert len(list_pending(db_session)) == 2
        assert [o.domain for o in list_pending(db_session, batch_id="b2")] == ["b.com"]

    def test_batch_summary_counts_every_status(self, db_session, make_organization):
        make_organization(domain="a.com", status="pending")
        make_organization(domain="b.com", status="completed")
        make_organization(domain="c.com", status="completed")

        assert batch_summary(db_session, "test-batch-id") == {
            "pending": 1,
            "processing": 0,
            "completed": 2,
            "failed": 0,
        }


class TestStatusTransitions:

    def test_claim_pending(self, db_session, make_organization):
        org = make_organization(status="pending")

        assert claim_for_processing(db_session, org.id) is True
        db_session.commit()
        assert find_organization(db_session, org.id).status == "processing"

    def test_second_claim_loses(self, db_session, make_organization):
        org = make_organization(status="pending")

        assert claim_for_processing(db_session, org.id) is True
        assert claim_for_processing(db_session, org.id) is False

    def test_claim_failed_clears_reason(self, db_session, make_organization):
        org = make_organization(status="failed", failed_reason="Invalid email format")

        assert claim_for_processing(db_session, org.id) is True
        db_session.commit()
        row = find_organization(db_session, org.id)
        assert row.status == "processing"
        assert row.failed_reason is None

    @pytest.mark.parametrize("status", ["processing", "completed"])
    def test_claim_refuses_in_flight_and_completed(self, db_session, make_organization, status):
        org = make_organization(status=status)

        assert claim_for_processing(db_session, org.id) is False

    def test_claim_missing_row(self, db_session):
        assert claim_for_processing(db_session, 99999) is False

    def test_mark_completed_sets_processed_at(self, db_session, make_organization):
        org = make_organization(status="processing")

        assert mark_completed(db_session, org.id) is True
        db_session.commit()
        row = find_organization(db_session, org.id)
        assert row.status == "completed"
        assert row.processed_at is not None

    def test_mark_completed_requires_processing(self, db_session, make_organization):
        org = make_organization(status="failed")

        assert mark_completed(db_session, org.id) is False

    def test_mark_failed_records_reason(self, db_session, make_organization):
        org = make_organization(status="processing")

        assert mark_failed(db_session, org.id, "Domain is required for onboarding") is True
        db_session.commit()
        row = find_organization(db_session, org.id)
        assert row.status == "failed"
        assert row.failed_reason == "Domain is required for onboarding"

    def test_force_failed_overrides_any_status(self, db_session, make_organization):
        org = make_organization(status="completed", processed_at=datetime.now())

        assert force_failed(db_session, org.id, "Test failure") is True
        db_session.commit()
        row = find_organization(db_session, org.id)
        assert row.status == "failed"
        assert row.failed_reason == "Test failure"
        assert row.processed_at is not None

    def test_force_failed_missing_row(self, db_session):
        assert force_failed(db_session, 99999, "gone") is False
