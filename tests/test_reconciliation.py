"""Tests for deal reconciliation against an in-memory SQLite store."""

import datetime
import json
import sqlite3

import pytest

from dealsuite_sync.core.events import ProgressLog, ProgressStage
from dealsuite_sync.core.exceptions import ConfigurationError
from dealsuite_sync.extraction.models import DealRecord
from dealsuite_sync.storage.reconciliation import OutcomeKind, ReconciliationStore
from dealsuite_sync.storage.schema import create_deals_schema, drop_deals_table

from conftest import SAMPLE_DEALS

SOURCE_URL = "https://app.dealsuite.com/en/market/wanted?currency=1"


@pytest.fixture
def records():
    return [DealRecord.model_validate(deal) for deal in SAMPLE_DEALS]


class TestUpsertAll:
    """Tests for ReconciliationStore.upsert_all()."""

    def test_first_run_inserts(self, deal_store, records):
        summary = deal_store.upsert_all(records, source_url=SOURCE_URL)
        assert (summary.inserted, summary.updated, summary.failed) == (2, 0, 0)
        assert deal_store.count() == 2

    def test_second_run_updates(self, deal_store, records):
        deal_store.upsert_all(records)
        summary = deal_store.upsert_all(records)
        assert (summary.inserted, summary.updated, summary.failed) == (0, 2, 0)
        assert deal_store.count() == 2

    def test_update_refreshes_attributes_and_keeps_first_seen(self, deal_store, records):
        deal_store.upsert_all(records)
        before = deal_store.get_deal("W-1001")

        changed = records[0].model_copy(update={"sector": "HVAC", "ebitda_max": 6000.0})
        outcome = deal_store.upsert(changed, source_url=SOURCE_URL)

        after = deal_store.get_deal("W-1001")
        assert outcome.kind == OutcomeKind.UPDATED
        assert outcome.stored_id == before["id"]
        assert after["sector"] == "HVAC"
        assert after["ebitda_max"] == 6000.0
        assert after["source_url"] == SOURCE_URL
        assert after["first_seen_at"] == before["first_seen_at"]

    def test_stored_row_contents(self, deal_store, records):
        deal_store.upsert_all(records, source_url=SOURCE_URL)
        row = deal_store.get_deal("W-1001")
        assert row["title"] == "Buy-and-build platform seeks HVAC installers"
        assert row["ebitda_min"] == 1000.0
        assert row["published_at"] == "2024-03-01"
        assert row["source_url"] == SOURCE_URL
        assert json.loads(row["raw_data"])["ebitda_min"] == "1M"

    def test_store_default_source_url(self, deal_store, records):
        deal_store.upsert_all(records)
        assert deal_store.get_deal("W-1002")["source_url"] == "https://app.dealsuite.com/en/market/wanted"

    def test_events_per_record(self, deal_store, records):
        log = ProgressLog()
        deal_store.upsert_all(records, events=log)
        events = log.for_stage(ProgressStage.RECONCILING)
        assert [(e.processed, e.total, e.item) for e in events] == [(1, 2, "W-1001"), (2, 2, "W-1002")]
        assert events[0].message == "inserted W-1001"

    def test_empty_batch(self, deal_store):
        summary = deal_store.upsert_all([])
        assert summary.total == 0
        assert deal_store.count() == 0

    def test_failure_is_isolated(self, sqlite_conn, records):
        store = ReconciliationStore(sqlite_conn, "sqlite")
        store.ensure_schema()
        # Rejects the second deal only.
        sqlite_conn.execute(
            "CREATE TRIGGER reject_software BEFORE INSERT ON dealsuite_deals "
            "WHEN NEW.sector = 'Software' BEGIN SELECT RAISE(ABORT, 'rejected'); END"
        )
        sqlite_conn.commit()

        summary = store.upsert_all(records)

        assert [o.kind for o in summary.outcomes] == [OutcomeKind.INSERTED, OutcomeKind.FAILED]
        assert summary.failures[0].deal_id == "W-1002"
        assert "rejected" in summary.failures[0].error
        assert store.count() == 1
        assert summary.to_dict()["errors"] == [{"deal_id": "W-1002", "error": summary.failures[0].error}]

    def test_concurrent_insert_becomes_update(self, sqlite_conn, records):
        clock_value = datetime.datetime(2024, 5, 1, tzinfo=datetime.timezone.utc)
        first = ReconciliationStore(sqlite_conn, "sqlite", clock=lambda: clock_value)
        first.ensure_schema()
        first.upsert(records[0])

        # A second writer that looked the deal up before it existed.
        second = ReconciliationStore(
            sqlite_conn, "sqlite",
            clock=lambda: clock_value + datetime.timedelta(seconds=5),
        )
        second.find_stored_id = lambda deal_id: None
        outcome = second.upsert(records[0])

        assert outcome.kind == OutcomeKind.UPDATED
        assert second.count() == 1


class TestSchema:
    """Tests for table creation."""

    def test_ensure_schema_is_idempotent(self, deal_store):
        deal_store.ensure_schema()
        deal_store.ensure_schema()
        assert deal_store.count() == 0

    def test_unknown_dialect(self, sqlite_conn):
        with pytest.raises(ConfigurationError):
            ReconciliationStore(sqlite_conn, "mysql")

    def test_invalid_table_name(self, sqlite_conn):
        with pytest.raises(ConfigurationError):
            ReconciliationStore(sqlite_conn, "sqlite", table="deals; DROP TABLE x")

    def test_drop_requires_confirmation(self, sqlite_conn):
        create_deals_schema(sqlite_conn, "sqlite")
        assert "error" in drop_deals_table(sqlite_conn, "sqlite")
        assert drop_deals_table(sqlite_conn, "sqlite", confirm=True)["dropped"] == ["dealsuite_deals"]
        with pytest.raises(sqlite3.OperationalError):
            sqlite_conn.execute("SELECT COUNT(*) FROM dealsuite_deals")
