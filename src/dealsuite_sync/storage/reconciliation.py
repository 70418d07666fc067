"""
Reconciliation of extracted deals against the deal store.

Each deal is written independently: look up the stored row by natural key,
update it when found, insert it otherwise. A record whose write fails is
rolled back and reported as failed without aborting the batch.

The lookup-then-write sequence is not atomic across concurrent runs, so
inserts go through ``INSERT ... ON CONFLICT (deal_id) DO UPDATE``: when
another run inserted the same deal in between, the unique constraint turns
the insert into an update instead of a duplicate. Whether the row was
actually created is read back from first_seen_at, which is written on
insert only.

Running the same batch twice therefore yields N inserted, then N updated,
and the row count stays N.

Author: Leonardo Pacciani-Mori
License: MIT
"""

import datetime
import json
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from dealsuite_sync.config.settings import DEALS_TABLE_NAME
from dealsuite_sync.config.logging_config import get_logger
from dealsuite_sync.core.date_utils import utc_now
from dealsuite_sync.core.exceptions import ConfigurationError, ReconciliationError
from dealsuite_sync.core.events import ProgressLog, ProgressStage
from dealsuite_sync.extraction.models import DealRecord
from dealsuite_sync.storage.schema import (
    DATABASE_ERRORS,
    DEAL_COLUMNS,
    SCHEMA_STATEMENTS,
    create_deals_schema,
    quote_table_name,
)

logger = get_logger(__name__)


class OutcomeKind(str, Enum):
    """What happened to one deal."""
    INSERTED = "inserted"
    UPDATED = "updated"
    FAILED = "failed"


@dataclass(frozen=True)
class ReconciliationOutcome:
    """
    Per-deal result of a reconciliation.

    Attributes:
        deal_id: Natural key of the deal.
        kind: inserted, updated or failed.
        stored_id: Surrogate id of the stored row (None on failure).
        error: Error description (failures only).
    """
    deal_id: str
    kind: OutcomeKind
    stored_id: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "deal_id": self.deal_id,
            "outcome": self.kind.value,
            "stored_id": self.stored_id,
            "error": self.error,
        }


@dataclass(frozen=True)
class ReconciliationSummary:
    """Outcomes of a whole batch with aggregate counts."""
    outcomes: Tuple[ReconciliationOutcome, ...] = ()

    def _count(self, kind: OutcomeKind) -> int:
        return sum(1 for outcome in self.outcomes if outcome.kind == kind)

    @property
    def inserted(self) -> int:
        return self._count(OutcomeKind.INSERTED)

    @property
    def updated(self) -> int:
        return self._count(OutcomeKind.UPDATED)

    @property
    def failed(self) -> int:
        return self._count(OutcomeKind.FAILED)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def failures(self) -> Tuple[ReconciliationOutcome, ...]:
        return tuple(o for o in self.outcomes if o.kind == OutcomeKind.FAILED)

    def to_dict(self) -> dict:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "failed": self.failed,
            "errors": [
                {"deal_id": o.deal_id, "error": o.error} for o in self.failures
            ],
        }


class ReconciliationStore:
    """
    Upserts deals into the dealsuite_deals table.

    Works on a single DB-API connection (sqlite3 or psycopg2) and commits
    or rolls back once per deal. Batches are serialised by a lock, so one
    store can be shared by runs reconciling from worker threads.
    """

    def __init__(
        self,
        conn,
        dialect: str,
        table: str = DEALS_TABLE_NAME,
        source_url: Optional[str] = None,
        clock: Callable[[], datetime.datetime] = utc_now,
    ):
        """
        Initialize the store.

        Args:
            conn: Open DB-API connection.
            dialect: "sqlite" or "postgres" (selects the placeholder style
                and value adaptation).
            table: Table name.
            source_url: Page the deals were extracted from, stored with each
                row.
            clock: Source of the last-seen timestamp.

        Raises:
            ConfigurationError: For an unknown dialect or an invalid table.
        """
        if dialect not in SCHEMA_STATEMENTS:
            raise ConfigurationError(f"Unsupported dialect: {dialect}")

        self.conn = conn
        self.dialect = dialect
        self.table = quote_table_name(table)
        self.source_url = source_url
        self.clock = clock
        self.lookups = 0
        self.writes = 0
        self._batch_lock = threading.Lock()

    def ensure_schema(self) -> None:
        """
        Create the deals table if needed.

        Raises:
            ReconciliationError: If the table cannot be created.
        """
        results = create_deals_schema(self.conn, self.dialect, self.table)
        if results["errors"]:
            _, error = results["errors"][0]
            raise ReconciliationError(f"Could not create table {self.table}: {error}")

    def _sql(self, statement: str) -> str:
        # Statements are written with qmark placeholders; psycopg2 uses %s.
        if self.dialect == "postgres":
            return statement.replace("?", "%s")
        return statement

    def _adapt(self, value: Any) -> Any:
        # sqlite3's implicit date adapters are deprecated, so dates go in as text.
        if self.dialect == "sqlite" and isinstance(value, (datetime.date, datetime.datetime)):
            return value.isoformat()
        return value

    def _row_values(self, record: DealRecord) -> List[Any]:
        return [self._adapt(getattr(record, column)) for column in DEAL_COLUMNS]

    def find_stored_id(self, deal_id: str) -> Optional[int]:
        """
        Look up the surrogate id of a stored deal by natural key.

        Returns:
            int or None: The row id, or None when the deal is not stored.
        """
        self.lookups += 1
        cursor = self.conn.cursor()
        try:
            cursor.execute(
                self._sql(f"SELECT id FROM {self.table} WHERE deal_id = ?"),
                (deal_id,),
            )
            row = cursor.fetchone()
        finally:
            cursor.close()
        return row[0] if row else None

    def _update(self, cursor, stored_id: int, record: DealRecord, source_url: Optional[str], seen_at: Any) -> bool:
        assignments = ", ".join(f"{column} = ?" for column in DEAL_COLUMNS)
        cursor.execute(
            self._sql(
                f"UPDATE {self.table} SET {assignments}, source_url = ?, "
                f"raw_data = ?, scraped_at = ? WHERE id = ?"
            ),
            (*self._row_values(record), source_url,
             json.dumps(record.raw_payload, default=str), seen_at, stored_id),
        )
        return cursor.rowcount > 0

    def _insert(self, cursor, record: DealRecord, source_url: Optional[str], seen_at: Any) -> Tuple[int, bool]:
        columns = ("deal_id",) + DEAL_COLUMNS + ("source_url", "raw_data", "first_seen_at", "scraped_at")
        placeholders = ", ".join("?" for _ in columns)
        refreshed = DEAL_COLUMNS + ("source_url", "raw_data", "scraped_at")
        on_conflict = ", ".join(f"{column} = excluded.{column}" for column in refreshed)

        cursor.execute(
            self._sql(
                f"INSERT INTO {self.table} ({', '.join(columns)}) VALUES ({placeholders}) "
                f"ON CONFLICT (deal_id) DO UPDATE SET {on_conflict}"
            ),
            (record.deal_id, *self._row_values(record), source_url,
             json.dumps(record.raw_payload, default=str), seen_at, seen_at),
        )

        cursor.execute(
            self._sql(f"SELECT id, first_seen_at FROM {self.table} WHERE deal_id = ?"),
            (record.deal_id,),
        )
        stored_id, first_seen_at = cursor.fetchone()
        return stored_id, first_seen_at == seen_at

    def upsert(self, record: DealRecord, source_url: Optional[str] = None) -> ReconciliationOutcome:
        """
        Write one deal: update by natural key if stored, insert otherwise.

        Args:
            record: The validated deal.
            source_url: Page the deal was extracted from. Defaults to the
                store's source_url.

        Returns:
            ReconciliationOutcome: inserted or updated, with the row id.

        Raises:
            ReconciliationError: If the database rejects the write. The
                transaction has been rolled back.
        """
        seen_at = self._adapt(self.clock())
        source_url = source_url or self.source_url

        try:
            stored_id = self.find_stored_id(record.deal_id)
            cursor = self.conn.cursor()
            try:
                self.writes += 1
                if stored_id is not None and self._update(cursor, stored_id, record, source_url, seen_at):
                    kind = OutcomeKind.UPDATED
                else:
                    # Not stored yet, or deleted since the lookup.
                    stored_id, created = self._insert(cursor, record, source_url, seen_at)
                    kind = OutcomeKind.INSERTED if created else OutcomeKind.UPDATED
            finally:
                cursor.close()
            self.conn.commit()

        except DATABASE_ERRORS as e:
            self.conn.rollback()
            raise ReconciliationError(f"{type(e).__name__}: {e}") from e

        return ReconciliationOutcome(record.deal_id, kind, stored_id=stored_id)

    def upsert_all(
        self,
        records: Iterable[DealRecord],
        events: Optional[ProgressLog] = None,
        source_url: Optional[str] = None,
    ) -> ReconciliationSummary:
        """
        Reconcile a batch of deals, isolating per-record failures.

        Args:
            records: Validated deals.
            events: Receives one event per processed deal.
            source_url: Page the deals were extracted from.

        Returns:
            ReconciliationSummary: Outcome of every deal, in input order.
        """
        records = list(records)
        total = len(records)
        outcomes = []

        logger.info(f"Reconciling {total} deals into {self.table}")

        with self._batch_lock:
            for processed, record in enumerate(records, start=1):
                try:
                    outcome = self.upsert(record, source_url)
                except ReconciliationError as e:
                    logger.error(f"Failed to store deal {record.deal_id}: {e}")
                    outcome = ReconciliationOutcome(record.deal_id, OutcomeKind.FAILED, error=str(e))

                outcomes.append(outcome)
                if events is not None:
                    events.emit(
                        ProgressStage.RECONCILING,
                        f"{outcome.kind.value} {record.deal_id}",
                        processed=processed,
                        total=total,
                        item=record.deal_id,
                    )

        summary = ReconciliationSummary(tuple(outcomes))
        logger.info(
            f"Reconciliation finished: {summary.inserted} inserted, "
            f"{summary.updated} updated, {summary.failed} failed"
        )
        return summary

    def count(self) -> int:
        """Number of stored deals."""
        cursor = self.conn.cursor()
        try:
            cursor.execute(f"SELECT COUNT(*) FROM {self.table}")
            return cursor.fetchone()[0]
        finally:
            cursor.close()

    def get_deal(self, deal_id: str) -> Optional[Dict[str, Any]]:
        """Stored row of a deal as a dict, or None."""
        cursor = self.conn.cursor()
        try:
            cursor.execute(
                self._sql(f"SELECT * FROM {self.table} WHERE deal_id = ?"),
                (deal_id,),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            names = [description[0] for description in cursor.description]
        finally:
            cursor.close()
        return dict(zip(names, row))
