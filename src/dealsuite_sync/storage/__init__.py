"""
Storage module for the Dealsuite sync pipeline.

Submodules:
    schema: Deal table DDL for SQLite and PostgreSQL.
    reconciliation: Per-record idempotent upsert of extracted deals.
"""

from .schema import create_deals_schema, drop_deals_table, DEAL_COLUMNS
from .reconciliation import (
    OutcomeKind,
    ReconciliationOutcome,
    ReconciliationSummary,
    ReconciliationStore,
)
