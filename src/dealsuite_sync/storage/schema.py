"""
Schema definitions for the Dealsuite deal store.

The store is a single table keyed by a surrogate id, with a UNIQUE natural
key (deal_id). The unique constraint is what serializes concurrent runs:
two writers upserting the same deal resolve through ON CONFLICT instead of
both inserting.

Author: Leonardo Pacciani-Mori
License: MIT
"""

import re
import sqlite3

import psycopg2

from dealsuite_sync.config.settings import DEALS_TABLE_NAME
from dealsuite_sync.config.logging_config import get_logger
from dealsuite_sync.core.exceptions import ConfigurationError

logger = get_logger(__name__)

# Errors raised by either supported driver.
DATABASE_ERRORS = (sqlite3.Error, psycopg2.Error)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Extracted attributes, in storage order. Shared by DDL and upserts.
DEAL_COLUMNS = (
    "title",
    "sector",
    "country",
    "ebitda_min",
    "ebitda_max",
    "revenue_min",
    "revenue_max",
    "deal_type",
    "advisor",
    "description",
    "published_at",
    "detail_url",
)


# =============================================================================
# SQLITE SCHEMA
# =============================================================================

SCHEMA_DEALS_SQLITE = """
CREATE TABLE IF NOT EXISTS {table} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    deal_id TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL,
    sector TEXT,
    country TEXT,
    ebitda_min REAL,
    ebitda_max REAL,
    revenue_min REAL,
    revenue_max REAL,
    deal_type TEXT,
    advisor TEXT,
    description TEXT,
    published_at TEXT,
    detail_url TEXT,
    source_url TEXT,
    raw_data TEXT,
    first_seen_at TEXT NOT NULL,
    scraped_at TEXT NOT NULL
);
"""


# =============================================================================
# POSTGRESQL SCHEMA
# =============================================================================

SCHEMA_DEALS_POSTGRES = """
CREATE TABLE IF NOT EXISTS {table} (
    id SERIAL PRIMARY KEY,
    deal_id CHARACTER VARYING(255) NOT NULL UNIQUE,
    title TEXT NOT NULL,
    sector TEXT,
    country CHARACTER VARYING(100),
    ebitda_min NUMERIC(14, 3),
    ebitda_max NUMERIC(14, 3),
    revenue_min NUMERIC(14, 3),
    revenue_max NUMERIC(14, 3),
    deal_type CHARACTER VARYING(100),
    advisor TEXT,
    description TEXT,
    published_at DATE,
    detail_url TEXT,
    source_url TEXT,
    raw_data JSONB,
    first_seen_at TIMESTAMP WITH TIME ZONE NOT NULL,
    scraped_at TIMESTAMP WITH TIME ZONE NOT NULL
);
"""

SCHEMA_STATEMENTS = {
    "sqlite": SCHEMA_DEALS_SQLITE,
    "postgres": SCHEMA_DEALS_POSTGRES,
}


def quote_table_name(table: str) -> str:
    """
    Check that a table name is a plain SQL identifier.

    Table names cannot be bound as query parameters, so they are validated
    before being formatted into statements.

    Raises:
        ConfigurationError: If the name contains anything but letters,
            digits and underscores.
    """
    if not _IDENTIFIER.match(table or ""):
        raise ConfigurationError(f"Invalid table name: {table!r}")
    return table


def create_deals_schema(conn, dialect: str, table: str = DEALS_TABLE_NAME) -> dict:
    """
    Create the deals table if it does not exist.

    Args:
        conn: DB-API connection (sqlite3 or psycopg2).
        dialect: "sqlite" or "postgres".
        table: Table name.

    Returns:
        dict: Results with 'created' and 'errors' lists.

    Raises:
        ConfigurationError: For an unknown dialect or an invalid table name.
    """
    if dialect not in SCHEMA_STATEMENTS:
        raise ConfigurationError(f"Unsupported dialect: {dialect}")

    sql = SCHEMA_STATEMENTS[dialect].format(table=quote_table_name(table))
    results = {
        "created": [],
        "errors": [],
    }

    cursor = conn.cursor()
    try:
        cursor.execute(sql)
        conn.commit()
        results["created"].append(table)
        logger.info(f"Table {table} is ready ({dialect})")
    except DATABASE_ERRORS as e:
        conn.rollback()
        results["errors"].append((table, str(e)))
        logger.error(f"Failed to create table {table}: {e}")
    finally:
        cursor.close()

    return results


def drop_deals_table(conn, dialect: str, table: str = DEALS_TABLE_NAME, confirm: bool = False) -> dict:
    """
    Drop the deals table (use with caution!).

    Args:
        conn: DB-API connection.
        dialect: "sqlite" or "postgres".
        table: Table name.
        confirm: Must be True to actually drop the table.

    Returns:
        dict: Results with 'dropped' and 'errors' lists.
    """
    if not confirm:
        return {"error": "Must set confirm=True to drop tables"}

    suffix = " CASCADE" if dialect == "postgres" else ""
    results = {
        "dropped": [],
        "errors": [],
    }

    cursor = conn.cursor()
    try:
        cursor.execute(f"DROP TABLE IF EXISTS {quote_table_name(table)}{suffix}")
        conn.commit()
        results["dropped"].append(table)
    except DATABASE_ERRORS as e:
        conn.rollback()
        results["errors"].append((table, str(e)))
    finally:
        cursor.close()

    return results
