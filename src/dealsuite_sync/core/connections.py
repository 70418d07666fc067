"""
Database connection utilities for the Dealsuite sync pipeline.

This module provides centralized connection management for the deal store.
Two backends are supported behind the same DB-API interface:

    - SQLite: local runs, tests, single-operator deployments
    - PostgreSQL: the shared deployment where several runs may write the
      same deals concurrently

Usage:
    from dealsuite_sync.core.connections import deals_connection

    with deals_connection() as (conn, dialect):
        store = ReconciliationStore(conn, dialect)

Author: Leonardo Pacciani-Mori
License: MIT
"""

import sqlite3
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Tuple

import psycopg2

from dealsuite_sync.config.settings import (
    DEALS_DB_BACKEND,
    DEALS_SQLITE_PATH,
    POSTGRES_CONNECTION_PARAMS,
)
from dealsuite_sync.core.exceptions import ConfigurationError

SUPPORTED_BACKENDS = ("sqlite", "postgres")


# =============================================================================
# POSTGRESQL CONNECTION UTILITIES
# =============================================================================

def get_postgres_db_params() -> dict:
    """
    Get PostgreSQL connection parameters as a dictionary.

    Returns:
        dict: Keyword arguments for psycopg2.connect() (host, port, user,
            password, dbname).

    Example:
        >>> params = get_postgres_db_params()
        >>> conn = psycopg2.connect(**params)
    """
    return dict(POSTGRES_CONNECTION_PARAMS)


def get_postgres_connection():
    """
    Open a new psycopg2 connection with the configured parameters.

    Autocommit stays off: the deal store commits or rolls back once per
    record.

    Returns:
        psycopg2.extensions.connection: An open connection.
    """
    return psycopg2.connect(**get_postgres_db_params())


# =============================================================================
# SQLITE CONNECTION UTILITIES
# =============================================================================

def get_sqlite_connection(db_path: str = DEALS_SQLITE_PATH) -> sqlite3.Connection:
    """
    Open a SQLite connection to the deal store.

    The connection may be used from the worker thread that reconciles a
    run; the deal store serialises access to it.

    Args:
        db_path: Path to the database file, or ":memory:". The file is
            created if it does not exist.

    Returns:
        sqlite3.Connection: An open connection.
    """
    return sqlite3.connect(db_path, check_same_thread=False)


# =============================================================================
# BACKEND SELECTION
# =============================================================================

def open_deals_connection(
    backend: str = DEALS_DB_BACKEND,
    sqlite_path: Optional[str] = None,
) -> Tuple[Any, str]:
    """
    Open a connection to the configured deal store backend.

    Args:
        backend: "sqlite" or "postgres".
        sqlite_path: Overrides DEALS_SQLITE_PATH for the SQLite backend.

    Returns:
        Tuple[connection, str]: The DB-API connection and its dialect name.

    Raises:
        ConfigurationError: If the backend name is not supported.
    """
    if backend == "sqlite":
        return get_sqlite_connection(sqlite_path or DEALS_SQLITE_PATH), "sqlite"
    if backend == "postgres":
        return get_postgres_connection(), "postgres"

    raise ConfigurationError(
        f"DEALS_DB_BACKEND must be one of {SUPPORTED_BACKENDS}, got '{backend}'"
    )


@contextmanager
def deals_connection(
    backend: str = DEALS_DB_BACKEND,
    sqlite_path: Optional[str] = None,
) -> Iterator[Tuple[Any, str]]:
    """
    Context manager around open_deals_connection() that always closes.

    Transactions are managed by the caller (the deal store commits per
    record), so nothing is committed here.

    Yields:
        Tuple[connection, str]: The DB-API connection and its dialect name.
    """
    conn, dialect = open_deals_connection(backend, sqlite_path)
    try:
        yield conn, dialect
    finally:
        conn.close()
