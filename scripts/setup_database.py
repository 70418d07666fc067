#!/usr/bin/env python3
"""
Database setup script for the Dealsuite sync.

This script creates the deals table on the configured backend. It is safe
to run multiple times (idempotent).

Usage:
    python setup_database.py                       # Backend from DEALS_DB_BACKEND
    python setup_database.py --backend postgres    # PostgreSQL
    python setup_database.py --check               # Show table status only
    python setup_database.py --drop --yes          # Drop and recreate the table

Author: Leonardo Pacciani-Mori
License: MIT
"""

import sys
from pathlib import Path

# Add parent directories to path for imports
_script_dir = Path(__file__).parent.resolve()
_project_root = _script_dir.parent
sys.path.insert(0, str(_project_root / "src"))

import argparse
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table


console = Console()


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create the Dealsuite deals table")
    parser.add_argument(
        "--backend",
        choices=["sqlite", "postgres"],
        default=None,
        help="Deal store backend (default: DEALS_DB_BACKEND)"
    )
    parser.add_argument(
        "--sqlite-path",
        type=str,
        default=None,
        help="SQLite database file (default: DEALS_SQLITE_PATH)"
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Only report whether the table exists and how many deals it holds"
    )
    parser.add_argument(
        "--drop",
        action="store_true",
        help="Drop the table before creating it"
    )
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Confirm destructive operations"
    )
    return parser.parse_args(argv)


def check_status(conn, dialect: str) -> None:
    """Print whether the deals table exists and how many rows it holds."""
    from dealsuite_sync.config.settings import DEALS_TABLE_NAME
    from dealsuite_sync.storage.schema import DATABASE_ERRORS

    table = Table(title="Deal store", show_header=True, header_style="bold")
    table.add_column("Backend", style="cyan")
    table.add_column("Table")
    table.add_column("Status")
    table.add_column("Deals", justify="right")

    cursor = conn.cursor()
    try:
        cursor.execute(f"SELECT COUNT(*) FROM {DEALS_TABLE_NAME}")
        count = cursor.fetchone()[0]
        table.add_row(dialect, DEALS_TABLE_NAME, "[green]✓ ready[/green]", f"{count:,}")
    except DATABASE_ERRORS:
        conn.rollback()
        table.add_row(dialect, DEALS_TABLE_NAME, "[red]✗ missing[/red]", "-")
    finally:
        cursor.close()

    console.print(table)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for database setup.

    Returns:
        int: Exit code (0 for success, 1 for failure).
    """
    args = parse_arguments(argv)

    from dealsuite_sync.config.logging_config import setup_logging
    from dealsuite_sync.config.settings import DEALS_DB_BACKEND, DEALS_TABLE_NAME
    from dealsuite_sync.core.connections import deals_connection
    from dealsuite_sync.core.exceptions import ConfigurationError
    from dealsuite_sync.storage.schema import DATABASE_ERRORS, create_deals_schema, drop_deals_table

    setup_logging()
    backend = args.backend or DEALS_DB_BACKEND

    console.print(Panel(f"[bold]Dealsuite deal store setup[/bold] ({backend})", border_style="blue"))

    try:
        with deals_connection(backend, args.sqlite_path) as (conn, dialect):
            if args.check:
                check_status(conn, dialect)
                return 0

            if args.drop:
                if not args.yes:
                    console.print("[red]--drop requires --yes[/red]")
                    return 1
                results = drop_deals_table(conn, dialect, confirm=True)
                for name, error in results["errors"]:
                    console.print(f"[red]✗ Could not drop {name}: {error}[/red]")
                if results["errors"]:
                    return 1
                console.print(f"[yellow]Dropped {DEALS_TABLE_NAME}[/yellow]")

            results = create_deals_schema(conn, dialect)
            for name in results["created"]:
                console.print(f"[green]✓ {name} is ready[/green]")
            for name, error in results["errors"]:
                console.print(f"[red]✗ {name}: {error}[/red]")

            check_status(conn, dialect)
            return 1 if results["errors"] else 0

    except (ConfigurationError, *DATABASE_ERRORS) as e:
        console.print(f"[red]Database setup failed: {e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
