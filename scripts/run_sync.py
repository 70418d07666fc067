#!/usr/bin/env python3
"""
CLI script for running the Dealsuite Wanted-board sync.

This script renders the Wanted board with the operator's session cookie,
extracts the listed deals and reconciles them with the deal store. The
cookie is read from a file, from the DEALSUITE_COOKIE environment variable,
or from standard input; it is never accepted on the command line, where it
would end up in the shell history and the process list.

Usage:
    python run_sync.py --cookie-file cookie.txt
    python run_sync.py --cookie-file cookie.txt --dry-run
    DEALSUITE_COOKIE="..." python run_sync.py --filter sector=12 --json

Exit codes:
    0   the run succeeded (dry run preview or completed sync)
    1   the run failed (the response payload says why)
    130 interrupted by the user

Author: Leonardo Pacciani-Mori
License: MIT
"""

import sys
from pathlib import Path

# Allow running without package installation
_script_dir = Path(__file__).parent
_project_root = _script_dir.parent
_src_dir = _project_root / "src"
if _src_dir.exists() and str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

import argparse
import asyncio
import getpass
import json
import os
from typing import Dict, List, Optional

COOKIE_ENV_VAR = "DEALSUITE_COOKIE"


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        argparse.Namespace: The parsed arguments.
    """
    parser = argparse.ArgumentParser(
        description="Sync deals from the Dealsuite Wanted board",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Check that a cookie works without extracting anything
    python run_sync.py --cookie-file cookie.txt --dry-run

    # Full sync with an extra board filter
    python run_sync.py --cookie-file cookie.txt --filter sector=12

    # Cookie from the environment, machine-readable output
    DEALSUITE_COOKIE="_xsrf=...; user=...; dstoken=..." python run_sync.py --json
        """
    )

    parser.add_argument(
        "--cookie-file",
        type=Path,
        help="File containing the session cookie (Cookie header value)"
    )
    parser.add_argument(
        "--filter",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Wanted-board query parameter (repeatable)"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Render and classify only; skip extraction and storage"
    )
    parser.add_argument(
        "--deadline",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Cancel the run after this many seconds"
    )
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
        "--json",
        action="store_true",
        help="Print only the response payload as JSON"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output"
    )

    return parser.parse_args(argv)


def parse_filters(pairs: List[str]) -> Dict[str, str]:
    """
    Turn KEY=VALUE arguments into a filter mapping.

    Raises:
        ValueError: If an argument has no "=" or an empty key.
    """
    filters = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Invalid filter '{pair}', expected KEY=VALUE")
        filters[key.strip()] = value.strip()
    return filters


def read_cookie(cookie_file: Optional[Path]) -> str:
    """
    Read the session cookie from a file, the environment, or stdin.

    Returns:
        str: The raw cookie string (validated later by the pipeline).
    """
    if cookie_file is not None:
        return cookie_file.read_text(encoding="utf-8")

    from_env = os.getenv(COOKIE_ENV_VAR)
    if from_env:
        return from_env

    if sys.stdin.isatty():
        return getpass.getpass("Session cookie: ")
    return sys.stdin.read()


async def run_sync(args: argparse.Namespace, cookie: str, filters: Dict[str, str]) -> int:
    """
    Run one invocation and print its outcome.

    Returns:
        int: Exit code.
    """
    from rich.console import Console

    from dealsuite_sync.config.settings import DEALS_DB_BACKEND
    from dealsuite_sync.core.cancellation import CancellationToken
    from dealsuite_sync.core.connections import open_deals_connection
    from dealsuite_sync.core.events import ProgressLog
    from dealsuite_sync.pipeline.coordinator import build_coordinator
    from dealsuite_sync.pipeline.responses import InvocationRequest, handle_invocation
    from dealsuite_sync.storage.reconciliation import ReconciliationStore
    from dealsuite_sync.utils.progress import ProgressDisplay, RunTracker, build_result_table, follow_run

    console = Console(stderr=args.json)
    conn = None
    store = None

    if not args.dry_run:
        conn, dialect = open_deals_connection(args.backend or DEALS_DB_BACKEND, args.sqlite_path)
        store = ReconciliationStore(conn, dialect)
        store.ensure_schema()

    try:
        request = InvocationRequest(session_cookie=cookie, filters=filters, dry_run=args.dry_run)
        events = ProgressLog()
        token = CancellationToken(args.deadline)

        async with build_coordinator(store=store) as coordinator:
            if args.json:
                result, payload = await handle_invocation(coordinator, request, token, events)
            else:
                display = ProgressDisplay(RunTracker("Dealsuite sync"), console=console)
                (result, payload), _ = await asyncio.gather(
                    handle_invocation(coordinator, request, token, events),
                    follow_run(events, display),
                )
    finally:
        if conn is not None:
            conn.close()

    if args.json:
        print(json.dumps(payload, indent=2, default=str))
    else:
        console.print(build_result_table(result))
        if not result.success:
            console.print(f"[red]{payload.get('message', '')}[/red]")
            if payload.get("hint"):
                console.print(f"[yellow]Hint:[/yellow] {payload['hint']}")

    return 0 if result.success else 1


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the sync CLI.

    Returns:
        int: Exit code (0 for success, 1 for failure, 130 on interrupt).
    """
    args = parse_arguments(argv)

    # Set up logging
    from dealsuite_sync.config.logging_config import setup_logging
    import logging

    # Logs go to stderr with --json so stdout carries only the payload.
    stream = sys.stderr if args.json else None
    if args.verbose:
        setup_logging(level=logging.DEBUG, stream=stream)
    else:
        setup_logging(level=logging.INFO, stream=stream)

    from dealsuite_sync.config.logging_config import get_logger
    logger = get_logger(__name__)

    try:
        filters = parse_filters(args.filter)
    except ValueError as e:
        logger.error(str(e))
        return 1

    try:
        cookie = read_cookie(args.cookie_file)
    except OSError as e:
        logger.error(f"Could not read the cookie: {e}")
        return 1

    if not cookie.strip():
        logger.error(
            f"No session cookie given. Use --cookie-file, {COOKIE_ENV_VAR}, or stdin"
        )
        return 1

    try:
        return asyncio.run(run_sync(args, cookie, filters))

    except KeyboardInterrupt:
        logger.warning("Sync interrupted by user")
        return 130

    except Exception as e:
        logger.error(f"Sync failed with error: {str(e)}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
