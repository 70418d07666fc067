"""
Dealsuite Wanted-board synchronisation package.

This package fetches the Dealsuite "Wanted" marketplace with an operator's
session cookie through a remote headless-browser rendering service, checks
that the rendered page is really the authenticated board, extracts the
listed deals with a schema-constrained language model, and reconciles them
against the deals already stored in the database.

Modules:
    config: Configuration settings and logging setup.
    core: Shared utilities (exceptions, cancellation, string/date/numeric
        helpers, database connections).
    scraping: Credential validation, rendering client, retry orchestration
        and content classification.
    extraction: Structured deal extraction and record schema.
    storage: Deal table schema and idempotent reconciliation.
    pipeline: Run coordination, result models, progress events and
        invocation payloads.
    utils: Terminal rendering of progress events.

Author: Leonardo Pacciani-Mori
License: MIT
"""

__version__ = "1.0.0"
__author__ = "Leonardo Pacciani-Mori"
