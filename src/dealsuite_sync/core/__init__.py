"""
Core utilities module for the Dealsuite sync pipeline.

This module provides shared utilities used across all pipeline stages,
including the error hierarchy, run cancellation, database connections,
and string/date/numeric helpers.

Submodules:
    exceptions: Pipeline exception hierarchy.
    cancellation: Deadline and cancellation token for one run.
    connections: SQLite and PostgreSQL connection management.
    string_utils: Code-fence stripping, previews and HTML text extraction.
    date_utils: Publication date and timestamp parsing.
    numeric_utils: Unit-suffixed amount normalisation.
    events: Replayable progress events emitted by the stages.
"""

from .exceptions import (
    DealsuiteSyncError,
    ConfigurationError,
    ExtractionError,
    OperationCancelled,
    ReconciliationError,
)
from .cancellation import CancellationToken
from .connections import deals_connection, open_deals_connection
from .string_utils import strip_code_fences, truncate_string, html_to_text
from .date_utils import parse_published_date, parse_unix_timestamp, utc_now
from .numeric_utils import parse_amount_to_thousands
from .events import ProgressEvent, ProgressLog, ProgressStage
