"""
Exception hierarchy for the Dealsuite sync pipeline.

Expected stage outcomes (a rejected cookie, a failed render, a login wall)
are returned as values. Exceptions are reserved for conditions that stop a
stage outright: missing configuration, an unusable extraction, a fired
cancellation token, and database failures inside a single record upsert.

Author: Leonardo Pacciani-Mori
License: MIT
"""


class DealsuiteSyncError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(DealsuiteSyncError):
    """A mandatory setting (API key, database backend) is missing or invalid."""


class ExtractionError(DealsuiteSyncError):
    """
    The extraction service failed or returned output that cannot be trusted.

    Attributes:
        raw_response: The (possibly truncated) model output that failed to
            parse, kept for diagnostics. None for transport failures.
    """

    def __init__(self, message: str, raw_response: str = None):
        super().__init__(message)
        self.raw_response = raw_response


class OperationCancelled(DealsuiteSyncError):
    """
    The caller's cancellation token fired or its deadline elapsed.

    Attributes:
        deadline_exceeded: True when the deadline elapsed, False when the
            token was cancelled explicitly.
    """

    def __init__(self, message: str = "Operation cancelled", deadline_exceeded: bool = False):
        super().__init__(message)
        self.deadline_exceeded = deadline_exceeded


class ReconciliationError(DealsuiteSyncError):
    """A single deal could not be written to the store."""
