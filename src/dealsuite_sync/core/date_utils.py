"""
Date parsing utilities for the Dealsuite sync pipeline.

Publication dates extracted from the board arrive as ISO strings, European
day-first strings, or not at all. Session cookies carry Unix timestamps.
This module turns both into timezone-aware Python values.

Author: Leonardo Pacciani-Mori
License: MIT
"""

import datetime
from typing import Optional, Union
from dateutil import parser as dateutil_parser


def parse_published_date(
    value: Union[str, datetime.date, None]
) -> Optional[datetime.date]:
    """
    Parse a publication date extracted from the board.

    ISO date-times are accepted and reduced to their date part. Anything else
    goes through dateutil with day-first ordering, since the board is
    European. Unparseable strings yield None.

    Args:
        value: The raw date value.

    Returns:
        Optional[datetime.date]: The parsed date, or None.

    Example:
        >>> parse_published_date("2024-03-01T10:00:00Z")
        datetime.date(2024, 3, 1)
        >>> parse_published_date("01/03/2024")
        datetime.date(2024, 3, 1)
        >>> parse_published_date("last week") is None
        True
    """
    if value is None:
        return None

    if isinstance(value, datetime.datetime):
        return value.date()

    if isinstance(value, datetime.date):
        return value

    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    try:
        return datetime.datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass

    try:
        return dateutil_parser.parse(text, dayfirst=True).date()
    except (ValueError, OverflowError):
        return None


def parse_unix_timestamp(timestamp: Union[int, float, str, None]) -> Optional[datetime.datetime]:
    """
    Convert a Unix timestamp (seconds) to an aware UTC datetime.

    Args:
        timestamp: Seconds since epoch, as a number or numeric string.

    Returns:
        Optional[datetime.datetime]: The UTC datetime, or None if invalid.

    Example:
        >>> parse_unix_timestamp(1705363200)
        datetime.datetime(2024, 1, 16, 0, 0, tzinfo=datetime.timezone.utc)
    """
    if timestamp is None:
        return None

    try:
        return datetime.datetime.fromtimestamp(float(timestamp), tz=datetime.timezone.utc)
    except (ValueError, TypeError, OSError, OverflowError):
        # OSError can occur for timestamps outside the valid range
        return None


def utc_now() -> datetime.datetime:
    """Current time as an aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)
