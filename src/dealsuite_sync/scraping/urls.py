"""
Target URL construction for the Wanted board.

Author: Leonardo Pacciani-Mori
License: MIT
"""

from typing import Mapping, Optional
from urllib.parse import urlencode

from dealsuite_sync.config.settings import DEALSUITE_WANTED_URL, DEALSUITE_DEFAULT_FILTERS


def build_wanted_url(
    filters: Optional[Mapping[str, str]] = None,
    base_url: str = DEALSUITE_WANTED_URL,
) -> str:
    """
    Build the Wanted-board URL for a set of filters.

    Caller filters override the defaults (EUR currency, Europe, EBITDA in
    percentage). Values are converted to strings and URL-encoded.

    Args:
        filters: Query parameters to apply on top of the defaults.
        base_url: The board URL without query string.

    Returns:
        str: The full URL.

    Example:
        >>> build_wanted_url({"sector": "12"})
        'https://app.dealsuite.com/en/market/wanted?currency=1&continents=3&ebitda_in_percentage=1&sector=12'
    """
    params = dict(DEALSUITE_DEFAULT_FILTERS)
    for key, value in (filters or {}).items():
        if value is None:
            continue
        params[str(key)] = str(value)

    return f"{base_url}?{urlencode(params)}"
