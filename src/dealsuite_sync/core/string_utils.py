"""
String manipulation utilities for the Dealsuite sync pipeline.

This module provides helpers for cleaning model output, building safe
previews of rendered content, and normalising free text used in natural
keys.

Author: Leonardo Pacciani-Mori
License: MIT
"""

import re
from typing import Optional

from bs4 import BeautifulSoup


_FENCE_OPEN = re.compile(r"^```[a-zA-Z0-9_-]*[ \t]*\r?\n?")
_FENCE_CLOSE = re.compile(r"\r?\n?```\s*$")


def strip_code_fences(text: str) -> str:
    """
    Remove a markdown code fence wrapped around a model response.

    Language models asked for JSON sometimes answer with a fenced block
    ("```json ... ```"). The fence is removed; the content in between is
    returned unchanged apart from surrounding whitespace.

    Args:
        text: The raw model output.

    Returns:
        str: The output without the opening and closing fence.

    Example:
        >>> strip_code_fences('```json\\n{"deals": []}\\n```')
        '{"deals": []}'
        >>> strip_code_fences('{"deals": []}')
        '{"deals": []}'
    """
    if not text:
        return ""

    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN.sub("", cleaned, count=1)
    if cleaned.endswith("```"):
        cleaned = _FENCE_CLOSE.sub("", cleaned, count=1)

    return cleaned.strip()


def truncate_string(text: Optional[str], max_length: int) -> Optional[str]:
    """
    Cut a string to at most max_length characters.

    Args:
        text: The text to cut. None is returned unchanged.
        max_length: Maximum number of characters to keep.

    Returns:
        Optional[str]: The prefix of the text.

    Example:
        >>> truncate_string("Hello World", 5)
        'Hello'
    """
    if text is None:
        return None
    return text[:max(0, max_length)]


def normalize_whitespace(text: Optional[str]) -> str:
    """Collapse runs of whitespace to single spaces and trim."""
    if not text:
        return ""
    return " ".join(text.split())

def html_to_text(html_source: Optional[str]) -> str:
    """
    Extract the visible text of an HTML document.

    Used when the rendering service returns HTML without a markdown body.
    Script, style and noscript elements are dropped.

    Args:
        html_source: The HTML document.

    Returns:
        str: The visible text, one line per block, or an empty string.
    """
    if not html_source:
        return ""

    soup = BeautifulSoup(html_source, "html.parser")
    for element in soup(["script", "style", "noscript", "template"]):
        element.decompose()

    lines = (normalize_whitespace(line) for line in soup.get_text("\n").splitlines())
    return "\n".join(line for line in lines if line)
