"""
Session cookie validation for the Dealsuite sync pipeline.

The operator pastes the browser's cookie string for app.dealsuite.com. Before
any network cost is incurred, this module inspects that string for the
defects that reliably make a render fail: missing session cookies, a copy
that was cut short, stray quoting, embedded line breaks, and placeholder
values copied from an unauthenticated page.

Validation is a pure function of the input. The result is a frozen
CredentialDiagnostics snapshot that carries only derived facts; the cookie
itself never leaves this module except through normalize_credential().

Author: Leonardo Pacciani-Mori
License: MIT
"""

import base64
import binascii
import datetime
import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple
from urllib.parse import unquote

from dealsuite_sync.config.settings import (
    REQUIRED_COOKIE_NAMES,
    KNOWN_COOKIE_NAMES,
    MIN_COOKIE_LENGTH,
    MIN_COOKIE_SEGMENTS,
    SESSION_COOKIE_MAX_AGE_DAYS,
)
from dealsuite_sync.config.logging_config import get_logger
from dealsuite_sync.core.date_utils import parse_unix_timestamp

logger = get_logger(__name__)

WRAPPING_QUOTES = ('"', "'", "`")
ELLIPSIS = "…"
PLACEHOLDER_VALUES = ("undefined", "null")
# Signing timestamps are short ASCII digit runs; anything else is not a timestamp.
SIGNED_TIMESTAMP_PATTERN = re.compile(r"[0-9]{1,12}")


class CredentialWarning(str, Enum):
    """Structural defects detected in a cookie string."""
    TRUNCATED = "truncated"
    WRAPPING_QUOTES = "has_wrapping_quotes"
    CONTROL_CHARACTERS = "contains_control_characters"
    TOO_SHORT = "too_short"
    TOO_FEW_SEGMENTS = "too_few_segments"
    PLACEHOLDER_VALUES = "contains_placeholder_values"


# A cookie carrying any of these cannot authenticate.
HARD_REJECT_WARNINGS = frozenset({
    CredentialWarning.TRUNCATED,
    CredentialWarning.CONTROL_CHARACTERS,
    CredentialWarning.PLACEHOLDER_VALUES,
})


@dataclass(frozen=True)
class CredentialDiagnostics:
    """
    Derived, immutable facts about one cookie string.

    Attributes:
        detected: Known cookie names present with a value.
        missing: Required cookie names absent or empty.
        warnings: Structural defects found.
        estimated_expiry: When the session is expected to expire, if the
            cookie carries a signing or expiry timestamp.
        length: Length of the cookie after trimming whitespace and quotes.
        segment_count: Number of name=value pairs.
    """
    detected: FrozenSet[str] = field(default_factory=frozenset)
    missing: FrozenSet[str] = field(default_factory=frozenset)
    warnings: FrozenSet[CredentialWarning] = field(default_factory=frozenset)
    estimated_expiry: Optional[datetime.datetime] = None
    length: int = 0
    segment_count: int = 0

    @property
    def hard_failures(self) -> FrozenSet[CredentialWarning]:
        return self.warnings & HARD_REJECT_WARNINGS

    @property
    def is_acceptable(self) -> bool:
        """True when no hard-reject condition fired."""
        return not self.missing and not self.hard_failures

    def is_expired(self, now: Optional[datetime.datetime] = None) -> bool:
        if self.estimated_expiry is None:
            return False
        now = now or datetime.datetime.now(datetime.timezone.utc)
        return self.estimated_expiry <= now

    def to_dict(self) -> Dict[str, object]:
        """JSON-friendly view, safe to return to the caller."""
        return {
            "detected": sorted(self.detected),
            "missing": sorted(self.missing),
            "warnings": sorted(w.value for w in self.warnings),
            "length": self.length,
            "segment_count": self.segment_count,
            "estimated_expiry": (
                self.estimated_expiry.isoformat() if self.estimated_expiry else None
            ),
            "is_acceptable": self.is_acceptable,
        }


def _strip_wrapping_quotes(text: str) -> Tuple[str, bool]:
    if len(text) >= 2 and text[0] == text[-1] and text[0] in WRAPPING_QUOTES:
        return text[1:-1].strip(), True
    return text, False


def normalize_credential(raw: str) -> str:
    """
    Return the cookie string as it should be sent to the target site.

    Surrounding whitespace and one pair of symmetric wrapping quotes are
    removed. Nothing else is changed.

    Args:
        raw: The cookie string as pasted by the operator.

    Returns:
        str: The cleaned cookie string.

    Example:
        >>> normalize_credential('"user=abc; dstoken=xyz"\\n')
        'user=abc; dstoken=xyz'
    """
    cleaned, _ = _strip_wrapping_quotes((raw or "").strip())
    return cleaned


def parse_cookie_pairs(cookie: str) -> List[Tuple[str, str]]:
    """
    Split a Cookie header value into (name, value) pairs.

    Segments without "=" are ignored. Values keep any "=" they contain.

    Example:
        >>> parse_cookie_pairs("a=1; b=x=y; junk")
        [('a', '1'), ('b', 'x=y')]
    """
    pairs = []
    for segment in cookie.split(";"):
        if "=" not in segment:
            continue
        name, value = segment.split("=", 1)
        name = name.strip()
        if name:
            pairs.append((name, value.strip()))
    return pairs


def _has_control_characters(text: str) -> bool:
    return any(ord(char) < 32 or ord(char) == 127 for char in text)


def _is_truncated(text: str) -> bool:
    return ELLIPSIS in text or text.endswith("...")


def _b64url_decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _jwt_expiry(token: str) -> Optional[datetime.datetime]:
    parts = token.split(".")
    if len(parts) != 3:
        return None
    try:
        payload = json.loads(_b64url_decode(parts[1]))
    except (binascii.Error, ValueError, UnicodeDecodeError):
        return None
    if not isinstance(payload, dict) or "exp" not in payload:
        return None
    return parse_unix_timestamp(payload["exp"])


def _signed_cookie_timestamp(value: str) -> Optional[datetime.datetime]:
    """
    Read the signing timestamp of a Tornado-style secure cookie.

    Version 2 values look like "2|1:0|10:1700000000|4:user|...", version 1
    values like "<base64>|1700000000|<signature>".
    """
    fields = value.split("|")
    if len(fields) >= 4 and fields[0] == "2":
        _, _, timestamp = fields[2].partition(":")
        if SIGNED_TIMESTAMP_PATTERN.fullmatch(timestamp):
            return parse_unix_timestamp(int(timestamp))
    elif len(fields) == 3 and SIGNED_TIMESTAMP_PATTERN.fullmatch(fields[1]):
        return parse_unix_timestamp(int(fields[1]))
    return None


def estimate_expiry(pairs: List[Tuple[str, str]]) -> Optional[datetime.datetime]:
    """
    Estimate when the session expires from the cookie values.

    A JWT "dstoken" with an exp claim takes precedence; otherwise the
    signing time of the "user" cookie plus SESSION_COOKIE_MAX_AGE_DAYS.

    Args:
        pairs: Parsed cookie pairs.

    Returns:
        Optional[datetime.datetime]: The estimated expiry (UTC), or None.
    """
    values = {name: unquote(value).strip('"') for name, value in pairs}

    if "dstoken" in values:
        expiry = _jwt_expiry(values["dstoken"])
        if expiry is not None:
            return expiry

    if "user" in values:
        signed_at = _signed_cookie_timestamp(values["user"])
        if signed_at is not None:
            return signed_at + datetime.timedelta(days=SESSION_COOKIE_MAX_AGE_DAYS)

    return None


def validate(raw: str) -> CredentialDiagnostics:
    """
    Inspect a cookie string for structural soundness.

    Checks, in order:
        1. Required cookies (REQUIRED_COOKIE_NAMES) present with a value.
        2. Truncation (an ellipsis character anywhere, or a trailing "...").
        3. Symmetric wrapping quotes (recoverable, see normalize_credential).
        4. Embedded control characters (newline, carriage return, tab, ...).
        5. Minimum length and minimum number of cookie pairs (soft).
        6. Literal placeholder values ("undefined", "null").

    Every flag is reported whether or not the cookie is acceptable, so the
    caller can explain precisely what is wrong.

    Args:
        raw: The cookie string as pasted by the operator.

    Returns:
        CredentialDiagnostics: The derived diagnostics.

    Example:
        >>> diagnostics = validate("user=abc; _xsrf=1")
        >>> sorted(diagnostics.missing)
        ['dstoken']
        >>> diagnostics.is_acceptable
        False
    """
    text, quoted = _strip_wrapping_quotes((raw or "").strip())
    pairs = parse_cookie_pairs(text)
    values = {name: value for name, value in pairs}

    warnings = set()

    detected = frozenset(
        name for name in KNOWN_COOKIE_NAMES if values.get(name)
    )
    missing = frozenset(
        name for name in REQUIRED_COOKIE_NAMES if not values.get(name)
    )

    if _is_truncated(text):
        warnings.add(CredentialWarning.TRUNCATED)

    if quoted:
        warnings.add(CredentialWarning.WRAPPING_QUOTES)

    if _has_control_characters(text):
        warnings.add(CredentialWarning.CONTROL_CHARACTERS)

    if len(text) < MIN_COOKIE_LENGTH:
        warnings.add(CredentialWarning.TOO_SHORT)

    if len(pairs) < MIN_COOKIE_SEGMENTS:
        warnings.add(CredentialWarning.TOO_FEW_SEGMENTS)

    if text.lower() in PLACEHOLDER_VALUES or any(
        value.strip('"').lower() in PLACEHOLDER_VALUES for _, value in pairs
    ):
        warnings.add(CredentialWarning.PLACEHOLDER_VALUES)

    diagnostics = CredentialDiagnostics(
        detected=detected,
        missing=missing,
        warnings=frozenset(warnings),
        estimated_expiry=estimate_expiry(pairs),
        length=len(text),
        segment_count=len(pairs),
    )

    logger.debug(
        f"Cookie checked: length={diagnostics.length}, "
        f"detected={sorted(detected)}, missing={sorted(missing)}, "
        f"warnings={sorted(w.value for w in diagnostics.warnings)}"
    )
    return diagnostics


def describe_rejection(diagnostics: CredentialDiagnostics) -> Tuple[str, str]:
    """
    Build a human-readable message and hint for a rejected cookie.

    Args:
        diagnostics: Diagnostics of a cookie that is not acceptable.

    Returns:
        Tuple[str, str]: (message, hint).
    """
    problems = []
    if diagnostics.missing:
        problems.append(
            "missing required cookies: " + ", ".join(sorted(diagnostics.missing))
        )
    if CredentialWarning.TRUNCATED in diagnostics.warnings:
        problems.append("the cookie looks truncated (it contains an ellipsis)")
    if CredentialWarning.CONTROL_CHARACTERS in diagnostics.warnings:
        problems.append("the cookie contains line breaks or tabs")
    if CredentialWarning.PLACEHOLDER_VALUES in diagnostics.warnings:
        problems.append("the cookie contains placeholder values (undefined/null)")

    message = "Invalid session cookie format: " + "; ".join(problems or ["unknown defect"])
    hint = (
        "Log in to app.dealsuite.com, open the developer tools, and copy the full "
        "Cookie request header from a request to the Wanted page. The console's "
        "document.cookie output and truncated copies from the cookie table do not "
        "include every session cookie."
    )
    return message, hint
