"""
Rendered content classification for the Dealsuite sync pipeline.

A render can "succeed" and still be useless: an expired cookie yields the
login page, and an anti-bot layer yields a challenge page. This module
tells those apart from the authenticated Wanted board using lexical
heuristics on the lower-cased content.

The login check is deliberately conjunctive. The board's navigation chrome
mentions "login" and "sign in" too, so a page only counts as a login wall
when it shows login vocabulary AND lacks the board's own vocabulary
("wanted" together with a deal field name such as "ebitda").

Author: Leonardo Pacciani-Mori
License: MIT
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from dealsuite_sync.config.settings import RENDER_MIN_CONTENT_LENGTH
from dealsuite_sync.config.logging_config import get_logger

logger = get_logger(__name__)

LOGIN_INDICATORS = (
    "sign in",
    "login",
    "log in",
    "enter your email",
    "forgot password",
    "create account",
    "register now",
)

CHALLENGE_INDICATORS = (
    "captcha",
    "recaptcha",
    "hcaptcha",
    "captcha-delivery.com",
    "datadome",
    "verify you are human",
    "are you a robot",
    "checking your browser",
    "cf-challenge",
    "attention required! | cloudflare",
)

# The board's core subject keyword and the field names that corroborate it.
SUBJECT_KEYWORD = "wanted"
CORROBORATING_KEYWORDS = ("ebitda", "revenue", "sector")


class ContentClass(str, Enum):
    """What a rendered page turned out to be."""
    AUTHENTICATED = "authenticated"
    LOGIN_WALL = "login_wall"
    CHALLENGE_PAGE = "challenge_page"


@dataclass(frozen=True)
class ContentInspection:
    """
    Classification together with the signals that produced it.

    Attributes:
        verdict: The resulting class.
        login_markers: Login phrases found.
        challenge_markers: Bot-verification phrases found.
        domain_markers: Corroborating field names found (only when the
            subject keyword is present).
        content_length: Length of the inspected content.
    """
    verdict: ContentClass
    login_markers: Tuple[str, ...] = ()
    challenge_markers: Tuple[str, ...] = ()
    domain_markers: Tuple[str, ...] = ()
    content_length: int = 0

    @property
    def has_domain_content(self) -> bool:
        return bool(self.domain_markers)


def login_markers_in_content(lowered: str) -> Tuple[str, ...]:
    return tuple(marker for marker in LOGIN_INDICATORS if marker in lowered)


def challenge_markers_in_content(lowered: str) -> Tuple[str, ...]:
    return tuple(marker for marker in CHALLENGE_INDICATORS if marker in lowered)


def domain_markers_in_content(lowered: str) -> Tuple[str, ...]:
    """
    Corroborating field names, reported only if the subject keyword appears.

    Returns:
        Tuple[str, ...]: Empty when the page is not the Wanted board.
    """
    if SUBJECT_KEYWORD not in lowered:
        return ()
    return tuple(keyword for keyword in CORROBORATING_KEYWORDS if keyword in lowered)


def inspect_content(
    content: Optional[str],
    min_content_length: int = RENDER_MIN_CONTENT_LENGTH,
) -> ContentInspection:
    """
    Classify rendered content and keep the evidence.

    Order of checks:
        1. Any bot-verification phrase -> challenge page.
        2. Content at or below the usable minimum -> login wall (an empty
           body is what an unauthenticated render typically returns).
        3. Login phrase present and no board vocabulary -> login wall.
        4. Otherwise -> authenticated.

    Args:
        content: Rendered markdown (or visible text).
        min_content_length: Usable minimum length.

    Returns:
        ContentInspection: The verdict and the markers found.
    """
    text = content or ""
    lowered = text.lower()

    challenge = challenge_markers_in_content(lowered)
    login = login_markers_in_content(lowered)
    domain = domain_markers_in_content(lowered)

    if challenge:
        verdict = ContentClass.CHALLENGE_PAGE
    elif len(text) <= min_content_length:
        verdict = ContentClass.LOGIN_WALL
    elif login and not domain:
        verdict = ContentClass.LOGIN_WALL
    else:
        verdict = ContentClass.AUTHENTICATED

    logger.info(
        f"Content classified as {verdict.value} "
        f"(length={len(text)}, login={list(login)}, "
        f"challenge={list(challenge)}, domain={list(domain)})"
    )
    return ContentInspection(
        verdict=verdict,
        login_markers=login,
        challenge_markers=challenge,
        domain_markers=domain,
        content_length=len(text),
    )


def classify(content: Optional[str]) -> ContentClass:
    """
    Classify rendered content.

    Example:
        >>> classify("Sign in to continue. Forgot password? " * 10)
        <ContentClass.LOGIN_WALL: 'login_wall'>
    """
    return inspect_content(content).verdict
