"""
Remote rendering client for the Dealsuite sync pipeline.

The Wanted board is a JavaScript application: a plain HTTP GET returns an
empty shell. Pages are therefore loaded through a Firecrawl-compatible
rendering service that runs a headless browser remotely, forwards the
operator's session cookie, and returns the rendered page as markdown and
HTML.

This module issues exactly one render request per call and classifies any
failure so that the retry orchestrator can decide what to do next:

    - HTTP 429                          -> rate_limited (never retried)
    - HTTP 408 or "timeout" in the body -> timeout
    - any other non-2xx, transport error -> transport_error
    - 2xx with too little content        -> empty_content

Note:
    Timeout detection relies on the wording of the service's error body.
    A change in that wording downgrades timeouts to transport errors,
    which are retried the same way.

Author: Leonardo Pacciani-Mori
License: MIT
"""

import asyncio
import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence

import aiohttp

from dealsuite_sync.config.settings import (
    FIRECRAWL_API_URL,
    RENDER_BLOCKED_RESOURCES,
    RENDER_CONTENT_SELECTOR,
    RENDER_CLIENT_TIMEOUT_SLACK_SECONDS,
    RENDER_MIN_CONTENT_LENGTH,
    SCRAPING_HEADERS,
)
from dealsuite_sync.config.logging_config import get_logger
from dealsuite_sync.core.cancellation import CancellationToken
from dealsuite_sync.core.exceptions import OperationCancelled
from dealsuite_sync.core.string_utils import html_to_text

# Initialize module logger
logger = get_logger(__name__)

# Maximum number of connections kept by a client-owned session.
RENDER_CONNECTION_LIMIT = 4


class FailureReason(str, Enum):
    """Why a render attempt failed."""
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    TRANSPORT_ERROR = "transport_error"
    EMPTY_CONTENT = "empty_content"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RenderOutcome:
    """
    Result of one render request.

    Attributes:
        success: True when usable content was returned.
        markdown: Rendered page as markdown (the content used downstream).
        html: Rendered page as HTML, if the service returned it.
        reason: Failure classification, None on success.
        status_code: HTTP status of the service response, if one arrived.
        error_message: Short description of the failure (never contains
            the session cookie).
        duration_seconds: Wall-clock time spent on the request.
    """
    success: bool
    markdown: Optional[str] = None
    html: Optional[str] = None
    reason: Optional[FailureReason] = None
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def content_length(self) -> int:
        return len(self.markdown or "")

    @classmethod
    def succeeded(cls, markdown: str, html: Optional[str], status_code: int, duration: float) -> "RenderOutcome":
        return cls(True, markdown=markdown, html=html, status_code=status_code,
                   duration_seconds=duration)

    @classmethod
    def failed(
        cls,
        reason: FailureReason,
        message: str,
        status_code: Optional[int] = None,
        duration: float = 0.0,
        markdown: Optional[str] = None,
    ) -> "RenderOutcome":
        return cls(False, markdown=markdown, reason=reason, status_code=status_code,
                   error_message=message, duration_seconds=duration)


def classify_failure(status_code: Optional[int], error_text: Optional[str]) -> FailureReason:
    """
    Classify a failed response of the rendering service.

    Args:
        status_code: HTTP status code, or None when no response arrived.
        error_text: Response body or error message.

    Returns:
        FailureReason: rate_limited for 429, timeout for 408 or a body
            mentioning a timeout, transport_error otherwise.

    Example:
        >>> classify_failure(429, "Too many requests")
        <FailureReason.RATE_LIMITED: 'rate_limited'>
        >>> classify_failure(500, "Request timeout after 120000ms")
        <FailureReason.TIMEOUT: 'timeout'>
    """
    if status_code == 429:
        return FailureReason.RATE_LIMITED

    lowered = (error_text or "").lower()
    if status_code == 408 or "timeout" in lowered or "timed out" in lowered:
        return FailureReason.TIMEOUT

    return FailureReason.TRANSPORT_ERROR


class RenderClient:
    """
    Client for a Firecrawl-compatible remote rendering service.

    The client can share an aiohttp session supplied by the caller or own
    one for its lifetime (use it as an async context manager in that case).

    Attributes:
        calls: Number of render requests issued through this client.
    """

    def __init__(
        self,
        api_key: str,
        api_url: str = FIRECRAWL_API_URL,
        session: Optional[aiohttp.ClientSession] = None,
        min_content_length: int = RENDER_MIN_CONTENT_LENGTH,
        blocked_resources: Sequence[str] = RENDER_BLOCKED_RESOURCES,
        content_selector: Optional[str] = RENDER_CONTENT_SELECTOR,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.api_key = api_key
        self.api_url = api_url
        self.min_content_length = min_content_length
        self.blocked_resources = tuple(blocked_resources)
        self.content_selector = content_selector or None
        self.headers = dict(headers if headers is not None else SCRAPING_HEADERS)
        self.calls = 0
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "RenderClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the aiohttp session if this client created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            # force_close=True ensures connections are properly closed after use.
            connector = aiohttp.TCPConnector(force_close=True, limit=RENDER_CONNECTION_LIMIT)
            self._session = aiohttp.ClientSession(connector=connector)
            self._owns_session = True
        return self._session

    def build_payload(
        self,
        url: str,
        credential: str,
        wait_budget_ms: int,
        hard_timeout_ms: int,
    ) -> Dict[str, Any]:
        """
        Build the JSON body of a render request.

        The remote browser waits for wait_budget_ms (or for the content
        selector, when configured), skips heavy sub-resources, and sends
        the session cookie with the browser headers.

        Args:
            url: Page to render.
            credential: Normalised session cookie.
            wait_budget_ms: Time the browser waits for the page to settle.
            hard_timeout_ms: Hard timeout enforced by the service.

        Returns:
            dict: The request body.
        """
        actions = []
        if self.content_selector:
            actions.append({"type": "wait", "selector": self.content_selector})

        return {
            "url": url,
            "formats": ["markdown", "html"],
            "waitFor": wait_budget_ms,
            "timeout": hard_timeout_ms,
            "onlyMainContent": False,
            "blockAds": True,
            "blockResources": list(self.blocked_resources),
            "actions": actions,
            "headers": {**self.headers, "Cookie": credential},
        }

    async def render(
        self,
        url: str,
        credential: str,
        wait_budget_ms: int,
        hard_timeout_ms: int,
        cancel_token: Optional[CancellationToken] = None,
    ) -> RenderOutcome:
        """
        Render a page once through the remote service.

        Args:
            url: Page to render.
            credential: Normalised session cookie.
            wait_budget_ms: Time the remote browser waits for the page.
            hard_timeout_ms: Hard timeout enforced by the service. The local
                HTTP timeout adds RENDER_CLIENT_TIMEOUT_SLACK_SECONDS.
            cancel_token: Aborts the in-flight request when fired.

        Returns:
            RenderOutcome: Success with content, or a classified failure.
                A fired token yields a "cancelled" failure.
        """
        token = cancel_token or CancellationToken.none()
        started = time.monotonic()
        self.calls += 1

        try:
            return await token.guard(
                self._request(url, credential, wait_budget_ms, hard_timeout_ms, started)
            )
        except OperationCancelled as e:
            logger.warning(f"Render of {url} cancelled: {e}")
            return RenderOutcome.failed(
                FailureReason.CANCELLED,
                str(e),
                duration=time.monotonic() - started,
            )

    async def _request(
        self,
        url: str,
        credential: str,
        wait_budget_ms: int,
        hard_timeout_ms: int,
        started: float,
    ) -> RenderOutcome:
        payload = self.build_payload(url, credential, wait_budget_ms, hard_timeout_ms)
        timeout = aiohttp.ClientTimeout(
            total=hard_timeout_ms / 1000 + RENDER_CLIENT_TIMEOUT_SLACK_SECONDS
        )
        session = self._get_session()

        try:
            async with session.post(
                self.api_url,
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=timeout,
            ) as response:
                body = await response.text()
                status = response.status

        # Handle timeout errors
        except asyncio.TimeoutError:
            logger.error(f"ERROR: Render request timed out for {url}")
            return RenderOutcome.failed(
                FailureReason.TIMEOUT,
                "Render request timed out",
                duration=time.monotonic() - started,
            )

        # Handle connection-related errors
        except aiohttp.ClientError as e:
            logger.error(f"ERROR: Connection issue while rendering {url}: {str(e)}")
            return RenderOutcome.failed(
                FailureReason.TRANSPORT_ERROR,
                f"Connection error: {type(e).__name__}",
                duration=time.monotonic() - started,
            )

        # Handle bodies that do not decode with the declared charset
        except UnicodeDecodeError as e:
            logger.error(f"ERROR: Undecodable render response for {url}: {e.reason}")
            return RenderOutcome.failed(
                FailureReason.TRANSPORT_ERROR,
                "Render service returned an undecodable response",
                duration=time.monotonic() - started,
            )

        duration = time.monotonic() - started

        if not 200 <= status < 300:
            reason = classify_failure(status, body)
            logger.error(f"Render service returned {status} for {url} ({reason.value})")
            return RenderOutcome.failed(
                reason,
                f"Render service error: {status}",
                status_code=status,
                duration=duration,
            )

        try:
            data = json.loads(body)
        except ValueError:
            logger.error(f"Render service returned a non-JSON body for {url}")
            return RenderOutcome.failed(
                FailureReason.TRANSPORT_ERROR,
                "Render service returned an invalid response",
                status_code=status,
                duration=duration,
            )

        if isinstance(data, dict) and data.get("success") is False:
            error_text = str(data.get("error") or "")
            reason = classify_failure(status, error_text)
            logger.error(f"Render service reported failure for {url} ({reason.value})")
            return RenderOutcome.failed(
                reason,
                f"Render service error: {error_text[:200] or 'unknown'}",
                status_code=status,
                duration=duration,
            )

        markdown, html = _extract_formats(data)
        if not markdown and html:
            markdown = html_to_text(html)

        if len(markdown or "") < self.min_content_length:
            logger.warning(
                f"Empty or short content for {url} ({len(markdown or '')} chars)"
            )
            return RenderOutcome.failed(
                FailureReason.EMPTY_CONTENT,
                "No content retrieved from page",
                status_code=status,
                duration=duration,
                markdown=markdown,
            )

        logger.info(f"Rendered {len(markdown)} characters from {url} in {duration:.1f}s")
        return RenderOutcome.succeeded(markdown, html, status, duration)


def _extract_formats(data: Any):
    if not isinstance(data, dict):
        return None, None
    inner = data.get("data") if isinstance(data.get("data"), dict) else {}
    markdown = inner.get("markdown") or data.get("markdown")
    html = inner.get("html") or data.get("html")
    return markdown, html
