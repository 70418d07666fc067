"""
Invocation request parsing and response payloads.

Callers (the HTTP endpoint, the CLI) submit a request of the form

    {"session_cookie": "...", "filters": {...}, "dry_run": false}

and receive a JSON object describing the outcome. Every pipeline outcome,
failures included, is a regular response: a rejected cookie or an expired
session is something the caller can fix, so it is reported as data with a
machine-checkable ``error`` code and a human-readable ``message``.

The cookie itself never appears in a response.

Author: Leonardo Pacciani-Mori
License: MIT
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from dealsuite_sync.config.settings import (
    DRY_RUN_HTML_PREVIEW_CHARS,
    DRY_RUN_PREVIEW_CHARS,
    LOGIN_PREVIEW_CHARS,
)
from dealsuite_sync.config.logging_config import get_logger
from dealsuite_sync.core.cancellation import CancellationToken
from dealsuite_sync.core.events import ProgressLog
from dealsuite_sync.core.string_utils import truncate_string
from dealsuite_sync.pipeline.coordinator import PipelineCoordinator
from dealsuite_sync.pipeline.models import PipelineResult, PipelineStatus
from dealsuite_sync.scraping.credentials import describe_rejection
from dealsuite_sync.scraping.render_client import FailureReason
from dealsuite_sync.scraping.urls import build_wanted_url

logger = get_logger(__name__)

# Error codes reported for render failures.
RENDER_ERROR_CODES = {
    FailureReason.TIMEOUT: "timeout",
    FailureReason.RATE_LIMITED: "rate_limited",
    FailureReason.TRANSPORT_ERROR: "connection_error",
    FailureReason.EMPTY_CONTENT: "scrape_failed",
}

RENDER_ERROR_MESSAGES = {
    FailureReason.TIMEOUT: "The page took too long to load.",
    FailureReason.RATE_LIMITED: "The rendering service rate limit was exceeded.",
    FailureReason.TRANSPORT_ERROR: "The rendering service could not be reached.",
    FailureReason.EMPTY_CONTENT: "No content retrieved from page.",
}

RENDER_ERROR_HINTS = {
    FailureReason.TIMEOUT: "Try again later or during off-peak hours.",
    FailureReason.RATE_LIMITED: "Wait a few minutes before retrying.",
    FailureReason.TRANSPORT_ERROR: "Check the rendering service status and try again.",
    FailureReason.EMPTY_CONTENT: "Try again; if it persists, refresh the session cookie.",
}

SESSION_EXPIRED_HINT = (
    "Log in to app.dealsuite.com again and copy a fresh session cookie."
)
CAPTCHA_HINT = "Try again later."
NO_DEALS_WARNING = "no_deals_found"


class InvalidRequest(ValueError):
    """The invocation request is malformed."""


@dataclass(frozen=True)
class InvocationRequest:
    """
    A parsed invocation request.

    Attributes:
        session_cookie: The operator's cookie string.
        filters: Query parameters for the Wanted board.
        dry_run: Stop after classification.
    """
    session_cookie: str = field(repr=False)
    filters: Dict[str, str] = field(default_factory=dict)
    dry_run: bool = False

    @classmethod
    def from_payload(cls, payload: Any) -> "InvocationRequest":
        """
        Validate a decoded JSON body.

        Raises:
            InvalidRequest: If the body is not an object, the cookie is
                missing or empty, filters is not an object, or dry_run is
                not a boolean.
        """
        if not isinstance(payload, Mapping):
            raise InvalidRequest("Request body must be a JSON object")

        cookie = payload.get("session_cookie")
        if not isinstance(cookie, str) or not cookie.strip():
            raise InvalidRequest("session_cookie is required")

        filters = payload.get("filters") or {}
        if not isinstance(filters, Mapping):
            raise InvalidRequest("filters must be a JSON object")

        dry_run = payload.get("dry_run", False)
        if dry_run is None:
            dry_run = False
        if not isinstance(dry_run, bool):
            raise InvalidRequest("dry_run must be a boolean")

        return cls(
            session_cookie=cookie,
            filters={str(k): str(v) for k, v in filters.items() if v is not None},
            dry_run=dry_run,
        )


def _rejected(result: PipelineResult) -> Dict[str, Any]:
    diagnostics = result.credential
    message, hint = describe_rejection(diagnostics)
    return {
        "success": False,
        "error": "invalid_cookie_format",
        "message": message,
        "hint": hint,
        "detected": sorted(diagnostics.detected),
        "missing": sorted(diagnostics.missing),
        "warnings": sorted(w.value for w in diagnostics.warnings),
        "diagnostics": diagnostics.to_dict(),
    }


def _render_failed(result: PipelineResult) -> Dict[str, Any]:
    reason = result.render_reason or FailureReason.TRANSPORT_ERROR
    return {
        "success": False,
        "error": RENDER_ERROR_CODES[reason],
        "message": f"{RENDER_ERROR_MESSAGES[reason]} {RENDER_ERROR_HINTS[reason]}",
        "detail": result.error_message,
        "attempts": result.attempt_count,
        "attempt_history": [attempt.to_dict() for attempt in result.attempts],
        "can_retry": reason != FailureReason.RATE_LIMITED,
    }


def _session_expired(result: PipelineResult) -> Dict[str, Any]:
    return {
        "success": False,
        "error": "session_expired",
        "message": (
            "The session cookie is invalid or expired: "
            "the rendered content looks like a login page."
        ),
        "hint": SESSION_EXPIRED_HINT,
        "preview": truncate_string(result.markdown, LOGIN_PREVIEW_CHARS),
        "attempts": result.attempt_count,
    }


def _captcha(result: PipelineResult) -> Dict[str, Any]:
    return {
        "success": False,
        "error": "captcha_detected",
        "message": "Dealsuite showed a captcha. Try again later.",
        "hint": CAPTCHA_HINT,
        "attempts": result.attempt_count,
    }


def _preview(result: PipelineResult) -> Dict[str, Any]:
    return {
        "success": True,
        "dry_run": result.dry_run,
        "is_authenticated": True,
        "content_length": result.content_length,
        "preview": truncate_string(result.markdown, DRY_RUN_PREVIEW_CHARS),
        "html_preview": truncate_string(result.html, DRY_RUN_HTML_PREVIEW_CHARS),
        "attempts": result.attempt_count,
    }


def _extract_failed(result: PipelineResult) -> Dict[str, Any]:
    return {
        "success": False,
        "error": "extraction_failed",
        "message": result.error_message or "Failed to parse AI extraction result",
        "hint": "The page was rendered; re-run the extraction rather than refreshing the cookie.",
        "attempts": result.attempt_count,
    }


def _cancelled(result: PipelineResult) -> Dict[str, Any]:
    return {
        "success": False,
        "error": "cancelled",
        "message": result.error_message or "Run cancelled",
        "deadline_exceeded": result.deadline_exceeded,
        "attempts": result.attempt_count,
        "can_retry": True,
    }


def _completed(result: PipelineResult) -> Dict[str, Any]:
    extraction = result.extraction
    payload = {
        "success": True,
        "extracted": result.found,
        "inserted": result.inserted,
        "updated": result.updated,
        "failed": result.failed,
        "total_found": extraction.total_found if extraction else 0,
        "has_more_pages": extraction.has_more_pages if extraction else False,
        "warnings": list(result.warnings),
        "attempts": result.attempt_count,
    }
    if result.found == 0:
        payload["warning"] = NO_DEALS_WARNING
    if result.reconciliation is not None and result.reconciliation.failures:
        payload["errors"] = result.reconciliation.to_dict()["errors"]
    return payload


_BUILDERS = {
    PipelineStatus.REJECTED: _rejected,
    PipelineStatus.RENDER_FAILED: _render_failed,
    PipelineStatus.AUTH_FAILED: _session_expired,
    PipelineStatus.BLOCKED: _captcha,
    PipelineStatus.PREVIEW_READY: _preview,
    PipelineStatus.EXTRACT_FAILED: _extract_failed,
    PipelineStatus.CANCELLED: _cancelled,
    PipelineStatus.COMPLETED: _completed,
}


def to_response(result: PipelineResult, include_usage: bool = True) -> Dict[str, Any]:
    """
    Build the response payload for a run.

    Args:
        result: The run's result.
        include_usage: Add the remote-call counters under "usage".

    Returns:
        dict: JSON-serialisable payload.

    Example:
        >>> payload = to_response(result)
        >>> payload["success"], payload.get("error")
        (False, 'session_expired')
    """
    payload = _BUILDERS[result.status](result)
    if include_usage:
        payload["usage"] = result.usage.to_dict()
    return payload


def error_response(message: str, error: Optional[str] = None) -> Dict[str, Any]:
    """Payload for requests that never reached the pipeline."""
    return {"success": False, "error": error or message, "message": message}


async def handle_invocation(
    coordinator: PipelineCoordinator,
    request: InvocationRequest,
    cancel_token: Optional[CancellationToken] = None,
    events: Optional[ProgressLog] = None,
) -> Tuple[PipelineResult, Dict[str, Any]]:
    """
    Run the pipeline for an invocation request.

    Args:
        coordinator: The pipeline to run.
        request: Parsed request.
        cancel_token: Deadline / cancellation for the run.
        events: Progress log to follow the run with.

    Returns:
        Tuple[PipelineResult, dict]: The result and its response payload.
    """
    url = build_wanted_url(request.filters)
    logger.info(f"Invocation for {url} (dry_run={request.dry_run})")
    result = await coordinator.run(
        url,
        request.session_cookie,
        dry_run=request.dry_run,
        cancel_token=cancel_token,
        events=events,
    )
    return result, to_response(result)
