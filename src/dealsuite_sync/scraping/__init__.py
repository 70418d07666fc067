"""
Scraping module for the Dealsuite sync pipeline.

This module provides everything needed to obtain the rendered Wanted board
with an operator's session cookie and to decide whether the result is
usable.

Submodules:
    credentials: Structural validation of the session cookie.
    render_client: Single request to the remote rendering service.
    retry: Escalating-budget retry loop around the render client.
    content_classifier: Authenticated / login wall / challenge detection.
    urls: Wanted-board URL construction.
"""

from .credentials import (
    CredentialDiagnostics,
    CredentialWarning,
    validate,
    normalize_credential,
    describe_rejection,
)
from .render_client import FailureReason, RenderOutcome, RenderClient, classify_failure
from .retry import RenderAttempt, RenderReport, RetryOrchestrator
from .content_classifier import ContentClass, ContentInspection, classify, inspect_content
from .urls import build_wanted_url
