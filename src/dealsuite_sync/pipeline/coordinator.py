"""
Pipeline coordinator for the Dealsuite sync.

This module wires the stages together for one run:

    validate cookie -> render (with retries) -> classify content
        -> [dry run: stop with a preview]
        -> extract deals -> reconcile with the store

Each stage either hands its output to the next one or ends the run with a
terminal status (rejected, render_failed, auth_failed, blocked,
preview_ready, extract_failed, completed, cancelled). Every path returns a
PipelineResult; only configuration problems raise.

A run is strictly sequential. Several runs can share one coordinator
concurrently: per-run state (attempt history, usage counters, progress
events) lives in local variables and in the returned result. The blocking
database writes of the reconciliation stage run on a worker thread so the
event loop keeps serving other runs.

Author: Leonardo Pacciani-Mori
License: MIT
"""

import asyncio
import functools
from typing import Optional

import aiohttp

from dealsuite_sync.config.settings import (
    FIRECRAWL_API_KEY,
    FIRECRAWL_API_URL,
    OPENAI_API_KEY,
    OPENAI_BASE_URL,
    RENDER_MIN_CONTENT_LENGTH,
)
from dealsuite_sync.config.logging_config import get_logger
from dealsuite_sync.core.cancellation import CancellationToken
from dealsuite_sync.core.events import ProgressLog, ProgressStage
from dealsuite_sync.core.exceptions import ConfigurationError, ExtractionError, OperationCancelled
from dealsuite_sync.extraction.extractor import StructuredExtractor
from dealsuite_sync.pipeline.models import PipelineResult, PipelineStatus, RunUsage
from dealsuite_sync.scraping.content_classifier import ContentClass, inspect_content
from dealsuite_sync.scraping.credentials import normalize_credential, validate
from dealsuite_sync.scraping.render_client import FailureReason, RenderClient
from dealsuite_sync.scraping.retry import RetryOrchestrator
from dealsuite_sync.storage.reconciliation import ReconciliationStore, ReconciliationSummary

logger = get_logger(__name__)


class PipelineCoordinator:
    """
    Runs the scrape-and-extract pipeline.

    Attributes:
        orchestrator: Render retry loop (owns the render client).
        extractor: Structured extractor.
        store: Deal store. May be None for a coordinator used for dry runs
            only.
        min_content_length: Usable minimum passed to the classifier.
    """

    def __init__(
        self,
        orchestrator: RetryOrchestrator,
        extractor: StructuredExtractor,
        store: Optional[ReconciliationStore] = None,
        min_content_length: int = RENDER_MIN_CONTENT_LENGTH,
    ):
        self.orchestrator = orchestrator
        self.extractor = extractor
        self.store = store
        self.min_content_length = min_content_length

    async def close(self) -> None:
        """Release the render client's HTTP session."""
        close = getattr(self.orchestrator.render_client, "close", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> "PipelineCoordinator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def run(
        self,
        url: str,
        credential: str,
        dry_run: bool = False,
        cancel_token: Optional[CancellationToken] = None,
        events: Optional[ProgressLog] = None,
    ) -> PipelineResult:
        """
        Execute one run against a Wanted-board URL.

        Args:
            url: Page to scrape (see build_wanted_url).
            credential: Session cookie as pasted by the operator. Never
                logged.
            dry_run: Stop after classification and return a preview.
            cancel_token: Deadline / cancellation shared by every remote
                call and pause of the run.
            events: Progress log to append to. A fresh one is used when
                omitted; the events end up on the result either way.

        Returns:
            PipelineResult: The terminal state with its diagnostics.

        Raises:
            ConfigurationError: If a full run is requested without a store.
        """
        if not dry_run and self.store is None:
            raise ConfigurationError("A deal store is required for a full run")

        token = cancel_token or CancellationToken.none()
        events = events if events is not None else ProgressLog()
        state = {"url": url, "events": events}

        # ---------------------------------------------------------------
        # Credential validation (no network access)
        # ---------------------------------------------------------------
        events.emit(ProgressStage.VALIDATING, "Checking session cookie")
        diagnostics = validate(credential)
        state["credential"] = diagnostics

        if not diagnostics.is_acceptable:
            logger.warning(
                f"Cookie rejected: missing={sorted(diagnostics.missing)}, "
                f"defects={sorted(w.value for w in diagnostics.hard_failures)}"
            )
            return self._finish(state, PipelineStatus.REJECTED,
                                error_message="Invalid session cookie format")

        if diagnostics.is_expired():
            logger.warning(
                f"Cookie estimated to have expired at {diagnostics.estimated_expiry.isoformat()}"
            )

        # ---------------------------------------------------------------
        # Rendering
        # ---------------------------------------------------------------
        logger.info(f"Rendering {url}")
        events.emit(
            ProgressStage.RENDERING,
            f"Rendering with up to {self.orchestrator.max_attempts} attempts",
            total=self.orchestrator.max_attempts,
        )
        report = await self.orchestrator.render_with_retry(
            url, normalize_credential(credential), cancel_token=token, events=events
        )
        state["attempts"] = report.attempts
        state["render_calls"] = report.attempt_count

        outcome = report.outcome
        if outcome.reason == FailureReason.CANCELLED:
            return self._cancelled(state, token, outcome.error_message)

        if not outcome.success:
            return self._finish(state, PipelineStatus.RENDER_FAILED,
                                render_reason=outcome.reason,
                                error_message=outcome.error_message)

        state["markdown"] = outcome.markdown
        state["html"] = outcome.html

        # ---------------------------------------------------------------
        # Classification
        # ---------------------------------------------------------------
        inspection = inspect_content(outcome.markdown, self.min_content_length)
        state["inspection"] = inspection
        events.emit(ProgressStage.CLASSIFYING, f"content is {inspection.verdict.value}")

        if inspection.verdict == ContentClass.CHALLENGE_PAGE:
            return self._finish(state, PipelineStatus.BLOCKED,
                                error_message="Dealsuite showed a bot-verification page")

        if inspection.verdict == ContentClass.LOGIN_WALL:
            return self._finish(state, PipelineStatus.AUTH_FAILED,
                                error_message="The rendered content is a login page")

        if dry_run:
            logger.info(f"Dry run finished with {len(outcome.markdown)} characters of content")
            return self._finish(state, PipelineStatus.PREVIEW_READY)

        # ---------------------------------------------------------------
        # Extraction
        # ---------------------------------------------------------------
        events.emit(ProgressStage.EXTRACTING, "Extracting deals")
        state["extraction_calls"] = 1
        try:
            extraction = await self.extractor.extract(outcome.markdown, cancel_token=token)
        except OperationCancelled as e:
            return self._cancelled(state, token, str(e))
        except ExtractionError as e:
            logger.error(f"Extraction failed: {e}")
            return self._finish(state, PipelineStatus.EXTRACT_FAILED, error_message=str(e))

        state["extraction"] = extraction
        state["extraction_tokens"] = extraction.tokens_used
        events.emit(
            ProgressStage.EXTRACTING,
            f"extracted {len(extraction.deals)} deals",
            processed=len(extraction.deals),
            total=extraction.total_found,
        )

        if not extraction.deals:
            logger.warning("No deals found in the rendered content")
            return self._finish(state, PipelineStatus.COMPLETED,
                                reconciliation=ReconciliationSummary())

        # ---------------------------------------------------------------
        # Reconciliation
        # ---------------------------------------------------------------
        try:
            token.raise_if_cancelled()
        except OperationCancelled as e:
            return self._cancelled(state, token, str(e))

        loop = asyncio.get_running_loop()
        summary = await loop.run_in_executor(
            None,
            functools.partial(
                self.store.upsert_all, extraction.deals, events=events, source_url=url
            ),
        )
        return self._finish(state, PipelineStatus.COMPLETED, reconciliation=summary)

    def _cancelled(self, state: dict, token: CancellationToken, message: Optional[str]) -> PipelineResult:
        logger.warning(f"Run cancelled: {message}")
        return self._finish(
            state,
            PipelineStatus.CANCELLED,
            error_message=message or "Run cancelled",
            deadline_exceeded=not token.cancelled,
        )

    def _finish(self, state: dict, status: PipelineStatus, **fields) -> PipelineResult:
        events = state["events"]
        events.emit(ProgressStage.FINISHED, status.value)
        events.close()

        logger.info(f"Run finished with status {status.value}")
        return PipelineResult(
            status=status,
            url=state["url"],
            credential=state.get("credential"),
            attempts=state.get("attempts", ()),
            inspection=state.get("inspection"),
            markdown=state.get("markdown"),
            html=state.get("html"),
            extraction=state.get("extraction"),
            usage=RunUsage(
                render_calls=state.get("render_calls", 0),
                extraction_calls=state.get("extraction_calls", 0),
                extraction_tokens=state.get("extraction_tokens", 0),
            ),
            events=events.events,
            **fields,
        )


def build_coordinator(
    store: Optional[ReconciliationStore] = None,
    session: Optional[aiohttp.ClientSession] = None,
    firecrawl_api_key: str = FIRECRAWL_API_KEY,
    openai_api_key: str = OPENAI_API_KEY,
    firecrawl_api_url: str = FIRECRAWL_API_URL,
    openai_base_url: Optional[str] = OPENAI_BASE_URL,
) -> PipelineCoordinator:
    """
    Assemble a coordinator from configuration.

    Args:
        store: Deal store (required for full runs).
        session: Shared aiohttp session for the render client.
        firecrawl_api_key: Rendering service key.
        openai_api_key: Extraction service key.
        firecrawl_api_url: Rendering service endpoint.
        openai_base_url: Extraction service base URL (None for the default).

    Returns:
        PipelineCoordinator: Ready to run.

    Raises:
        ConfigurationError: If a service key is missing.
    """
    if not firecrawl_api_key:
        raise ConfigurationError("FIRECRAWL_API_KEY not configured")
    if not openai_api_key:
        raise ConfigurationError("OPENAI_API_KEY not configured")

    render_client = RenderClient(firecrawl_api_key, api_url=firecrawl_api_url, session=session)
    extractor = StructuredExtractor.from_api_key(openai_api_key, base_url=openai_base_url)
    return PipelineCoordinator(RetryOrchestrator(render_client), extractor, store)
