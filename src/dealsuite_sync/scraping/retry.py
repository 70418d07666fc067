"""
Render retry orchestration for the Dealsuite sync pipeline.

Rendering is the only stage that is retried: it is stateless and idempotent
from the service's point of view. Attempts use an ascending sequence of wait
budgets because a page that did not settle in 30 seconds usually needs more
time, not the same time again.

Policy:
    - success          -> stop, return the content
    - rate_limited     -> stop immediately (retrying deepens the penalty)
    - cancelled        -> stop immediately
    - timeout, transport_error, empty_content
                       -> pause, retry with the next budget, up to the
                          attempt ceiling

Author: Leonardo Pacciani-Mori
License: MIT
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from dealsuite_sync.config.settings import (
    RENDER_WAIT_BUDGETS_MS,
    RENDER_HARD_TIMEOUT_MS,
    RENDER_MAX_ATTEMPTS,
    RENDER_RETRY_DELAY_SECONDS,
)
from dealsuite_sync.config.logging_config import get_logger
from dealsuite_sync.core.cancellation import CancellationToken
from dealsuite_sync.core.events import ProgressLog, ProgressStage
from dealsuite_sync.core.exceptions import OperationCancelled
from dealsuite_sync.scraping.render_client import FailureReason, RenderOutcome

logger = get_logger(__name__)

# Failures worth another attempt with a larger wait budget.
RETRYABLE_REASONS = frozenset({
    FailureReason.TIMEOUT,
    FailureReason.TRANSPORT_ERROR,
    FailureReason.EMPTY_CONTENT,
})


@dataclass(frozen=True)
class RenderAttempt:
    """
    One entry of the attempt history.

    Attributes:
        index: Attempt number, starting at 1.
        wait_budget_ms: Wait budget used for this attempt.
        success: Whether the attempt returned usable content.
        reason: Failure classification, None on success.
        duration_seconds: Time spent on the request.
        content_length: Characters of rendered content received.
    """
    index: int
    wait_budget_ms: int
    success: bool
    reason: Optional[FailureReason]
    duration_seconds: float
    content_length: int = 0

    def to_dict(self) -> dict:
        return {
            "attempt": self.index,
            "wait_budget_ms": self.wait_budget_ms,
            "success": self.success,
            "reason": self.reason.value if self.reason else None,
            "duration_seconds": round(self.duration_seconds, 3),
            "content_length": self.content_length,
        }


@dataclass(frozen=True)
class RenderReport:
    """
    Final outcome of the retry loop with the complete attempt history.

    Attributes:
        outcome: The last attempt's outcome (the success, or the terminal
            failure).
        attempts: Every attempt made, in order.
    """
    outcome: RenderOutcome
    attempts: Tuple[RenderAttempt, ...]

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)


class RetryOrchestrator:
    """
    Drives a render client through escalating wait budgets.

    The loop is bounded: at most max_attempts requests are made, so the
    worst-case wall-clock cost is the sum of the hard timeouts plus the
    pauses in between.
    """

    def __init__(
        self,
        render_client,
        wait_budgets_ms: Sequence[int] = RENDER_WAIT_BUDGETS_MS,
        hard_timeout_ms: int = RENDER_HARD_TIMEOUT_MS,
        max_attempts: int = RENDER_MAX_ATTEMPTS,
        retry_delay_seconds: float = RENDER_RETRY_DELAY_SECONDS,
    ):
        """
        Initialize the orchestrator.

        Args:
            render_client: Object with an async render(url, credential,
                wait_budget_ms, hard_timeout_ms, cancel_token) method.
            wait_budgets_ms: Ascending wait budgets, one per attempt. The
                last one is reused if max_attempts exceeds its length.
            hard_timeout_ms: Hard timeout passed on every attempt.
            max_attempts: Attempt ceiling.
            retry_delay_seconds: Pause between two attempts.

        Raises:
            ValueError: If the budgets are empty or not strictly ascending,
                or max_attempts is below 1.
        """
        budgets = tuple(int(b) for b in wait_budgets_ms)
        if not budgets:
            raise ValueError("wait_budgets_ms must contain at least one budget")
        if any(later <= earlier for earlier, later in zip(budgets, budgets[1:])):
            raise ValueError("wait_budgets_ms must be strictly ascending")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.render_client = render_client
        self.wait_budgets_ms = budgets
        self.hard_timeout_ms = hard_timeout_ms
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds

    def budget_for(self, attempt: int) -> int:
        """Wait budget for a 1-indexed attempt."""
        return self.wait_budgets_ms[min(attempt, len(self.wait_budgets_ms)) - 1]

    async def render_with_retry(
        self,
        url: str,
        credential: str,
        cancel_token: Optional[CancellationToken] = None,
        events: Optional[ProgressLog] = None,
    ) -> RenderReport:
        """
        Render a page, retrying transient failures with larger budgets.

        Args:
            url: Page to render.
            credential: Normalised session cookie.
            cancel_token: Aborts the in-flight request or the pause between
                attempts when fired.
            events: Receives one rendering event as each attempt finishes.

        Returns:
            RenderReport: The first success, or the terminal failure, with
                the full attempt history.
        """
        token = cancel_token or CancellationToken.none()
        attempts = []
        outcome = None

        for attempt in range(1, self.max_attempts + 1):
            budget = self.budget_for(attempt)
            logger.info(
                f"Render attempt {attempt}/{self.max_attempts} with waitFor: {budget}ms"
            )

            outcome = await self.render_client.render(
                url, credential, budget, self.hard_timeout_ms, cancel_token=token
            )
            record = RenderAttempt(
                index=attempt,
                wait_budget_ms=budget,
                success=outcome.success,
                reason=outcome.reason,
                duration_seconds=outcome.duration_seconds,
                content_length=outcome.content_length,
            )
            attempts.append(record)
            if events is not None:
                events.emit(
                    ProgressStage.RENDERING,
                    f"attempt {attempt}: "
                    + ("success" if record.success else record.reason.value),
                    processed=attempt,
                    total=self.max_attempts,
                    item=str(budget),
                )

            if outcome.success:
                logger.info(
                    f"Render succeeded on attempt {attempt} "
                    f"({outcome.content_length} characters)"
                )
                break

            if outcome.reason not in RETRYABLE_REASONS:
                logger.warning(
                    f"Render stopped on attempt {attempt}: {outcome.reason.value} is not retried"
                )
                break

            if attempt >= self.max_attempts:
                logger.error(
                    f"Render failed after {attempt} attempts: {outcome.reason.value}"
                )
                break

            logger.info(
                f"{outcome.reason.value} on attempt {attempt}, "
                f"retrying in {self.retry_delay_seconds}s with a longer wait..."
            )
            try:
                await token.sleep(self.retry_delay_seconds)
            except OperationCancelled as e:
                outcome = RenderOutcome.failed(FailureReason.CANCELLED, str(e))
                break

        return RenderReport(outcome=outcome, attempts=tuple(attempts))
