"""
Result types of a pipeline run.

A PipelineResult is the only externally observable artifact of a run. It is
immutable and carries everything a caller needs to decide what to do next:
the terminal status, the render attempt history, the credential
diagnostics, the extraction warnings and the reconciliation counts.

Author: Leonardo Pacciani-Mori
License: MIT
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from dealsuite_sync.core.events import ProgressEvent
from dealsuite_sync.extraction.models import ExtractionResult
from dealsuite_sync.scraping.content_classifier import ContentInspection
from dealsuite_sync.scraping.credentials import CredentialDiagnostics
from dealsuite_sync.scraping.render_client import FailureReason
from dealsuite_sync.scraping.retry import RenderAttempt
from dealsuite_sync.storage.reconciliation import ReconciliationSummary


class PipelineStatus(str, Enum):
    """Terminal state of a run."""
    REJECTED = "rejected"
    RENDER_FAILED = "render_failed"
    AUTH_FAILED = "auth_failed"
    BLOCKED = "blocked"
    PREVIEW_READY = "preview_ready"
    EXTRACT_FAILED = "extract_failed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


SUCCESS_STATUSES = frozenset({PipelineStatus.PREVIEW_READY, PipelineStatus.COMPLETED})


@dataclass(frozen=True)
class RunUsage:
    """Remote calls and tokens consumed by one run."""
    render_calls: int = 0
    extraction_calls: int = 0
    extraction_tokens: int = 0

    def to_dict(self) -> dict:
        return {
            "render_calls": self.render_calls,
            "extraction_calls": self.extraction_calls,
            "extraction_tokens": self.extraction_tokens,
        }


@dataclass(frozen=True)
class PipelineResult:
    """
    Outcome of one pipeline run.

    Attributes:
        status: Terminal state.
        url: Page that was (or would have been) rendered.
        credential: Diagnostics of the session cookie.
        attempts: Render attempt history, in order.
        render_reason: Classified render failure (render_failed only).
        error_message: Human-readable failure description.
        inspection: Content classification with its evidence.
        markdown: Rendered content (kept for previews).
        html: Rendered HTML, if any.
        extraction: Validated extraction output.
        reconciliation: Store outcomes.
        usage: Remote calls and tokens consumed.
        events: Progress events emitted during the run.
        deadline_exceeded: True when a cancelled run hit its deadline.
    """
    status: PipelineStatus
    url: str
    credential: Optional[CredentialDiagnostics] = None
    attempts: Tuple[RenderAttempt, ...] = ()
    render_reason: Optional[FailureReason] = None
    error_message: Optional[str] = None
    inspection: Optional[ContentInspection] = None
    markdown: Optional[str] = None
    html: Optional[str] = None
    extraction: Optional[ExtractionResult] = None
    reconciliation: Optional[ReconciliationSummary] = None
    usage: RunUsage = field(default_factory=RunUsage)
    events: Tuple[ProgressEvent, ...] = ()
    deadline_exceeded: bool = False

    @property
    def success(self) -> bool:
        return self.status in SUCCESS_STATUSES

    @property
    def dry_run(self) -> bool:
        return self.status == PipelineStatus.PREVIEW_READY

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def found(self) -> int:
        return len(self.extraction.deals) if self.extraction else 0

    @property
    def inserted(self) -> int:
        return self.reconciliation.inserted if self.reconciliation else 0

    @property
    def updated(self) -> int:
        return self.reconciliation.updated if self.reconciliation else 0

    @property
    def failed(self) -> int:
        return self.reconciliation.failed if self.reconciliation else 0

    @property
    def warnings(self) -> Tuple[str, ...]:
        return tuple(self.extraction.warnings) if self.extraction else ()

    @property
    def content_length(self) -> int:
        return len(self.markdown or "")
