"""
Terminal progress and result display for pipeline runs.

This module turns the progress events of a run into a live rich panel and
prints a summary table once the run is over. It only reads the events and
the result; the pipeline itself knows nothing about terminals.

Components:
    - StageStatus: Enum for stage states (PENDING, RUNNING, DONE, FAILED)
    - StageState: Dataclass tracking one pipeline stage
    - RunTracker: Folds progress events into per-stage state
    - ProgressDisplay: Rich-based live panel
    - follow_run: Drives a display from a live event stream
    - build_result_table: Summary table of a finished run

Example:
    log = ProgressLog()
    display = ProgressDisplay(RunTracker("Dealsuite sync"))
    result, _ = await asyncio.gather(
        coordinator.run(url, cookie, events=log),
        follow_run(log, display),
    )
    console.print(build_result_table(result))

Author: Leonardo Pacciani-Mori
License: MIT
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from dealsuite_sync.core.events import ProgressEvent, ProgressLog, ProgressStage
from dealsuite_sync.pipeline.models import PipelineResult, PipelineStatus

# Stages shown in the panel, in execution order.
DISPLAYED_STAGES = (
    ProgressStage.VALIDATING,
    ProgressStage.RENDERING,
    ProgressStage.CLASSIFYING,
    ProgressStage.EXTRACTING,
    ProgressStage.RECONCILING,
)


class StageStatus(Enum):
    """Status of one pipeline stage."""
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


def format_duration(duration: Optional[timedelta]) -> str:
    """Format a duration as HH:MM:SS ("-" when unknown)."""
    if duration is None:
        return "-"
    total_seconds = int(duration.total_seconds())
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


@dataclass
class StageState:
    """
    State of one stage as seen through its events.

    Attributes:
        stage: The stage.
        status: Current status.
        start_time: Timestamp of the stage's first event.
        end_time: Timestamp of the event that closed the stage.
        processed: Items processed so far.
        total: Items expected (0 when unknown).
        last_message: Message of the latest event.
    """
    stage: ProgressStage
    status: StageStatus = StageStatus.PENDING
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    processed: int = 0
    total: int = 0
    last_message: str = ""

    @property
    def duration(self) -> Optional[timedelta]:
        if self.start_time is None:
            return None
        return (self.end_time or self.start_time) - self.start_time


class RunTracker:
    """
    Folds progress events into per-stage state.

    A stage is running from its first event until an event of a later stage
    arrives; the final event marks the last running stage done or failed
    depending on the run's terminal status.
    """

    def __init__(self, title: str = "Dealsuite sync"):
        self.title = title
        self.stages: Dict[ProgressStage, StageState] = {
            stage: StageState(stage) for stage in DISPLAYED_STAGES
        }
        self.final_status: Optional[str] = None
        self._start_time: Optional[datetime] = None
        self._last_time: Optional[datetime] = None

    def apply(self, event: ProgressEvent) -> None:
        """Update the state with one event."""
        if self._start_time is None:
            self._start_time = event.timestamp
        self._last_time = event.timestamp

        if event.stage == ProgressStage.FINISHED:
            self.final_status = event.message
            failed = event.message not in (
                PipelineStatus.COMPLETED.value, PipelineStatus.PREVIEW_READY.value
            )
            for state in self.stages.values():
                if state.status == StageStatus.RUNNING:
                    state.status = StageStatus.FAILED if failed else StageStatus.DONE
                    state.end_time = event.timestamp
            return

        for state in self.stages.values():
            if state.status == StageStatus.RUNNING and state.stage != event.stage:
                state.status = StageStatus.DONE
                state.end_time = event.timestamp

        state = self.stages[event.stage]
        if state.start_time is None:
            state.start_time = event.timestamp
        state.status = StageStatus.RUNNING
        state.processed = event.processed
        state.total = event.total
        state.last_message = event.message

    @property
    def elapsed_str(self) -> str:
        if self._start_time is None:
            return "00:00:00"
        return format_duration(self._last_time - self._start_time)

    @property
    def finished(self) -> bool:
        return self.final_status is not None

    def visible_stages(self) -> List[StageState]:
        return [self.stages[stage] for stage in DISPLAYED_STAGES]


class ProgressDisplay:
    """
    Rich-based terminal display of a run's stages.
    """

    STATUS_ICONS = {
        StageStatus.PENDING: ("○", "dim"),
        StageStatus.RUNNING: ("●", "yellow"),
        StageStatus.DONE: ("✓", "green"),
        StageStatus.FAILED: ("✗", "red"),
    }

    def __init__(
        self,
        tracker: RunTracker,
        console: Optional[Console] = None,
        refresh_rate: float = 0.5,
    ):
        """
        Initialize the progress display.

        Args:
            tracker: Run tracker to visualize.
            console: Console to render on (stderr-friendly consoles work).
            refresh_rate: Seconds between display refreshes.
        """
        self.tracker = tracker
        self.console = console or Console()
        self.refresh_rate = refresh_rate
        self._live: Optional[Live] = None

    def _build_progress_bar(self, state: StageState) -> str:
        if not state.total:
            return ""
        width = 20
        ratio = min(1.0, state.processed / state.total)
        filled = int(width * ratio)
        return "█" * filled + "░" * (width - filled) + f" {state.processed}/{state.total}"

    def _build_table(self) -> Table:
        table = Table(show_header=True, header_style="bold", expand=True)
        table.add_column("Stage", style="cyan", no_wrap=True, width=14)
        table.add_column("Status", justify="center", width=12)
        table.add_column("Progress", width=30)
        table.add_column("Last event")
        table.add_column("Time", justify="right", width=10)

        for state in self.tracker.visible_stages():
            icon, style = self.STATUS_ICONS[state.status]
            table.add_row(
                state.stage.value.title(),
                Text(f"{icon} {state.status.value.title()}", style=style),
                self._build_progress_bar(state),
                state.last_message,
                format_duration(state.duration),
            )
        return table

    def _build_panel(self) -> Panel:
        status = self.tracker.final_status or "running"
        header = (
            f"[bold]{self.tracker.title}[/bold]\n\n"
            f"Status: {status} | Time: {self.tracker.elapsed_str} elapsed\n"
        )
        return Panel(Group(Text.from_markup(header), self._build_table()), border_style="blue")

    def start(self) -> None:
        """Start the live display."""
        self._live = Live(
            self._build_panel(),
            console=self.console,
            refresh_per_second=1 / self.refresh_rate,
            transient=False,
        )
        self._live.start()

    def update(self) -> None:
        """Redraw the panel."""
        if self._live:
            self._live.update(self._build_panel())

    def stop(self) -> None:
        """Stop the live display, leaving the final panel on screen."""
        if self._live:
            self._live.update(self._build_panel())
            self._live.stop()
            self._live = None


async def follow_run(log: ProgressLog, display: ProgressDisplay) -> None:
    """
    Feed a display from a run's live event stream until the run finishes.

    Args:
        log: The run's progress log.
        display: Display to update.
    """
    display.start()
    try:
        async for event in log.stream():
            display.tracker.apply(event)
            display.update()
    finally:
        display.stop()


def build_result_table(result: PipelineResult) -> Table:
    """
    Build a summary table of a finished run.

    Args:
        result: The run's result.

    Returns:
        Table: Two-column (field, value) table.
    """
    style = "green" if result.success else "red"
    table = Table(title="Dealsuite sync", show_header=True, header_style="bold")
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    table.add_row("Status", Text(result.status.value, style=style))
    table.add_row("Render attempts", str(result.attempt_count))

    if result.status == PipelineStatus.REJECTED and result.credential:
        table.add_row("Missing cookies", ", ".join(sorted(result.credential.missing)) or "-")
        table.add_row(
            "Cookie warnings",
            ", ".join(sorted(w.value for w in result.credential.warnings)) or "-",
        )
    if result.inspection is not None:
        table.add_row("Content", result.inspection.verdict.value)
        table.add_row("Content length", f"{result.content_length:,}")
    if result.extraction is not None:
        table.add_row("Deals extracted", str(result.found))
        table.add_row("More pages", "yes" if result.extraction.has_more_pages else "no")
    if result.reconciliation is not None:
        table.add_row("Inserted", str(result.inserted))
        table.add_row("Updated", str(result.updated))
        table.add_row("Failed", str(result.failed))
    if result.error_message and not result.success:
        table.add_row("Error", result.error_message)
    for warning in result.warnings:
        table.add_row("Warning", Text(warning, style="yellow"))

    usage = result.usage
    table.add_row(
        "Usage",
        f"{usage.render_calls} render / {usage.extraction_calls} extraction calls, "
        f"{usage.extraction_tokens:,} tokens",
    )
    return table
