"""
Progress events for pipeline runs.

Stages report progress by appending events to a ProgressLog instead of
calling back into a UI. The log keeps every event in order, so a consumer
can iterate it after the run or follow it live with ``stream()``; a late
subscriber still receives the full sequence from the first event. Events may
be emitted from a worker thread; live subscribers are woken on their own
event loop.

Author: Leonardo Pacciani-Mori
License: MIT
"""

import asyncio
import datetime
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Iterator, List, Optional, Tuple

from dealsuite_sync.core.date_utils import utc_now


class ProgressStage(str, Enum):
    """Pipeline stage an event belongs to."""
    VALIDATING = "validating"
    RENDERING = "rendering"
    CLASSIFYING = "classifying"
    EXTRACTING = "extracting"
    RECONCILING = "reconciling"
    FINISHED = "finished"


@dataclass(frozen=True)
class ProgressEvent:
    """
    One progress notification.

    Attributes:
        sequence: Position in the log, starting at 1.
        stage: Stage that emitted the event.
        message: Human-readable description.
        processed: Items processed so far within the stage.
        total: Items expected within the stage (0 when unknown).
        item: The item being processed (deal id, attempt number, ...).
        timestamp: When the event was emitted (UTC).
    """
    sequence: int
    stage: ProgressStage
    message: str
    processed: int = 0
    total: int = 0
    item: Optional[str] = None
    timestamp: datetime.datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "sequence": self.sequence,
            "stage": self.stage.value,
            "message": self.message,
            "processed": self.processed,
            "total": self.total,
            "item": self.item,
            "timestamp": self.timestamp.isoformat(),
        }


class ProgressLog:
    """
    Ordered, replayable sequence of progress events for one run.

    Example:
        >>> log = ProgressLog()
        >>> _ = log.emit(ProgressStage.RECONCILING, "inserted deal 42", processed=1, total=3)
        >>> [event.processed for event in log]
        [1]
    """

    def __init__(self):
        self._events: List[ProgressEvent] = []
        self._closed = False
        self._lock = threading.Lock()
        self._waiters: List[Tuple[asyncio.AbstractEventLoop, asyncio.Event]] = []

    def emit(
        self,
        stage: ProgressStage,
        message: str,
        processed: int = 0,
        total: int = 0,
        item: Optional[str] = None,
    ) -> ProgressEvent:
        """
        Append an event and wake live subscribers.

        Raises:
            RuntimeError: If the log has been closed.
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("Cannot emit on a closed progress log")

            event = ProgressEvent(
                sequence=len(self._events) + 1,
                stage=stage,
                message=message,
                processed=processed,
                total=total,
                item=item,
            )
            self._events.append(event)
            waiters, self._waiters = self._waiters, []

        self._wake(waiters)
        return event

    def close(self) -> None:
        """Mark the sequence complete. Live streams end after the last event."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            waiters, self._waiters = self._waiters, []

        self._wake(waiters)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def events(self) -> Tuple[ProgressEvent, ...]:
        return tuple(self._events)

    def for_stage(self, stage: ProgressStage) -> Tuple[ProgressEvent, ...]:
        return tuple(event for event in self._events if event.stage == stage)

    def __iter__(self) -> Iterator[ProgressEvent]:
        return iter(tuple(self._events))

    def __len__(self) -> int:
        return len(self._events)

    @staticmethod
    def _wake(waiters) -> None:
        for loop, changed in waiters:
            if not loop.is_closed():
                loop.call_soon_threadsafe(changed.set)

    async def stream(self) -> AsyncIterator[ProgressEvent]:
        """
        Yield every event from the first one, then follow new ones live.

        The iteration ends once the log is closed and fully consumed.
        """
        index = 0
        while True:
            changed = None
            with self._lock:
                pending = self._events[index:]
                closed = self._closed
                if not pending and not closed:
                    changed = asyncio.Event()
                    self._waiters.append((asyncio.get_running_loop(), changed))

            for event in pending:
                yield event
            index += len(pending)

            if pending:
                continue
            if closed:
                return
            await changed.wait()
