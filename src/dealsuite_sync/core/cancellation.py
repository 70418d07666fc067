"""
Cooperative cancellation for pipeline runs.

A run has exactly three suspension points: the render request, the
extraction request, and the pause between render attempts. Each of them is
awaited through a CancellationToken so that a caller-supplied deadline or an
explicit cancel() aborts the in-flight call and surfaces OperationCancelled
instead of a timeout.

Author: Leonardo Pacciani-Mori
License: MIT
"""

import asyncio
import time
from typing import Awaitable, Optional, TypeVar

from dealsuite_sync.core.exceptions import OperationCancelled

T = TypeVar("T")


class CancellationToken:
    """
    Deadline plus explicit cancellation flag shared by one pipeline run.

    Attributes:
        deadline: Monotonic clock value after which the run is cancelled,
            or None for no deadline.
    """

    def __init__(self, timeout_seconds: Optional[float] = None):
        """
        Initialize the token.

        Args:
            timeout_seconds: Seconds from now until the deadline fires.
                None disables the deadline.
        """
        self.deadline: Optional[float] = (
            time.monotonic() + timeout_seconds if timeout_seconds is not None else None
        )
        self._cancelled = False
        self._event: Optional[asyncio.Event] = None

    @classmethod
    def none(cls) -> "CancellationToken":
        """Token that never fires on its own."""
        return cls(None)

    def cancel(self) -> None:
        """Fire the token. In-flight guarded calls are aborted."""
        self._cancelled = True
        if self._event is not None:
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def deadline_exceeded(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> Optional[float]:
        """Seconds left until the deadline, or None without a deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        """
        Raise OperationCancelled if the token has fired.

        Raises:
            OperationCancelled: When cancelled or past the deadline.
        """
        if self._cancelled:
            raise OperationCancelled("Run cancelled by caller")
        if self.deadline_exceeded:
            raise OperationCancelled("Run deadline exceeded", deadline_exceeded=True)

    def _get_event(self) -> asyncio.Event:
        # Created lazily so the event binds to the running loop.
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        return self._event

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await a coroutine unless the token fires first.

        The wrapped call runs as a task. If the token is cancelled or the
        deadline elapses before it finishes, the task is cancelled (which
        aborts any in-flight HTTP request) and OperationCancelled is raised.

        Args:
            awaitable: The coroutine to run.

        Returns:
            The coroutine's result.

        Raises:
            OperationCancelled: When the token fires before completion.
        """
        try:
            self.raise_if_cancelled()
        except OperationCancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._get_event().wait())
        try:
            done, _ = await asyncio.wait(
                {work, waiter},
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work in done:
            return work.result()

        work.cancel()
        try:
            await work
        except (asyncio.CancelledError, Exception):
            # The aborted call's own error is irrelevant once cancelled.
            pass
        self.raise_if_cancelled()
        raise OperationCancelled("Run deadline exceeded", deadline_exceeded=True)

    async def sleep(self, seconds: float) -> None:
        """
        Sleep for the given time, waking early with an error if the token fires.

        Raises:
            OperationCancelled: When the token fires during the sleep.
        """
        if seconds <= 0:
            self.raise_if_cancelled()
            return
        await self.guard(asyncio.sleep(seconds))
