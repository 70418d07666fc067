"""Tests for the cancellation token."""

import asyncio
import time

import pytest

from dealsuite_sync.core.cancellation import CancellationToken
from dealsuite_sync.core.exceptions import OperationCancelled


async def slow(value, delay=5.0):
    await asyncio.sleep(delay)
    return value


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_no_deadline(self):
        token = CancellationToken.none()
        assert token.remaining() is None
        assert not token.deadline_exceeded
        token.raise_if_cancelled()

    def test_explicit_cancel(self):
        token = CancellationToken(60)
        token.cancel()
        with pytest.raises(OperationCancelled) as excinfo:
            token.raise_if_cancelled()
        assert excinfo.value.deadline_exceeded is False

    def test_elapsed_deadline(self):
        token = CancellationToken(0)
        with pytest.raises(OperationCancelled) as excinfo:
            token.raise_if_cancelled()
        assert excinfo.value.deadline_exceeded is True

    @pytest.mark.asyncio
    async def test_guard_returns_result(self):
        assert await CancellationToken(5).guard(slow("done", 0)) == "done"

    @pytest.mark.asyncio
    async def test_guard_propagates_errors(self):
        async def failing():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await CancellationToken().guard(failing())

    @pytest.mark.asyncio
    async def test_deadline_aborts_in_flight_call(self):
        token = CancellationToken(0.05)
        started = time.monotonic()
        with pytest.raises(OperationCancelled) as excinfo:
            await token.guard(slow("never"))
        assert time.monotonic() - started < 2
        assert excinfo.value.deadline_exceeded

    @pytest.mark.asyncio
    async def test_cancel_aborts_in_flight_call(self):
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel)
        with pytest.raises(OperationCancelled) as excinfo:
            await token.guard(slow("never"))
        assert not excinfo.value.deadline_exceeded

    @pytest.mark.asyncio
    async def test_already_cancelled_token_does_not_start_the_call(self):
        calls = []

        async def record():
            calls.append(1)

        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelled):
            await token.guard(record())
        assert calls == []

    @pytest.mark.asyncio
    async def test_sleep_wakes_early(self):
        token = CancellationToken(0.05)
        started = time.monotonic()
        with pytest.raises(OperationCancelled):
            await token.sleep(10)
        assert time.monotonic() - started < 2

    @pytest.mark.asyncio
    async def test_zero_sleep(self):
        await CancellationToken().sleep(0)
