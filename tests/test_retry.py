"""Tests for the render retry orchestrator."""

import pytest

from dealsuite_sync.core.cancellation import CancellationToken
from dealsuite_sync.core.events import ProgressLog, ProgressStage
from dealsuite_sync.scraping.render_client import FailureReason
from dealsuite_sync.scraping.retry import RetryOrchestrator

from conftest import ScriptedRenderClient, failure_outcome, success_outcome

URL = "https://app.dealsuite.com/en/market/wanted"


def make_orchestrator(outcomes, **kwargs):
    client = ScriptedRenderClient(outcomes)
    kwargs.setdefault("retry_delay_seconds", 0)
    return client, RetryOrchestrator(client, **kwargs)


class TestConstruction:
    """Tests for the orchestrator's argument checks."""

    def test_budgets_must_ascend(self):
        with pytest.raises(ValueError):
            RetryOrchestrator(ScriptedRenderClient([]), wait_budgets_ms=(45000, 30000))

    def test_budgets_must_not_be_empty(self):
        with pytest.raises(ValueError):
            RetryOrchestrator(ScriptedRenderClient([]), wait_budgets_ms=())

    def test_at_least_one_attempt(self):
        with pytest.raises(ValueError):
            RetryOrchestrator(ScriptedRenderClient([]), max_attempts=0)

    def test_last_budget_is_reused(self):
        _, orchestrator = make_orchestrator([], wait_budgets_ms=(1000, 2000), max_attempts=4)
        assert [orchestrator.budget_for(i) for i in range(1, 5)] == [1000, 2000, 2000, 2000]


class TestRenderWithRetry:
    """Tests for render_with_retry()."""

    @pytest.mark.asyncio
    async def test_first_attempt_success(self):
        client, orchestrator = make_orchestrator([success_outcome()])
        report = await orchestrator.render_with_retry(URL, "cookie")

        assert report.outcome.success
        assert report.attempt_count == 1
        assert client.budgets == [30000]

    @pytest.mark.asyncio
    async def test_timeouts_escalate_budgets(self):
        client, orchestrator = make_orchestrator([
            failure_outcome(FailureReason.TIMEOUT),
            failure_outcome(FailureReason.TIMEOUT),
            success_outcome(),
        ])
        report = await orchestrator.render_with_retry(URL, "cookie")

        assert report.outcome.success
        assert client.budgets == [30000, 45000, 60000]
        assert [a.success for a in report.attempts] == [False, False, True]
        assert report.attempts[0].reason == FailureReason.TIMEOUT

    @pytest.mark.asyncio
    async def test_rate_limit_stops_immediately(self):
        client, orchestrator = make_orchestrator([
            failure_outcome(FailureReason.RATE_LIMITED),
            success_outcome(),
        ])
        report = await orchestrator.render_with_retry(URL, "cookie")

        assert client.calls == 1
        assert report.outcome.reason == FailureReason.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_attempt_ceiling(self):
        client, orchestrator = make_orchestrator([failure_outcome(FailureReason.EMPTY_CONTENT)])
        report = await orchestrator.render_with_retry(URL, "cookie")

        assert client.calls == 3
        assert report.attempt_count == 3
        assert report.outcome.reason == FailureReason.EMPTY_CONTENT

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self):
        client, orchestrator = make_orchestrator([
            failure_outcome(FailureReason.TRANSPORT_ERROR),
            success_outcome(),
        ])
        report = await orchestrator.render_with_retry(URL, "cookie")
        assert report.outcome.success
        assert client.calls == 2

    @pytest.mark.asyncio
    async def test_cancelled_render_is_not_retried(self):
        client, orchestrator = make_orchestrator([failure_outcome(FailureReason.CANCELLED)])
        report = await orchestrator.render_with_retry(URL, "cookie")
        assert client.calls == 1
        assert report.outcome.reason == FailureReason.CANCELLED

    @pytest.mark.asyncio
    async def test_cancellation_during_pause(self):
        client, orchestrator = make_orchestrator(
            [failure_outcome(FailureReason.TIMEOUT), success_outcome()],
            retry_delay_seconds=10,
        )
        token = CancellationToken(0.05)
        report = await orchestrator.render_with_retry(URL, "cookie", cancel_token=token)

        assert client.calls == 1
        assert report.outcome.reason == FailureReason.CANCELLED
        assert report.attempt_count == 1

    @pytest.mark.asyncio
    async def test_attempt_history_serialises(self):
        _, orchestrator = make_orchestrator([failure_outcome(FailureReason.TIMEOUT), success_outcome()])
        report = await orchestrator.render_with_retry(URL, "cookie")
        first = report.attempts[0].to_dict()
        assert first["attempt"] == 1
        assert first["wait_budget_ms"] == 30000
        assert first["reason"] == "timeout"


class EventRecordingClient(ScriptedRenderClient):
    """Scripted client that notes how many events existed at each call."""

    def __init__(self, outcomes, log):
        super().__init__(outcomes)
        self.log = log
        self.events_seen = []

    async def render(self, url, credential, wait_budget_ms, hard_timeout_ms, cancel_token=None):
        self.events_seen.append(len(self.log))
        return await super().render(url, credential, wait_budget_ms, hard_timeout_ms, cancel_token)


class TestAttemptEvents:
    """Tests for the rendering events emitted by the loop."""

    @pytest.mark.asyncio
    async def test_each_attempt_is_reported_as_it_finishes(self):
        log = ProgressLog()
        client = EventRecordingClient(
            [failure_outcome(FailureReason.TIMEOUT), failure_outcome(FailureReason.EMPTY_CONTENT), success_outcome()],
            log,
        )
        orchestrator = RetryOrchestrator(client, retry_delay_seconds=0)
        await orchestrator.render_with_retry(URL, "cookie", events=log)

        assert client.events_seen == [0, 1, 2]
        events = log.for_stage(ProgressStage.RENDERING)
        assert [e.message for e in events] == [
            "attempt 1: timeout",
            "attempt 2: empty_content",
            "attempt 3: success",
        ]
        assert [e.item for e in events] == ["30000", "45000", "60000"]
        assert all(e.total == 3 for e in events)

    @pytest.mark.asyncio
    async def test_no_events_without_a_log(self):
        _, orchestrator = make_orchestrator([success_outcome()])
        report = await orchestrator.render_with_retry(URL, "cookie")
        assert report.outcome.success
