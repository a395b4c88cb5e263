"""
Tests for the job status state machine and the server-side watcher.
"""

import asyncio

import pytest

from cannacore_backend.models import JobStatus
from cannacore_backend.polling import InvalidTransition, StatusPoller, StatusReport, advance, can_transition


class TestTransitions:
    @pytest.mark.parametrize(
        "current, new",
        [
            (JobStatus.PENDING, JobStatus.PROCESSING),
            (JobStatus.PENDING, JobStatus.SUCCESS),
            (JobStatus.PENDING, JobStatus.FAILED),
            (JobStatus.PROCESSING, JobStatus.PROCESSING),
            (JobStatus.PROCESSING, JobStatus.SUCCESS),
            (JobStatus.PROCESSING, JobStatus.FAILED),
        ],
    )
    def test_allowed(self, current, new):
        assert can_transition(current, new)
        assert advance(current, new) == new

    @pytest.mark.parametrize(
        "current, new",
        [
            (JobStatus.PROCESSING, JobStatus.PENDING),
            (JobStatus.SUCCESS, JobStatus.PROCESSING),
            (JobStatus.SUCCESS, JobStatus.FAILED),
            (JobStatus.FAILED, JobStatus.SUCCESS),
            (JobStatus.FAILED, JobStatus.FAILED),
        ],
    )
    def test_rejected(self, current, new):
        """Terminal states are final and a job never goes back to pending."""
        assert not can_transition(current, new)
        with pytest.raises(InvalidTransition):
            advance(current, new)

    def test_terminal_flags(self):
        assert JobStatus.SUCCESS.is_terminal
        assert JobStatus.FAILED.is_terminal
        assert not JobStatus.PENDING.is_terminal
        assert not JobStatus.PROCESSING.is_terminal


class ScriptedFetcher:
    """Returns the scripted reports in order, repeating the last one."""

    def __init__(self, *steps):
        self.steps = list(steps)
        self.calls = 0

    async def __call__(self, job_id):
        step = self.steps[min(self.calls, len(self.steps) - 1)]
        self.calls += 1
        if isinstance(step, Exception):
            raise step
        return StatusReport(status=step)


class TerminalRecorder:
    def __init__(self):
        self.calls = []

    async def __call__(self, job_id, report):
        self.calls.append((job_id, report.status))


class TestStatusPoller:
    """Tests for StatusPoller watch tasks."""

    @pytest.mark.asyncio
    async def test_terminal_callback_runs_once(self):
        fetch = ScriptedFetcher(JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.SUCCESS)
        on_terminal = TerminalRecorder()
        poller = StatusPoller(fetch, on_terminal, interval_seconds=0)

        report = await poller.watch("job-1")

        assert report.status == JobStatus.SUCCESS
        assert fetch.calls == 3
        assert on_terminal.calls == [("job-1", JobStatus.SUCCESS)]
        assert not poller.is_watching("job-1")

    @pytest.mark.asyncio
    async def test_fetch_errors_are_retried(self):
        fetch = ScriptedFetcher(RuntimeError("timeout"), JobStatus.FAILED)
        on_terminal = TerminalRecorder()
        poller = StatusPoller(fetch, on_terminal, interval_seconds=0)

        await poller.watch("job-1")

        assert on_terminal.calls == [("job-1", JobStatus.FAILED)]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        fetch = ScriptedFetcher(JobStatus.PROCESSING)
        on_terminal = TerminalRecorder()
        poller = StatusPoller(fetch, on_terminal, interval_seconds=0, max_attempts=4)

        assert await poller.watch("job-1") is None
        assert fetch.calls == 4
        assert on_terminal.calls == []

    @pytest.mark.asyncio
    async def test_watch_reuses_live_task(self):
        poller = StatusPoller(ScriptedFetcher(JobStatus.PROCESSING), TerminalRecorder(), interval_seconds=10)

        first = poller.watch("job-1")
        assert poller.watch("job-1") is first
        await poller.shutdown()

    @pytest.mark.asyncio
    async def test_cancel_stops_watch_without_callback(self):
        on_terminal = TerminalRecorder()
        poller = StatusPoller(ScriptedFetcher(JobStatus.PROCESSING), on_terminal, interval_seconds=10)

        task = poller.watch("job-1")
        await asyncio.sleep(0)
        assert poller.cancel("job-1") is True

        with pytest.raises(asyncio.CancelledError):
            await task
        assert not poller.is_watching("job-1")
        assert poller.cancel("job-1") is False
        assert on_terminal.calls == []

    @pytest.mark.asyncio
    async def test_shutdown_cancels_everything(self):
        poller = StatusPoller(ScriptedFetcher(JobStatus.PENDING), TerminalRecorder(), interval_seconds=10)
        tasks = [poller.watch("a"), poller.watch("b")]

        await poller.shutdown()

        assert all(task.done() for task in tasks)
        assert not poller.is_watching("a")
