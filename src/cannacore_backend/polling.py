"""
Workflow job status transitions and server-side status watching.

A job moves ``pending -> processing -> {success, failed}``; a job may also
be observed going straight from pending to a terminal state when it
finishes between two polls. Terminal states have no outgoing transitions.

StatusPoller drives those transitions from a cancellable asyncio task per
job instead of an unbounded loop, so callers can abandon a watch without
leaking its timer.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Optional

from .models import JobStatus

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.SUCCESS, JobStatus.FAILED}),
    JobStatus.PROCESSING: frozenset({JobStatus.PROCESSING, JobStatus.SUCCESS, JobStatus.FAILED}),
    JobStatus.SUCCESS: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class InvalidTransition(ValueError):
    def __init__(self, current: JobStatus, new: JobStatus) -> None:
        super().__init__(f"Cannot move job from {current.value} to {new.value}")
        self.current = current
        self.new = new


def can_transition(current: JobStatus, new: JobStatus) -> bool:
    return new in TRANSITIONS[current]


def advance(current: JobStatus, new: JobStatus) -> JobStatus:
    if not can_transition(current, new):
        raise InvalidTransition(current, new)
    return new


@dataclass
class StatusReport:
    """A normalized answer from the workflow engine about one job."""

    status: JobStatus
    result: Optional[Any] = None
    error: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None


StatusFetcher = Callable[[str], Awaitable[StatusReport]]
TerminalCallback = Callable[[str, StatusReport], Awaitable[None]]


class StatusPoller:
    """
    One watcher task per job id.

    Args:
        fetch_status: Coroutine returning the current StatusReport for a job
        on_terminal: Coroutine invoked exactly once when a job reaches
            success or failed
        interval_seconds: Delay between polls
        max_attempts: Upper bound on polls before the watch gives up
    """

    def __init__(
        self,
        fetch_status: StatusFetcher,
        on_terminal: TerminalCallback,
        interval_seconds: float = 5.0,
        max_attempts: int = 120,
    ) -> None:
        self.fetch_status = fetch_status
        self.on_terminal = on_terminal
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self._tasks: Dict[str, asyncio.Task] = {}

    def is_watching(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        return task is not None and not task.done()

    def watch(self, job_id: str) -> asyncio.Task:
        """Start watching ``job_id``; an existing live watch is reused."""
        existing = self._tasks.get(job_id)
        if existing is not None and not existing.done():
            return existing
        task = asyncio.create_task(self._run(job_id), name=f"watch-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda done, job_id=job_id: self._forget(job_id, done))
        return task

    def _forget(self, job_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]

    async def _run(self, job_id: str) -> Optional[StatusReport]:
        state = JobStatus.PENDING
        for attempt in range(1, self.max_attempts + 1):
            try:
                report = await self.fetch_status(job_id)
            except Exception as exc:
                logger.warning(f"[POLL] Attempt {attempt} for {job_id} failed: {exc}")
            else:
                try:
                    state = advance(state, report.status)
                except InvalidTransition as exc:
                    logger.warning(f"[POLL] Ignoring status for {job_id}: {exc}")
                if state.is_terminal:
                    logger.info(f"[POLL] Job {job_id} reached {state.value} after {attempt} polls")
                    await self.on_terminal(job_id, report)
                    return report
            await asyncio.sleep(self.interval_seconds)

        logger.warning(f"[POLL] Giving up on {job_id} after {self.max_attempts} polls (last state {state.value})")
        return None

    def cancel(self, job_id: str) -> bool:
        task = self._tasks.pop(job_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
