"""
Tracking of storage objects consumed by submitted workflow jobs.

When a compliance check is submitted, the URLs of the freshly uploaded
images and documents are recorded against the workflow's request id. Once
the job reaches a terminal state the objects are no longer needed and are
deleted from storage:

- Only URLs owned by the configured bucket are ever deleted
- Individual delete failures are logged and do not stop the batch
- The tracking entry is removed after every deletion was attempted
- Entries that never saw a terminal state are dropped after a retention
  window without touching storage
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, Iterable, List, Optional

from .errors import NotFound
from .models import JobStatus, TrackedSubmissionSummary
from .polling import InvalidTransition, advance
from .storage import ObjectStorage
from .utils import shorten_url

logger = logging.getLogger(__name__)


@dataclass
class TrackedSubmission:
    """
    Storage objects supplied as input to one workflow job.

    Attributes:
        job_id: Request id returned by the workflow engine
        object_urls: Input URLs in submission order, without duplicates
        created_at: Clock reading at submission
        status: Last status observed for the job
    """

    job_id: str
    object_urls: List[str]
    created_at: float
    status: JobStatus = JobStatus.PENDING
    cleanup_started: bool = field(default=False, repr=False)

    def to_summary(self) -> TrackedSubmissionSummary:
        return TrackedSubmissionSummary(
            job_id=self.job_id,
            status=self.status,
            object_urls=list(self.object_urls),
            created_at=datetime.fromtimestamp(self.created_at, tz=timezone.utc),
        )


class ResultTrackingRegistry:
    """
    Registry mapping workflow job ids to the storage URLs they consumed.

    Thread Safety:
        Registry state is guarded by a lock. Deletions happen outside the
        lock; an entry is marked while its cleanup runs so a second terminal
        observation of the same job does not delete the objects twice.
    """

    def __init__(
        self,
        storage: ObjectStorage,
        retention_seconds: float = 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.storage = storage
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._entries: Dict[str, TrackedSubmission] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._entries

    def get(self, job_id: str) -> Optional[TrackedSubmissionSummary]:
        with self._lock:
            entry = self._entries.get(job_id)
            return entry.to_summary() if entry else None

    def record(self, job_id: str, urls: Iterable[str]) -> TrackedSubmission:
        """
        Associate ``urls`` with ``job_id``.

        Empty and duplicate URLs are dropped. Recording the same job id
        again replaces the earlier entry.
        """
        unique_urls = list(dict.fromkeys(url for url in urls if url))
        entry = TrackedSubmission(job_id=job_id, object_urls=unique_urls, created_at=self._clock())
        with self._lock:
            self._entries[job_id] = entry
        logger.info(f"Tracking {len(unique_urls)} objects for job {job_id}")
        return entry

    def observe(self, job_id: str, status: JobStatus) -> JobStatus:
        """
        Move a tracked job through the status state machine.

        Raises:
            NotFound: job_id is not tracked
            InvalidTransition: status is not reachable from the current one
        """
        with self._lock:
            entry = self._entries.get(job_id)
            if entry is None:
                raise NotFound(f"Job {job_id} is not tracked")
            entry.status = advance(entry.status, status)
            return entry.status

    async def resolve(self, job_id: str, terminal_status: JobStatus) -> List[str]:
        """
        Delete the owned objects of a finished job and forget the job.

        Args:
            job_id: The finished job
            terminal_status: success or failed; cleanup does not depend on which

        Returns:
            The URLs that were deleted successfully
        """
        if not terminal_status.is_terminal:
            raise ValueError(f"resolve() requires a terminal status, got {terminal_status.value}")

        with self._lock:
            entry = self._entries.get(job_id)
            if entry is None or entry.cleanup_started:
                logger.debug(f"[CLEANUP] Nothing to clean up for job {job_id}")
                return []
            entry.cleanup_started = True
            # A poll usually recorded the terminal status already
            if entry.status is not terminal_status:
                try:
                    entry.status = advance(entry.status, terminal_status)
                except InvalidTransition as exc:
                    logger.warning(f"[CLEANUP] {exc}")
            urls = list(entry.object_urls)

        to_delete = [url for url in urls if self.storage.owns(url)]
        skipped = len(urls) - len(to_delete)
        if skipped:
            logger.info(f"[CLEANUP] Skipping {skipped} URLs not owned by this backend for job {job_id}")

        deleted: List[str] = []
        if to_delete:
            logger.info(f"[CLEANUP] Deleting {len(to_delete)} files for requestId {job_id}...")
        for url in to_delete:
            try:
                await self.storage.delete(url)
            except Exception as exc:
                logger.error(f"[CLEANUP] Failed to delete {shorten_url(url)}: {exc}")
                continue
            deleted.append(url)
            logger.info(f"[CLEANUP] Deleted: {shorten_url(url)}")

        with self._lock:
            self._entries.pop(job_id, None)
        logger.info(f"[CLEANUP] Done for job {job_id} ({len(deleted)}/{len(to_delete)} deleted)")
        return deleted

    def sweep_expired(self) -> List[str]:
        """
        Forget entries older than the retention window.

        Storage objects of swept entries are left in place.
        """
        now = self._clock()
        with self._lock:
            expired = [
                job_id
                for job_id, entry in self._entries.items()
                if not entry.cleanup_started and now - entry.created_at > self.retention_seconds
            ]
            for job_id in expired:
                del self._entries[job_id]

        for job_id in expired:
            logger.info(f"[CLEANUP] Removing stale entry from map: {job_id}")
        return expired
