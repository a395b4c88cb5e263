"""
Periodic reclamation of abandoned upload sessions and stale job tracking.

Two APScheduler interval jobs run on the application's event loop:

- Upload sessions: every ``session_interval`` seconds, sessions older than
  the ChunkStore TTL are discarded
- Tracked submissions: every ``submission_interval`` seconds, entries older
  than the registry's retention window are forgotten

The sweeper only mutates the registries. It never deletes storage objects.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .chunk_store import ChunkStore
from .middleware import RateLimiter
from .tracking import ResultTrackingRegistry

logger = logging.getLogger(__name__)

SESSION_JOB_ID = "sweep_upload_sessions"
SUBMISSION_JOB_ID = "sweep_tracked_submissions"


class ExpirySweeper:
    def __init__(
        self,
        chunk_store: ChunkStore,
        registry: ResultTrackingRegistry,
        session_interval: float = 5 * 60,
        submission_interval: float = 60 * 60,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        self.chunk_store = chunk_store
        self.registry = registry
        self.session_interval = session_interval
        self.submission_interval = submission_interval
        self.rate_limiter = rate_limiter
        self.scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def sweep_sessions(self) -> List[str]:
        expired = self.chunk_store.sweep_expired()
        if self.rate_limiter is not None:
            self.rate_limiter.cleanup()
        if expired:
            logger.info(f"Swept {len(expired)} expired upload sessions")
        return expired

    def sweep_submissions(self) -> List[str]:
        expired = self.registry.sweep_expired()
        if expired:
            logger.info(f"Swept {len(expired)} stale tracked submissions")
        return expired

    def start(self) -> None:
        """Schedule both sweeps; must be called from inside the running loop."""
        if self.running:
            return
        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            self.sweep_sessions,
            id=SESSION_JOB_ID,
            trigger="interval",
            seconds=self.session_interval,
            replace_existing=True,
        )
        scheduler.add_job(
            self.sweep_submissions,
            id=SUBMISSION_JOB_ID,
            trigger="interval",
            seconds=self.submission_interval,
            replace_existing=True,
        )
        scheduler.start()
        self.scheduler = scheduler
        logger.info(
            f"Expiry sweeper started (sessions every {self.session_interval}s, "
            f"submissions every {self.submission_interval}s)"
        )

    async def stop(self) -> None:
        scheduler, self.scheduler = self.scheduler, None
        if scheduler is None or not scheduler.running:
            return
        # AsyncIOScheduler.shutdown is queued onto the loop; yield so it runs
        scheduler.shutdown(wait=False)
        await asyncio.sleep(0)
        logger.info("Expiry sweeper stopped")
