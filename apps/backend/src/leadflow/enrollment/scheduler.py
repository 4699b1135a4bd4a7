"""Resume scheduler: one-shot APScheduler jobs that re-invoke the runner for paused enrollments."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from ..workflow.interpreter import wait_duration

logger = logging.getLogger(__name__)

# Upper bound on a single scheduled job; longer waits re-arm after firing early
MAX_DELAY_MS = 7 * 86_400_000

ResumeCallback = Callable[[str], Awaitable[Any]]


def wait_delay_ms(amount: int, unit: str) -> int:
    """Convert a wait node's amount/unit into milliseconds."""
    return int(wait_duration(amount, unit).total_seconds() * 1000)


def clamp_delay_ms(delay_ms: int | float, ceiling: int = MAX_DELAY_MS) -> int:
    return int(max(0, min(delay_ms, ceiling)))


class ResumeScheduler:
    """Keeps at most one scheduled resume job per enrollment id.

    Jobs are keyed by enrollment id, so arming again replaces the previous
    job. The job is only a trigger: due times are persisted by the
    enrollment store and re-checked by the wait node when it is replayed,
    so a job that fires early (clamped) or late (after a restart) is harmless.
    """

    def __init__(self, callback: ResumeCallback, max_delay_ms: int = MAX_DELAY_MS):
        self._callback = callback
        self.max_delay_ms = max_delay_ms
        self._scheduler: AsyncIOScheduler | None = None

    def start(self) -> AsyncIOScheduler:
        """Start the underlying scheduler on the running event loop (idempotent)."""
        if self._scheduler is None:
            scheduler = AsyncIOScheduler(
                event_loop=asyncio.get_running_loop(),
                timezone=timezone.utc,
                # a running resume re-arms its own id; KeyedLock serializes the two
                job_defaults={"coalesce": True, "misfire_grace_time": None, "max_instances": 2},
            )
            scheduler.start()
            self._scheduler = scheduler
            logger.info("Resume scheduler started")
        return self._scheduler

    def arm(self, enrollment_id: str, delay_ms: int | float) -> int:
        """Schedule (or replace) the resume job for an enrollment. Returns the clamped delay."""
        delay = clamp_delay_ms(delay_ms, self.max_delay_ms)
        run_date = datetime.now(timezone.utc) + timedelta(milliseconds=delay)
        self.start().add_job(
            self._resume,
            DateTrigger(run_date=run_date, timezone=timezone.utc),
            id=enrollment_id,
            args=[enrollment_id],
            replace_existing=True,
            name=f"Resume enrollment {enrollment_id}",
        )
        logger.info("Armed resume job for enrollment %s in %d ms", enrollment_id, delay)
        return delay

    def cancel(self, enrollment_id: str) -> bool:
        if self._scheduler is None:
            return False
        try:
            self._scheduler.remove_job(enrollment_id)
        except JobLookupError:
            return False
        logger.info("Cancelled resume job for enrollment %s", enrollment_id)
        return True

    def is_armed(self, enrollment_id: str) -> bool:
        return self._scheduler is not None and self._scheduler.get_job(enrollment_id) is not None

    def armed_ids(self) -> list[str]:
        if self._scheduler is None:
            return []
        return sorted(job.id for job in self._scheduler.get_jobs())

    async def fire(self, enrollment_id: str) -> Any:
        """Fire an enrollment's resume now, as if its job had run."""
        self.cancel(enrollment_id)
        return await self._callback(enrollment_id)

    async def shutdown(self) -> None:
        """Drop all pending jobs and stop the scheduler.

        Resumes already running are cancelled by the executor.
        """
        if self._scheduler is None:
            return
        scheduler, self._scheduler = self._scheduler, None
        scheduler.remove_all_jobs()
        scheduler.shutdown(wait=False)
        # AsyncIOScheduler defers shutdown onto the loop
        await asyncio.sleep(0)
        logger.info("Resume scheduler stopped")

    async def _resume(self, enrollment_id: str) -> None:
        logger.info("Resume job fired for enrollment %s", enrollment_id)
        try:
            await self._callback(enrollment_id)
        except Exception:
            logger.exception("Resuming enrollment %s failed", enrollment_id)
