"""Repeating per-item timers backed by APScheduler."""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import structlog
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger


logger = structlog.get_logger(__name__)


class TimerService:
    """Arms and cancels interval jobs on an ``AsyncIOScheduler``.

    Coroutine job functions run on the event loop itself, so tick handlers can
    touch loop-owned state without extra locking.
    """

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        self.scheduler = scheduler or AsyncIOScheduler()
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.running = False

    async def start(self):
        """Start the timer service."""
        if self.running:
            logger.warning("Timer service already running")
            return

        self.scheduler.start()
        self.running = True
        logger.info("Timer service started")

    async def stop(self):
        """Stop the timer service."""
        if not self.running:
            return

        self.scheduler.shutdown(wait=False)
        self.running = False
        self.jobs.clear()
        logger.info("Timer service stopped")

    def add_interval_job(
        self,
        job_id: str,
        func: Callable,
        minutes: float,
        args: Optional[tuple] = None,
        description: Optional[str] = None,
    ):
        """Add a repeating job; replaces any job with the same id."""
        if job_id in self.jobs:
            logger.warning("Job already exists, replacing", job_id=job_id)
            self.remove_job(job_id)

        job = self.scheduler.add_job(
            func=func,
            trigger=IntervalTrigger(minutes=minutes),
            id=job_id,
            args=args or (),
            name=description or job_id,
            coalesce=True,
            max_instances=1,
        )

        self.jobs[job_id] = {
            "job": job,
            "minutes": minutes,
            "description": description,
            "added_at": datetime.utcnow(),
        }

        logger.debug("Added interval job", job_id=job_id, interval_minutes=minutes)

    def remove_job(self, job_id: str) -> bool:
        """Cancel a job. Unknown ids are ignored."""
        if job_id not in self.jobs:
            return False

        del self.jobs[job_id]
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            logger.warning("Job already gone from scheduler", job_id=job_id)
        logger.debug("Removed job", job_id=job_id)
        return True

    def has_job(self, job_id: str) -> bool:
        return job_id in self.jobs

    def get_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Get status information for a job."""
        if job_id not in self.jobs:
            return None

        job_info = self.jobs[job_id]
        scheduler_job = self.scheduler.get_job(job_id)
        next_run = getattr(scheduler_job, "next_run_time", None) if scheduler_job else None

        return {
            "job_id": job_id,
            "interval_minutes": job_info["minutes"],
            "next_run": next_run.isoformat() if next_run else None,
            "added_at": job_info["added_at"].isoformat(),
            "description": job_info.get("description"),
        }

    def list_jobs(self) -> List[Dict[str, Any]]:
        """List all armed jobs."""
        return [status for status in (self.get_job_status(job_id) for job_id in self.jobs) if status]
