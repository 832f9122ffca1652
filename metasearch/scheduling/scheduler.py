"""APScheduler wrapper for background maintenance jobs.

Runs periodic housekeeping (the result cache's expired-entry sweep) on the
running asyncio event loop.

Usage:
    scheduler = MaintenanceScheduler()
    scheduler.add_interval_job(cache.sweep, job_id="cache_sweep", seconds=60)

    scheduler.start()        # requires a running event loop
    ...
    scheduler.shutdown()
"""

from typing import Any, Callable, Dict, List

import structlog
from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    JobExecutionEvent,
)
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from metasearch.observability.metrics import SCHEDULER_JOBS

logger = structlog.get_logger()


class MaintenanceScheduler:
    """Async scheduler for maintenance jobs.

    Wraps APScheduler's AsyncIOScheduler with:
    - Job lifecycle management
    - Error handling and logging
    - Prometheus metrics integration
    """

    def __init__(
        self,
        max_instances: int = 1,
        coalesce: bool = True,
        misfire_grace_time: int = 30,
    ):
        """Initialize maintenance scheduler.

        Args:
            max_instances: Max concurrent instances per job
            coalesce: Coalesce missed executions
            misfire_grace_time: Grace time for missed jobs (seconds)
        """
        self.scheduler = AsyncIOScheduler(
            job_defaults={
                "max_instances": max_instances,
                "coalesce": coalesce,
                "misfire_grace_time": misfire_grace_time,
            },
        )

        self._running = False
        self._jobs: Dict[str, Any] = {}

        self.scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)
        self.scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)

    def add_interval_job(
        self,
        func: Callable,
        job_id: str,
        seconds: float,
    ) -> str:
        """Run `func` every `seconds`. Replaces an existing job with the same id."""
        job = self.scheduler.add_job(
            func,
            trigger=IntervalTrigger(seconds=seconds),
            id=job_id,
            name=job_id,
            replace_existing=True,
        )

        self._jobs[job_id] = job

        logger.info("job_added", job_id=job_id, interval_seconds=seconds)

        self._update_metrics()
        return job_id

    def remove_job(self, job_id: str) -> bool:
        """Remove a job from the scheduler.

        Returns:
            True if job was removed, False if not found
        """
        if job_id not in self._jobs:
            return False

        self.scheduler.remove_job(job_id)
        self._jobs.pop(job_id, None)
        logger.info("job_removed", job_id=job_id)
        self._update_metrics()
        return True

    def get_jobs(self) -> List[Dict[str, Any]]:
        """Get list of all scheduled jobs."""
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append(
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run_time": str(next_run) if next_run else None,
                }
            )
        return jobs

    def start(self) -> None:
        """Start executing jobs on the running event loop."""
        if self._running:
            logger.warning("scheduler_already_running")
            return

        self.scheduler.start()
        self._running = True
        logger.info("scheduler_started", jobs=len(self._jobs))
        self._update_metrics()

    def shutdown(self) -> None:
        """Stop the scheduler without waiting for running jobs."""
        if not self._running:
            return

        self.scheduler.shutdown(wait=False)
        self._running = False
        logger.info("scheduler_stopped")

    def _on_job_executed(self, event: JobExecutionEvent) -> None:
        logger.debug("job_executed", job_id=event.job_id)

    def _on_job_error(self, event: JobExecutionEvent) -> None:
        logger.error(
            "job_failed",
            job_id=event.job_id,
            exception=str(event.exception),
            traceback=event.traceback,
        )

    def _on_job_missed(self, event: JobExecutionEvent) -> None:
        logger.warning(
            "job_missed",
            job_id=event.job_id,
            scheduled_run_time=str(event.scheduled_run_time),
        )

    def _update_metrics(self) -> None:
        """Update Prometheus metrics."""
        pending = sum(1 for j in self.scheduler.get_jobs() if j.pending)
        running = len(self._jobs) - pending

        SCHEDULER_JOBS.labels(status="pending").set(pending)
        SCHEDULER_JOBS.labels(status="running").set(running)

    @property
    def is_running(self) -> bool:
        return self._running
