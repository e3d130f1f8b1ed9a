"""
Poll scheduler.

APScheduler AsyncIOScheduler configured for single-instance, coalescing
interval jobs, plus a JobMonitor that guards every run. A trigger that
finds the previous run of the same job still in flight is skipped and
counted, never queued, whether it came from the scheduler or from
run_now().
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import partial
from typing import Any

from apscheduler.events import EVENT_JOB_MAX_INSTANCES, EVENT_JOB_MISSED, JobEvent
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

JOB_DEFAULTS = {
    "coalesce": True,  # Collapse missed ticks into one run
    "max_instances": 1,  # Never two runs of the same job at once
    "misfire_grace_time": 30,
}


def create_scheduler() -> AsyncIOScheduler:
    """Create the UTC AsyncIOScheduler used for deposit scans and sweeps."""
    return AsyncIOScheduler(
        jobstores={"default": MemoryJobStore()},
        executors={"default": AsyncIOExecutor()},
        job_defaults=JOB_DEFAULTS,
        timezone="UTC",
    )


@dataclass
class JobStats:
    """Run counters of one job."""

    runs: int = 0
    skipped: int = 0
    failures: int = 0
    last_error: str | None = None
    last_run_at: datetime | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "runs": self.runs,
            "skipped": self.skipped,
            "failures": self.failures,
            "last_error": self.last_error,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
        }


class JobMonitor:
    """
    Run guard and counters for scheduler jobs.

    Example:
        scheduler = create_scheduler()
        monitor = JobMonitor()
        monitor.attach(scheduler)
        scheduler.add_job(
            monitor.wrap("solana_deposit_scan", poller.scan_once),
            "interval",
            seconds=5,
            id="solana_deposit_scan",
        )
        scheduler.start()
        ...
        await monitor.wait_idle(timeout=10)
        scheduler.shutdown(wait=False)
    """

    def __init__(self) -> None:
        self._funcs: dict[str, Callable[[], Awaitable[Any]]] = {}
        self._stats: dict[str, JobStats] = {}
        self._in_flight: dict[str, asyncio.Task] = {}

    def attach(self, scheduler: AsyncIOScheduler) -> None:
        """Count ticks the scheduler itself dropped."""
        scheduler.add_listener(self._on_dropped, EVENT_JOB_MAX_INSTANCES | EVENT_JOB_MISSED)

    def wrap(
        self,
        job_id: str,
        func: Callable[[], Awaitable[Any]],
    ) -> Callable[[], Awaitable[bool]]:
        """
        Register a job function and return its guarded form.

        Args:
            job_id: Scheduler job id
            func: Coroutine function run on every trigger

        Returns:
            Coroutine function suitable for scheduler.add_job
        """
        if job_id in self._funcs:
            raise ValueError(f"Job {job_id} already registered")
        self._funcs[job_id] = func
        self._stats[job_id] = JobStats()
        return partial(self.run, job_id)

    def stats(self, job_id: str) -> JobStats:
        try:
            return self._stats[job_id]
        except KeyError:
            raise KeyError(f"Unknown job: {job_id}") from None

    def is_running(self, job_id: str) -> bool:
        task = self._in_flight.get(job_id)
        return task is not None and not task.done()

    async def run(self, job_id: str) -> bool:
        """
        Run a registered job once.

        Args:
            job_id: Job id

        Returns:
            True if the job ran, False if it was skipped because a run
            was already in flight
        """
        func = self._funcs.get(job_id)
        if func is None:
            raise KeyError(f"Unknown job: {job_id}")

        stats = self._stats[job_id]
        if self.is_running(job_id):
            stats.skipped += 1
            logger.debug(f"Job '{job_id}' still running, trigger skipped")
            return False

        self._in_flight[job_id] = asyncio.current_task()
        stats.last_run_at = datetime.now(UTC)
        try:
            await func()
            stats.last_error = None
        except Exception as e:
            stats.failures += 1
            stats.last_error = str(e)
            logger.exception(f"Job '{job_id}' failed: {e}")
        finally:
            stats.runs += 1
            self._in_flight.pop(job_id, None)
        return True

    async def run_now(self, job_id: str) -> bool:
        """Trigger a job outside its schedule and wait for it."""
        return await self.run(job_id)

    async def wait_idle(self, timeout: float = 10.0) -> None:
        """
        Wait for in-flight runs, cancelling whatever outlives the timeout.

        Args:
            timeout: Seconds to wait before cancelling
        """
        tasks = [task for task in self._in_flight.values() if not task.done()]
        if not tasks:
            return

        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Cancelled {len(pending)} job run(s) on shutdown")

    def _on_dropped(self, event: JobEvent) -> None:
        stats = self._stats.get(event.job_id)
        if stats is not None:
            stats.skipped += 1
        logger.debug(f"Job '{event.job_id}' tick dropped by scheduler (code={event.code})")
