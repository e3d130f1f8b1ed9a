"""Unit tests for the APScheduler setup and JobMonitor."""

import asyncio

import pytest
from apscheduler.triggers.interval import IntervalTrigger

from custody.services.scheduler import JOB_DEFAULTS, JobMonitor, create_scheduler


class TestCreateScheduler:
    """Scheduler configuration."""

    def test_single_instance_coalescing_defaults(self):
        scheduler = create_scheduler()

        assert JOB_DEFAULTS["max_instances"] == 1
        assert JOB_DEFAULTS["coalesce"] is True
        assert scheduler.running is False


class TestJobMonitor:
    """Run guard, skip-not-queue and shutdown."""

    def test_duplicate_job_rejected(self):
        monitor = JobMonitor()

        async def job():
            return None

        monitor.wrap("scan", job)
        with pytest.raises(ValueError):
            monitor.wrap("scan", job)

    @pytest.mark.asyncio
    async def test_run_now(self):
        monitor = JobMonitor()
        calls = []

        async def job():
            calls.append(1)

        monitor.wrap("scan", job)

        assert await monitor.run_now("scan") is True
        assert calls == [1]
        assert monitor.stats("scan").runs == 1

    @pytest.mark.asyncio
    async def test_overlapping_run_is_skipped(self):
        """A trigger during an in-flight run is dropped, not queued."""
        monitor = JobMonitor()
        release = asyncio.Event()
        calls = []

        async def slow_job():
            calls.append(1)
            await release.wait()

        monitor.wrap("scan", slow_job)
        first = asyncio.create_task(monitor.run_now("scan"))
        await asyncio.sleep(0.01)

        assert await monitor.run_now("scan") is False

        release.set()
        assert await first is True
        assert calls == [1]
        assert monitor.stats("scan").skipped == 1
        assert monitor.stats("scan").runs == 1

    @pytest.mark.asyncio
    async def test_failure_recorded(self):
        monitor = JobMonitor()

        async def failing_job():
            raise RuntimeError("boom")

        monitor.wrap("scan", failing_job)

        assert await monitor.run_now("scan") is True
        assert await monitor.run_now("scan") is True

        stats = monitor.stats("scan")
        assert stats.failures == 2
        assert stats.runs == 2
        assert stats.last_error == "boom"
        assert monitor.is_running("scan") is False

    @pytest.mark.asyncio
    async def test_scheduler_runs_wrapped_job(self):
        scheduler = create_scheduler()
        monitor = JobMonitor()
        monitor.attach(scheduler)
        ran = asyncio.Event()

        async def job():
            ran.set()

        scheduler.add_job(
            monitor.wrap("scan", job),
            trigger=IntervalTrigger(seconds=0.05),
            id="scan",
        )
        scheduler.start()
        try:
            await asyncio.wait_for(ran.wait(), timeout=2)
        finally:
            scheduler.shutdown(wait=False)

        assert monitor.stats("scan").runs >= 1

    @pytest.mark.asyncio
    async def test_wait_idle_lets_in_flight_run_finish(self):
        monitor = JobMonitor()
        finished = []

        async def job():
            await asyncio.sleep(0.02)
            finished.append(1)

        monitor.wrap("scan", job)
        task = asyncio.create_task(monitor.run_now("scan"))
        await asyncio.sleep(0.005)
        await monitor.wait_idle(timeout=1)

        assert finished == [1]
        assert await task is True

    @pytest.mark.asyncio
    async def test_wait_idle_cancels_after_timeout(self):
        monitor = JobMonitor()

        async def stuck_job():
            await asyncio.sleep(10)

        monitor.wrap("scan", stuck_job)
        task = asyncio.create_task(monitor.run_now("scan"))
        await asyncio.sleep(0.005)
        await monitor.wait_idle(timeout=0.01)

        assert task.cancelled()
        assert monitor.is_running("scan") is False

    def test_unknown_job(self):
        with pytest.raises(KeyError):
            JobMonitor().stats("missing")
