"""Unit tests for the periodic job scheduler."""

import asyncio

import pytest

from marketplace.infrastructure.scheduler import PeriodicScheduler


class TestPeriodicScheduler:
    def test_register_rejects_non_positive_interval(self):
        scheduler = PeriodicScheduler()
        with pytest.raises(ValueError):
            scheduler.register("bad", 0, lambda: None)

    def test_job_names(self):
        async def job():
            return None

        scheduler = PeriodicScheduler()
        scheduler.register("first", 10, job)
        scheduler.register("second", 20, job)
        assert scheduler.job_names == ["first", "second"]

    @pytest.mark.asyncio
    async def test_runs_job_until_stopped(self):
        calls = []

        async def job():
            calls.append(1)

        scheduler = PeriodicScheduler()
        scheduler.register("tick", 0.01, job)
        await scheduler.start()
        assert scheduler.running is True
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert scheduler.running is False
        assert len(calls) >= 2
        seen = len(calls)
        await asyncio.sleep(0.03)
        assert len(calls) == seen

    @pytest.mark.asyncio
    async def test_failing_job_keeps_running(self):
        calls = []

        async def job():
            calls.append(1)
            raise RuntimeError("boom")

        scheduler = PeriodicScheduler()
        scheduler.register("flaky", 0.01, job)
        await scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert len(calls) >= 2
