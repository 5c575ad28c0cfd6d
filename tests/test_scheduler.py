import asyncio

import pytest

from conftest import make_settings
from pawreels.scheduler import SyncScheduler
from pawreels.sync import SyncStats
from pawreels.utils import job_boundary


class _FakeJob:
    def __init__(self, name: str, fail: bool = False) -> None:
        self.name = name
        self.fail = fail
        self.runs = 0

    async def run(self) -> SyncStats:
        self.runs += 1
        if self.fail:
            raise RuntimeError(f"{self.name} exploded")
        return SyncStats(job=self.name, created=self.runs)


def _scheduler(**fail):
    jobs = {
        name: _FakeJob(name, fail=fail.get(name, False))
        for name in ("discovery", "quick_scan", "refresh", "janitor", "dedup")
    }
    return SyncScheduler(settings=make_settings(), **jobs), jobs


def test_job_boundary_swallows_and_logs_failures():
    @job_boundary
    async def broken():
        raise ValueError("boom")

    assert asyncio.run(broken()) is None


def test_job_boundary_rejects_plain_functions():
    with pytest.raises(TypeError):

        @job_boundary
        def not_async():
            return None


def test_run_now_records_stats_and_survives_failures():
    async def scenario():
        scheduler, jobs = _scheduler(refresh=True)
        await scheduler.run_now("discovery")
        await scheduler.run_now("refresh")

        assert jobs["discovery"].runs == 1
        assert jobs["refresh"].runs == 1
        assert scheduler.last_stats["discovery"]["created"] == 1
        assert "refresh" not in scheduler.last_stats

        with pytest.raises(ValueError):
            await scheduler.run_now("nope")

    asyncio.run(scenario())


def test_start_registers_every_job():
    async def scenario():
        scheduler, _ = _scheduler()
        scheduler.start()
        try:
            status = scheduler.get_status()
            assert status["running"] is True
            assert {job["id"] for job in status["jobs"]} == {
                "discovery",
                "quick_scan",
                "refresh",
                "janitor",
                "dedup_cleanup",
            }
        finally:
            scheduler.stop()
        assert scheduler.is_running() is False

    asyncio.run(scenario())
