"""
Tests for the reconnect scheduler
"""
import asyncio

import pytest

from mailsync.utils.scheduler import ReconnectScheduler


@pytest.fixture
async def scheduler():
    reconnects = ReconnectScheduler()
    yield reconnects
    reconnects.shutdown()


class TestReconnectScheduler:
    """Tests for ReconnectScheduler"""

    @pytest.mark.asyncio
    async def test_job_runs_after_delay(self, scheduler):
        fired = asyncio.Event()
        seen = []

        async def callback(account_id):
            seen.append(account_id)
            fired.set()

        scheduler.arm("a1", 0.05, callback)
        assert scheduler.is_pending("a1")

        await asyncio.wait_for(fired.wait(), 2)
        assert seen == ["a1"]

    @pytest.mark.asyncio
    async def test_arm_replaces_pending_job(self, scheduler):
        async def callback(account_id):
            pass

        scheduler.arm("a1", 60, callback)
        scheduler.arm("a1", 120, callback)

        jobs = [job for job in scheduler._scheduler.get_jobs() if job.id == "reconnect:a1"]
        assert len(jobs) == 1

    @pytest.mark.asyncio
    async def test_cancel(self, scheduler):
        async def callback(account_id):
            raise AssertionError("cancelled job ran")

        scheduler.arm("a1", 0.05, callback)
        assert scheduler.cancel("a1") is True
        assert scheduler.cancel("a1") is False
        assert not scheduler.is_pending("a1")
        await asyncio.sleep(0.1)

    def test_cancel_before_start(self):
        assert ReconnectScheduler().cancel("a1") is False
