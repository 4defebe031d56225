"""Scheduler for one-shot deferred jobs such as reconnect attempts"""

from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from .logging import get_logger

logger = get_logger(__name__)


class ReconnectScheduler:
    """Keeps at most one pending reconnect job per account.

    Jobs are keyed ``reconnect:<account_id>``; arming a job replaces any
    job already pending for the same account.
    """

    JOB_PREFIX = "reconnect:"

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        self._scheduler = scheduler or AsyncIOScheduler()

    def _job_id(self, account_id: str) -> str:
        return f"{self.JOB_PREFIX}{account_id}"

    def _ensure_started(self) -> None:
        # AsyncIOScheduler binds to the running loop when started
        if not self._scheduler.running:
            self._scheduler.start()
            logger.debug("Reconnect scheduler started")

    def arm(
        self,
        account_id: str,
        delay: float,
        callback: Callable[[str], Awaitable[None]],
    ) -> None:
        """Run ``callback(account_id)`` after ``delay`` seconds."""
        self._ensure_started()
        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay)
        self._scheduler.add_job(
            callback,
            trigger=DateTrigger(run_date=run_date),
            args=[account_id],
            id=self._job_id(account_id),
            replace_existing=True,
            misfire_grace_time=None,
        )
        logger.debug(f"Reconnect job armed for {account_id} in {delay:.1f}s")

    def cancel(self, account_id: str) -> bool:
        """Cancel the pending job, returning whether one existed."""
        try:
            self._scheduler.remove_job(self._job_id(account_id))
            return True
        except JobLookupError:
            return False

    def is_pending(self, account_id: str) -> bool:
        return self._scheduler.get_job(self._job_id(account_id)) is not None

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.debug("Reconnect scheduler stopped")
