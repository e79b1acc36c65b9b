"""
Debounced Jobs
==============

Coalesces bursts of "something changed" into one job per key, run after a
quiet period. Used for conversation saves (0.8s), project memory saves
(0.6s) and project memory refreshes (4.5s).

Scheduling is handled by APScheduler: each key is a one-shot DateTrigger job
added with replace_existing=True, so scheduling the same key again pushes
its run time back and the latest job wins.

Job failures are logged and never reach the caller that scheduled them.
"""

from datetime import datetime, timedelta
from typing import Awaitable, Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from atelier.utils.logger import Logger

logger = Logger("Debounce")

Job = Callable[[], Awaitable[None]]


class Debouncer:
    """
    One pending job per key, run after a quiet period.

    Example:
        debouncer = Debouncer()

        debouncer.schedule("save:/home/me/app", 0.8, save_conversation)
        debouncer.schedule("save:/home/me/app", 0.8, save_conversation)  # replaces

        await debouncer.flush()     # run whatever is pending now
        debouncer.shutdown()
    """

    def __init__(self, scheduler: AsyncIOScheduler | None = None):
        self.scheduler = scheduler or AsyncIOScheduler()
        self._pending: dict[str, Job] = {}

    def start(self) -> None:
        """Start the scheduler (needs a running event loop)."""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.debug("Debounce scheduler started")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.debug("Debounce scheduler stopped")

    @property
    def pending(self) -> list[str]:
        return list(self._pending)

    def schedule(self, key: str, delay: float, job: Job) -> None:
        """
        Run job after delay seconds unless key is scheduled again first.

        Args:
            key: Coalescing key
            delay: Quiet period in seconds
            job: Zero-argument coroutine function
        """
        self.start()
        self._pending[key] = job
        self.scheduler.add_job(
            self._run,
            trigger=DateTrigger(run_date=datetime.now() + timedelta(seconds=max(0.0, delay))),
            args=[key],
            id=key,
            replace_existing=True,
            misfire_grace_time=None,
        )

    def cancel(self, key: str) -> bool:
        """Drop a pending job without running it."""
        job = self._pending.pop(key, None)
        self._remove_job(key)
        return job is not None

    async def flush(self, prefix: str = "") -> None:
        """Run pending jobs now (those whose key starts with prefix)."""
        for key in [k for k in self._pending if k.startswith(prefix)]:
            self._remove_job(key)
            await self._run(key)

    async def _run(self, key: str) -> None:
        job = self._pending.pop(key, None)
        if job is None:
            return
        try:
            await job()
        except Exception as e:  # noqa: BLE001 - background persistence must not crash the loop
            logger.error(f"Debounced job {key} failed", e)

    def _remove_job(self, key: str) -> None:
        if not self.scheduler.running:
            return
        try:
            self.scheduler.remove_job(key)
        except JobLookupError:
            pass  # Already fired
