
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from typing import Optional
import logging
from timeops.config import settings
from timeops.timer.session import TimerSessionController

logger = logging.getLogger(__name__)

TICK_JOB = "timer-tick"
RESYNC_JOB = "timer-resync"


class TimerScheduler:
    """
    Drives a TimerSessionController: a short tick interval for the elapsed
    display and a long resync interval for server truth. Both jobs are
    removed on unmount.
    """

    def __init__(
        self,
        controller: TimerSessionController,
        tick_seconds: Optional[int] = None,
        resync_seconds: Optional[int] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.controller = controller
        self.tick_seconds = settings.TIMER_TICK_SECONDS if tick_seconds is None else tick_seconds
        self.resync_seconds = settings.TIMER_RESYNC_SECONDS if resync_seconds is None else resync_seconds
        self.scheduler = scheduler or AsyncIOScheduler()
        self._owns_scheduler = scheduler is None

    @property
    def mounted(self) -> bool:
        return self.scheduler.get_job(TICK_JOB) is not None

    async def _tick_job(self):
        # Must run on the event loop, never in the executor thread pool
        self.controller.tick()

    async def _resync_job(self):
        # resync reports failures in its result; the next interval retries
        result = await self.controller.resync()
        if not result.ok:
            logger.debug(f"Scheduled resync failed: {result.error.code}")

    async def mount(self):
        """Initial resync, then start ticking and periodic resync."""
        await self.controller.resync()
        if not self.scheduler.running:
            self.scheduler.start()
        self.scheduler.add_job(
            self._tick_job,
            "interval",
            seconds=self.tick_seconds,
            id=TICK_JOB,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self.scheduler.add_job(
            self._resync_job,
            "interval",
            seconds=self.resync_seconds,
            id=RESYNC_JOB,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        logger.info(
            f"Timer mounted (tick {self.tick_seconds}s, resync {self.resync_seconds}s)"
        )

    def unmount(self):
        """Cancel tick and resync; in-flight mutations are left to finish."""
        for job_id in (TICK_JOB, RESYNC_JOB):
            if self.scheduler.get_job(job_id) is not None:
                self.scheduler.remove_job(job_id)
        if self._owns_scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Timer unmounted")
