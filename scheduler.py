import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from ledger_cache import LedgerCache, get_ledger_cache


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self, cache: Optional[LedgerCache] = None) -> None:
        settings = get_settings()
        self.cache = cache if cache is not None else get_ledger_cache()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _rollover_job(self, source: str = "manual") -> None:
        # views keyed to yesterday are unreachable once the date changes
        dropped = len(self.cache)
        self.cache.clear()
        logger.info(f"ledger_rollover: source={source} views_dropped={dropped}")

    def _expire_job(self, source: str = "manual") -> None:
        expired = self.cache.expire()
        logger.info(f"ledger_expire: source={source} views_expired={expired}")

    def start(self) -> None:
        trigger = CronTrigger(hour=0, minute=0)
        self.scheduler.add_job(
            self._rollover_job,
            trigger,
            args=["daily_00:00"],
            id="ledger_daily_rollover",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self._expire_job,
            trigger,
            args=["hourly_sweep"],
            id="ledger_hourly_expire",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 00:00 rollover and hourly expiry sweep")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
