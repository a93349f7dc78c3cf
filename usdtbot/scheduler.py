import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from usdtbot.services.rates import RateProvider

logger = logging.getLogger(__name__)

RATES_JOB_ID = "refresh_rates"


async def refresh_rates_job(rates: RateProvider):
    """Периодическое обновление курсов"""
    try:
        snapshot = await rates.refresh()
        logger.info(f"[Scheduler] Курсы обновлены: {dict(snapshot.rates)}")
    except Exception as e:
        logger.error(f"[Scheduler] Ошибка обновления курсов: {e}")


def create_scheduler(rates: RateProvider, interval_seconds: int = 60) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        refresh_rates_job,
        trigger=IntervalTrigger(seconds=interval_seconds),
        args=[rates],
        id=RATES_JOB_ID,
        replace_existing=True,
        max_instances=1,
    )
    return scheduler


def start_scheduler(scheduler: AsyncIOScheduler):
    """Запускает планировщик (внутри работающего event loop)"""
    scheduler.start()
    logger.info("[Scheduler] Rates scheduler запущен")


def stop_scheduler(scheduler: AsyncIOScheduler):
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("[Scheduler] Rates scheduler остановлен")
