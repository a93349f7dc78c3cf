import asyncio
import logging
from typing import Optional

import structlog
from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.fsm.storage.base import BaseStorage
from aiogram.fsm.storage.redis import RedisStorage
from aiogram.fsm.strategy import FSMStrategy

from usdtbot.config import BotConfig, config
from usdtbot.db import get_pg_repository, close_pg_pool
from usdtbot.flows.engine import ConversationEngine
from usdtbot.handlers.conversation import router as conversation_router
from usdtbot.handlers.menu import router as menu_router
from usdtbot.repository import InMemoryLedgerRepository
from usdtbot.scheduler import create_scheduler, start_scheduler, stop_scheduler
from usdtbot.services.deposits import CoinPaymentsClient
from usdtbot.services.ledger import Ledger
from usdtbot.services.notifications import Notifier, TelegramNotifier
from usdtbot.services.rates import RateProvider
from usdtbot.utils.logger import setup_logging

logger = logging.getLogger(__name__)


async def build_ledger(settings: BotConfig = config) -> Ledger:
    """Леджер поверх выбранного хранилища (memory | postgres)"""
    if settings.LEDGER_BACKEND == "postgres":
        repository = await get_pg_repository()
    elif settings.LEDGER_BACKEND == "memory":
        logger.warning("Ledger uses in-memory storage, data is lost on restart")
        repository = InMemoryLedgerRepository()
    else:
        raise ValueError(f"Unknown LEDGER_BACKEND: {settings.LEDGER_BACKEND}")
    return Ledger(
        repository,
        wallet_currencies=settings.WALLET_CURRENCIES,
        referral_rejection_policy=settings.REFERRAL_REJECTION_POLICY,
    )


def build_engine(
    ledger: Ledger,
    notifier: Notifier,
    storage: BaseStorage,
    settings: BotConfig = config,
    rates: Optional[RateProvider] = None,
    bot_id: int = 0,
) -> ConversationEngine:
    deposits = CoinPaymentsClient(
        public_key=settings.COINPAYMENTS_PUBLIC_KEY,
        private_key=settings.COINPAYMENTS_PRIVATE_KEY,
        api_url=settings.COINPAYMENTS_API_URL,
        timeout=settings.COINPAYMENTS_TIMEOUT,
    )
    return ConversationEngine(
        ledger=ledger,
        rates=rates or RateProvider(floors=settings.RATE_FLOORS, spread=settings.RATE_SPREAD),
        deposits=deposits,
        notifier=notifier,
        storage=storage,
        settings=settings,
        bot_id=bot_id,
    )


async def main():
    structlog.configure(processors=[structlog.processors.JSONRenderer()])
    setup_logging(config.LOG_LEVEL)
    logger.info(f"Starting bot: {config.get_config_summary()}")

    bot = Bot(token=config.BOT_TOKEN, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
    storage = RedisStorage.from_url(f"redis://{config.REDIS_HOST}:{config.REDIS_PORT}/0")
    dp = Dispatcher(storage=storage, fsm_strategy=FSMStrategy.CHAT)

    ledger = await build_ledger(config)
    engine = build_engine(ledger, TelegramNotifier(bot), storage, config, bot_id=bot.id)
    dp["engine"] = engine

    # /health раньше общего роутера диалога
    dp.include_router(menu_router)
    dp.include_router(conversation_router)

    scheduler = create_scheduler(engine.rates, config.RATES_REFRESH_SECONDS)
    start_scheduler(scheduler)

    try:
        await dp.start_polling(bot)
    finally:
        stop_scheduler(scheduler)
        await close_pg_pool()
        await storage.close()
        await bot.session.close()


if __name__ == "__main__":
    asyncio.run(main())
