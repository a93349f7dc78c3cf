"""
Тесты сборки сервисов: леджер, движок, планировщик, отправка сообщений
"""

import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from aiogram.fsm.storage.memory import MemoryStorage

from usdtbot.bot import build_engine, build_ledger
from usdtbot.config import BotConfig
from usdtbot.scheduler import RATES_JOB_ID, create_scheduler, refresh_rates_job
from usdtbot.services.deposits import CoinPaymentsClient
from usdtbot.services.ledger import ReferralRejectionPolicy
from usdtbot.services.notifications import TelegramNotifier
from usdtbot.services.rates import RateProvider


class TestBuild:
    @pytest.mark.asyncio
    async def test_memory_ledger(self):
        settings = BotConfig(LEDGER_BACKEND="memory", REFERRAL_REJECTION_POLICY="restore", WALLET_CURRENCIES=("USDT",))

        ledger = await build_ledger(settings)

        assert ledger.referral_rejection_policy == ReferralRejectionPolicy.RESTORE
        assert ledger.wallet_currencies == ("USDT",)

    @pytest.mark.asyncio
    async def test_unknown_backend(self):
        with pytest.raises(ValueError):
            await build_ledger(BotConfig(LEDGER_BACKEND="sqlite"))

    def test_unknown_config_key(self):
        with pytest.raises(AttributeError):
            BotConfig(NOT_A_SETTING=1)

    @pytest.mark.asyncio
    async def test_engine_uses_configured_floors(self):
        floors = {"USD": Decimal("1.10"), "EUR": Decimal("0.95"), "GBP": Decimal("0.85")}
        settings = BotConfig(RATE_FLOORS=floors, LEDGER_BACKEND="memory")
        ledger = await build_ledger(settings)

        engine = build_engine(ledger, MagicMock(), MemoryStorage(), settings)

        assert isinstance(engine.deposits, CoinPaymentsClient)
        assert engine.rates.floors == floors
        snapshot = await engine.rates.refresh()
        assert all(snapshot.rate(c) >= floors[c] for c in floors)


class TestScheduler:
    def test_job_registered(self):
        scheduler = create_scheduler(RateProvider(), interval_seconds=30)

        job = scheduler.get_job(RATES_JOB_ID)

        assert job is not None
        assert job.trigger.interval == timedelta(seconds=30)
        assert job.max_instances == 1

    @pytest.mark.asyncio
    async def test_job_refreshes_rates(self):
        provider = RateProvider(fetcher=lambda: {"USD": Decimal("1.07")})
        await refresh_rates_job(provider)
        assert (await provider.current_rates()).rate("USD") == Decimal("1.070")

    @pytest.mark.asyncio
    async def test_job_survives_source_failure(self):
        def broken():
            raise RuntimeError("source down")

        await refresh_rates_job(RateProvider(fetcher=broken))


class TestTelegramNotifier:
    @pytest.mark.asyncio
    async def test_text_message(self):
        bot = MagicMock()
        bot.send_message = AsyncMock()
        notifier = TelegramNotifier(bot)

        assert await notifier.send(42, "hello") is True
        bot.send_message.assert_awaited_once_with(42, "hello", reply_markup=None)

    @pytest.mark.asyncio
    async def test_photo_with_caption(self):
        bot = MagicMock()
        bot.send_photo = AsyncMock()
        notifier = TelegramNotifier(bot)

        assert await notifier.send(42, "caption", photo="https://example.com/qr.png") is True
        bot.send_photo.assert_awaited_once_with(42, "https://example.com/qr.png", caption="caption", reply_markup=None)

    @pytest.mark.asyncio
    async def test_delivery_failure_is_reported(self):
        bot = MagicMock()
        bot.send_message = AsyncMock(side_effect=RuntimeError("Forbidden: bot was blocked by the user"))
        notifier = TelegramNotifier(bot)

        assert await notifier.send(42, "hello") is False
