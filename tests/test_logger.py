"""
Тесты хелперов логирования
"""

import logging
import pytest
from unittest.mock import MagicMock

from aiogram.types import CallbackQuery

from usdtbot.utils import logger as log_utils
from usdtbot.utils.logger import PerformanceLogger, log_handler


def _callback(user_id=42, data="sell:start"):
    callback = MagicMock(spec=CallbackQuery)
    callback.from_user = MagicMock(id=user_id)
    callback.data = data
    return callback


@pytest.mark.asyncio
async def test_handler_failure_is_logged_and_raised(caplog):
    @log_handler("broken")
    async def handler(callback):
        raise RuntimeError("boom")

    with caplog.at_level(logging.ERROR):
        with pytest.raises(RuntimeError):
            await handler(_callback())

    assert "[broken] failed for 42" in caplog.text


@pytest.mark.asyncio
async def test_handler_logs_update(caplog):
    @log_handler()
    async def on_callback(callback):
        return "ok"

    with caplog.at_level(logging.DEBUG):
        assert await on_callback(_callback()) == "ok"

    assert "[on_callback] button from 42: 'sell:start'" in caplog.text


def test_slow_operation_warns(caplog, monkeypatch):
    ticks = iter([10.0, 12.5])
    monkeypatch.setattr(log_utils.time, "monotonic", lambda: next(ticks))
    logger = logging.getLogger("usdtbot.tests")

    with caplog.at_level(logging.WARNING):
        with PerformanceLogger(logger, "create_deposit"):
            pass

    assert "create_deposit took 2500ms (slow)" in caplog.text
