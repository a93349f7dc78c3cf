"""
Исходящие сообщения пользователям и администратору

Доставка best-effort: ошибки Telegram логируются и не пробрасываются,
send() возвращает признак доставки.
"""

import logging
from typing import Optional, Protocol, Union

from aiogram import Bot
from aiogram.types import InlineKeyboardMarkup, ReplyKeyboardMarkup

from usdtbot.utils.logger import log_error_with_context

logger = logging.getLogger(__name__)

ReplyMarkup = Optional[Union[InlineKeyboardMarkup, ReplyKeyboardMarkup]]


class Notifier(Protocol):
    async def send(
        self,
        user_id: int,
        text: str,
        reply_markup: ReplyMarkup = None,
        photo: Optional[str] = None,
    ) -> bool:
        ...


class TelegramNotifier:
    def __init__(self, bot: Bot):
        self.bot = bot

    async def send(self, user_id, text, reply_markup=None, photo=None):
        try:
            if photo:
                await self.bot.send_photo(user_id, photo, caption=text, reply_markup=reply_markup)
            else:
                await self.bot.send_message(user_id, text, reply_markup=reply_markup)
            return True
        except Exception as e:
            log_error_with_context(logger, "Failed to deliver message", e, user_id=user_id)
            return False
