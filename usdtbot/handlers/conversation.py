"""
Транспортные хендлеры: любой текст и любое нажатие кнопки уходят в ConversationEngine
"""

from aiogram import Router, F
from aiogram.types import Message, CallbackQuery

from usdtbot.events import decode_text, decode_button
from usdtbot.flows.engine import ConversationEngine
from usdtbot.utils.logger import log_handler

router = Router()


def _display_name(user) -> str:
    return user.full_name or (f"@{user.username}" if user.username else "User")


@router.message(F.text)
@log_handler("conversation_message")
async def on_message(message: Message, engine: ConversationEngine):
    user = message.from_user
    event = decode_text(user.id, message.text, _display_name(user), user.username)
    await engine.handle(event)


@router.callback_query()
@log_handler("conversation_callback")
async def on_callback(callback: CallbackQuery, engine: ConversationEngine):
    # Подтверждаем нажатие сразу, чтобы у кнопки пропали "часики"
    await callback.answer()
    user = callback.from_user
    event = decode_button(user.id, callback.data, _display_name(user), user.username)
    if event is not None:
        await engine.handle(event)
