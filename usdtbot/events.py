"""
Входящие события диалога

Транспорт превращает Message/CallbackQuery в одно из событий:
Command (команда или кнопка главного меню), ButtonPress (разобранный
callback_data) или FreeText (произвольный текст).
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from aiogram.filters.callback_data import CallbackData

from usdtbot.callbacks import ALL_CALLBACKS
from usdtbot.keyboards import MENU_COMMANDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Command:
    user_id: int
    name: str
    args: str = ""
    display_name: str = ""
    username: Optional[str] = None


@dataclass(frozen=True)
class ButtonPress:
    user_id: int
    payload: CallbackData
    display_name: str = ""
    username: Optional[str] = None


@dataclass(frozen=True)
class FreeText:
    user_id: int
    text: str
    display_name: str = ""
    username: Optional[str] = None


Event = Union[Command, ButtonPress, FreeText]


def decode_text(user_id: int, text: str, display_name: str = "", username: Optional[str] = None) -> Event:
    """'/start ref_1' -> Command('start', 'ref_1'); кнопка меню -> Command; иначе FreeText"""
    stripped = text.strip()
    if stripped.startswith("/") and len(stripped) > 1:
        head, _, args = stripped[1:].partition(" ")
        name = head.split("@", 1)[0].lower()
        return Command(user_id, name, args.strip(), display_name, username)
    if stripped in MENU_COMMANDS:
        return Command(user_id, MENU_COMMANDS[stripped], "", display_name, username)
    return FreeText(user_id, text, display_name, username)


def decode_button(
    user_id: int, token: Optional[str], display_name: str = "", username: Optional[str] = None
) -> Optional[ButtonPress]:
    """Разбирает callback_data; неизвестный формат -> None"""
    if not token:
        return None
    for callback_cls in ALL_CALLBACKS:
        try:
            payload = callback_cls.unpack(token)
        except (ValueError, TypeError):
            continue
        return ButtonPress(user_id, payload, display_name, username)
    logger.debug(f"Unknown callback data from {user_id}: {token!r}")
    return None
