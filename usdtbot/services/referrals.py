"""
Реферальная программа: разбор deep-link payload и привязка при первом контакте
"""

import logging
from decimal import Decimal
from typing import Optional

from usdtbot.services.ledger import Ledger, FirstContact

logger = logging.getLogger(__name__)

REFERRAL_PREFIX = "ref_"
MAX_USER_ID = 2 ** 63 - 1  # BIGINT в users.id


def parse_referral_payload(payload: Optional[str]) -> Optional[int]:
    """'ref_12345' -> 12345; всё остальное -> None"""
    if not payload:
        return None
    payload = payload.strip()
    if not payload.startswith(REFERRAL_PREFIX):
        return None
    raw_id = payload[len(REFERRAL_PREFIX):]
    if not (raw_id.isascii() and raw_id.isdigit()):
        return None
    referrer_id = int(raw_id)
    if referrer_id > MAX_USER_ID:
        return None
    return referrer_id or None


def build_referral_link(bot_username: str, user_id: int) -> str:
    return f"https://t.me/{bot_username}?start={REFERRAL_PREFIX}{user_id}"


async def attribute_referral(
    ledger: Ledger,
    user_id: int,
    display_name: str,
    payload: Optional[str],
    bonus: Decimal,
) -> FirstContact:
    """Регистрирует пользователя и, если это его первый /start, начисляет бонус рефереру"""
    referrer_id = parse_referral_payload(payload)
    if payload and referrer_id is None:
        logger.debug(f"Ignoring unknown start payload from {user_id}: {payload!r}")
    return await ledger.register_first_contact(user_id, display_name, referrer_id, bonus)
