import os
from decimal import Decimal
from typing import Dict, Any, Tuple

from dotenv import load_dotenv

load_dotenv()


def _decimal_env(name: str, default: str) -> Decimal:
    return Decimal(os.getenv(name, default))


class BotConfig:
    """Конфигурация бота продажи USDT"""

    # Telegram
    BOT_TOKEN = os.getenv("BOT_TOKEN", "")
    BOT_USERNAME = os.getenv("BOT_USERNAME", "USDT2FIATXBOT")
    ADMIN_CHAT_ID = int(os.getenv("ADMIN_CHAT_ID", "0"))

    # Реферальная программа
    REFERRAL_BONUS = _decimal_env("REFERRAL_BONUS", "1.50")
    MIN_WITHDRAW_REF = _decimal_env("MIN_WITHDRAW_REF", "50.00")
    # forfeit - при отклонении заявки заработок сгорает, restore - возвращается
    REFERRAL_REJECTION_POLICY = os.getenv("REFERRAL_REJECTION_POLICY", "forfeit")

    # Ограничения мастера продажи
    MIN_SELL_AMOUNT = _decimal_env("MIN_SELL_AMOUNT", "25")
    MAX_SELL_AMOUNT = _decimal_env("MAX_SELL_AMOUNT", "50000")
    MIN_ADDRESS_LENGTH = int(os.getenv("MIN_ADDRESS_LENGTH", 30))

    # Курсы (минимальные гарантированные значения)
    RATE_FLOORS = {
        "USD": _decimal_env("RATE_FLOOR_USD", "1.05"),
        "EUR": _decimal_env("RATE_FLOOR_EUR", "0.89"),
        "GBP": _decimal_env("RATE_FLOOR_GBP", "0.79"),
    }
    RATE_SPREAD = _decimal_env("RATE_SPREAD", "0.009")
    RATES_REFRESH_SECONDS = int(os.getenv("RATES_REFRESH_SECONDS", 60))

    # 0 - состояние диалога не истекает
    STATE_TTL_SECONDS = int(os.getenv("STATE_TTL_SECONDS", 0))

    WALLET_CURRENCIES: Tuple[str, ...] = tuple(
        c.strip().upper() for c in os.getenv("WALLET_CURRENCIES", "USDT,BTC,ETH").split(",") if c.strip()
    )

    # Хранилище: memory | postgres
    LEDGER_BACKEND = os.getenv("LEDGER_BACKEND", "memory")
    REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))

    # CoinPayments
    COINPAYMENTS_API_URL = os.getenv("COINPAYMENTS_API_URL", "https://www.coinpayments.net/api.php")
    COINPAYMENTS_PUBLIC_KEY = os.getenv("COINPAYMENTS_PUBLIC_KEY", "")
    COINPAYMENTS_PRIVATE_KEY = os.getenv("COINPAYMENTS_PRIVATE_KEY", "")
    COINPAYMENTS_TIMEOUT = int(os.getenv("COINPAYMENTS_TIMEOUT", 15))
    BUYER_REFUND_EMAIL = os.getenv("BUYER_REFUND_EMAIL", "")

    # Веб-админка
    ADMIN_API_TOKEN = os.getenv("ADMIN_API_TOKEN", "")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    def __init__(self, **overrides):
        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown config key: {key}")
            setattr(self, key, value)

    def is_admin(self, user_id: int) -> bool:
        return bool(self.ADMIN_CHAT_ID) and user_id == self.ADMIN_CHAT_ID

    def get_config_summary(self) -> Dict[str, Any]:
        """Сводка конфигурации без секретов"""
        return {
            "bot_username": self.BOT_USERNAME,
            "admin_chat_id": self.ADMIN_CHAT_ID,
            "referral_bonus": str(self.REFERRAL_BONUS),
            "min_withdraw_ref": str(self.MIN_WITHDRAW_REF),
            "referral_rejection_policy": self.REFERRAL_REJECTION_POLICY,
            "sell_bounds": [str(self.MIN_SELL_AMOUNT), str(self.MAX_SELL_AMOUNT)],
            "rate_floors": {k: str(v) for k, v in self.RATE_FLOORS.items()},
            "state_ttl_seconds": self.STATE_TTL_SECONDS,
            "wallet_currencies": list(self.WALLET_CURRENCIES),
            "ledger_backend": self.LEDGER_BACKEND,
        }


# Глобальный экземпляр конфигурации
config = BotConfig()
