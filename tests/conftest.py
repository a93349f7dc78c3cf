from dataclasses import dataclass
from decimal import Decimal
from typing import Any, List, Optional

import pytest
from aiogram.fsm.storage.memory import MemoryStorage

from usdtbot.config import BotConfig
from usdtbot.events import ButtonPress, Command, decode_text
from usdtbot.flows.engine import ConversationEngine
from usdtbot.repository import InMemoryLedgerRepository
from usdtbot.services.deposits import DepositInfo
from usdtbot.services.ledger import Ledger
from usdtbot.services.rates import RateProvider

ADMIN_ID = 1000001
USER_ID = 2000002
OTHER_ID = 3000003

FIXED_RATES = {"USD": Decimal("1.054"), "EUR": Decimal("0.893"), "GBP": Decimal("0.795")}
VALID_ADDRESS = "TQ5NVvPr6nY1hrBZz1c2qF3bYQ9mvdKJ8x"


@dataclass
class SentMessage:
    user_id: int
    text: str
    reply_markup: Any = None
    photo: Optional[str] = None


class RecordingNotifier:
    """Notifier, который запоминает исходящие сообщения"""

    def __init__(self):
        self.sent: List[SentMessage] = []
        self.unreachable = set()

    async def send(self, user_id, text, reply_markup=None, photo=None):
        if user_id in self.unreachable:
            return False
        self.sent.append(SentMessage(user_id, text, reply_markup, photo))
        return True

    def to(self, user_id) -> List[SentMessage]:
        return [m for m in self.sent if m.user_id == user_id]

    def last(self, user_id) -> SentMessage:
        return self.to(user_id)[-1]

    def clear(self):
        self.sent.clear()


class FakeDepositGateway:
    def __init__(self):
        self.calls = []
        self.error: Optional[Exception] = None
        self.qr_image_ref: Optional[str] = "https://example.com/qr.png"

    async def create_deposit(self, source_currency, destination_network, amount, contact, correlation_id):
        self.calls.append({
            "source_currency": source_currency,
            "destination_network": destination_network,
            "amount": amount,
            "contact": contact,
            "correlation_id": correlation_id,
        })
        if self.error:
            raise self.error
        return DepositInfo(
            address="TDepositAddress1234567890abcdefgh",
            amount=amount,
            expiry_seconds=9000,
            qr_image_ref=self.qr_image_ref,
            txn_id="CPTEST1",
        )


class Chat:
    """Пользователь, который общается с движком"""

    def __init__(self, engine: ConversationEngine, user_id: int, display_name: str = "Test User"):
        self.engine = engine
        self.user_id = user_id
        self.display_name = display_name

    async def command(self, name: str, args: str = ""):
        await self.engine.handle(Command(self.user_id, name, args, self.display_name))

    async def say(self, text: str):
        await self.engine.handle(decode_text(self.user_id, text, self.display_name))

    async def press(self, payload):
        await self.engine.handle(ButtonPress(self.user_id, payload, self.display_name))

    async def state(self):
        return await self.engine.context(self.user_id).get_state()

    async def data(self):
        return await self.engine.context(self.user_id).get_data()


@pytest.fixture
def settings():
    return BotConfig(
        ADMIN_CHAT_ID=ADMIN_ID,
        BOT_USERNAME="TestUsdtBot",
        REFERRAL_BONUS=Decimal("1.50"),
        MIN_WITHDRAW_REF=Decimal("50.00"),
        MIN_SELL_AMOUNT=Decimal("25"),
        MAX_SELL_AMOUNT=Decimal("50000"),
        MIN_ADDRESS_LENGTH=30,
        STATE_TTL_SECONDS=0,
        BUYER_REFUND_EMAIL="refunds@example.com",
        WALLET_CURRENCIES=("USDT", "BTC", "ETH"),
    )


@pytest.fixture
def repository():
    return InMemoryLedgerRepository()


@pytest.fixture
def ledger(repository):
    return Ledger(repository)


@pytest.fixture
def rates():
    return RateProvider(fetcher=lambda: dict(FIXED_RATES))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def deposits():
    return FakeDepositGateway()


@pytest.fixture
def engine(ledger, rates, deposits, notifier, settings):
    return ConversationEngine(
        ledger=ledger,
        rates=rates,
        deposits=deposits,
        notifier=notifier,
        storage=MemoryStorage(),
        settings=settings,
    )


@pytest.fixture
def user(engine):
    return Chat(engine, USER_ID, "Alice Smith")


@pytest.fixture
def other(engine):
    return Chat(engine, OTHER_ID, "Bob Jones")


@pytest.fixture
def admin(engine):
    return Chat(engine, ADMIN_ID, "Admin")
