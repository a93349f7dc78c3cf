"""
Движок диалога

Принимает события (Command / ButtonPress / FreeText), находит обработчик
по текущему состоянию пользователя и отправляет ответы через Notifier.
От Telegram не зависит: aiogram-хендлеры только декодируют апдейт в
событие и вызывают ConversationEngine.handle().

Таблицы маршрутизации:
- команды: имя -> обработчик (в любом состоянии)
- кнопки: (состояние, класс callback) -> обработчик; для кнопок, которые
  работают вне сценария, состояние None
- текст: состояние -> обработчик шага

Событие, для которого нет записи в таблице (устаревшая кнопка, текст вне
сценария), отбрасывается без изменения состояния.
"""

import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple, Type

from aiogram.filters.callback_data import CallbackData
from aiogram.fsm.context import FSMContext
from aiogram.fsm.storage.base import BaseStorage, StorageKey

from usdtbot.callbacks import CancelCallback
from usdtbot.config import BotConfig, config as default_config
from usdtbot.events import Event, Command, ButtonPress, FreeText
from usdtbot.fsm import SELL_STATES, is_expired
from usdtbot.services.deposits import DepositGateway
from usdtbot.services.ledger import Ledger
from usdtbot.services.notifications import Notifier, ReplyMarkup
from usdtbot.services.payout_methods import PayoutMethodDirectory
from usdtbot.services.rates import RateProvider
from usdtbot.utils.locks import UserLocks

logger = logging.getLogger(__name__)

Handler = Callable[[Event, FSMContext], Awaitable[None]]
ButtonKey = Tuple[Optional[str], Type[CallbackData]]


class Flow:
    """Базовый класс сценария: доступ к сервисам движка и регистрация обработчиков"""

    def __init__(self, engine: "ConversationEngine"):
        self.engine = engine

    @property
    def config(self) -> BotConfig:
        return self.engine.config

    @property
    def ledger(self) -> Ledger:
        return self.engine.ledger

    async def send(self, user_id: int, text: str, reply_markup: ReplyMarkup = None, photo: Optional[str] = None) -> bool:
        return await self.engine.notifier.send(user_id, text, reply_markup=reply_markup, photo=photo)

    def commands(self) -> Dict[str, Handler]:
        return {}

    def buttons(self) -> Dict[ButtonKey, Handler]:
        return {}

    def steps(self) -> Dict[str, Handler]:
        return {}


class ConversationEngine:
    def __init__(
        self,
        ledger: Ledger,
        rates: RateProvider,
        deposits: DepositGateway,
        notifier: Notifier,
        storage: BaseStorage,
        payout_methods: Optional[PayoutMethodDirectory] = None,
        settings: Optional[BotConfig] = None,
        bot_id: int = 0,
    ):
        # Импорт здесь: модули сценариев сами импортируют Flow из этого модуля
        from usdtbot.flows.admin import AdminConsole
        from usdtbot.flows.menu import MenuFlow
        from usdtbot.flows.sell_usdt import SellUSDTFlow
        from usdtbot.flows.support import SupportFlow
        from usdtbot.flows.withdrawals import WithdrawalFlow

        self.ledger = ledger
        self.rates = rates
        self.deposits = deposits
        self.notifier = notifier
        self.storage = storage
        self.payout_methods = payout_methods or PayoutMethodDirectory()
        self.config = settings or default_config
        self.bot_id = bot_id
        self._locks = UserLocks()

        self.menu = MenuFlow(self)
        self.sell = SellUSDTFlow(self)
        self.withdrawals = WithdrawalFlow(self)
        self.support = SupportFlow(self)
        self.admin = AdminConsole(self)

        self._commands: Dict[str, Handler] = {"cancel": self.cancel}
        self._buttons: Dict[ButtonKey, Handler] = {}
        self._buttons[(None, CancelCallback)] = self.cancel
        self._steps: Dict[str, Handler] = {}
        for flow in (self.menu, self.sell, self.withdrawals, self.support, self.admin):
            self._commands.update(flow.commands())
            self._buttons.update(flow.buttons())
            self._steps.update(flow.steps())

    def context(self, user_id: int) -> FSMContext:
        """FSM-контекст пользователя (личный чат: chat_id == user_id)"""
        key = StorageKey(bot_id=self.bot_id, chat_id=user_id, user_id=user_id)
        return FSMContext(storage=self.storage, key=key)

    async def handle(self, event: Event) -> None:
        """Обрабатывает одно входящее событие пользователя"""
        async with self._locks.hold(event.user_id):
            state = self.context(event.user_id)
            await self._expire_stale_state(event.user_id, state)
            current = await state.get_state()
            handler = self._route(event, current)
            if handler is None:
                logger.debug(f"Ignored {type(event).__name__} from {event.user_id} in state {current}: {event}")
                return
            await handler(event, state)

    def _route(self, event: Event, current: Optional[str]) -> Optional[Handler]:
        if isinstance(event, Command):
            return self._commands.get(event.name)
        if isinstance(event, ButtonPress):
            payload_type = type(event.payload)
            return self._buttons.get((current, payload_type)) or self._buttons.get((None, payload_type))
        if isinstance(event, FreeText):
            if current is None:
                return None
            return self._steps.get(current)
        return None

    async def _expire_stale_state(self, user_id: int, state: FSMContext) -> None:
        ttl = self.config.STATE_TTL_SECONDS
        if ttl <= 0:
            return
        current = await state.get_state()
        if current is None:
            return
        if is_expired(await state.get_data(), ttl):
            logger.info(f"Conversation state {current} of user {user_id} expired, clearing")
            await state.clear()

    async def cancel(self, event: Event, state: FSMContext) -> None:
        """Отмена любого сценария (/cancel или кнопка ❌ Cancel)"""
        current = await state.get_state()
        await state.clear()
        if current is None:
            await self.notifier.send(event.user_id, "Nothing to cancel.")
        elif current in SELL_STATES:
            await self.sell.send_cancelled(event.user_id)
        else:
            await self.notifier.send(event.user_id, "❌ Cancelled.")
