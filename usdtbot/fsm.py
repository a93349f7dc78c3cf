"""
Машины состояний (FSM) бота

Каждый сценарий - отдельный StatesGroup. Допустимые переходы внутри
сценария перечислены в TRANSITIONS; вход в сценарий (begin_flow) всегда
затирает предыдущее состояние пользователя.
"""

import time
from typing import Dict, FrozenSet, Optional

from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup

STARTED_AT_KEY = "started_at"


# ============================================================================
# FSM для ПРОДАЖИ USDT (мастер: валюта -> сеть -> способ выплаты -> реквизиты -> сумма)
# ============================================================================
class SellUSDTStates(StatesGroup):
    awaiting_fiat = State()              # Выбор фиатной валюты
    awaiting_network = State()           # Выбор сети депозита
    awaiting_payment_method = State()    # Выбор способа выплаты
    awaiting_bank_region = State()       # Регион банковского перевода
    awaiting_payment_details = State()   # Ввод реквизитов
    awaiting_amount = State()            # Ввод суммы USDT
    awaiting_confirmation = State()      # Подтверждение заявки


# ============================================================================
# FSM для ВЫВОДА СРЕДСТВ
# ============================================================================
class ReferralWithdrawStates(StatesGroup):
    awaiting_address = State()           # Адрес TRC20 для реферальной выплаты


class WalletWithdrawStates(StatesGroup):
    awaiting_amount = State()            # Сумма вывода из кошелька
    awaiting_address = State()           # Адрес получателя


# ============================================================================
# FSM для ПОДДЕРЖКИ
# ============================================================================
class SupportStates(StatesGroup):
    awaiting_message = State()           # Текст обращения


# ============================================================================
# FSM АДМИНИСТРАТОРА
# ============================================================================
class AdminStates(StatesGroup):
    awaiting_ticket_reply = State()      # Ответ на тикет (одно сообщение)
    awaiting_method_name = State()       # Название нового способа выплаты
    awaiting_method_details = State()    # Реквизиты нового способа выплаты


def _edges(*pairs) -> Dict[str, FrozenSet[str]]:
    table: Dict[str, set] = {}
    for source, target in pairs:
        table.setdefault(source.state, set()).add(target.state)
    return {source: frozenset(targets) for source, targets in table.items()}


TRANSITIONS: Dict[str, FrozenSet[str]] = _edges(
    (SellUSDTStates.awaiting_fiat, SellUSDTStates.awaiting_network),
    (SellUSDTStates.awaiting_network, SellUSDTStates.awaiting_payment_method),
    (SellUSDTStates.awaiting_payment_method, SellUSDTStates.awaiting_bank_region),
    (SellUSDTStates.awaiting_payment_method, SellUSDTStates.awaiting_payment_details),
    (SellUSDTStates.awaiting_bank_region, SellUSDTStates.awaiting_payment_details),
    (SellUSDTStates.awaiting_payment_details, SellUSDTStates.awaiting_amount),
    (SellUSDTStates.awaiting_amount, SellUSDTStates.awaiting_confirmation),
    (WalletWithdrawStates.awaiting_amount, WalletWithdrawStates.awaiting_address),
    (AdminStates.awaiting_method_name, AdminStates.awaiting_method_details),
)

# Все шаги мастера продажи
SELL_STATES: FrozenSet[str] = frozenset(s.state for s in SellUSDTStates.__all_states__)

# Состояния, с которых начинается сценарий
ENTRY_STATES: FrozenSet[str] = frozenset({
    SellUSDTStates.awaiting_fiat.state,
    ReferralWithdrawStates.awaiting_address.state,
    WalletWithdrawStates.awaiting_amount.state,
    SupportStates.awaiting_message.state,
    AdminStates.awaiting_ticket_reply.state,
    AdminStates.awaiting_method_name.state,
})


class IllegalTransition(RuntimeError):
    def __init__(self, current: Optional[str], target: str):
        self.current = current
        self.target = target
        super().__init__(f"Transition {current} -> {target} is not allowed")


async def begin_flow(state: FSMContext, entry: State, **data) -> None:
    """Начинает сценарий с чистого листа"""
    if entry.state not in ENTRY_STATES:
        raise IllegalTransition(None, entry.state)
    await state.set_state(entry)
    await state.set_data({STARTED_AT_KEY: time.time(), **data})


async def advance(state: FSMContext, target: State, **data) -> None:
    """Переход внутри сценария по таблице TRANSITIONS"""
    current = await state.get_state()
    if target.state not in TRANSITIONS.get(current, frozenset()):
        raise IllegalTransition(current, target.state)
    if data:
        await state.update_data(**data)
    await state.set_state(target)


def is_expired(data: Dict, ttl_seconds: int, now: Optional[float] = None) -> bool:
    """Истекло ли состояние диалога (ttl_seconds <= 0 - никогда)"""
    if ttl_seconds <= 0:
        return False
    started_at = data.get(STARTED_AT_KEY)
    if started_at is None:
        return False
    return (now or time.time()) - started_at > ttl_seconds
