"""
Леджер: пользователи, реферальные начисления, кошельки, заявки на вывод, тикеты

Все проверки инвариантов живут здесь, а не в хранилище:
- referred_by задается один раз и не может указывать на самого пользователя
- балансы неотрицательны
- сумма вывода из кошелька списывается (эскроу) в момент создания заявки
  и возвращается только при отклонении
- статус заявки меняется только из PENDING (compare-and-set)

Операции вида "проверить, затем изменить" выполняются под asyncio.Lock,
привязанным к id пользователя.
"""

import logging
import random
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

from usdtbot.models import (
    UserRecord,
    WithdrawalRequest,
    WithdrawalKind,
    WithdrawalStatus,
    SupportTicket,
    TicketStatus,
)
from usdtbot.repository import LedgerRepository
from usdtbot.utils.locks import UserLocks
from usdtbot.utils.logger import log_withdrawal_event, log_user_action

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
TICKET_ID_RANGE = (1000, 9999)

T = TypeVar("T")


class LedgerError(Exception):
    """Базовая ошибка леджера"""


class InsufficientFunds(LedgerError):
    def __init__(self, available: Decimal, requested: Decimal):
        self.available = available
        self.requested = requested
        super().__init__(f"Insufficient funds: available={available}, requested={requested}")


class NotEligible(LedgerError):
    def __init__(self, earnings: Decimal, minimum: Decimal):
        self.earnings = earnings
        self.minimum = minimum
        super().__init__(f"Referral earnings {earnings} below minimum {minimum}")


class UnsupportedCurrency(LedgerError):
    pass


class ReferralRejectionPolicy(str, Enum):
    """Что происходит с реферальным заработком при отклонении заявки"""
    FORFEIT = "forfeit"   # заработок сгорает в момент подачи заявки
    RESTORE = "restore"   # заработок возвращается пользователю


@dataclass
class FirstContact:
    user: UserRecord
    referrer_id: Optional[int] = None
    referrer_earnings: Optional[Decimal] = None

    @property
    def referral_credited(self) -> bool:
        return self.referrer_id is not None


def _next_after(items: Sequence[T], after_id: Optional[int]) -> Optional[T]:
    """Следующий элемент после after_id по порядку списка (с переходом в начало)"""
    if not items:
        return None
    if after_id is not None:
        ids = [item.id for item in items]
        if after_id in ids:
            return items[(ids.index(after_id) + 1) % len(items)]
    return items[0]


class Ledger:
    def __init__(
        self,
        repository: LedgerRepository,
        wallet_currencies: Iterable[str] = ("USDT", "BTC", "ETH"),
        referral_rejection_policy: ReferralRejectionPolicy = ReferralRejectionPolicy.FORFEIT,
    ):
        self.repository = repository
        self.wallet_currencies = tuple(wallet_currencies)
        self.referral_rejection_policy = ReferralRejectionPolicy(referral_rejection_policy)
        self._locks = UserLocks()

    def user_lock(self, user_id: int):
        return self._locks.hold(user_id)

    # ------------------------------------------------------------------
    # Пользователи
    # ------------------------------------------------------------------

    async def get_user(self, user_id: int) -> Optional[UserRecord]:
        return await self.repository.get_user(user_id)

    async def ensure_user(self, user_id: int, display_name: Optional[str] = None) -> UserRecord:
        user = await self.repository.get_user(user_id)
        if user is None:
            user = await self.repository.create_user(user_id, display_name or "User")
        elif display_name and user.display_name != display_name:
            user.display_name = display_name
            await self.repository.save_profile(user)
        return user

    async def register_first_contact(
        self,
        user_id: int,
        display_name: str,
        referrer_id: Optional[int],
        bonus: Decimal,
    ) -> FirstContact:
        """
        Регистрация при /start с возможной привязкой к рефереру.

        Бонус начисляется только если пользователь ещё не зарегистрирован,
        реферер не он сам и referred_by ещё не задан. is_registered
        выставляется всегда, что и делает операцию идемпотентной.
        """
        async with self.user_lock(user_id):
            user = await self.ensure_user(user_id, display_name)
            result = FirstContact(user=user)

            if (
                referrer_id is not None
                and referrer_id != user_id
                and not user.is_registered
                and user.referred_by is None
            ):
                await self.ensure_user(referrer_id)
                user.referred_by = referrer_id
                result.referrer_id = referrer_id
                result.referrer_earnings = await self.repository.adjust_referral_earnings(referrer_id, bonus)
                log_user_action(logger, referrer_id, "referral bonus credited", referred=user_id, bonus=bonus)

            user.is_registered = True
            await self.repository.save_profile(user)
            return result

    async def list_users(self) -> List[UserRecord]:
        return await self.repository.list_users()

    async def stats(self) -> Dict[str, object]:
        users = await self.repository.list_users()
        pending = await self.repository.list_withdrawals(WithdrawalStatus.PENDING)
        tickets = await self.repository.list_tickets(TicketStatus.OPEN)
        return {
            "total_users": len(users),
            "total_referral_earnings": sum((u.referral_earnings for u in users), ZERO),
            "pending_withdrawals": len(pending),
            "open_tickets": len(tickets),
        }

    # ------------------------------------------------------------------
    # Кошелек
    # ------------------------------------------------------------------

    def _check_currency(self, currency: str) -> str:
        currency = currency.upper()
        if currency not in self.wallet_currencies:
            raise UnsupportedCurrency(currency)
        return currency

    async def credit_wallet(self, user_id: int, currency: str, amount: Decimal) -> Decimal:
        currency = self._check_currency(currency)
        if amount <= ZERO:
            raise ValueError("Credit amount must be positive")
        async with self.user_lock(user_id):
            await self.ensure_user(user_id)
            balance = await self.repository.adjust_wallet(user_id, currency, amount)
        log_user_action(logger, user_id, "wallet credited", currency=currency, amount=amount, balance=balance)
        return balance

    async def file_wallet_withdrawal(
        self, user_id: int, currency: str, amount: Decimal, address: str
    ) -> WithdrawalRequest:
        """Списывает сумму с кошелька (эскроу) и создает заявку PENDING одной операцией хранилища"""
        currency = self._check_currency(currency)
        if amount <= ZERO:
            raise ValueError("Withdrawal amount must be positive")

        async with self.user_lock(user_id):
            user = await self.repository.get_user(user_id)
            available = user.balance(currency) if user else ZERO
            if amount > available:
                raise InsufficientFunds(available, amount)
            request = await self.repository.add_escrowed_withdrawal(
                user_id, WithdrawalKind.WALLET, currency, amount, address
            )
            if request is None:
                # Баланс успел измениться в другом процессе
                user = await self.repository.get_user(user_id)
                raise InsufficientFunds(user.balance(currency) if user else ZERO, amount)

        log_withdrawal_event(logger, request.id, "filed", kind=request.kind.value, user=user_id, amount=amount, currency=currency)
        return request

    # ------------------------------------------------------------------
    # Реферальный вывод
    # ------------------------------------------------------------------

    async def file_referral_withdrawal(
        self,
        user_id: int,
        address: str,
        minimum: Decimal,
        on_filed: Callable[[WithdrawalRequest], Awaitable[bool]],
    ) -> Optional[WithdrawalRequest]:
        """
        Создает заявку на весь текущий реферальный заработок.

        Заработок списывается вместе с созданием заявки. on_filed уведомляет
        администратора; если уведомление не доставлено, заявка аннулируется
        (REJECTED) с возвратом заработка и возвращается None.
        """
        async with self.user_lock(user_id):
            user = await self.repository.get_user(user_id)
            earnings = user.referral_earnings if user else ZERO
            if earnings <= ZERO or earnings < minimum:
                raise NotEligible(earnings, minimum)

            request = await self.repository.add_escrowed_withdrawal(
                user_id, WithdrawalKind.REFERRAL, "USDT", earnings, address
            )
            if request is None:
                user = await self.repository.get_user(user_id)
                raise NotEligible(user.referral_earnings if user else ZERO, minimum)

            try:
                delivered = await on_filed(request)
            except Exception:
                await self.repository.reject_withdrawal(request.id, refund=True)
                raise
            if not delivered:
                await self.repository.reject_withdrawal(request.id, refund=True)
                log_withdrawal_event(logger, request.id, "voided, admin not notified", user=user_id)
                return None

        log_withdrawal_event(logger, request.id, "filed", kind=request.kind.value, user=user_id, amount=earnings)
        return request

    # ------------------------------------------------------------------
    # Решения по заявкам
    # ------------------------------------------------------------------

    async def get_withdrawal(self, request_id: int) -> Optional[WithdrawalRequest]:
        return await self.repository.get_withdrawal(request_id)

    async def list_withdrawals(self, status: Optional[WithdrawalStatus] = None) -> List[WithdrawalRequest]:
        return await self.repository.list_withdrawals(status)

    async def next_pending_withdrawal(self, after_id: Optional[int] = None) -> Optional[WithdrawalRequest]:
        pending = await self.repository.list_withdrawals(WithdrawalStatus.PENDING)
        return _next_after(pending, after_id)

    async def approve_withdrawal(self, request_id: int) -> Optional[WithdrawalRequest]:
        """PENDING -> APPROVED. Балансы не меняются: средства уже списаны."""
        request = await self.repository.transition_withdrawal(
            request_id, WithdrawalStatus.PENDING, WithdrawalStatus.APPROVED
        )
        if request:
            log_withdrawal_event(logger, request_id, "approved", user=request.user_id)
        return request

    async def reject_withdrawal(self, request_id: int) -> Optional[WithdrawalRequest]:
        """PENDING -> REJECTED с возвратом эскроу для заявок из кошелька"""
        request = await self.repository.get_withdrawal(request_id)
        if request is None:
            return None
        refund = (
            request.kind == WithdrawalKind.WALLET
            or self.referral_rejection_policy == ReferralRejectionPolicy.RESTORE
        )

        request = await self.repository.reject_withdrawal(request_id, refund=refund)
        if request is None:
            return None

        if request.kind == WithdrawalKind.WALLET:
            log_withdrawal_event(logger, request_id, "rejected, escrow refunded", user=request.user_id, amount=request.amount)
        elif refund:
            log_withdrawal_event(logger, request_id, "rejected, earnings restored", user=request.user_id, amount=request.amount)
        else:
            log_withdrawal_event(logger, request_id, "rejected, earnings forfeited", user=request.user_id, amount=request.amount)
        return request

    # ------------------------------------------------------------------
    # Тикеты
    # ------------------------------------------------------------------

    async def open_ticket(self, user_id: int, message: str) -> SupportTicket:
        await self.ensure_user(user_id)
        while True:
            ticket = await self.repository.add_ticket(random.randint(*TICKET_ID_RANGE), user_id, message)
            if ticket is not None:
                log_user_action(logger, user_id, "support ticket opened", ticket=ticket.id)
                return ticket

    async def get_ticket(self, ticket_id: int) -> Optional[SupportTicket]:
        return await self.repository.get_ticket(ticket_id)

    async def list_tickets(self, status: Optional[TicketStatus] = None) -> List[SupportTicket]:
        return await self.repository.list_tickets(status)

    async def next_open_ticket(self, after_id: Optional[int] = None) -> Optional[SupportTicket]:
        tickets = await self.repository.list_tickets(TicketStatus.OPEN)
        return _next_after(tickets, after_id)

    async def resolve_ticket(self, ticket_id: int) -> Optional[SupportTicket]:
        ticket = await self.repository.transition_ticket(ticket_id, TicketStatus.OPEN, TicketStatus.RESOLVED)
        if ticket:
            log_user_action(logger, ticket.user_id, "support ticket resolved", ticket=ticket_id)
        return ticket
