"""
Хранилище записей леджера

LedgerRepository - контракт таблиц users / withdrawal_requests / support_tickets.
Реализации обязаны делать атомарными изменения балансов (дельтой),
списание вместе с созданием заявки, отказ вместе с возвратом и
переходы статусов (compare-and-set). Бизнес-инварианты проверяет
services.ledger.Ledger, а не хранилище.
"""

import copy
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from usdtbot.models import (
    UserRecord,
    WithdrawalRequest,
    WithdrawalKind,
    WithdrawalStatus,
    SupportTicket,
    TicketStatus,
)


class LedgerRepository(ABC):
    """Абстрактное хранилище леджера"""

    # --- Пользователи ---
    @abstractmethod
    async def get_user(self, user_id: int) -> Optional[UserRecord]:
        ...

    @abstractmethod
    async def create_user(self, user_id: int, display_name: str) -> UserRecord:
        """Создает запись, если её нет; возвращает актуальную запись"""

    @abstractmethod
    async def save_profile(self, user: UserRecord) -> None:
        """Сохраняет display_name, is_registered, referred_by (без балансов)"""

    @abstractmethod
    async def list_users(self) -> List[UserRecord]:
        ...

    @abstractmethod
    async def adjust_referral_earnings(self, user_id: int, delta: Decimal) -> Decimal:
        """Атомарно прибавляет delta, возвращает новое значение"""

    @abstractmethod
    async def adjust_wallet(self, user_id: int, currency: str, delta: Decimal) -> Decimal:
        """Атомарно прибавляет delta к балансу валюты, возвращает новое значение"""

    # --- Заявки на вывод ---
    @abstractmethod
    async def add_escrowed_withdrawal(
        self,
        user_id: int,
        kind: WithdrawalKind,
        currency: str,
        amount: Decimal,
        destination_address: str,
    ) -> Optional[WithdrawalRequest]:
        """
        Одной атомарной операцией списывает amount с источника заявки
        (кошелек для WALLET, реферальный заработок для REFERRAL) и создает
        заявку PENDING. None, если на источнике меньше amount.
        """

    @abstractmethod
    async def get_withdrawal(self, request_id: int) -> Optional[WithdrawalRequest]:
        ...

    @abstractmethod
    async def list_withdrawals(self, status: Optional[WithdrawalStatus] = None) -> List[WithdrawalRequest]:
        """Заявки в порядке создания (по возрастанию id)"""

    @abstractmethod
    async def transition_withdrawal(
        self, request_id: int, expected: WithdrawalStatus, new: WithdrawalStatus
    ) -> Optional[WithdrawalRequest]:
        """Меняет статус только если текущий равен expected, иначе None"""

    @abstractmethod
    async def reject_withdrawal(self, request_id: int, refund: bool) -> Optional[WithdrawalRequest]:
        """
        PENDING -> REJECTED и, если refund, возврат суммы на источник заявки.
        Обе части выполняются вместе или не выполняются вовсе.
        """

    # --- Тикеты поддержки ---
    @abstractmethod
    async def add_ticket(self, ticket_id: int, user_id: int, message: str) -> Optional[SupportTicket]:
        """None, если id уже занят"""

    @abstractmethod
    async def get_ticket(self, ticket_id: int) -> Optional[SupportTicket]:
        ...

    @abstractmethod
    async def list_tickets(self, status: Optional[TicketStatus] = None) -> List[SupportTicket]:
        ...

    @abstractmethod
    async def transition_ticket(
        self, ticket_id: int, expected: TicketStatus, new: TicketStatus
    ) -> Optional[SupportTicket]:
        ...


class InMemoryLedgerRepository(LedgerRepository):
    """Хранилище в памяти процесса. Наружу отдаются только копии записей."""

    def __init__(self):
        self._users: Dict[int, UserRecord] = {}
        self._withdrawals: Dict[int, WithdrawalRequest] = {}
        self._tickets: Dict[int, SupportTicket] = {}
        self._next_withdrawal_id = 1

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    async def get_user(self, user_id):
        user = self._users.get(user_id)
        return copy.deepcopy(user) if user else None

    async def create_user(self, user_id, display_name):
        if user_id not in self._users:
            self._users[user_id] = UserRecord(id=user_id, display_name=display_name, created_at=self._now())
        return copy.deepcopy(self._users[user_id])

    async def save_profile(self, user):
        stored = self._users.get(user.id)
        if stored is None:
            raise KeyError(user.id)
        stored.display_name = user.display_name
        stored.is_registered = user.is_registered
        stored.referred_by = user.referred_by

    async def list_users(self):
        return [copy.deepcopy(u) for u in self._users.values()]

    async def adjust_referral_earnings(self, user_id, delta):
        user = self._users[user_id]
        user.referral_earnings += delta
        return user.referral_earnings

    async def adjust_wallet(self, user_id, currency, delta):
        user = self._users[user_id]
        user.wallet[currency] = user.wallet.get(currency, Decimal("0")) + delta
        return user.wallet[currency]

    def _move(self, user: UserRecord, kind: WithdrawalKind, currency: str, delta: Decimal) -> None:
        if kind == WithdrawalKind.WALLET:
            user.wallet[currency] = user.wallet.get(currency, Decimal("0")) + delta
        else:
            user.referral_earnings += delta

    async def add_escrowed_withdrawal(self, user_id, kind, currency, amount, destination_address):
        # Между проверкой и записью нет await, поэтому операция атомарна
        user = self._users.get(user_id)
        if user is None:
            return None
        available = user.wallet.get(currency, Decimal("0")) if kind == WithdrawalKind.WALLET else user.referral_earnings
        if amount > available:
            return None

        request = WithdrawalRequest(
            id=self._next_withdrawal_id,
            user_id=user_id,
            kind=kind,
            currency=currency,
            amount=amount,
            destination_address=destination_address,
            created_at=self._now(),
        )
        self._move(user, kind, currency, -amount)
        self._withdrawals[request.id] = request
        self._next_withdrawal_id += 1
        return copy.deepcopy(request)

    async def get_withdrawal(self, request_id):
        request = self._withdrawals.get(request_id)
        return copy.deepcopy(request) if request else None

    async def list_withdrawals(self, status=None):
        return [
            copy.deepcopy(r)
            for r in sorted(self._withdrawals.values(), key=lambda r: r.id)
            if status is None or r.status == status
        ]

    async def transition_withdrawal(self, request_id, expected, new):
        request = self._withdrawals.get(request_id)
        if request is None or request.status != expected:
            return None
        request.status = new
        return copy.deepcopy(request)

    async def reject_withdrawal(self, request_id, refund):
        request = self._withdrawals.get(request_id)
        if request is None or request.status != WithdrawalStatus.PENDING:
            return None
        if refund:
            self._move(self._users[request.user_id], request.kind, request.currency, request.amount)
        request.status = WithdrawalStatus.REJECTED
        return copy.deepcopy(request)

    async def add_ticket(self, ticket_id, user_id, message):
        if ticket_id in self._tickets:
            return None
        ticket = SupportTicket(id=ticket_id, user_id=user_id, message=message, created_at=self._now())
        self._tickets[ticket_id] = ticket
        return copy.deepcopy(ticket)

    async def get_ticket(self, ticket_id):
        ticket = self._tickets.get(ticket_id)
        return copy.deepcopy(ticket) if ticket else None

    async def list_tickets(self, status=None):
        return [
            copy.deepcopy(t)
            for t in sorted(self._tickets.values(), key=lambda t: (t.created_at, t.id))
            if status is None or t.status == status
        ]

    async def transition_ticket(self, ticket_id, expected, new):
        ticket = self._tickets.get(ticket_id)
        if ticket is None or ticket.status != expected:
            return None
        ticket.status = new
        return copy.deepcopy(ticket)
