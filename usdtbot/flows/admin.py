"""
Админ-консоль

Доступна только одному администратору (ADMIN_CHAT_ID). Любая операция
сначала проверяет права и при отказе отправляет "Access Denied", не
обращаясь к леджеру. Каждая публичная операция возвращает AdminOutcome,
её же вызывает веб-админка.
"""

import logging
from enum import Enum
from typing import Optional

from aiogram.fsm.context import FSMContext
from aiogram.utils.markdown import hbold, hcode
from aiogram.utils.text_decorations import html_decoration

from usdtbot.callbacks import AdminMenuCallback, WithdrawalDecisionCallback, TicketActionCallback
from usdtbot.events import ButtonPress, Command, FreeText
from usdtbot.flows.engine import Flow
from usdtbot.flows.menu import get_datetime, fmt_usdt
from usdtbot.flows.sell_usdt import parse_amount
from usdtbot.flows.support import format_ticket
from usdtbot.flows.withdrawals import format_admin_request
from usdtbot.fsm import AdminStates, begin_flow, advance
from usdtbot.keyboards import (
    get_admin_menu_keyboard,
    get_withdrawal_review_keyboard,
    get_ticket_keyboard,
    get_payout_methods_keyboard,
    get_cancel_keyboard,
)
from usdtbot.models import WithdrawalKind, WithdrawalRequest, TicketStatus
from usdtbot.services.ledger import ReferralRejectionPolicy, UnsupportedCurrency

logger = logging.getLogger(__name__)

ACCESS_DENIED_TEXT = "🚫 Access Denied. This command is for administrators only."
CREDIT_USAGE = "Usage: /credit <user_id> <currency> <amount>"


class AdminOutcome(str, Enum):
    DONE = "done"
    DENIED = "denied"
    NOT_FOUND = "not_found"     # нет такой записи или она уже обработана
    EMPTY = "empty"             # очередь пуста
    INVALID = "invalid"         # некорректные аргументы команды


class AdminConsole(Flow):
    def commands(self):
        return {
            "admin": self._on_admin_command,
            "credit": self._on_credit_command,
        }

    def buttons(self):
        return {
            (None, AdminMenuCallback): self._on_menu_button,
            (None, WithdrawalDecisionCallback): self._on_withdrawal_button,
            (None, TicketActionCallback): self._on_ticket_button,
        }

    def steps(self):
        return {
            AdminStates.awaiting_ticket_reply.state: self._on_ticket_reply_text,
            AdminStates.awaiting_method_name.state: self._on_method_name_text,
            AdminStates.awaiting_method_details.state: self._on_method_details_text,
        }

    async def _authorize(self, user_id: int) -> bool:
        if self.config.is_admin(user_id):
            return True
        logger.warning(f"Access denied for user {user_id}")
        await self.send(user_id, ACCESS_DENIED_TEXT)
        return False

    # ------------------------------------------------------------------
    # Маршрутизация событий движка
    # ------------------------------------------------------------------

    async def _on_admin_command(self, event: Command, state: FSMContext) -> None:
        await self.panel(event.user_id)

    async def _on_credit_command(self, event: Command, state: FSMContext) -> None:
        await self.credit(event.user_id, event.args)

    async def _on_menu_button(self, event: ButtonPress, state: FSMContext) -> None:
        action = event.payload.action
        if action == "payouts":
            await self.show_pending(event.user_id)
        elif action == "tickets":
            await self.show_tickets(event.user_id)
        elif action == "rates":
            await self.refresh_rates(event.user_id)
        elif action == "methods":
            await self.show_payout_methods(event.user_id)
        elif action == "add_method":
            await self.begin_add_method(event.user_id, state)
        else:
            logger.debug(f"Unknown admin menu action {action!r}")

    async def _on_withdrawal_button(self, event: ButtonPress, state: FSMContext) -> None:
        payload = event.payload
        if payload.action == "approve":
            await self.approve(event.user_id, payload.request_id)
        elif payload.action == "reject":
            await self.reject(event.user_id, payload.request_id)
        elif payload.action == "skip":
            await self.skip(event.user_id, payload.request_id)
        else:
            logger.debug(f"Unknown withdrawal action {payload.action!r}")

    async def _on_ticket_button(self, event: ButtonPress, state: FSMContext) -> None:
        payload = event.payload
        if payload.action == "reply":
            await self.begin_ticket_reply(event.user_id, payload.ticket_id, state)
        elif payload.action == "resolve":
            await self.resolve_ticket(event.user_id, payload.ticket_id)
        elif payload.action == "skip":
            await self.show_tickets(event.user_id, after_id=payload.ticket_id)
        else:
            logger.debug(f"Unknown ticket action {payload.action!r}")

    async def _on_ticket_reply_text(self, event: FreeText, state: FSMContext) -> None:
        await self.relay_ticket_reply(event.user_id, event.text, state)

    async def _on_method_name_text(self, event: FreeText, state: FSMContext) -> None:
        await self.capture_method_name(event.user_id, event.text, state)

    async def _on_method_details_text(self, event: FreeText, state: FSMContext) -> None:
        await self.capture_method_details(event.user_id, event.text, state)

    # ------------------------------------------------------------------
    # Панель
    # ------------------------------------------------------------------

    async def panel(self, admin_id: int) -> AdminOutcome:
        if not await self._authorize(admin_id):
            return AdminOutcome.DENIED

        stats = await self.ledger.stats()
        await self.send(
            admin_id,
            f"👑 {hbold(f'Admin Panel - {get_datetime()}')}\n\n"
            f"{hbold('System Statistics')}\n"
            f"{hbold('Total Registered Users:')} {stats['total_users']}\n"
            f"{hbold('Outstanding Referral Earnings:')} {fmt_usdt(stats['total_referral_earnings'])}\n"
            f"{hbold('Pending Withdrawals:')} {stats['pending_withdrawals']}\n"
            f"{hbold('Open Tickets:')} {stats['open_tickets']}\n\n"
            f"Welcome, Administrator. Select an action:",
            reply_markup=get_admin_menu_keyboard(),
        )
        return AdminOutcome.DONE

    # ------------------------------------------------------------------
    # Заявки на вывод
    # ------------------------------------------------------------------

    async def show_pending(self, admin_id: int, after_id: Optional[int] = None) -> AdminOutcome:
        """Одна заявка PENDING за раз, самая старая (или следующая после after_id)"""
        if not await self._authorize(admin_id):
            return AdminOutcome.DENIED

        request = await self.ledger.next_pending_withdrawal(after_id)
        if request is None:
            await self.send(admin_id, "✅ No pending withdrawal requests.")
            return AdminOutcome.EMPTY

        owner = await self.ledger.get_user(request.user_id)
        await self.send(
            admin_id,
            format_admin_request(request, owner.display_name if owner else ""),
            reply_markup=get_withdrawal_review_keyboard(request.id),
        )
        return AdminOutcome.DONE

    async def skip(self, admin_id: int, request_id: int) -> AdminOutcome:
        return await self.show_pending(admin_id, after_id=request_id)

    async def approve(self, admin_id: int, request_id: int, show_next: bool = True) -> AdminOutcome:
        return await self.decide_withdrawal(admin_id, request_id, approve=True, show_next=show_next)

    async def reject(self, admin_id: int, request_id: int, show_next: bool = True) -> AdminOutcome:
        return await self.decide_withdrawal(admin_id, request_id, approve=False, show_next=show_next)

    async def decide_withdrawal(
        self, admin_id: int, request_id: int, approve: bool, show_next: bool = True
    ) -> AdminOutcome:
        if not await self._authorize(admin_id):
            return AdminOutcome.DENIED

        if approve:
            request = await self.ledger.approve_withdrawal(request_id)
        else:
            request = await self.ledger.reject_withdrawal(request_id)

        if request is None:
            await self.send(admin_id, f"⚠️ Request #{request_id} not found or already processed.")
            return AdminOutcome.NOT_FOUND

        if approve:
            await self.send(
                request.user_id,
                f"✅ Your withdrawal request #{request.id} for {hbold(f'{request.amount} {request.currency}')} "
                f"has been approved. Funds are on their way to {hcode(request.destination_address)}.",
            )
            await self.send(admin_id, f"✅ Request #{request.id} approved.")
        else:
            await self.send(request.user_id, self._rejection_text(request))
            await self.send(admin_id, f"❌ Request #{request.id} rejected.")

        if show_next:
            await self.show_pending(admin_id)
        return AdminOutcome.DONE

    def _rejection_text(self, request: WithdrawalRequest) -> str:
        text = (
            f"❌ Your withdrawal request #{request.id} for "
            f"{hbold(f'{request.amount} {request.currency}')} has been rejected."
        )
        if request.kind == WithdrawalKind.WALLET:
            return text + " The amount has been returned to your wallet."
        if self.ledger.referral_rejection_policy == ReferralRejectionPolicy.RESTORE:
            return text + " The amount has been returned to your referral balance."
        return text + " Please contact support for details."

    # ------------------------------------------------------------------
    # Тикеты
    # ------------------------------------------------------------------

    async def show_tickets(self, admin_id: int, after_id: Optional[int] = None) -> AdminOutcome:
        if not await self._authorize(admin_id):
            return AdminOutcome.DENIED

        ticket = await self.ledger.next_open_ticket(after_id)
        if ticket is None:
            await self.send(admin_id, "✅ No open support tickets.")
            return AdminOutcome.EMPTY

        owner = await self.ledger.get_user(ticket.user_id)
        await self.send(
            admin_id,
            format_ticket(ticket, owner.display_name if owner else ""),
            reply_markup=get_ticket_keyboard(ticket.id),
        )
        return AdminOutcome.DONE

    async def begin_ticket_reply(self, admin_id: int, ticket_id: int, state: FSMContext) -> AdminOutcome:
        if not await self._authorize(admin_id):
            return AdminOutcome.DENIED

        ticket = await self.ledger.get_ticket(ticket_id)
        if ticket is None or ticket.status != TicketStatus.OPEN:
            await self.send(admin_id, f"⚠️ Ticket #{ticket_id} not found or already resolved.")
            return AdminOutcome.NOT_FOUND

        await begin_flow(state, AdminStates.awaiting_ticket_reply, ticket_id=ticket_id)
        await self.send(
            admin_id,
            f"💬 Send your reply to ticket #{ticket_id} in a single message.",
            reply_markup=get_cancel_keyboard(),
        )
        return AdminOutcome.DONE

    async def relay_ticket_reply(self, admin_id: int, text: str, state: FSMContext) -> AdminOutcome:
        """Пересылает следующее сообщение администратора владельцу тикета"""
        if not await self._authorize(admin_id):
            await state.clear()
            return AdminOutcome.DENIED

        data = await state.get_data()
        ticket_id = data.get("ticket_id")
        await state.clear()

        ticket = await self.ledger.get_ticket(ticket_id) if ticket_id is not None else None
        if ticket is None or ticket.status != TicketStatus.OPEN:
            await self.send(admin_id, f"⚠️ Ticket #{ticket_id} not found or already resolved.")
            return AdminOutcome.NOT_FOUND

        delivered = await self.send(
            ticket.user_id,
            f"💬 {hbold(f'Support reply (ticket #{ticket.id})')}\n\n{html_decoration.quote(text)}",
        )
        if delivered:
            await self.send(admin_id, f"✅ Reply sent to user {hcode(ticket.user_id)}.")
        else:
            await self.send(admin_id, f"❌ Failed to deliver the reply to user {hcode(ticket.user_id)}.")
        return AdminOutcome.DONE

    async def resolve_ticket(self, admin_id: int, ticket_id: int, show_next: bool = True) -> AdminOutcome:
        if not await self._authorize(admin_id):
            return AdminOutcome.DENIED

        ticket = await self.ledger.resolve_ticket(ticket_id)
        if ticket is None:
            await self.send(admin_id, f"⚠️ Ticket #{ticket_id} not found or already resolved.")
            return AdminOutcome.NOT_FOUND

        await self.send(ticket.user_id, f"✅ Your support ticket #{ticket.id} has been resolved.")
        await self.send(admin_id, f"✅ Ticket #{ticket.id} resolved.")
        if show_next:
            await self.show_tickets(admin_id)
        return AdminOutcome.DONE

    # ------------------------------------------------------------------
    # Курсы
    # ------------------------------------------------------------------

    async def refresh_rates(self, admin_id: int) -> AdminOutcome:
        if not await self._authorize(admin_id):
            return AdminOutcome.DENIED

        snapshot = await self.engine.rates.refresh()
        lines = "\n".join(f"{fiat}: {rate}" for fiat, rate in snapshot.rates.items())
        await self.send(admin_id, f"✅ Rates refreshed! New rates:\n{lines}")
        return AdminOutcome.DONE

    # ------------------------------------------------------------------
    # Справочник способов выплаты
    # ------------------------------------------------------------------

    async def show_payout_methods(self, admin_id: int) -> AdminOutcome:
        if not await self._authorize(admin_id):
            return AdminOutcome.DENIED

        methods = self.engine.payout_methods.list()
        if methods:
            body = "\n".join(f"• {hbold(name)}: {hcode(details)}" for name, details in methods)
        else:
            body = "No payout methods configured yet."
        await self.send(
            admin_id,
            f"💳 {hbold('Payout Methods')}\n\n{body}",
            reply_markup=get_payout_methods_keyboard(),
        )
        return AdminOutcome.DONE

    async def begin_add_method(self, admin_id: int, state: FSMContext) -> AdminOutcome:
        if not await self._authorize(admin_id):
            return AdminOutcome.DENIED

        await begin_flow(state, AdminStates.awaiting_method_name)
        await self.send(admin_id, "Enter the name of the new payout method:", reply_markup=get_cancel_keyboard())
        return AdminOutcome.DONE

    async def capture_method_name(self, admin_id: int, text: str, state: FSMContext) -> AdminOutcome:
        if not await self._authorize(admin_id):
            await state.clear()
            return AdminOutcome.DENIED

        name = text.strip()
        if not name:
            await self.send(admin_id, "⚠️ The name must not be empty. Please try again.")
            return AdminOutcome.INVALID

        await advance(state, AdminStates.awaiting_method_details, method_name=name)
        await self.send(
            admin_id,
            f"Enter the settlement details for {hbold(name)}:",
            reply_markup=get_cancel_keyboard(),
        )
        return AdminOutcome.DONE

    async def capture_method_details(self, admin_id: int, text: str, state: FSMContext) -> AdminOutcome:
        if not await self._authorize(admin_id):
            await state.clear()
            return AdminOutcome.DENIED

        details = text.strip()
        if not details:
            await self.send(admin_id, "⚠️ The details must not be empty. Please try again.")
            return AdminOutcome.INVALID

        data = await state.get_data()
        name = data["method_name"]
        self.engine.payout_methods.set(name, details)
        await state.clear()
        await self.send(admin_id, f"✅ Payout method {hbold(name)} saved.")
        return await self.show_payout_methods(admin_id)

    # ------------------------------------------------------------------
    # Пополнение кошелька
    # ------------------------------------------------------------------

    async def credit(self, admin_id: int, args: str) -> AdminOutcome:
        """/credit <user_id> <currency> <amount>"""
        if not await self._authorize(admin_id):
            return AdminOutcome.DENIED

        parts = args.split()
        if len(parts) != 3 or not parts[0].isdigit():
            await self.send(admin_id, CREDIT_USAGE)
            return AdminOutcome.INVALID

        user_id, currency = int(parts[0]), parts[1].upper()
        amount = parse_amount(parts[2])
        if amount is None or amount <= 0:
            await self.send(admin_id, f"⚠️ Invalid amount. {CREDIT_USAGE}")
            return AdminOutcome.INVALID

        try:
            balance = await self.ledger.credit_wallet(user_id, currency, amount)
        except UnsupportedCurrency:
            supported = ", ".join(self.ledger.wallet_currencies)
            await self.send(admin_id, f"⚠️ Unsupported currency {currency}. Supported: {supported}.")
            return AdminOutcome.INVALID

        await self.send(
            user_id,
            f"💰 Your wallet has been credited with {hbold(f'{amount} {currency}')}. "
            f"New balance: {hbold(f'{balance} {currency}')}.",
        )
        await self.send(admin_id, f"✅ Credited {amount} {currency} to {hcode(user_id)}. New balance: {balance} {currency}.")
        return AdminOutcome.DONE
