"""Обращения в поддержку: одно сообщение пользователя -> тикет для администратора"""

import logging

from aiogram.fsm.context import FSMContext
from aiogram.utils.markdown import hbold, hcode
from aiogram.utils.text_decorations import html_decoration

from usdtbot.events import Command, FreeText
from usdtbot.flows.engine import Flow
from usdtbot.fsm import SupportStates, begin_flow
from usdtbot.keyboards import get_cancel_keyboard, get_ticket_keyboard
from usdtbot.models import SupportTicket

logger = logging.getLogger(__name__)


def format_ticket(ticket: SupportTicket, display_name: str = "") -> str:
    user_line = f"{html_decoration.quote(display_name)} ({hcode(ticket.user_id)})" if display_name else hcode(ticket.user_id)
    return (
        f"🆘 {hbold(f'SUPPORT TICKET #{ticket.id}')}\n"
        f"{hbold('User:')} {user_line}\n"
        f"{hbold('Status:')} {ticket.status.value.upper()}\n\n"
        f"{hcode(ticket.message)}"
    )


class SupportFlow(Flow):
    def commands(self):
        return {"support": self.start}

    def steps(self):
        return {SupportStates.awaiting_message.state: self.capture_message}

    async def start(self, event: Command, state: FSMContext) -> None:
        await begin_flow(state, SupportStates.awaiting_message)
        await self.send(
            event.user_id,
            f"🆘 {hbold('Support')}\n\nDescribe your problem in a single message and the administrator will get back to you.",
            reply_markup=get_cancel_keyboard(),
        )

    async def capture_message(self, event: FreeText, state: FSMContext) -> None:
        message = event.text.strip()
        if not message:
            await self.send(event.user_id, "⚠️ The message must not be empty. Please try again.")
            return

        ticket = await self.ledger.open_ticket(event.user_id, message)
        await state.clear()
        await self.send(
            event.user_id,
            f"✅ Your ticket {hbold(f'#{ticket.id}')} has been created. We will reply here as soon as possible.",
        )
        delivered = await self.send(
            self.config.ADMIN_CHAT_ID,
            format_ticket(ticket, event.display_name),
            reply_markup=get_ticket_keyboard(ticket.id),
        )
        if not delivered:
            logger.warning(f"Admin was not notified about ticket #{ticket.id}")
