"""
Вывод средств: реферальный заработок и баланс кошелька
"""

import logging
from decimal import Decimal

from aiogram.fsm.context import FSMContext
from aiogram.utils.markdown import hbold, hcode
from aiogram.utils.text_decorations import html_decoration

from usdtbot.callbacks import ReferralWithdrawCallback, WalletWithdrawCallback
from usdtbot.events import ButtonPress, Event, FreeText
from usdtbot.flows.engine import Flow
from usdtbot.flows.menu import fmt_usdt
from usdtbot.flows.sell_usdt import parse_amount
from usdtbot.fsm import ReferralWithdrawStates, WalletWithdrawStates, begin_flow, advance
from usdtbot.keyboards import get_cancel_keyboard, get_withdrawal_review_keyboard
from usdtbot.models import WithdrawalRequest, WithdrawalKind
from usdtbot.services.ledger import InsufficientFunds, NotEligible

logger = logging.getLogger(__name__)


def format_admin_request(request: WithdrawalRequest, display_name: str = "") -> str:
    """Карточка заявки для администратора"""
    title = "REFERRAL WITHDRAWAL REQUEST" if request.kind == WithdrawalKind.REFERRAL else "WALLET WITHDRAWAL REQUEST"
    user_line = f"{html_decoration.quote(display_name)} ({hcode(request.user_id)})" if display_name else hcode(request.user_id)
    return (
        f"💸 {hbold(title)} #{request.id}\n"
        f"{hbold('User:')} {user_line}\n"
        f"{hbold('Amount:')} {hbold(f'{request.amount} {request.currency}')}\n"
        f"{hbold('Wallet Address:')} {hcode(request.destination_address)}\n"
        f"{hbold('Status:')} {request.status.value.upper()}"
    )


class WithdrawalFlow(Flow):
    def commands(self):
        return {"withdrawref": self.start_referral}

    def buttons(self):
        return {
            (None, ReferralWithdrawCallback): self.start_referral,
            (None, WalletWithdrawCallback): self.start_wallet,
        }

    def steps(self):
        return {
            ReferralWithdrawStates.awaiting_address.state: self.referral_address,
            WalletWithdrawStates.awaiting_amount.state: self.wallet_amount,
            WalletWithdrawStates.awaiting_address.state: self.wallet_address,
        }

    def _address_is_plausible(self, address: str) -> bool:
        return len(address) >= self.config.MIN_ADDRESS_LENGTH

    async def _notify_admin(self, request: WithdrawalRequest, display_name: str) -> bool:
        return await self.send(
            self.config.ADMIN_CHAT_ID,
            format_admin_request(request, display_name),
            reply_markup=get_withdrawal_review_keyboard(request.id, with_skip=False),
        )

    # ------------------------------------------------------------------
    # Реферальный вывод
    # ------------------------------------------------------------------

    async def start_referral(self, event: Event, state: FSMContext) -> None:
        user = await self.ledger.ensure_user(event.user_id)
        earnings = user.referral_earnings
        minimum = self.config.MIN_WITHDRAW_REF

        if earnings <= 0 or earnings < minimum:
            await self.send(
                event.user_id,
                f"⚠️ You need at least {hbold(fmt_usdt(minimum))} to withdraw. "
                f"Your current balance is {hbold(fmt_usdt(earnings))}.",
            )
            return

        await begin_flow(state, ReferralWithdrawStates.awaiting_address, amount=str(earnings))
        await self.send(
            event.user_id,
            f"Great! You are eligible to withdraw {hbold(fmt_usdt(earnings))}.\n\n"
            f"Please provide your {hbold('USDT TRC20 wallet address')} where you would like to receive the funds.",
            reply_markup=get_cancel_keyboard(),
        )

    async def referral_address(self, event: FreeText, state: FSMContext) -> None:
        address = event.text.strip()
        if not self._address_is_plausible(address):
            await self.send(event.user_id, "⚠️ That doesn't look like a valid TRC20 wallet address. Please try again.")
            return

        async def notify(request: WithdrawalRequest) -> bool:
            return await self._notify_admin(request, event.display_name)

        try:
            request = await self.ledger.file_referral_withdrawal(
                event.user_id, address, self.config.MIN_WITHDRAW_REF, on_filed=notify
            )
        except NotEligible as e:
            await state.clear()
            await self.send(
                event.user_id,
                f"⚠️ You need at least {hbold(fmt_usdt(e.minimum))} to withdraw. "
                f"Your current balance is {hbold(fmt_usdt(e.earnings))}.",
            )
            return

        if request is None:
            # Администратор не получил заявку: заработок возвращен, можно повторить
            await self.send(
                event.user_id,
                "❌ An error occurred while submitting your withdrawal request. Please try again later.",
            )
            return

        await state.clear()
        await self.send(
            event.user_id,
            f"✅ Withdrawal request for {hbold(fmt_usdt(request.amount))} has been submitted to the admin.\n\n"
            f"Funds will be sent to your TRC20 address ({hcode(address)}) shortly. "
            f"Your referral balance is now {hbold(fmt_usdt(Decimal('0')))}.",
        )

    # ------------------------------------------------------------------
    # Вывод из кошелька
    # ------------------------------------------------------------------

    async def start_wallet(self, event: ButtonPress, state: FSMContext) -> None:
        currency = event.payload.currency.upper()
        if currency not in self.ledger.wallet_currencies:
            logger.debug(f"Unsupported wallet currency {currency!r} from {event.user_id}")
            return

        user = await self.ledger.ensure_user(event.user_id)
        balance = user.balance(currency)
        if balance <= 0:
            await self.send(event.user_id, f"⚠️ Your {currency} balance is empty.")
            return

        await begin_flow(state, WalletWithdrawStates.awaiting_amount, currency=currency)
        await self.send(
            event.user_id,
            f"Enter the amount of {currency} to withdraw.\n\nAvailable: {hbold(f'{balance} {currency}')}",
            reply_markup=get_cancel_keyboard(),
        )

    async def wallet_amount(self, event: FreeText, state: FSMContext) -> None:
        data = await state.get_data()
        currency = data["currency"]
        user = await self.ledger.ensure_user(event.user_id)
        balance = user.balance(currency)

        amount = parse_amount(event.text)
        if amount is None or amount <= 0 or amount > balance:
            await self.send(
                event.user_id,
                f"⚠️ Invalid amount. Please enter a number greater than 0 and not more than {balance} {currency}.",
            )
            return

        await advance(state, WalletWithdrawStates.awaiting_address, amount=f"{amount:f}")
        await self.send(
            event.user_id,
            f"Please provide the {hbold(f'{currency} wallet address')} where you would like to receive the funds.",
            reply_markup=get_cancel_keyboard(),
        )

    async def wallet_address(self, event: FreeText, state: FSMContext) -> None:
        address = event.text.strip()
        if not self._address_is_plausible(address):
            await self.send(event.user_id, "⚠️ That doesn't look like a valid wallet address. Please try again.")
            return

        data = await state.get_data()
        currency = data["currency"]
        amount = Decimal(data["amount"])

        try:
            request = await self.ledger.file_wallet_withdrawal(event.user_id, currency, amount, address)
        except InsufficientFunds as e:
            await state.clear()
            await self.send(
                event.user_id,
                f"⚠️ Insufficient funds. Available: {e.available} {currency}, requested: {e.requested} {currency}.",
            )
            return

        await state.clear()
        await self.send(
            event.user_id,
            f"✅ Withdrawal request #{request.id} for {hbold(f'{request.amount} {currency}')} has been submitted.\n\n"
            f"The amount is reserved from your wallet until the administrator reviews the request.",
        )
        # Заявка уже создана: недоставленное уведомление не отменяет её
        if not await self._notify_admin(request, event.display_name):
            logger.warning(f"Admin was not notified about withdrawal #{request.id}")
