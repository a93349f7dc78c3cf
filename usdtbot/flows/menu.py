"""
Главное меню: /start, Dashboard, SELL USDT, Referral, Wallet
"""

import logging
from datetime import datetime
from decimal import Decimal

from aiogram.fsm.context import FSMContext
from aiogram.utils.markdown import hbold, hcode

from usdtbot.events import Command
from usdtbot.flows.engine import Flow
from usdtbot.keyboards import main_menu, get_sell_start_keyboard, get_referral_keyboard, get_wallet_keyboard
from usdtbot.services.referrals import attribute_referral, build_referral_link

logger = logging.getLogger(__name__)


def get_datetime() -> str:
    """Дата и время в формате DD/MM/YYYY HH:MM:SS"""
    return datetime.now().strftime("%d/%m/%Y %H:%M:%S")


def fmt_usdt(amount: Decimal) -> str:
    return f"{amount:.2f} USDT"


class MenuFlow(Flow):
    def commands(self):
        return {
            "start": self.start,
            "dashboard": self.dashboard,
            "sell": self.sell_prompt,
            "referral": self.referral_dashboard,
            "wallet": self.wallet,
        }

    async def start(self, event: Command, state: FSMContext) -> None:
        user_id = event.user_id
        display_name = event.display_name or (f"@{event.username}" if event.username else "User")
        bonus = self.config.REFERRAL_BONUS

        contact = await attribute_referral(self.ledger, user_id, display_name, event.args, bonus)

        if contact.referral_credited:
            await self.send(
                contact.referrer_id,
                f"🎉 {hbold('Referral Success!')}\n\n"
                f"User {hbold(display_name)} has joined using your link. "
                f"You earned {hbold(fmt_usdt(bonus))}! "
                f"Your new total earnings are: {hbold(fmt_usdt(contact.referrer_earnings))}."
            )
            await self.send(user_id, f"Welcome! You were referred by user {hcode(contact.referrer_id)}.")

        # Уведомление администратора, доставка не обязательна
        await self.send(
            self.config.ADMIN_CHAT_ID,
            f"🚨 {hbold('NEW USER STARTED BOT')}\n"
            f"{hbold('ID:')} {hcode(user_id)}\n"
            f"{hbold('Name:')} {hbold(display_name)}\n"
            f"{hbold('Username:')} {'@' + event.username if event.username else 'N/A'}\n"
            f"{hbold('Referred By:')} {contact.user.referred_by or 'None'}"
        )

        await self.send(
            user_id,
            f"{hbold('Welcome to the USDT Selling Bot!')} 🤖\n\n"
            f"Hello {hbold(display_name)}! I'm here to help you sell your USDT "
            f"for fiat currency quickly and securely.\n\n"
            f"{hbold('Current Time:')} {hcode(get_datetime())}\n\n"
            f"{hbold('Getting Started Instructions:')}\n"
            f"1. {hbold('📊 Dashboard')}: Check the current exchange rates and your earnings.\n"
            f"2. {hbold('💰 SELL USDT')}: Exchange your USDT for USD, EUR, or GBP.\n"
            f"3. {hbold('🔗 Referral')}: Earn {hbold(fmt_usdt(bonus))} for every successful referral!\n"
            f"4. {hbold('👛 Wallet')}: View your balances and request withdrawals.\n"
            f"5. {hbold('🆘 Support')}: Contact the administrator.\n\n"
            f"Let's begin! Please use the menu buttons below to navigate the service.",
            reply_markup=main_menu,
        )

    async def dashboard(self, event: Command, state: FSMContext) -> None:
        user = await self.ledger.ensure_user(event.user_id)
        snapshot = await self.engine.rates.refresh()

        rates_text = "\n".join(
            f"1 USDT = {hbold(f'{snapshot.rate(fiat)} {fiat}')}" for fiat in snapshot.rates
        )
        floors_text = ", ".join(f"{floor} {fiat}" for fiat, floor in self.engine.rates.floors.items())
        balances_text = "\n".join(
            f"{currency}: {hcode(user.balance(currency))}" for currency in self.ledger.wallet_currencies
        )

        await self.send(
            event.user_id,
            f"📊 {hbold('Exchange Dashboard')}\n\n"
            f"{hbold('Current Time:')} {hcode(get_datetime())}\n"
            f"{hbold('Your Telegram ID:')} {hcode(event.user_id)}\n"
            f"{hbold('Referral Earnings:')} {hbold(fmt_usdt(user.referral_earnings))}\n\n"
            f"{hbold('Wallet Balances:')}\n{balances_text}\n\n"
            f"{hbold('Current Exchange Rates (USDT to Fiat):')}\n{rates_text}\n\n"
            f"{hbold('Note:')} These rates are real-time, guaranteed to be equal to or "
            f"better than the floor rates ({floors_text})."
        )

    async def sell_prompt(self, event: Command, state: FSMContext) -> None:
        await self.send(
            event.user_id,
            "This is your transaction wallet. Do you want to start selling your USDT now?",
            reply_markup=get_sell_start_keyboard(),
        )

    async def referral_dashboard(self, event: Command, state: FSMContext) -> None:
        user = await self.ledger.ensure_user(event.user_id)
        earnings = user.referral_earnings
        minimum = self.config.MIN_WITHDRAW_REF
        link = build_referral_link(self.config.BOT_USERNAME, event.user_id)

        withdraw_label = None
        if earnings > 0 and earnings >= minimum:
            withdraw_label = f"💸 Withdraw {fmt_usdt(earnings)}"

        await self.send(
            event.user_id,
            f"🔗 {hbold('Your Referral Dashboard')}\n\n"
            f"{hbold('Current Earnings:')} {hbold(fmt_usdt(earnings))}\n"
            f"{hbold('Minimum Withdrawal:')} {hbold(fmt_usdt(minimum))}\n"
            f"{hbold('Bonus per Referral:')} {hbold(fmt_usdt(self.config.REFERRAL_BONUS))}\n\n"
            f"{hbold('Share this link to earn:')}\n{hcode(link)}\n\n"
            f"When your friends click this link and start the bot, "
            f"you will automatically receive a bonus!",
            reply_markup=get_referral_keyboard(withdraw_label),
        )

    async def wallet(self, event: Command, state: FSMContext) -> None:
        user = await self.ledger.ensure_user(event.user_id)
        lines = [f"👛 {hbold('Your Wallet')}\n"]
        withdrawable = []
        for currency in self.ledger.wallet_currencies:
            balance = user.balance(currency)
            lines.append(f"{currency}: {hcode(balance)}")
            if balance > 0:
                withdrawable.append(currency)

        if withdrawable:
            lines.append("\nSelect a currency to withdraw:")
        else:
            lines.append("\nYou have no funds available for withdrawal.")

        await self.send(event.user_id, "\n".join(lines), reply_markup=get_wallet_keyboard(withdrawable))
