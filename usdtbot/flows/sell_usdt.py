"""
Мастер продажи USDT

Валюта -> сеть -> способ выплаты -> [регион банка] -> реквизиты -> сумма
-> подтверждение -> депозитный адрес.

Данные мастера хранятся в FSM (деньги строками), шаги переключаются
только через fsm.begin_flow / fsm.advance.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from aiogram.fsm.context import FSMContext
from aiogram.utils.markdown import hbold, hcode, hpre

from usdtbot.callbacks import (
    SellStartCallback,
    FiatCallback,
    NetworkCallback,
    MethodCallback,
    BankRegionCallback,
    ConfirmSaleCallback,
)
from usdtbot.events import ButtonPress, FreeText
from usdtbot.flows.engine import Flow
from usdtbot.fsm import SellUSDTStates, begin_flow, advance
from usdtbot.keyboards import (
    BTN_SELL,
    get_fiat_keyboard,
    get_network_keyboard,
    get_payment_methods_keyboard,
    get_submethods_keyboard,
    get_bank_region_keyboard,
    get_confirm_keyboard,
    get_cancel_keyboard,
)
from usdtbot.services.deposits import DepositError
from usdtbot.services.rates import FIAT_CURRENCIES, calculate_fiat_amount
from usdtbot.utils.logger import log_error_with_context, log_user_action

logger = logging.getLogger(__name__)

NETWORKS = ("TRC20", "ERC20")

DEPOSIT_ERROR_TEXT = "❌ An error occurred while creating your transaction. Please try again later."

# Код кнопки -> название способа выплаты (порядок = порядок в меню)
PAYMENT_METHODS = (
    ("wise", "Wise"),
    ("revolut", "Revolut"),
    ("paypal", "PayPal"),
    ("bank", "Bank Transfer"),
    ("skrill_neteller", "Skrill/Neteller"),
    ("card", "Visa/Mastercard"),
    ("payeer", "Payeer"),
    ("alipay", "Alipay"),
)

# Способы, требующие дополнительного выбора
SUBMETHODS = {
    "skrill_neteller": (("skrill", "Skrill"), ("neteller", "Neteller")),
}

BANK_METHOD = "bank"

METHOD_LABELS = dict(PAYMENT_METHODS)
for _choices in SUBMETHODS.values():
    METHOD_LABELS.update(_choices)

DETAILS_PROMPTS = {
    "Wise": f"Please enter your {hbold('Wise email address')} or {hbold('Wise Tag')}.",
    "Revolut": f"Please enter your {hbold('Revolut Revtag')}.",
    "PayPal": f"Please enter your {hbold('PayPal email address')}.",
    "Skrill": f"Please enter your {hbold('Skrill email address')}.",
    "Neteller": f"Please enter your {hbold('Neteller email address')}.",
    "Visa/Mastercard": (
        f"Please enter your {hbold('Visa/Mastercard number')}.\n\n"
        "⚠️ <i>For security, never share your full card details with untrusted parties.</i>"
    ),
    "Payeer": f"Please enter your {hbold('Payeer account number')}.",
    "Alipay": f"Please enter your {hbold('Alipay email address')}.",
}
DEFAULT_DETAILS_PROMPT = "Please provide your payment details."

BANK_REGIONS = {
    "EU": (
        "European Bank Transfer",
        f"{hbold('Please provide your European bank account details:')}\n\n"
        f"{hcode('Your First and Last Name')}\n{hcode('IBAN')}\n{hcode('SWIFT CODE')}\n\n"
        "Please send all three fields in a single message.",
    ),
    "US": (
        "US Bank Transfer",
        f"{hbold('Please provide your US bank account details:')}\n\n"
        f"{hcode('Your First and Last Name')}\n{hcode('Routing Number')}\n{hcode('Account Number')}\n\n"
        "Please send all three fields in a single message.",
    ),
}


def get_details_prompt(method: str) -> str:
    return DETAILS_PROMPTS.get(method, DEFAULT_DETAILS_PROMPT)


def parse_amount(text: str) -> Optional[Decimal]:
    """'1 000,5' -> Decimal('1000.5'); нечисловой ввод -> None"""
    raw = text.strip().replace(" ", "")
    if raw.count(",") == 1 and "." not in raw:
        raw = raw.replace(",", ".")
    try:
        value = Decimal(raw)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return value


class SellUSDTFlow(Flow):
    def buttons(self):
        return {
            (None, SellStartCallback): self.on_start_button,
            (SellUSDTStates.awaiting_fiat.state, FiatCallback): self.choose_fiat,
            (SellUSDTStates.awaiting_network.state, NetworkCallback): self.choose_network,
            (SellUSDTStates.awaiting_payment_method.state, MethodCallback): self.choose_method,
            (SellUSDTStates.awaiting_bank_region.state, BankRegionCallback): self.choose_bank_region,
            (None, ConfirmSaleCallback): self.on_confirm_button,
        }

    def steps(self):
        return {
            SellUSDTStates.awaiting_payment_details.state: self.enter_details,
            SellUSDTStates.awaiting_amount.state: self.enter_amount,
        }

    @property
    def min_amount(self) -> Decimal:
        return self.config.MIN_SELL_AMOUNT

    @property
    def max_amount(self) -> Decimal:
        return self.config.MAX_SELL_AMOUNT

    def _bounds_text(self) -> str:
        return f"{self.min_amount:,} and {self.max_amount:,}"

    async def send_cancelled(self, user_id: int) -> None:
        await self.send(user_id, f"Transaction cancelled. Press {hbold(BTN_SELL)} to start a new sale.")

    # ------------------------------------------------------------------
    # Старт / отмена
    # ------------------------------------------------------------------

    async def on_start_button(self, event: ButtonPress, state: FSMContext) -> None:
        if event.payload.action == "start":
            await self.begin(event.user_id, state)
        else:
            await state.clear()
            await self.send_cancelled(event.user_id)

    async def begin(self, user_id: int, state: FSMContext) -> None:
        """Новый мастер: старое состояние пользователя затирается"""
        await begin_flow(state, SellUSDTStates.awaiting_fiat)
        snapshot = await self.engine.rates.refresh()
        rates_text = "\n".join(f"1 USDT = {snapshot.rate(fiat)} {fiat}" for fiat in FIAT_CURRENCIES)
        await self.send(
            user_id,
            f"{hbold('Select Fiat Currency')}\n{rates_text}\n\nPlease select your preferred fiat currency:",
            reply_markup=get_fiat_keyboard(),
        )
        log_user_action(logger, user_id, "sell wizard started")

    # ------------------------------------------------------------------
    # Шаги с кнопками
    # ------------------------------------------------------------------

    async def choose_fiat(self, event: ButtonPress, state: FSMContext) -> None:
        fiat = event.payload.currency
        if fiat not in FIAT_CURRENCIES:
            logger.debug(f"Unknown fiat {fiat!r} from {event.user_id}")
            return
        await advance(state, SellUSDTStates.awaiting_network, fiat=fiat)
        await self.send(
            event.user_id,
            "Please select the deposit network for your USDT:",
            reply_markup=get_network_keyboard(),
        )

    async def choose_network(self, event: ButtonPress, state: FSMContext) -> None:
        network = event.payload.network
        if network not in NETWORKS:
            logger.debug(f"Unknown network {network!r} from {event.user_id}")
            return
        await advance(state, SellUSDTStates.awaiting_payment_method, network=f"USDT.{network}")
        await self.send(
            event.user_id,
            "How would you like to receive your funds? Select a payment method:",
            reply_markup=get_payment_methods_keyboard(PAYMENT_METHODS),
        )

    async def choose_method(self, event: ButtonPress, state: FSMContext) -> None:
        code = event.payload.code

        if code in SUBMETHODS:
            # Шаг не меняется: выбор конкретного способа придет этим же обработчиком
            await self.send(
                event.user_id,
                f"Do you want to receive funds via {' or '.join(label for _, label in SUBMETHODS[code])}?",
                reply_markup=get_submethods_keyboard(SUBMETHODS[code]),
            )
            return

        if code == BANK_METHOD:
            await advance(state, SellUSDTStates.awaiting_bank_region)
            await self.send(
                event.user_id,
                f"Is this bank account for a {hbold('European (IBAN/SWIFT)')} "
                f"or {hbold('US (Routing/Account)')} transfer?",
                reply_markup=get_bank_region_keyboard(),
            )
            return

        method = METHOD_LABELS.get(code)
        if method is None:
            logger.debug(f"Unknown payment method {code!r} from {event.user_id}")
            return

        await advance(state, SellUSDTStates.awaiting_payment_details, payment_method=method)
        await self.send(event.user_id, get_details_prompt(method), reply_markup=get_cancel_keyboard())

    async def choose_bank_region(self, event: ButtonPress, state: FSMContext) -> None:
        region = BANK_REGIONS.get(event.payload.region)
        if region is None:
            await state.clear()
            await self.send(event.user_id, "⚠️ Invalid selection. Please try again or cancel the transaction.")
            return

        method, prompt = region
        await advance(state, SellUSDTStates.awaiting_payment_details, payment_method=method)
        await self.send(event.user_id, prompt, reply_markup=get_cancel_keyboard())

    # ------------------------------------------------------------------
    # Шаги с текстом
    # ------------------------------------------------------------------

    async def enter_details(self, event: FreeText, state: FSMContext) -> None:
        details = event.text
        if not details.strip():
            await self.send(event.user_id, "⚠️ Payment details must not be empty. Please try again.")
            return

        await advance(state, SellUSDTStates.awaiting_amount, payment_details=details)
        await self.send(
            event.user_id,
            "Excellent. Now, please enter the amount of USDT you want to sell.\n\n"
            f"(Minimum: {self.min_amount:,} USDT, Maximum: {self.max_amount:,} USDT)",
            reply_markup=get_cancel_keyboard(),
        )

    async def enter_amount(self, event: FreeText, state: FSMContext) -> None:
        amount = parse_amount(event.text)
        if amount is None or amount < self.min_amount or amount > self.max_amount:
            await self.send(
                event.user_id,
                f"⚠️ Invalid amount. Please enter a number between {self._bounds_text()}.",
            )
            return

        data = await state.get_data()
        fiat = data["fiat"]

        # Курс обновляется и читается одной операцией
        snapshot = await self.engine.rates.refresh()
        rate = snapshot.rate(fiat)
        fiat_amount = calculate_fiat_amount(amount, rate)

        await advance(
            state,
            SellUSDTStates.awaiting_confirmation,
            usdt_amount=f"{amount:f}",
            fiat_amount=str(fiat_amount),
            rate=str(rate),
        )

        summary = (
            f"{hbold('Transaction Summary - Please Review')}\n"
            f"{hbold('Current Time:')} {hcode(snapshot.fetched_at.strftime('%d/%m/%Y %H:%M:%S'))}\n\n"
            f"• {hbold('Selling:')} {hcode(f'{amount:f} USDT')}\n"
            f"• {hbold('Network:')} {hcode(data['network'])}\n"
            f"• {hbold('Receiving:')} {hcode(f'{fiat_amount} {fiat}')}\n"
            f"• {hbold('Rate Used:')} {hcode(f'1 USDT = {rate} {fiat}')}\n"
            f"• {hbold('Payment Method:')} {hcode(data['payment_method'])}\n"
            f"• {hbold('Your Details:')}\n{hpre(data['payment_details'])}\n\n"
            f"{hbold('Please review all details carefully. Are you sure you want to proceed and generate the deposit address?')}"
        )
        await self.send(event.user_id, summary, reply_markup=get_confirm_keyboard())

    # ------------------------------------------------------------------
    # Подтверждение
    # ------------------------------------------------------------------

    async def on_confirm_button(self, event: ButtonPress, state: FSMContext) -> None:
        if event.payload.action != "yes":
            await state.clear()
            await self.send_cancelled(event.user_id)
            return

        if await state.get_state() != SellUSDTStates.awaiting_confirmation.state:
            # Повторное нажатие или кнопка из старого сообщения
            await state.clear()
            await self.send(
                event.user_id,
                f"⚠️ Error: Please start a new transaction using the {hbold(BTN_SELL)} button.",
            )
            return

        await self.confirm(event.user_id, state)

    async def confirm(self, user_id: int, state: FSMContext) -> None:
        """Создает депозит; состояние очищается при любом исходе"""
        data = await state.get_data()
        try:
            deposit = await self.engine.deposits.create_deposit(
                "USDT",
                data["network"],
                Decimal(data["usdt_amount"]),
                self.config.BUYER_REFUND_EMAIL,
                str(user_id),
            )
        except DepositError as e:
            log_error_with_context(logger, "Deposit creation failed", e, user_id=user_id)
            await self.send(user_id, DEPOSIT_ERROR_TEXT)
        except Exception as e:
            log_error_with_context(logger, "Unexpected deposit gateway failure", e, user_id=user_id)
            await self.send(user_id, DEPOSIT_ERROR_TEXT)
        else:
            text = (
                f"✅ {hbold('Deposit Request Created!')}\n\n"
                f"To complete the transaction, please send exactly {hcode(deposit.amount)} USDT "
                f"to the address below.\n\n"
                f"{hbold('Address:')}\n{hcode(deposit.address)}\n\n"
                f"{hbold('Network:')} {hcode(data['network'])}\n\n"
                f"This address is valid for {hbold(f'{deposit.expiry_hours} hours')}. "
                f"Do not send funds after it has expired.\n\n"
                f"Once your deposit is confirmed, the payout will proceed automatically."
            )
            await self.send(user_id, text, photo=deposit.qr_image_ref)
            log_user_action(logger, user_id, "deposit created", txn=deposit.txn_id, amount=deposit.amount)
        finally:
            await state.clear()
