from typing import Iterable, List, Sequence, Tuple

from aiogram.types import ReplyKeyboardMarkup, KeyboardButton, InlineKeyboardMarkup, InlineKeyboardButton

from usdtbot.callbacks import (
    SellStartCallback,
    FiatCallback,
    NetworkCallback,
    MethodCallback,
    BankRegionCallback,
    ConfirmSaleCallback,
    CancelCallback,
    ReferralWithdrawCallback,
    WalletWithdrawCallback,
    AdminMenuCallback,
    WithdrawalDecisionCallback,
    TicketActionCallback,
)

# ============================================================================
# ГЛАВНОЕ МЕНЮ
# ============================================================================
BTN_DASHBOARD = "📊 Dashboard"
BTN_SELL = "💰 SELL USDT"
BTN_REFERRAL = "🔗 Referral"
BTN_WALLET = "👛 Wallet"
BTN_SUPPORT = "🆘 Support"

# Текст кнопки меню -> имя команды
MENU_COMMANDS = {
    BTN_DASHBOARD: "dashboard",
    BTN_SELL: "sell",
    BTN_REFERRAL: "referral",
    BTN_WALLET: "wallet",
    BTN_SUPPORT: "support",
}

main_menu = ReplyKeyboardMarkup(
    keyboard=[
        [KeyboardButton(text=BTN_DASHBOARD), KeyboardButton(text=BTN_SELL)],
        [KeyboardButton(text=BTN_REFERRAL), KeyboardButton(text=BTN_WALLET)],
        [KeyboardButton(text=BTN_SUPPORT)],
    ],
    resize_keyboard=True
)


def add_cancel_button(keyboard: InlineKeyboardMarkup) -> InlineKeyboardMarkup:
    """Добавляет кнопку отмены на каждом шаге мастера"""
    keyboard.inline_keyboard.append([
        InlineKeyboardButton(text="❌ Cancel", callback_data=CancelCallback().pack())
    ])
    return keyboard


# ============================================================================
# МАСТЕР ПРОДАЖИ USDT
# ============================================================================

def get_sell_start_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text="Start Sale", callback_data=SellStartCallback(action="start").pack())],
            [InlineKeyboardButton(text="Cancel", callback_data=SellStartCallback(action="abort").pack())],
        ]
    )


def get_fiat_keyboard() -> InlineKeyboardMarkup:
    kb = InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text="🇺🇸 USD", callback_data=FiatCallback(currency="USD").pack())],
            [InlineKeyboardButton(text="🇪🇺 EUR", callback_data=FiatCallback(currency="EUR").pack())],
            [InlineKeyboardButton(text="🇬🇧 GBP", callback_data=FiatCallback(currency="GBP").pack())],
        ]
    )
    return add_cancel_button(kb)


def get_network_keyboard() -> InlineKeyboardMarkup:
    kb = InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text="USDT TRC20 (Tron)", callback_data=NetworkCallback(network="TRC20").pack())],
            [InlineKeyboardButton(text="USDT ERC20 (Ethereum)", callback_data=NetworkCallback(network="ERC20").pack())],
        ]
    )
    return add_cancel_button(kb)


def get_payment_methods_keyboard(methods: Sequence[Tuple[str, str]]) -> InlineKeyboardMarkup:
    """Способы выплаты по два в ряд; methods - пары (code, label)"""
    buttons = [
        InlineKeyboardButton(text=label, callback_data=MethodCallback(code=code).pack())
        for code, label in methods
    ]
    rows = [buttons[i:i + 2] for i in range(0, len(buttons), 2)]
    return add_cancel_button(InlineKeyboardMarkup(inline_keyboard=rows))


def get_submethods_keyboard(methods: Iterable[Tuple[str, str]]) -> InlineKeyboardMarkup:
    kb = InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text=label, callback_data=MethodCallback(code=code).pack())]
            for code, label in methods
        ]
    )
    return add_cancel_button(kb)


def get_bank_region_keyboard() -> InlineKeyboardMarkup:
    kb = InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text="🇪🇺 European Bank", callback_data=BankRegionCallback(region="EU").pack())],
            [InlineKeyboardButton(text="🇺🇸 US Bank", callback_data=BankRegionCallback(region="US").pack())],
        ]
    )
    return add_cancel_button(kb)


def get_confirm_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text="✅ Confirm & Get Deposit Address", callback_data=ConfirmSaleCallback(action="yes").pack())],
            [InlineKeyboardButton(text="❌ Cancel Transaction", callback_data=ConfirmSaleCallback(action="no").pack())],
        ]
    )


def get_cancel_keyboard() -> InlineKeyboardMarkup:
    return add_cancel_button(InlineKeyboardMarkup(inline_keyboard=[]))


# ============================================================================
# РЕФЕРАЛЫ И КОШЕЛЕК
# ============================================================================

def get_referral_keyboard(withdraw_label: str = None) -> InlineKeyboardMarkup:
    """Кнопка вывода показывается только при достаточном заработке"""
    rows = []
    if withdraw_label:
        rows.append([InlineKeyboardButton(text=withdraw_label, callback_data=ReferralWithdrawCallback().pack())])
    return InlineKeyboardMarkup(inline_keyboard=rows)


def get_wallet_keyboard(currencies: Iterable[str]) -> InlineKeyboardMarkup:
    rows: List[List[InlineKeyboardButton]] = [
        [InlineKeyboardButton(text=f"💸 Withdraw {currency}", callback_data=WalletWithdrawCallback(currency=currency).pack())]
        for currency in currencies
    ]
    return InlineKeyboardMarkup(inline_keyboard=rows)


# ============================================================================
# АДМИН-ПАНЕЛЬ
# ============================================================================

def get_admin_menu_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text="View Payout Requests (Pending)", callback_data=AdminMenuCallback(action="payouts").pack())],
            [InlineKeyboardButton(text="Support Tickets", callback_data=AdminMenuCallback(action="tickets").pack())],
            [InlineKeyboardButton(text="Refresh Rates", callback_data=AdminMenuCallback(action="rates").pack())],
            [InlineKeyboardButton(text="Payout Methods", callback_data=AdminMenuCallback(action="methods").pack())],
        ]
    )


def get_withdrawal_review_keyboard(request_id: int, with_skip: bool = True) -> InlineKeyboardMarkup:
    row = [
        InlineKeyboardButton(text="✅ Approve", callback_data=WithdrawalDecisionCallback(action="approve", request_id=request_id).pack()),
        InlineKeyboardButton(text="❌ Reject", callback_data=WithdrawalDecisionCallback(action="reject", request_id=request_id).pack()),
    ]
    rows = [row]
    if with_skip:
        rows.append([
            InlineKeyboardButton(text="⏭ Skip", callback_data=WithdrawalDecisionCallback(action="skip", request_id=request_id).pack())
        ])
    return InlineKeyboardMarkup(inline_keyboard=rows)


def get_ticket_keyboard(ticket_id: int) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(text="💬 Reply", callback_data=TicketActionCallback(action="reply", ticket_id=ticket_id).pack()),
                InlineKeyboardButton(text="✅ Resolve", callback_data=TicketActionCallback(action="resolve", ticket_id=ticket_id).pack()),
            ],
            [InlineKeyboardButton(text="⏭ Skip", callback_data=TicketActionCallback(action="skip", ticket_id=ticket_id).pack())],
        ]
    )


def get_payout_methods_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text="➕ Add Method", callback_data=AdminMenuCallback(action="add_method").pack())],
        ]
    )
