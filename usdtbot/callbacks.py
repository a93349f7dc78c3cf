"""
Типизированные callback_data инлайн-кнопок

Каждая кнопка кодируется одним из классов ниже и разбирается один раз
на границе с транспортом (events.decode_button).
"""

from aiogram.filters.callback_data import CallbackData


class SellStartCallback(CallbackData, prefix="sell"):
    action: str                 # start | abort


class FiatCallback(CallbackData, prefix="fiat"):
    currency: str               # USD | EUR | GBP


class NetworkCallback(CallbackData, prefix="net"):
    network: str                # TRC20 | ERC20


class MethodCallback(CallbackData, prefix="method"):
    code: str                   # см. flows.sell_usdt.PAYMENT_METHODS


class BankRegionCallback(CallbackData, prefix="region"):
    region: str                 # EU | US


class ConfirmSaleCallback(CallbackData, prefix="confirm"):
    action: str                 # yes | no


class CancelCallback(CallbackData, prefix="cancel"):
    pass


class ReferralWithdrawCallback(CallbackData, prefix="refwd"):
    pass


class WalletWithdrawCallback(CallbackData, prefix="walletwd"):
    currency: str


class AdminMenuCallback(CallbackData, prefix="adm"):
    action: str                 # payouts | tickets | rates | methods | add_method


class WithdrawalDecisionCallback(CallbackData, prefix="wd"):
    action: str                 # approve | reject | skip
    request_id: int


class TicketActionCallback(CallbackData, prefix="ticket"):
    action: str                 # reply | resolve | skip
    ticket_id: int


ALL_CALLBACKS = (
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
