"""
Тесты мастера продажи USDT
"""

import time
import pytest
from decimal import Decimal

from usdtbot.callbacks import (
    SellStartCallback,
    FiatCallback,
    NetworkCallback,
    MethodCallback,
    BankRegionCallback,
    ConfirmSaleCallback,
    CancelCallback,
)
from usdtbot.flows.sell_usdt import parse_amount, get_details_prompt, DEFAULT_DETAILS_PROMPT
from usdtbot.fsm import SellUSDTStates
from usdtbot.services.deposits import DepositError
from conftest import USER_ID

S = SellUSDTStates


async def _to_amount_step(user, method="wise"):
    await user.press(SellStartCallback(action="start"))
    await user.press(FiatCallback(currency="USD"))
    await user.press(NetworkCallback(network="TRC20"))
    await user.press(MethodCallback(code=method))
    await user.say("alice@example.com")


async def _to_confirmation(user, amount="100"):
    await _to_amount_step(user)
    await user.say(amount)


class TestParseAmount:
    @pytest.mark.parametrize("raw, expected", [
        ("100", Decimal("100")),
        (" 25.5 ", Decimal("25.5")),
        ("1 000", Decimal("1000")),
        ("99,9", Decimal("99.9")),
    ])
    def test_valid(self, raw, expected):
        assert parse_amount(raw) == expected

    @pytest.mark.parametrize("raw", ["", "abc", "10 USDT", "NaN", "Infinity", "1,000.5,0"])
    def test_invalid(self, raw):
        assert parse_amount(raw) is None


class TestHappyPath:
    """Полный проход мастера"""

    @pytest.mark.asyncio
    async def test_full_flow(self, user, notifier, deposits):
        await user.say("💰 SELL USDT")
        assert "start selling" in notifier.last(USER_ID).text
        assert await user.state() is None

        await user.press(SellStartCallback(action="start"))
        assert await user.state() == S.awaiting_fiat.state
        assert "1 USDT = 1.054 USD" in notifier.last(USER_ID).text

        await user.press(FiatCallback(currency="USD"))
        assert await user.state() == S.awaiting_network.state

        await user.press(NetworkCallback(network="TRC20"))
        assert await user.state() == S.awaiting_payment_method.state
        assert (await user.data())["network"] == "USDT.TRC20"

        await user.press(MethodCallback(code="wise"))
        assert await user.state() == S.awaiting_payment_details.state
        assert "Wise email address" in notifier.last(USER_ID).text

        await user.say("alice@example.com")
        assert await user.state() == S.awaiting_amount.state

        await user.say("100")
        assert await user.state() == S.awaiting_confirmation.state
        data = await user.data()
        assert data["fiat_amount"] == "105.40"
        assert data["rate"] == "1.054"
        summary = notifier.last(USER_ID).text
        assert "105.40 USD" in summary
        assert "alice@example.com" in summary

        await user.press(ConfirmSaleCallback(action="yes"))
        assert await user.state() is None
        assert deposits.calls == [{
            "source_currency": "USDT",
            "destination_network": "USDT.TRC20",
            "amount": Decimal("100"),
            "contact": "refunds@example.com",
            "correlation_id": str(USER_ID),
        }]
        deposit_message = notifier.last(USER_ID)
        assert deposit_message.photo == "https://example.com/qr.png"
        assert "TDepositAddress1234567890abcdefgh" in deposit_message.text
        # 9000 секунд -> 2.5 часа -> округление до 2
        assert "2 hours" in deposit_message.text

    @pytest.mark.asyncio
    async def test_deposit_without_qr_sends_plain_message(self, user, notifier, deposits):
        deposits.qr_image_ref = None
        await _to_confirmation(user)

        await user.press(ConfirmSaleCallback(action="yes"))

        assert notifier.last(USER_ID).photo is None
        assert "Deposit Request Created" in notifier.last(USER_ID).text


class TestBranches:
    """Ветка банковского перевода и подменю Skrill/Neteller"""

    @pytest.mark.asyncio
    async def test_skrill_neteller_submenu(self, user, notifier):
        await user.press(SellStartCallback(action="start"))
        await user.press(FiatCallback(currency="EUR"))
        await user.press(NetworkCallback(network="ERC20"))

        await user.press(MethodCallback(code="skrill_neteller"))
        assert await user.state() == S.awaiting_payment_method.state
        labels = [row[0].text for row in notifier.last(USER_ID).reply_markup.inline_keyboard]
        assert labels[:2] == ["Skrill", "Neteller"]

        await user.press(MethodCallback(code="neteller"))
        assert await user.state() == S.awaiting_payment_details.state
        assert (await user.data())["payment_method"] == "Neteller"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("region, method", [("EU", "European Bank Transfer"), ("US", "US Bank Transfer")])
    async def test_bank_region(self, user, notifier, region, method):
        await user.press(SellStartCallback(action="start"))
        await user.press(FiatCallback(currency="GBP"))
        await user.press(NetworkCallback(network="TRC20"))

        await user.press(MethodCallback(code="bank"))
        assert await user.state() == S.awaiting_bank_region.state

        await user.press(BankRegionCallback(region=region))
        assert await user.state() == S.awaiting_payment_details.state
        assert (await user.data())["payment_method"] == method
        assert "three fields" in notifier.last(USER_ID).text

    @pytest.mark.asyncio
    async def test_invalid_bank_region_clears_state(self, user, notifier):
        await user.press(SellStartCallback(action="start"))
        await user.press(FiatCallback(currency="USD"))
        await user.press(NetworkCallback(network="TRC20"))
        await user.press(MethodCallback(code="bank"))

        await user.press(BankRegionCallback(region="MARS"))

        assert await user.state() is None
        assert "Invalid selection" in notifier.last(USER_ID).text

    def test_details_prompts(self):
        assert "Revtag" in get_details_prompt("Revolut")
        assert get_details_prompt("Carrier Pigeon") == DEFAULT_DETAILS_PROMPT


class TestAmountValidation:
    """Некорректная сумма не меняет состояние"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["24.99", "50000.01", "abc", "", "-100"])
    async def test_rejected_amounts(self, user, notifier, amount):
        await _to_amount_step(user)
        data_before = await user.data()

        await user.say(amount)

        assert await user.state() == S.awaiting_amount.state
        assert await user.data() == data_before
        assert "between 25 and 50,000" in notifier.last(USER_ID).text

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["25", "50000"])
    async def test_bounds_are_inclusive(self, user, amount):
        await _to_amount_step(user)
        await user.say(amount)
        assert await user.state() == S.awaiting_confirmation.state


class TestStaleEvents:
    """Устаревшие кнопки игнорируются без изменения состояния"""

    @pytest.mark.asyncio
    async def test_network_button_in_payment_method_step(self, user, notifier):
        await user.press(SellStartCallback(action="start"))
        await user.press(FiatCallback(currency="USD"))
        await user.press(NetworkCallback(network="TRC20"))
        data_before = await user.data()
        sent_before = len(notifier.sent)

        await user.press(NetworkCallback(network="ERC20"))

        assert await user.state() == S.awaiting_payment_method.state
        assert await user.data() == data_before
        assert len(notifier.sent) == sent_before

    @pytest.mark.asyncio
    async def test_network_button_without_state(self, user, notifier):
        await user.press(NetworkCallback(network="TRC20"))

        assert await user.state() is None
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_free_text_without_state_is_ignored(self, user, notifier):
        await user.say("hello")
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_confirm_outside_confirmation_step(self, user, notifier, deposits):
        await _to_amount_step(user)

        await user.press(ConfirmSaleCallback(action="yes"))

        assert await user.state() is None
        assert "start a new transaction" in notifier.last(USER_ID).text
        assert deposits.calls == []

    @pytest.mark.asyncio
    async def test_double_confirm(self, user, notifier, deposits):
        await _to_confirmation(user)

        await user.press(ConfirmSaleCallback(action="yes"))
        await user.press(ConfirmSaleCallback(action="yes"))

        assert len(deposits.calls) == 1
        assert "start a new transaction" in notifier.last(USER_ID).text

    @pytest.mark.asyncio
    async def test_restart_replaces_stale_state(self, user):
        await _to_amount_step(user)

        await user.press(SellStartCallback(action="start"))

        assert await user.state() == S.awaiting_fiat.state
        assert "payment_details" not in await user.data()


class TestCancelAndFailures:
    @pytest.mark.asyncio
    async def test_cancel_on_confirmation(self, user, notifier, deposits):
        await _to_confirmation(user)

        await user.press(ConfirmSaleCallback(action="no"))

        assert await user.state() is None
        assert "Transaction cancelled" in notifier.last(USER_ID).text
        assert deposits.calls == []

    @pytest.mark.asyncio
    async def test_cancel_from_any_step(self, user, notifier):
        await user.press(SellStartCallback(action="start"))
        await user.press(FiatCallback(currency="USD"))

        await user.press(CancelCallback())

        assert await user.state() is None
        assert "Transaction cancelled" in notifier.last(USER_ID).text

    @pytest.mark.asyncio
    async def test_cancel_command(self, user, notifier):
        await _to_amount_step(user)
        await user.say("/cancel")
        assert await user.state() is None

    @pytest.mark.asyncio
    async def test_abort_before_start(self, user, notifier):
        await user.press(SellStartCallback(action="abort"))
        assert await user.state() is None
        assert "Transaction cancelled" in notifier.last(USER_ID).text

    @pytest.mark.asyncio
    async def test_deposit_failure_clears_state(self, user, notifier, deposits):
        deposits.error = DepositError("gateway down")
        await _to_confirmation(user)

        await user.press(ConfirmSaleCallback(action="yes"))

        assert await user.state() is None
        assert "An error occurred while creating your transaction" in notifier.last(USER_ID).text

    @pytest.mark.asyncio
    async def test_unexpected_gateway_failure_is_reported(self, user, notifier, deposits):
        deposits.error = RuntimeError("boom")
        await _to_confirmation(user)

        await user.press(ConfirmSaleCallback(action="yes"))

        assert await user.state() is None
        assert "An error occurred while creating your transaction" in notifier.last(USER_ID).text

    @pytest.mark.asyncio
    async def test_users_are_isolated(self, user, other):
        await _to_amount_step(user)
        await other.say("not a number")

        assert await user.state() == S.awaiting_amount.state
        assert await other.state() is None


class TestStateExpiry:
    @pytest.mark.asyncio
    async def test_stale_state_expires_when_ttl_configured(self, engine, user, notifier):
        engine.config.STATE_TTL_SECONDS = 60
        await _to_amount_step(user)
        await engine.context(USER_ID).update_data(started_at=time.time() - 120)

        await user.say("100")

        assert await user.state() is None

    @pytest.mark.asyncio
    async def test_no_expiry_by_default(self, engine, user):
        await _to_amount_step(user)
        await engine.context(USER_ID).update_data(started_at=time.time() - 10 ** 6)

        await user.say("100")

        assert await user.state() == S.awaiting_confirmation.state
