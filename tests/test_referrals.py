"""
Тесты реферальной программы: разбор payload, однократное начисление, /start
"""

import asyncio
import pytest
from decimal import Decimal

from usdtbot.services.referrals import parse_referral_payload, build_referral_link, attribute_referral
from conftest import ADMIN_ID, USER_ID, OTHER_ID

BONUS = Decimal("1.50")


class TestPayload:
    def test_valid_payload(self):
        assert parse_referral_payload("ref_12345") == 12345
        assert parse_referral_payload(" ref_7 ") == 7

    @pytest.mark.parametrize("payload", [
        None, "", "ref_", "ref_abc", "ref_-5", "promo_12", "12345", "ref_0", "ref_²", "ref_99999999999999999999",
    ])
    def test_invalid_payload(self, payload):
        assert parse_referral_payload(payload) is None

    def test_largest_user_id(self):
        assert parse_referral_payload(f"ref_{2 ** 63 - 1}") == 2 ** 63 - 1
        assert parse_referral_payload(f"ref_{2 ** 63}") is None

    def test_link(self):
        assert build_referral_link("TestUsdtBot", 42) == "https://t.me/TestUsdtBot?start=ref_42"


class TestAttribution:
    """Бонус начисляется не более одного раза на нового пользователя"""

    @pytest.mark.asyncio
    async def test_first_contact_without_referrer(self, ledger):
        contact = await attribute_referral(ledger, 1, "Alice", None, BONUS)

        assert not contact.referral_credited
        user = await ledger.get_user(1)
        assert user.is_registered
        assert user.referred_by is None
        assert user.referral_earnings == Decimal("0")

    @pytest.mark.asyncio
    async def test_referral_credited_once(self, ledger):
        await attribute_referral(ledger, 1, "Alice", None, BONUS)

        first = await attribute_referral(ledger, 2, "Bob", "ref_1", BONUS)
        replay = await attribute_referral(ledger, 2, "Bob", "ref_1", BONUS)

        assert first.referral_credited
        assert first.referrer_earnings == BONUS
        assert not replay.referral_credited
        assert (await ledger.get_user(1)).referral_earnings == BONUS
        assert (await ledger.get_user(2)).referred_by == 1

    @pytest.mark.asyncio
    async def test_self_referral_never_credits(self, ledger):
        contact = await attribute_referral(ledger, 5, "Eve", "ref_5", BONUS)

        assert not contact.referral_credited
        user = await ledger.get_user(5)
        assert user.referral_earnings == Decimal("0")
        assert user.referred_by is None

    @pytest.mark.asyncio
    async def test_registered_user_cannot_be_referred_later(self, ledger):
        await attribute_referral(ledger, 2, "Bob", None, BONUS)
        contact = await attribute_referral(ledger, 2, "Bob", "ref_1", BONUS)

        assert not contact.referral_credited
        assert (await ledger.get_user(2)).referred_by is None
        referrer = await ledger.get_user(1)
        assert referrer is None or referrer.referral_earnings == Decimal("0")

    @pytest.mark.asyncio
    async def test_referrer_is_created_if_missing(self, ledger):
        await attribute_referral(ledger, 2, "Bob", "ref_99", BONUS)

        referrer = await ledger.get_user(99)
        assert referrer is not None
        assert referrer.referral_earnings == BONUS

    @pytest.mark.asyncio
    async def test_out_of_range_referrer_is_ignored(self, ledger):
        contact = await attribute_referral(ledger, 2, "Bob", "ref_99999999999999999999", BONUS)

        assert not contact.referral_credited
        assert (await ledger.get_user(2)).is_registered
        assert [u.id for u in await ledger.list_users()] == [2]

    @pytest.mark.asyncio
    async def test_concurrent_first_contacts_credit_once(self, ledger):
        await asyncio.gather(*(attribute_referral(ledger, 2, "Bob", "ref_1", BONUS) for _ in range(5)))

        assert (await ledger.get_user(1)).referral_earnings == BONUS


class TestStartCommand:
    """Сквозной сценарий через движок"""

    @pytest.mark.asyncio
    async def test_end_to_end(self, engine, user, other, notifier, ledger):
        # Новый пользователь без реферера
        await user.command("start")
        record = await ledger.get_user(USER_ID)
        assert record.is_registered
        assert record.referral_earnings == Decimal("0")
        assert "Welcome to the USDT Selling Bot" in notifier.last(USER_ID).text
        assert "NEW USER STARTED BOT" in notifier.last(ADMIN_ID).text

        # Второй пользователь приходит по ссылке первого
        notifier.clear()
        await other.command("start", f"ref_{USER_ID}")
        assert (await ledger.get_user(USER_ID)).referral_earnings == BONUS
        assert any("Referral Success" in m.text for m in notifier.to(USER_ID))
        assert any("referred by user" in m.text for m in notifier.to(OTHER_ID))

        # Повтор той же ссылки ничего не меняет
        notifier.clear()
        await other.command("start", f"ref_{USER_ID}")
        assert (await ledger.get_user(USER_ID)).referral_earnings == BONUS
        assert notifier.to(USER_ID) == []

    @pytest.mark.asyncio
    async def test_start_survives_unreachable_admin(self, user, notifier, ledger):
        notifier.unreachable.add(ADMIN_ID)

        await user.command("start")

        assert (await ledger.get_user(USER_ID)).is_registered
        assert "Welcome" in notifier.last(USER_ID).text

    @pytest.mark.asyncio
    async def test_referral_dashboard(self, user, notifier, ledger, repository):
        await user.command("referral")
        message = notifier.last(USER_ID)
        assert f"https://t.me/TestUsdtBot?start=ref_{USER_ID}" in message.text
        assert message.reply_markup.inline_keyboard == []

        await repository.adjust_referral_earnings(USER_ID, Decimal("50"))
        await user.say("🔗 Referral")
        buttons = notifier.last(USER_ID).reply_markup.inline_keyboard
        assert buttons[0][0].text == "💸 Withdraw 50.00 USDT"
