"""
Тесты клиента CoinPayments
"""

import hashlib
import hmac
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import httpx

from usdtbot.services.deposits import CoinPaymentsClient, DepositError, DepositInfo


def _client():
    return CoinPaymentsClient("public", "private", "https://coinpayments.test/api.php", timeout=5)


OK_RESPONSE = {
    "error": "ok",
    "result": {
        "amount": "100.00000000",
        "address": "TXYZdepositAddress000000000000000",
        "txn_id": "CPFA1234",
        "timeout": 7200,
        "qrcode_url": "https://coinpayments.test/qrgen.php?id=CPFA1234",
    },
}


class TestCoinPaymentsClient:
    def test_sign(self):
        body = "version=1&key=public&cmd=create_transaction"
        expected = hmac.new(b"private", body.encode(), hashlib.sha512).hexdigest()
        assert _client()._sign(body) == expected

    @pytest.mark.asyncio
    async def test_create_deposit(self):
        client = _client()
        with patch.object(CoinPaymentsClient, "_post", new=AsyncMock(return_value=OK_RESPONSE)) as post:
            deposit = await client.create_deposit("USDT", "USDT.TRC20", Decimal("100"), "refunds@example.com", "42")

        post.assert_awaited_once_with({
            "cmd": "create_transaction",
            "amount": "100",
            "currency1": "USDT",
            "currency2": "USDT.TRC20",
            "buyer_email": "refunds@example.com",
            "custom": "42",
        })
        assert deposit == DepositInfo(
            address="TXYZdepositAddress000000000000000",
            amount=Decimal("100.00000000"),
            expiry_seconds=7200,
            qr_image_ref="https://coinpayments.test/qrgen.php?id=CPFA1234",
            txn_id="CPFA1234",
        )
        assert deposit.expiry_hours == 2

    @pytest.mark.asyncio
    async def test_gateway_error(self):
        with patch.object(CoinPaymentsClient, "_post", new=AsyncMock(return_value={"error": "Invalid API key", "result": []})):
            with pytest.raises(DepositError, match="Invalid API key"):
                await _client().create_deposit("USDT", "USDT.TRC20", Decimal("100"), "", "42")

    @pytest.mark.asyncio
    async def test_malformed_response(self):
        with patch.object(CoinPaymentsClient, "_post", new=AsyncMock(return_value={"error": "ok", "result": {"amount": "1"}})):
            with pytest.raises(DepositError, match="Malformed"):
                await _client().create_deposit("USDT", "USDT.TRC20", Decimal("100"), "", "42")

    @pytest.mark.asyncio
    async def test_transport_error(self):
        with patch.object(httpx.AsyncClient, "post", new=AsyncMock(side_effect=httpx.ConnectError("connection refused"))):
            with pytest.raises(DepositError, match="request failed"):
                await _client().create_deposit("USDT", "USDT.TRC20", Decimal("100"), "", "42")

    @pytest.mark.asyncio
    async def test_signed_request(self):
        response = httpx.Response(200, json=OK_RESPONSE, request=httpx.Request("POST", "https://coinpayments.test/api.php"))
        with patch.object(httpx.AsyncClient, "post", new=AsyncMock(return_value=response)) as post:
            await _client().create_deposit("USDT", "USDT.ERC20", Decimal("30"), "", "7")

        url = post.call_args.args[0]
        body = post.call_args.kwargs["content"]
        headers = post.call_args.kwargs["headers"]
        assert url == "https://coinpayments.test/api.php"
        assert "cmd=create_transaction" in body
        assert "currency2=USDT.ERC20" in body
        assert headers["HMAC"] == hmac.new(b"private", body.encode(), hashlib.sha512).hexdigest()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [["unexpected"], {"error": "ok", "result": ["unexpected"]}])
    async def test_non_object_response(self, payload):
        response = httpx.Response(200, json=payload, request=httpx.Request("POST", "https://coinpayments.test/api.php"))
        with patch.object(httpx.AsyncClient, "post", new=AsyncMock(return_value=response)):
            with pytest.raises(DepositError, match="Malformed"):
                await _client().create_deposit("USDT", "USDT.TRC20", Decimal("100"), "", "42")
