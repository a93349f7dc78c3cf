"""
Создание депозитного адреса через платежный шлюз (CoinPayments API)
"""

import asyncio
import hashlib
import hmac
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional, Protocol
from urllib.parse import urlencode

import httpx

from usdtbot.utils.logger import PerformanceLogger, log_api_call

logger = logging.getLogger(__name__)


class DepositError(Exception):
    """Шлюз не смог создать депозит"""


@dataclass
class DepositInfo:
    address: str
    amount: Decimal
    expiry_seconds: int
    qr_image_ref: Optional[str] = None
    txn_id: Optional[str] = None

    @property
    def expiry_hours(self) -> int:
        return round(self.expiry_seconds / 3600)


class DepositGateway(Protocol):
    async def create_deposit(
        self,
        source_currency: str,
        destination_network: str,
        amount: Decimal,
        contact: str,
        correlation_id: str,
    ) -> DepositInfo:
        ...


class CoinPaymentsClient:
    """Клиент CoinPayments: команда create_transaction с HMAC-SHA512 подписью"""

    API_VERSION = 1

    def __init__(self, public_key: str, private_key: str, api_url: str, timeout: int = 15):
        self.public_key = public_key
        self.private_key = private_key
        self.api_url = api_url
        self.timeout = timeout

    def _sign(self, body: str) -> str:
        return hmac.new(self.private_key.encode(), body.encode(), hashlib.sha512).hexdigest()

    async def _post(self, fields: Dict[str, str]) -> Dict:
        """Подписанный POST к API. Ошибки транспорта превращаются в DepositError."""
        payload = {
            "version": str(self.API_VERSION),
            "key": self.public_key,
            "format": "json",
            **fields,
        }
        body = urlencode(payload)
        headers = {
            "HMAC": self._sign(body),
            "Content-Type": "application/x-www-form-urlencoded",
        }
        start_time = asyncio.get_event_loop().time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.api_url, content=body, headers=headers)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            duration = (asyncio.get_event_loop().time() - start_time) * 1000
            log_api_call(logger, "coinpayments", fields.get("cmd", "?"), duration, status=str(e))
            raise DepositError(f"CoinPayments request failed: {e}") from e

        duration = (asyncio.get_event_loop().time() - start_time) * 1000
        log_api_call(logger, "coinpayments", fields.get("cmd", "?"), duration)
        return data

    async def create_deposit(self, source_currency, destination_network, amount, contact, correlation_id):
        with PerformanceLogger(logger, f"create_deposit for {correlation_id}"):
            data = await self._post({
                "cmd": "create_transaction",
                "amount": str(amount),
                "currency1": source_currency,
                "currency2": destination_network,
                "buyer_email": contact,
                "custom": correlation_id,
            })

        if not isinstance(data, dict):
            raise DepositError(f"Malformed CoinPayments response: {data!r}")
        if data.get("error") != "ok":
            raise DepositError(f"CoinPayments error: {data.get('error')}")

        result = data.get("result") or {}
        if not isinstance(result, dict):
            raise DepositError(f"Malformed CoinPayments result: {result!r}")
        try:
            return DepositInfo(
                address=result["address"],
                amount=Decimal(str(result["amount"])),
                expiry_seconds=int(result["timeout"]),
                qr_image_ref=result.get("qrcode_url"),
                txn_id=result.get("txn_id"),
            )
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise DepositError(f"Malformed CoinPayments response: {e}") from e
