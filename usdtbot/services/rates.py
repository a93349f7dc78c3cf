"""
Курсы USDT к фиатным валютам

Курс никогда не опускается ниже минимального (floor) для валюты.
Источник курсов подключаемый: по умолчанию симуляция небольшого
колебания над floor.
"""

import asyncio
import inspect
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Awaitable, Callable, Dict, Mapping, Optional, Union

logger = logging.getLogger(__name__)

FIAT_CURRENCIES = ("USD", "EUR", "GBP")

DEFAULT_FLOORS = {
    "USD": Decimal("1.05"),
    "EUR": Decimal("0.89"),
    "GBP": Decimal("0.79"),
}

RATE_PRECISION = Decimal("0.001")
FIAT_PRECISION = Decimal("0.01")

RatesFetcher = Callable[[], Union[Mapping[str, Decimal], Awaitable[Mapping[str, Decimal]]]]


@dataclass(frozen=True)
class RateSnapshot:
    """Неизменяемый набор курсов на момент обновления"""
    rates: Mapping[str, Decimal]
    fetched_at: datetime = field(default_factory=datetime.now)

    def rate(self, fiat: str) -> Decimal:
        return self.rates[fiat]


def calculate_fiat_amount(usdt_amount: Decimal, rate: Decimal) -> Decimal:
    """Сумма к получению в фиате, округление до центов"""
    return (usdt_amount * rate).quantize(FIAT_PRECISION, rounding=ROUND_HALF_UP)


def simulated_fetcher(floors: Mapping[str, Decimal], spread: Decimal = Decimal("0.009")) -> RatesFetcher:
    """Симуляция рынка: floor + случайная надбавка в пределах spread"""
    def fetch() -> Dict[str, Decimal]:
        return {
            currency: floor + Decimal(str(random.uniform(0, float(spread))))
            for currency, floor in floors.items()
        }
    return fetch


class RateProvider:
    def __init__(
        self,
        floors: Optional[Mapping[str, Decimal]] = None,
        fetcher: Optional[RatesFetcher] = None,
        spread: Decimal = Decimal("0.009"),
    ):
        self.floors = dict(floors or DEFAULT_FLOORS)
        self.fetcher = fetcher or simulated_fetcher(self.floors, spread)
        self._snapshot: Optional[RateSnapshot] = None
        self._lock = asyncio.Lock()

    def _apply_floor(self, currency: str, value: Decimal) -> Decimal:
        floor = self.floors[currency]
        value = Decimal(value).quantize(RATE_PRECISION, rounding=ROUND_HALF_UP)
        return max(value, floor)

    async def refresh(self) -> RateSnapshot:
        """Обновляет курсы и возвращает свежий снимок"""
        async with self._lock:
            raw = self.fetcher()
            if inspect.isawaitable(raw):
                raw = await raw

            rates = {}
            for currency in self.floors:
                value = raw.get(currency) if raw else None
                if value is None:
                    logger.warning(f"Rate for {currency} missing from source, using floor")
                    value = self.floors[currency]
                rates[currency] = self._apply_floor(currency, value)

            self._snapshot = RateSnapshot(rates=rates)
            logger.debug(f"Rates refreshed: {rates}")
            return self._snapshot

    async def current_rates(self) -> RateSnapshot:
        """Последний снимок; при первом обращении выполняет обновление"""
        if self._snapshot is None:
            return await self.refresh()
        return self._snapshot
