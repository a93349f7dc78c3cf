"""
Тесты провайдера курсов и расчета суммы в фиате
"""

import pytest
from decimal import Decimal

from usdtbot.services.rates import RateProvider, calculate_fiat_amount, simulated_fetcher, DEFAULT_FLOORS


class TestFiatCalculation:
    """Тесты расчета суммы к получению"""

    def test_rounds_to_cents(self):
        # 100 * 1.054 = 105.4
        assert calculate_fiat_amount(Decimal("100"), Decimal("1.054")) == Decimal("105.40")
        assert str(calculate_fiat_amount(Decimal("100"), Decimal("1.054"))) == "105.40"

    def test_round_half_up(self):
        # 33.5 * 1.055 = 35.3425 -> 35.34; 0.5 * 1.05 = 0.525 -> 0.53
        assert calculate_fiat_amount(Decimal("33.5"), Decimal("1.055")) == Decimal("35.34")
        assert calculate_fiat_amount(Decimal("0.5"), Decimal("1.05")) == Decimal("0.53")


class TestRateProvider:
    """Тесты floor и обновления курсов"""

    @pytest.mark.asyncio
    async def test_rate_never_below_floor(self):
        provider = RateProvider(fetcher=lambda: {"USD": Decimal("0.5"), "EUR": Decimal("0.1"), "GBP": Decimal("0")})
        snapshot = await provider.refresh()
        assert snapshot.rates == DEFAULT_FLOORS

    @pytest.mark.asyncio
    async def test_rate_above_floor_is_kept_and_quantized(self):
        provider = RateProvider(fetcher=lambda: {"USD": Decimal("1.0567"), "EUR": Decimal("0.8931"), "GBP": Decimal("0.7999")})
        snapshot = await provider.refresh()
        assert snapshot.rate("USD") == Decimal("1.057")
        assert snapshot.rate("EUR") == Decimal("0.893")
        assert snapshot.rate("GBP") == Decimal("0.800")

    @pytest.mark.asyncio
    async def test_missing_currency_falls_back_to_floor(self):
        provider = RateProvider(fetcher=lambda: {"USD": Decimal("1.06")})
        snapshot = await provider.refresh()
        assert snapshot.rate("USD") == Decimal("1.060")
        assert snapshot.rate("EUR") == DEFAULT_FLOORS["EUR"]
        assert snapshot.rate("GBP") == DEFAULT_FLOORS["GBP"]

    @pytest.mark.asyncio
    async def test_async_fetcher(self):
        async def fetch():
            return {"USD": Decimal("1.051"), "EUR": Decimal("0.891"), "GBP": Decimal("0.791")}

        provider = RateProvider(fetcher=fetch)
        snapshot = await provider.refresh()
        assert snapshot.rate("EUR") == Decimal("0.891")

    @pytest.mark.asyncio
    async def test_current_rates_refreshes_lazily(self):
        calls = []

        def fetch():
            calls.append(1)
            return {"USD": Decimal("1.052"), "EUR": Decimal("0.892"), "GBP": Decimal("0.792")}

        provider = RateProvider(fetcher=fetch)
        first = await provider.current_rates()
        second = await provider.current_rates()
        assert first is second
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_simulated_rates_within_spread(self):
        provider = RateProvider(fetcher=simulated_fetcher(DEFAULT_FLOORS, Decimal("0.009")))
        for _ in range(20):
            snapshot = await provider.refresh()
            for currency, floor in DEFAULT_FLOORS.items():
                assert floor <= snapshot.rate(currency) <= floor + Decimal("0.009")
