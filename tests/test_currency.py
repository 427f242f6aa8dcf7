"""
Unit Tests for the Currency Converter

Covers same-currency passthrough, pair keys, the per-run memo and
single-flight fetching under concurrency.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal

import pytest

from lib.market_data import StaticQuoteProvider
from modules.tax.currency import CurrencyConverter, fx_key
from modules.tax.errors import RateNotAvailable
from modules.tax.tax_events import Money


class SlowProvider:
    """Counts calls and sleeps so concurrent callers overlap."""

    def __init__(self, value="0.9", delay=0.05):
        self.value = Decimal(value)
        self.delay = delay
        self.calls = 0
        self._lock = threading.Lock()

    def rate(self, key, on_date):
        with self._lock:
            self.calls += 1
        time.sleep(self.delay)
        return self.value


class TestConversion:

    def test_same_currency_never_calls_provider(self, converter, provider):
        money = Money(Decimal("123.45"), "EUR")
        assert converter.convert(money, date(2023, 1, 2)) == money
        assert converter.rate("eur", date(2023, 1, 2)) == Decimal(1)
        assert provider.calls == {}

    def test_pair_key_is_source_then_target(self):
        assert fx_key("usd", "eur") == "USDEUR"

    def test_convert_multiplies_by_rate(self, converter):
        result = converter.convert(Money(Decimal("100"), "USD"), date(2023, 6, 1))
        assert result == Money(Decimal("80.0"), "EUR")

    def test_explicit_target_currency(self, converter, provider):
        provider.quotes[("EURUSD", date(2023, 1, 2))] = Decimal("1.1")
        result = converter.convert(Money(Decimal("10"), "EUR"), date(2023, 1, 2), to="USD")
        assert result.currency == "USD"
        assert result.amount == Decimal("11.0")

    def test_convert_to_cents(self):
        """
        Scenario: 10.64 USD at USDRUB 65.4244 = 696.115616 RUB
        Expected: 696.12 RUB; a 10.645 USD leg is rounded to 10.65 first
        """
        converter = CurrencyConverter("RUB", StaticQuoteProvider(fallbacks={"USDRUB": Decimal("65.4244")}))

        assert converter.convert_to_cents(Money(Decimal("10.64"), "USD"), date(2023, 1, 2)) == Money(Decimal("696.12"), "RUB")
        assert converter.convert_to_cents(Money(Decimal("10.645"), "USD"), date(2023, 1, 2)).amount == Decimal("696.77")

    def test_zero_amount_needs_no_rate(self):
        converter = CurrencyConverter("EUR", StaticQuoteProvider())
        result = converter.convert(Money.zero("JPY"), date(2023, 1, 2))
        assert result == Money.zero("EUR")


class TestMemoization:

    def test_rate_fetched_once_per_pair_and_date(self, converter, provider):
        for _ in range(5):
            converter.convert(Money(Decimal("1"), "USD"), date(2023, 1, 2))
        assert provider.calls[("USDEUR", date(2023, 1, 2))] == 1
        assert converter.cached_rates() == {("USDEUR", date(2023, 1, 2)): Decimal("0.9")}

    def test_failure_is_remembered(self):
        provider = StaticQuoteProvider()
        converter = CurrencyConverter("EUR", provider)

        for _ in range(3):
            with pytest.raises(RateNotAvailable) as exc_info:
                converter.convert(Money(Decimal("5"), "CHF"), date(2023, 3, 1))

        assert provider.calls[("CHFEUR", date(2023, 3, 1))] == 1
        assert exc_info.value.context["currency"] == "CHF"
        assert exc_info.value.context["date"] == date(2023, 3, 1)
        assert converter.cached_rates() == {}

    def test_non_positive_rate_is_rejected(self):
        converter = CurrencyConverter("EUR", StaticQuoteProvider(fallbacks={"USDEUR": 0}))
        with pytest.raises(RateNotAvailable):
            converter.rate("USD", date(2023, 1, 2))

    def test_concurrent_callers_share_one_fetch(self):
        """
        Scenario: Eight threads ask for the same rate at once
        Expected: The provider is called exactly once and all get the same value
        """
        provider = SlowProvider()
        converter = CurrencyConverter("EUR", provider)

        with ThreadPoolExecutor(max_workers=8) as pool:
            rates = list(pool.map(lambda _: converter.rate("USD", date(2023, 1, 2)), range(8)))

        assert provider.calls == 1
        assert set(rates) == {Decimal("0.9")}

    def test_distinct_dates_fetch_separately(self):
        provider = SlowProvider(delay=0)
        converter = CurrencyConverter("EUR", provider)
        converter.rate("USD", date(2023, 1, 2))
        converter.rate("USD", date(2023, 1, 3))
        assert provider.calls == 2
