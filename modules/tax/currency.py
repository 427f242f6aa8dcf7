"""
Currency Converter

Converts Money into the portfolio base currency on a given date using a
quote provider. Conversions are memoized per (pair, date) with single-flight
semantics: concurrent callers asking for the same rate wait on one fetch,
and both the value and a failure are remembered for the rest of the run.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

import threading
from concurrent.futures import Future
from datetime import date
from decimal import Decimal
from typing import Dict, Optional, Protocol, Tuple

from lib.utils.logging_config import setup_logger
from modules.tax.errors import RateNotAvailable
from modules.tax.tax_events import Money

logger = setup_logger(__name__)


class QuoteProvider(Protocol):
    """Anything that can price a key (ticker or FX pair) on a date."""

    def rate(self, key: str, on_date: date) -> Decimal:
        ...


def fx_key(from_currency: str, to_currency: str) -> str:
    """Pair key: 'USDEUR' is the number of EUR per 1 USD."""
    return f"{from_currency.upper()}{to_currency.upper()}"


class CurrencyConverter:
    """Base-currency converter with a per-run rate memo."""

    def __init__(self, base_currency: str, provider: QuoteProvider):
        self.base_currency = base_currency.upper()
        self.provider = provider
        self._lock = threading.Lock()
        self._rates: Dict[Tuple[str, date], Future] = {}

    def rate(self, currency: str, on_date: date, to: Optional[str] = None) -> Decimal:
        """Units of `to` (default base currency) per one unit of currency."""
        source = currency.upper()
        target = (to or self.base_currency).upper()
        if source == target:
            return Decimal(1)
        return self._fetch(fx_key(source, target), on_date)

    def convert(self, money: Money, on_date: date, to: Optional[str] = None) -> Money:
        target = (to or self.base_currency).upper()
        if money.currency == target:
            return money
        if money.is_zero():
            return Money.zero(target)

        try:
            rate = self.rate(money.currency, on_date, target)
        except RateNotAvailable as e:
            raise RateNotAvailable(
                f"Cannot convert {money.currency} to {target}",
                amount=money.amount,
                currency=money.currency,
                date=on_date,
            ) from e
        return Money(money.amount * rate, target)

    def convert_to_cents(self, money: Money, on_date: date, to: Optional[str] = None) -> Money:
        """
        Convert with cash rounding: the amount is rounded to cents, converted,
        and the result rounded to cents again.

        Example: 10.64 USD at 65.4244 is 696.12 RUB, not 696.115616.
        """
        return self.convert(money.round(2), on_date, to).round(2)

    def _fetch(self, key: str, on_date: date) -> Decimal:
        with self._lock:
            future = self._rates.get((key, on_date))
            owner = future is None
            if owner:
                future = Future()
                self._rates[(key, on_date)] = future

        if owner:
            try:
                value = Decimal(self.provider.rate(key, on_date))
                if value <= 0:
                    raise RateNotAvailable("Provider returned a non-positive rate", key=key, date=on_date, rate=value)
                logger.debug(f"Rate {key} on {on_date} = {value}")
                future.set_result(value)
            except Exception as e:
                future.set_exception(e)

        return future.result()

    def cached_rates(self) -> Dict[Tuple[str, date], Decimal]:
        """Successfully fetched rates so far (for audit output)."""
        with self._lock:
            items = list(self._rates.items())
        return {
            key: future.result()
            for key, future in items
            if future.done() and future.exception() is None
        }
