"""Quote providers for prices and FX rates.

Both providers implement the same contract: rate(key, on_date) -> Decimal,
where key is a ticker ('AAPL') or a currency pair ('USDEUR' = EUR per USD),
raising RateNotAvailable when no value exists for that key and date.

- YFinanceQuoteProvider: closing price on or before the date via yfinance
- StaticQuoteProvider: in-memory table for tests and offline runs
"""

import logging
import re
import threading
import time
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Mapping, Optional, Tuple

import pandas as pd
import yfinance as yf

from lib.utils.logging_config import setup_logger
from modules.tax.errors import RateNotAvailable

logger = setup_logger(__name__)

# Suppress yfinance error spam for delisted tickers
logging.getLogger('yfinance').setLevel(logging.CRITICAL)

_FX_PAIR = re.compile(r"^[A-Z]{6}$")


def normalize_ticker(ticker: str) -> str:
    """
    Normalize ticker format for Yahoo Finance compatibility.

    'BRK/B' and 'BRK.B' become 'BRK-B' (class shares use hyphen).
    """
    if not ticker:
        return ticker

    ticker = ticker.strip().upper()
    ticker = re.sub(r'[/\.]([A-Z])$', r'-\1', ticker)
    ticker = re.sub(r'/([A-Z]+)$', r'-\1', ticker)
    return ticker


def yahoo_symbol(key: str, fx_currencies: Optional[set] = None) -> str:
    """Map a quote key to a Yahoo symbol; pairs become 'USDEUR=X'."""
    key = key.strip().upper()
    if _FX_PAIR.match(key) and (fx_currencies is None or key[:3] in fx_currencies):
        return f"{key}=X"
    return normalize_ticker(key)


class YFinanceQuoteProvider:
    """
    Historical closes from Yahoo Finance.

    Calls are rate limited and retried with exponential backoff for
    transient errors; an empty history is reported as RateNotAvailable.
    """

    RATE_LIMIT_DELAY_SECONDS = 1.5
    LOOKBACK_DAYS = 7

    def __init__(self, max_retries: int = 3, fx_currencies: Optional[set] = None):
        self.max_retries = max_retries
        self.fx_currencies = fx_currencies
        self._fetch_lock = threading.Lock()
        self._last_fetch_time: Optional[float] = None

    def _throttle(self):
        with self._fetch_lock:
            if self._last_fetch_time is not None:
                elapsed = time.time() - self._last_fetch_time
                if elapsed < self.RATE_LIMIT_DELAY_SECONDS:
                    time.sleep(self.RATE_LIMIT_DELAY_SECONDS - elapsed)
            self._last_fetch_time = time.time()

    def _history(self, symbol: str, on_date: date) -> pd.DataFrame:
        start = on_date - timedelta(days=self.LOOKBACK_DAYS)
        end = on_date + timedelta(days=1)
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            self._throttle()
            try:
                return yf.Ticker(symbol).history(start=start.isoformat(), end=end.isoformat(), auto_adjust=False)
            except Exception as e:
                last_error = e
                logger.warning(f"{symbol}: Attempt {attempt + 1}/{self.max_retries} failed: {e}")
                if attempt < self.max_retries - 1:
                    time.sleep(2 ** attempt)

        raise RateNotAvailable(f"yfinance request failed: {last_error}", symbol=symbol, date=on_date)

    def rate(self, key: str, on_date: date) -> Decimal:
        symbol = yahoo_symbol(key, self.fx_currencies)
        hist = self._history(symbol, on_date)

        if hist is None or hist.empty or 'Close' not in hist.columns:
            raise RateNotAvailable("No quote history", key=key, symbol=symbol, date=on_date)

        closes = hist['Close'].dropna()
        index = pd.to_datetime(closes.index)
        if index.tz is not None:
            index = index.tz_localize(None)
        closes.index = index.normalize()
        closes = closes[closes.index <= pd.Timestamp(on_date)]
        if closes.empty:
            raise RateNotAvailable("No quote on or before date", key=key, symbol=symbol, date=on_date)

        value = Decimal(str(closes.iloc[-1]))
        if value <= 0:
            raise RateNotAvailable("Non-positive quote", key=key, symbol=symbol, date=on_date, value=value)
        logger.debug(f"{symbol} on {on_date}: {value}")
        return value


class StaticQuoteProvider:
    """
    Quotes from an in-memory table.

    Args:
        quotes: {(key, date): value}
        fallbacks: {key: value} used when the exact date is missing
    """

    def __init__(
        self,
        quotes: Optional[Mapping[Tuple[str, date], Decimal]] = None,
        fallbacks: Optional[Mapping[str, Decimal]] = None,
    ):
        self.quotes: Dict[Tuple[str, date], Decimal] = {
            (key.upper(), on_date): Decimal(str(value)) for (key, on_date), value in (quotes or {}).items()
        }
        self.fallbacks: Dict[str, Decimal] = {
            key.upper(): Decimal(str(value)) for key, value in (fallbacks or {}).items()
        }
        self.calls: Dict[Tuple[str, date], int] = {}
        self._lock = threading.Lock()

    def rate(self, key: str, on_date: date) -> Decimal:
        key = key.upper()
        with self._lock:
            self.calls[(key, on_date)] = self.calls.get((key, on_date), 0) + 1

        if (key, on_date) in self.quotes:
            return self.quotes[(key, on_date)]
        if key in self.fallbacks:
            return self.fallbacks[key]
        raise RateNotAvailable("No static quote", key=key, date=on_date)
