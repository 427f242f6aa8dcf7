"""
Unit Tests for the Quote Providers

yfinance is patched out; no network access.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pandas as pd
import pytest

from lib.market_data import StaticQuoteProvider, YFinanceQuoteProvider, normalize_ticker, yahoo_symbol
from modules.tax.errors import RateNotAvailable


def history(closes):
    """yfinance-shaped frame: tz-aware daily index with a Close column."""
    index = pd.DatetimeIndex([pd.Timestamp(day) for day in closes], tz="America/New_York")
    return pd.DataFrame({"Close": list(closes.values())}, index=index)


@pytest.fixture
def ticker():
    with patch("lib.market_data.yf.Ticker") as ticker_cls, patch("lib.market_data.time.sleep"):
        yield ticker_cls


@pytest.fixture
def provider():
    provider = YFinanceQuoteProvider(max_retries=3)
    provider.RATE_LIMIT_DELAY_SECONDS = 0
    return provider


class TestTickerNormalization:

    @pytest.mark.parametrize("raw,expected", [
        ("BRK.B", "BRK-B"),
        ("BRK/B", "BRK-B"),
        ("brk/b", "BRK-B"),
        ("NOVO-B.CO", "NOVO-B.CO"),
        (" aapl ", "AAPL"),
        ("", ""),
    ])
    def test_normalize_ticker(self, raw, expected):
        assert normalize_ticker(raw) == expected

    def test_currency_pairs_map_to_fx_symbols(self):
        assert yahoo_symbol("usdeur") == "USDEUR=X"
        assert yahoo_symbol("GOOGLE", fx_currencies={"USD", "EUR"}) == "GOOGLE"


class TestYFinanceQuoteProvider:

    def test_weekend_uses_previous_close(self, ticker, provider):
        ticker.return_value.history.return_value = history({
            "2023-06-01": 179.5,
            "2023-06-02": 180.25,
            "2023-06-05": 181.0,
        })

        # Saturday: Friday's close applies, Monday's row is ignored
        assert provider.rate("AAPL", date(2023, 6, 3)) == Decimal("180.25")
        ticker.assert_called_with("AAPL")

    def test_fx_pair_requested_as_yahoo_pair(self, ticker, provider):
        ticker.return_value.history.return_value = history({"2023-06-01": 0.92})

        assert provider.rate("USDEUR", date(2023, 6, 1)) == Decimal("0.92")
        ticker.assert_called_with("USDEUR=X")

    def test_empty_history(self, ticker, provider):
        ticker.return_value.history.return_value = pd.DataFrame()

        with pytest.raises(RateNotAvailable):
            provider.rate("DELISTED", date(2023, 6, 1))

    def test_only_later_rows(self, ticker, provider):
        ticker.return_value.history.return_value = history({"2023-06-05": 181.0})

        with pytest.raises(RateNotAvailable):
            provider.rate("AAPL", date(2023, 6, 2))

    def test_transient_error_retried(self, ticker, provider):
        good = MagicMock()
        good.history.return_value = history({"2023-06-01": 10.5})
        ticker.side_effect = [ConnectionError("reset"), good]

        assert provider.rate("SAP", date(2023, 6, 1)) == Decimal("10.5")
        assert ticker.call_count == 2

    def test_retries_exhausted(self, ticker, provider):
        ticker.side_effect = ConnectionError("reset")

        with pytest.raises(RateNotAvailable):
            provider.rate("SAP", date(2023, 6, 1))
        assert ticker.call_count == 3


class TestStaticQuoteProvider:

    def test_exact_date_before_fallback(self):
        quotes = StaticQuoteProvider(
            quotes={("usdeur", date(2023, 1, 2)): "0.9"},
            fallbacks={"USDEUR": "0.8"},
        )
        assert quotes.rate("USDEUR", date(2023, 1, 2)) == Decimal("0.9")
        assert quotes.rate("USDEUR", date(2023, 1, 3)) == Decimal("0.8")
        assert quotes.calls[("USDEUR", date(2023, 1, 2))] == 1

    def test_unknown_key(self):
        with pytest.raises(RateNotAvailable):
            StaticQuoteProvider().rate("XYZ", date(2023, 1, 2))
