"""
Tests for reporting views over replay results.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from datetime import date
from decimal import Decimal

import pytest

from lib.market_data import StaticQuoteProvider
from lib.parsers.canonical_events import CanonicalEvent
from modules.tax import reporting
from modules.tax.calculators import get_calculator
from modules.tax.currency import CurrencyConverter
from modules.tax.engine import EventProcessor


@pytest.fixture
def result(converter, policy, trade):
    events = [
        trade(1, date(2022, 3, 1), "AAPL", 100, 10, commission=1),
        trade(2, date(2022, 9, 1), "AAPL", -40, 15),
        trade(3, date(2023, 2, 1), "MSFT", 10, 200, currency="USD"),
        trade(4, date(2023, 6, 1), "MSFT", -5, 250, currency="USD"),
    ]
    return EventProcessor("ib", converter, policy).replay(events)


class TestFrames:

    def test_disposals_frame(self, result):
        df = reporting.disposals_frame(result.disposals)

        assert len(df) == 2
        assert list(df["symbol"]) == ["AAPL", "MSFT"]
        assert df.loc[0, "gain"] == Decimal("199.6")
        assert df.loc[0, "holding_period_days"] == 184
        assert set(df["currency"]) == {"EUR"}

    def test_empty_frames_keep_columns(self):
        df = reporting.income_frame([])
        assert df.empty
        assert "original_currency" in df.columns

    def test_fees_frame(self, converter, policy):
        fee = CanonicalEvent(
            sequence_no=1, date=date(2023, 6, 1), kind="fee",
            payload={"amount": "10 USD", "description": "custody"},
        )
        fees = EventProcessor("ib", converter, policy).replay([fee]).fees
        df = reporting.fees_frame(fees)

        assert list(df["description"]) == ["custody"]
        assert df.loc[0, "amount"] == Decimal("8")
        assert df.loc[0, "original_currency"] == "USD"

    def test_lots_frame(self, result):
        df = reporting.lots_frame(result.ledger.lots())
        assert list(df["symbol"]) == ["AAPL", "MSFT"]
        assert list(df["quantity"]) == [Decimal("60"), Decimal("5")]


class TestViews:

    def test_yearly_selection(self, result):
        assert [d.symbol for d in reporting.disposals_for_year(result, 2022)] == ["AAPL"]
        assert [d.symbol for d in reporting.disposals_for_year(result, 2023)] == ["MSFT"]
        assert reporting.income_for_year(result, 2023) == []
        assert reporting.fees_for_year(result, 2023) == []

    def test_current_snapshot(self, result):
        snapshot = reporting.current_snapshot(result)
        assert sorted(snapshot) == ["AAPL", "MSFT"]

    def test_unrealized_gains(self, result, converter):
        quotes = StaticQuoteProvider(fallbacks={"AAPL": Decimal("15"), "MSFT": Decimal("300")})
        df = reporting.unrealized_gains(result, converter, quotes, date(2023, 6, 1))

        aapl = df[df["symbol"] == "AAPL"].iloc[0]
        assert aapl["cost_basis"] == Decimal("600")
        assert aapl["market_value"] == Decimal("900")
        assert aapl["unrealized_gain"] == Decimal("300")

        msft = df[df["symbol"] == "MSFT"].iloc[0]
        # 5 x 200 USD at 0.9 against 5 x 300 USD at 0.8
        assert msft["cost_basis"] == Decimal("900")
        assert msft["market_value"] == Decimal("1200")

    def test_stock_dividend_lots_valued_in_quote_currency(self, policy, trade, corporate_action):
        """
        Scenario: 10 AAPL bought at 100 USD, one bonus share per share held,
        quote 100 USD, USDEUR 0.5 throughout
        Expected: 20 shares worth 1000 EUR against a cost of 500 EUR
        """
        converter = CurrencyConverter("EUR", StaticQuoteProvider(fallbacks={"USDEUR": Decimal("0.5")}))
        result = EventProcessor("ib", converter, policy).replay([
            trade(1, date(2023, 1, 2), "AAPL", 10, 100, currency="USD"),
            corporate_action(2, date(2023, 3, 1), "AAPL", "stock-dividend", quantity_per_held="1"),
        ])
        quotes = StaticQuoteProvider(fallbacks={"AAPL": Decimal("100")})

        [row] = reporting.unrealized_gains(result, converter, quotes, date(2023, 6, 1)).to_dict("records")

        assert row["quantity"] == Decimal("20")
        assert row["quote_currency"] == "USD"
        assert row["market_value"] == Decimal("1000")
        assert row["cost_basis"] == Decimal("500")

    def test_explicit_quote_currency(self, result, converter):
        quotes = StaticQuoteProvider(fallbacks={"AAPL": Decimal("15"), "MSFT": Decimal("300")})
        df = reporting.unrealized_gains(
            result, converter, quotes, date(2023, 6, 1), quote_currencies={"msft": "eur"},
        )
        msft = df[df["symbol"] == "MSFT"].iloc[0]
        assert msft["quote_currency"] == "EUR"
        assert msft["market_value"] == Decimal("1500")


class TestAggregateTax:

    def test_portfolios_combined(self, result, converter, policy, trade):
        other = EventProcessor("degiro", converter, policy).replay([
            trade(1, date(2022, 1, 3), "SAP", 10, 100),
            trade(2, date(2022, 11, 1), "SAP", -10, 90),
        ])
        calculator = get_calculator("GENERIC", trading_rates={2020: 25}, exemptions=set())

        combined = reporting.aggregate_tax({"ib": result, "degiro": other}, calculator, 2022)

        # 199.60 gain in ib, 100 loss in degiro
        assert combined.taxable_gain == Decimal("99.6")
        assert combined.tax_due == Decimal("24.90")
