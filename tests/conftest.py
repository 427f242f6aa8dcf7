"""
Shared fixtures: offline quote provider, converters, ledgers and event builders.
"""

from datetime import date
from decimal import Decimal

import pytest

from lib.market_data import StaticQuoteProvider
from lib.parsers.canonical_events import CanonicalEvent
from modules.tax.currency import CurrencyConverter
from modules.tax.ledger import LotLedger
from modules.tax.policy import CostBasisDate, JurisdictionPolicy
from modules.tax.tax_events import Lot, LotOrigin, Money


@pytest.fixture
def provider():
    """USD quotes in EUR for a handful of dates, 0.9 otherwise."""
    return StaticQuoteProvider(
        quotes={
            ("USDEUR", date(2023, 1, 2)): Decimal("0.9"),
            ("USDEUR", date(2023, 1, 4)): Decimal("0.95"),
            ("USDEUR", date(2023, 6, 1)): Decimal("0.8"),
            ("USDEUR", date(2023, 6, 5)): Decimal("0.85"),
        },
        fallbacks={"USDEUR": Decimal("0.9")},
    )


@pytest.fixture
def policy():
    return JurisdictionPolicy(base_currency="EUR")


@pytest.fixture
def settlement_policy():
    return JurisdictionPolicy(base_currency="EUR", cost_basis_date=CostBasisDate.SETTLEMENT)


@pytest.fixture
def converter(provider):
    return CurrencyConverter("EUR", provider)


@pytest.fixture
def ledger(converter, policy):
    return LotLedger(converter, policy)


@pytest.fixture
def make_lot():
    """Factory for open lots; EUR and purchase origin by default."""
    def _make(symbol="AAPL", quantity="100", unit_cost="10", acquired=date(2023, 1, 2),
              settled=None, sequence_no=1, currency="EUR", commission=None, lot_id=None):
        return Lot(
            lot_id=lot_id or f"L{sequence_no}",
            symbol=symbol,
            quantity=Decimal(quantity),
            unit_cost=Money(Decimal(unit_cost), currency),
            acquisition_date=acquired,
            settlement_date=settled or acquired,
            sequence_no=sequence_no,
            origin=LotOrigin.PURCHASE,
            commission=Money(Decimal(commission), currency) if commission is not None else None,
        )
    return _make


@pytest.fixture
def trade():
    """Factory for canonical trade events (negative quantity sells)."""
    def _trade(sequence_no, day, symbol, quantity, price, currency="EUR", commission=None, settled=None):
        payload = {
            "symbol": symbol,
            "quantity": str(quantity),
            "price": {"amount": str(price), "currency": currency},
        }
        if commission is not None:
            payload["commission"] = {"amount": str(commission), "currency": currency}
        return CanonicalEvent(
            sequence_no=sequence_no,
            date=day,
            settlement_date=settled,
            kind="trade",
            payload=payload,
        )
    return _trade


@pytest.fixture
def corporate_action():
    """Factory for canonical corporate action events."""
    def _action(sequence_no, day, symbol, action_type, **fields):
        return CanonicalEvent(
            sequence_no=sequence_no,
            date=day,
            settlement_date=day,
            kind="corporate_action",
            payload={"type": action_type, "symbol": symbol, **fields},
        )
    return _action
