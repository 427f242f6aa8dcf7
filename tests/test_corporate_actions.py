"""
Unit Tests for Corporate Actions

Splits, reverse splits with cash in lieu, renames, spin-offs, stock
dividends, mergers and delistings applied to a FIFO ledger.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from datetime import date
from decimal import Decimal

import pytest

from modules.tax.corporate_actions import (
    CorporateActionEngine,
    Delisting,
    Merger,
    Ratio,
    Rename,
    ReverseSplit,
    SpinOff,
    StockDividend,
    StockSplit,
)
from modules.tax.errors import (
    AmbiguousMatch,
    InvalidActionConfiguration,
    OutOfOrderEvent,
    ValueConservationError,
)
from modules.tax.ledger import LotLedger
from modules.tax.policy import JurisdictionPolicy
from modules.tax.tax_events import DisposalReason, LotOrigin, Money

ACTION_DATE = date(2023, 3, 1)


def eur(amount):
    return Money(Decimal(str(amount)), "EUR")


@pytest.fixture
def engine(ledger, policy):
    return CorporateActionEngine(ledger, policy)


class TestRatio:

    def test_parse(self):
        ratio = Ratio.parse("4:1")
        assert (ratio.new, ratio.old) == (4, 1)
        assert ratio.factor == Decimal(4)
        assert str(ratio) == "4:1"

    @pytest.mark.parametrize("text", ["4-1", "4", "a:b", "0:1", ""])
    def test_invalid_ratio(self, text):
        with pytest.raises(InvalidActionConfiguration):
            Ratio.parse(text)

    def test_split_direction_checked(self):
        with pytest.raises(InvalidActionConfiguration):
            StockSplit(Ratio(1, 10))
        with pytest.raises(InvalidActionConfiguration):
            ReverseSplit(Ratio(2, 1))


class TestSplits:

    def test_split_then_sell(self, ledger, engine, make_lot):
        """
        Scenario: 100 @ 10, split 2:1, sell 50
        Expected: 200 @ 5 after the split; the sale carries cost 250
        """
        ledger.open(make_lot())
        engine.apply("AAPL", StockSplit(Ratio(2, 1)), ACTION_DATE, 2)

        [lot] = ledger.lots("AAPL")
        assert lot.quantity == Decimal("200")
        assert lot.unit_cost == eur(5)
        assert lot.origin == LotOrigin.SPLIT
        assert lot.acquisition_date == date(2023, 1, 2)

        [d] = ledger.close("AAPL", Decimal("50"), date(2023, 6, 1), eur(300), eur(0))
        assert d.cost_basis == eur(250)
        assert d.gain == eur(50)

    def test_split_can_reset_acquisition_date(self, converter, make_lot):
        policy = JurisdictionPolicy(split_resets_acquisition_date=True)
        ledger = LotLedger(converter, policy)
        ledger.open(make_lot())
        CorporateActionEngine(ledger, policy).apply("AAPL", StockSplit(Ratio(4, 1)), ACTION_DATE, 9)

        [lot] = ledger.lots("AAPL")
        assert lot.acquisition_date == ACTION_DATE
        assert lot.sequence_no == 9

    def test_reverse_split_pays_cash_in_lieu(self, ledger, engine, make_lot):
        """
        Scenario: 105 @ 10, reverse split 1:10, cash in lieu 30 per share
        Expected: 10 shares @ 100 remain; 0.5 share closed for 15 against cost 50
        """
        ledger.open(make_lot(quantity="105"))
        disposals = engine.apply(
            "AAPL", ReverseSplit(Ratio(1, 10), cash_in_lieu_price=eur(30)), ACTION_DATE, 2
        )

        [d] = disposals
        assert d.quantity == Decimal("0.5")
        assert d.proceeds == eur(15)
        assert d.cost_basis == eur(50)
        assert d.reason == DisposalReason.CASH_IN_LIEU
        assert d.origin == LotOrigin.REVERSE_SPLIT
        assert ledger.snapshot("AAPL") == Decimal("10")

    def test_reverse_split_without_cash_keeps_fraction(self, ledger, engine, make_lot):
        ledger.open(make_lot(quantity="105"))
        assert engine.apply("AAPL", ReverseSplit(Ratio(1, 10)), ACTION_DATE, 2) == []
        assert ledger.snapshot("AAPL") == Decimal("10.5")

    def test_conservation_violation_detected(self, converter, make_lot):
        """
        Scenario: 3:1 split of 10 @ 10 with zero tolerance
        Expected: Rounding in 10/3 breaks exact conservation and the action is rejected
        """
        policy = JurisdictionPolicy(value_epsilon=Decimal(0))
        ledger = LotLedger(converter, policy)
        ledger.open(make_lot(quantity="10", unit_cost="10"))

        with pytest.raises(ValueConservationError):
            CorporateActionEngine(ledger, policy).apply("AAPL", StockSplit(Ratio(3, 1)), ACTION_DATE, 2)

    def test_conservation_within_default_epsilon(self, ledger, engine, make_lot):
        ledger.open(make_lot(quantity="10", unit_cost="10"))
        engine.apply("AAPL", StockSplit(Ratio(3, 1)), ACTION_DATE, 2)
        assert ledger.snapshot("AAPL") == Decimal("30")


class TestRename:

    def test_rename_moves_lots(self, ledger, engine, make_lot):
        ledger.open(make_lot(symbol="FB"))
        engine.apply("FB", Rename("META"), ACTION_DATE, 2)

        assert ledger.lots("FB") == []
        [lot] = ledger.lots("META")
        assert lot.symbol == "META"
        assert lot.origin == LotOrigin.RENAME
        assert lot.acquisition_date == date(2023, 1, 2)
        assert ledger.last_event_date("META") == ACTION_DATE

    def test_rename_onto_open_lots_is_ambiguous(self, ledger, engine, make_lot):
        ledger.open(make_lot(symbol="FB", sequence_no=1))
        ledger.open(make_lot(symbol="META", sequence_no=2))
        with pytest.raises(AmbiguousMatch):
            engine.apply("FB", Rename("META"), ACTION_DATE, 3)
        assert ledger.snapshot("FB") == Decimal("100")


class TestSpinOff:

    def test_allocation_ratio(self, ledger, engine, make_lot):
        """
        Scenario: 100 EBAY @ 50 with 10 commission, 20% of cost spun into PYPL 1:1
        Expected: EBAY keeps 40/share, PYPL gets 100 @ 10 with the original date
        """
        ledger.open(make_lot(symbol="EBAY", unit_cost="50", commission="10"))
        engine.apply("EBAY", SpinOff("PYPL", allocation_ratio=Decimal("0.2")), ACTION_DATE, 2)

        [parent] = ledger.lots("EBAY")
        [child] = ledger.lots("PYPL")
        assert parent.unit_cost == eur(40)
        assert parent.commission == eur(8)
        assert child.quantity == Decimal("100")
        assert child.unit_cost == eur(10)
        assert child.commission == eur(2)
        assert child.acquisition_date == date(2023, 1, 2)
        assert child.origin == LotOrigin.SPIN_OFF
        assert child.lot_id == "L1>PYPL#2"
        assert child.parent_lot_id == "L1"

    def test_spin_off_can_reset_acquisition_date(self, converter, make_lot):
        policy = JurisdictionPolicy(spin_off_resets_acquisition_date=True)
        ledger = LotLedger(converter, policy)
        ledger.open(make_lot(symbol="EBAY", unit_cost="50"))
        ledger.open(make_lot(symbol="PYPL", acquired=date(2023, 2, 1), sequence_no=2))

        CorporateActionEngine(ledger, policy).apply(
            "EBAY", SpinOff("PYPL", allocation_ratio=Decimal("0.2")), ACTION_DATE, 5
        )

        [parent] = ledger.lots("EBAY")
        assert parent.acquisition_date == date(2023, 1, 2)
        existing, child = ledger.lots("PYPL")
        assert existing.lot_id == "L2"
        assert child.acquisition_date == ACTION_DATE
        assert child.sequence_no == 5

    def test_repeated_spin_offs_get_distinct_child_ids(self, ledger, engine, make_lot):
        ledger.open(make_lot(symbol="A"))
        engine.apply("A", SpinOff("B", allocation_ratio=Decimal("0.1")), ACTION_DATE, 2)
        engine.apply("A", SpinOff("B", allocation_ratio=Decimal("0.1")), date(2023, 9, 1), 3)

        assert [lot.lot_id for lot in ledger.lots("B")] == ["L1>B#2", "L1>B#3"]

    def test_fair_value_allocation(self, ledger, engine, make_lot):
        ledger.open(make_lot(symbol="EBAY", unit_cost="50"))
        engine.apply("EBAY", SpinOff("PYPL", old_price=eur(40), new_price=eur(10)), ACTION_DATE, 2)

        assert ledger.lots("EBAY")[0].unit_cost == eur(40)
        assert ledger.lots("PYPL")[0].unit_cost == eur(10)

    @pytest.mark.parametrize("allocation", ["0", "1", "1.5"])
    def test_allocation_out_of_range(self, ledger, engine, make_lot, allocation):
        ledger.open(make_lot(symbol="EBAY"))
        with pytest.raises(InvalidActionConfiguration):
            engine.apply("EBAY", SpinOff("PYPL", allocation_ratio=Decimal(allocation)), ACTION_DATE, 2)

    def test_missing_allocation_data(self):
        with pytest.raises(InvalidActionConfiguration):
            SpinOff("PYPL", old_price=eur(40))

    def test_spin_off_into_parent_is_ambiguous(self, ledger, engine, make_lot):
        ledger.open(make_lot(symbol="EBAY"))
        with pytest.raises(AmbiguousMatch):
            engine.apply("EBAY", SpinOff("EBAY", allocation_ratio=Decimal("0.2")), ACTION_DATE, 2)


class TestStockDividendAndMerger:

    def test_stock_dividend_per_held_share(self, ledger, engine, make_lot):
        ledger.open(make_lot())
        engine.apply("AAPL", StockDividend(quantity_per_held=Decimal("0.05")), ACTION_DATE, 4)

        lots = ledger.lots("AAPL")
        assert ledger.snapshot("AAPL") == Decimal("105")
        dividend_lot = lots[-1]
        assert dividend_lot.lot_id == "L4"
        assert dividend_lot.quantity == Decimal("5")
        assert dividend_lot.unit_cost == eur(0)
        assert dividend_lot.acquisition_date == ACTION_DATE
        assert dividend_lot.origin == LotOrigin.STOCK_DIVIDEND

    def test_stock_dividend_lot_costed_in_held_currency(self, ledger, engine, make_lot):
        ledger.open(make_lot(quantity="10", unit_cost="100", currency="USD"))
        engine.apply("AAPL", StockDividend(quantity_per_held=Decimal("1")), ACTION_DATE, 4)

        dividend_lot = ledger.lots("AAPL")[-1]
        assert dividend_lot.unit_cost == Money(Decimal("0"), "USD")
        assert ledger.total_cost("AAPL") == {"USD": Decimal("1000")}

    def test_stock_dividend_needs_one_quantity(self):
        with pytest.raises(InvalidActionConfiguration):
            StockDividend()
        with pytest.raises(InvalidActionConfiguration):
            StockDividend(quantity=Decimal("1"), quantity_per_held=Decimal("0.1"))

    def test_merger_converts_lots(self, ledger, engine, make_lot):
        """
        Scenario: 100 XLNX @ 10 merged into AMD at one new share per two old
        Expected: 50 AMD @ 20, original acquisition date, no disposal
        """
        ledger.open(make_lot(symbol="XLNX"))
        disposals = engine.apply("XLNX", Merger("AMD", Ratio(1, 2)), ACTION_DATE, 2)

        assert disposals == []
        assert ledger.lots("XLNX") == []
        [lot] = ledger.lots("AMD")
        assert lot.quantity == Decimal("50")
        assert lot.unit_cost == eur(20)
        assert lot.acquisition_date == date(2023, 1, 2)
        assert lot.origin == LotOrigin.MERGER

    def test_merger_can_reset_acquisition_date(self, converter, make_lot):
        """
        Scenario: XLNX bought in January merged into AMD, which was bought in
        February, under a policy that restarts the holding period
        Expected: The merged lot takes the merger date and queues behind the AMD lot
        """
        policy = JurisdictionPolicy(merger_preserves_acquisition_date=False)
        ledger = LotLedger(converter, policy)
        ledger.open(make_lot(symbol="XLNX", sequence_no=1))
        ledger.open(make_lot(symbol="AMD", acquired=date(2023, 2, 1), sequence_no=2))

        CorporateActionEngine(ledger, policy).apply("XLNX", Merger("AMD", Ratio(1, 2)), ACTION_DATE, 3)

        existing, merged = ledger.lots("AMD")
        assert existing.lot_id == "L2"
        assert merged.lot_id == "L1>AMD#3"
        assert merged.acquisition_date == ACTION_DATE
        assert merged.settlement_date == ACTION_DATE
        assert merged.sequence_no == 3

        [d] = ledger.close("AMD", Decimal("100"), date(2023, 6, 1), eur(1500), eur(0))
        assert d.lot_id == "L2"


class TestDelisting:

    def test_delisting_without_cash_realizes_full_loss(self, ledger, engine, make_lot):
        ledger.open(make_lot())
        [d] = engine.apply("AAPL", Delisting(), ACTION_DATE, 2)

        assert d.reason == DisposalReason.DELISTING
        assert d.proceeds == eur(0)
        assert d.gain == eur(-1000)
        assert ledger.symbols() == []

    def test_delisting_with_cash_settlement(self, ledger, engine, make_lot):
        ledger.open(make_lot())
        [d] = engine.apply("AAPL", Delisting(cash_settlement=eur(250)), ACTION_DATE, 2)
        assert d.gain == eur(-750)


class TestApplicability:

    def test_unknown_symbol(self, engine):
        with pytest.raises(AmbiguousMatch):
            engine.apply("NOPE", StockSplit(Ratio(2, 1)), ACTION_DATE, 1)

    def test_action_before_latest_event(self, ledger, engine, make_lot):
        ledger.open(make_lot())
        ledger.touch("AAPL", date(2023, 6, 1))
        with pytest.raises(OutOfOrderEvent):
            engine.apply("AAPL", StockSplit(Ratio(2, 1)), date(2023, 5, 1), 3)

    def test_unsupported_action_type(self, ledger, engine, make_lot):
        ledger.open(make_lot())
        with pytest.raises(TypeError):
            engine.apply("AAPL", object(), ACTION_DATE, 2)
