"""
Corporate Action Engine

Applies splits, reverse splits, renames, spin-offs, stock dividends,
mergers and delistings to the open lots of a ledger.

Each action is a frozen dataclass; the engine dispatches over the closed
set and raises TypeError for anything else. Actions that only move cost
around (splits, spin-offs, mergers) are checked for value conservation:
total quantity × unit cost must not change beyond the policy epsilon.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Union

from lib.utils.logging_config import setup_logger
from modules.tax.errors import (
    AmbiguousMatch,
    InvalidActionConfiguration,
    OutOfOrderEvent,
    ValueConservationError,
)
from modules.tax.ledger import LotLedger
from modules.tax.policy import JurisdictionPolicy
from modules.tax.tax_events import Disposal, DisposalReason, Lot, LotOrigin, Money

logger = setup_logger(__name__)

_RATIO_PATTERN = re.compile(r"^\s*(\d+)\s*:\s*(\d+)\s*$")


@dataclass(frozen=True)
class Ratio:
    """new:old share ratio, e.g. 4:1 means four new shares per old share."""

    new: int
    old: int

    def __post_init__(self):
        if self.new <= 0 or self.old <= 0:
            raise InvalidActionConfiguration("Ratio terms must be positive", ratio=f"{self.new}:{self.old}")

    @classmethod
    def parse(cls, text: str) -> "Ratio":
        match = _RATIO_PATTERN.match(str(text))
        if not match:
            raise InvalidActionConfiguration("Invalid ratio, expected 'new:old'", ratio=text)
        return cls(int(match.group(1)), int(match.group(2)))

    @property
    def factor(self) -> Decimal:
        return Decimal(self.new) / Decimal(self.old)

    def __str__(self) -> str:
        return f"{self.new}:{self.old}"


@dataclass(frozen=True)
class StockSplit:
    ratio: Ratio

    def __post_init__(self):
        if self.ratio.new <= self.ratio.old:
            raise InvalidActionConfiguration("Stock split ratio must increase the share count", ratio=str(self.ratio))


@dataclass(frozen=True)
class ReverseSplit:
    """Share consolidation; cash_in_lieu_price is paid per fractional share."""

    ratio: Ratio
    cash_in_lieu_price: Optional[Money] = None

    def __post_init__(self):
        if self.ratio.new >= self.ratio.old:
            raise InvalidActionConfiguration("Reverse split ratio must decrease the share count", ratio=str(self.ratio))


@dataclass(frozen=True)
class Rename:
    new_symbol: str


@dataclass(frozen=True)
class SpinOff:
    """
    Distribution of new_symbol shares to holders of the parent.

    Cost is allocated by allocation_ratio (share of cost moving to the
    child) or, if absent, by fair value from old_price and new_price.
    """

    new_symbol: str
    ratio: Ratio = Ratio(1, 1)
    allocation_ratio: Optional[Decimal] = None
    old_price: Optional[Money] = None
    new_price: Optional[Money] = None

    def __post_init__(self):
        if self.allocation_ratio is None and (self.old_price is None or self.new_price is None):
            raise InvalidActionConfiguration(
                "Spin-off needs allocation_ratio or both old_price and new_price",
                new_symbol=self.new_symbol,
            )


@dataclass(frozen=True)
class StockDividend:
    """New shares paid as a dividend, per held share or as a total quantity."""

    new_symbol: Optional[str] = None
    quantity_per_held: Optional[Decimal] = None
    quantity: Optional[Decimal] = None
    unit_cost: Optional[Money] = None

    def __post_init__(self):
        if (self.quantity_per_held is None) == (self.quantity is None):
            raise InvalidActionConfiguration("Stock dividend needs exactly one of quantity_per_held or quantity")
        amount = self.quantity_per_held if self.quantity is None else self.quantity
        if amount <= 0:
            raise InvalidActionConfiguration("Stock dividend quantity must be positive", quantity=amount)


@dataclass(frozen=True)
class Merger:
    into_symbol: str
    ratio: Ratio = Ratio(1, 1)


@dataclass(frozen=True)
class Delisting:
    """Forced close; cash_settlement is the total cash paid out (zero if absent)."""

    quantity: Optional[Decimal] = None
    cash_settlement: Optional[Money] = None


CorporateAction = Union[StockSplit, ReverseSplit, Rename, SpinOff, StockDividend, Merger, Delisting]


def _cost_by_currency(lots: List[Lot]) -> Dict[str, Decimal]:
    totals: Dict[str, Decimal] = {}
    for lot in lots:
        currency = lot.unit_cost.currency
        totals[currency] = totals.get(currency, Decimal(0)) + lot.quantity * lot.unit_cost.amount
    return totals


class CorporateActionEngine:
    """Mutates a ledger according to corporate actions."""

    def __init__(self, ledger: LotLedger, policy: JurisdictionPolicy):
        self.ledger = ledger
        self.policy = policy

    def apply(self, symbol: str, action: CorporateAction, on_date: date, sequence_no: int) -> List[Disposal]:
        """
        Apply one corporate action to symbol.

        Returns:
            Disposals realized by the action (delisting, cash in lieu)
        """
        self._check_applicable(symbol, action, on_date, sequence_no)
        logger.debug(f"Applying {type(action).__name__} to {symbol} on {on_date} (#{sequence_no})")

        disposals: List[Disposal] = []
        if isinstance(action, StockSplit):
            self._rescale(symbol, action.ratio, on_date, sequence_no, LotOrigin.SPLIT)
        elif isinstance(action, ReverseSplit):
            self._rescale(symbol, action.ratio, on_date, sequence_no, LotOrigin.REVERSE_SPLIT)
            disposals = self._settle_fraction(symbol, action, on_date, sequence_no)
        elif isinstance(action, Rename):
            self._rename(symbol, action, on_date, sequence_no)
        elif isinstance(action, SpinOff):
            self._spin_off(symbol, action, on_date, sequence_no)
        elif isinstance(action, StockDividend):
            self._stock_dividend(symbol, action, on_date, sequence_no)
        elif isinstance(action, Merger):
            self._merge(symbol, action, on_date, sequence_no)
        elif isinstance(action, Delisting):
            disposals = self._delist(symbol, action, on_date, sequence_no)
        else:
            raise TypeError(f"Unsupported corporate action: {type(action).__name__}")

        self.ledger.touch(symbol, on_date)
        return disposals

    # --- Checks --------------------------------------------------------------

    def _check_applicable(self, symbol: str, action: CorporateAction, on_date: date, sequence_no: int):
        if not self.ledger.is_known(symbol):
            raise AmbiguousMatch(
                "Corporate action for a symbol with no history",
                symbol=symbol, action=type(action).__name__, date=on_date, sequence_no=sequence_no,
            )
        last = self.ledger.last_event_date(symbol)
        if last is not None and on_date < last:
            raise OutOfOrderEvent(
                "Corporate action dated before the latest processed event for the symbol",
                symbol=symbol, action=type(action).__name__, date=on_date, last_event=last,
                sequence_no=sequence_no,
            )

    def _check_conservation(self, symbol: str, before: Dict[str, Decimal], after: Dict[str, Decimal],
                            on_date: date, action: str):
        for currency in set(before) | set(after):
            diff = abs(before.get(currency, Decimal(0)) - after.get(currency, Decimal(0)))
            if diff > self.policy.value_epsilon:
                raise ValueConservationError(
                    f"{action} changed total cost basis",
                    symbol=symbol, date=on_date, currency=currency,
                    before=before.get(currency), after=after.get(currency), difference=diff,
                )

    def _held_currency(self, symbol: str) -> str:
        """Cost currency of the oldest open lot, base currency when flat."""
        lots = self.ledger.lots(symbol)
        if lots:
            return lots[0].unit_cost.currency
        return self.policy.base_currency

    # --- Actions -------------------------------------------------------------

    def _rescale(self, symbol: str, ratio: Ratio, on_date: date, sequence_no: int, origin: LotOrigin):
        lots = self.ledger.take_lots(symbol)
        before = _cost_by_currency(lots)
        factor = ratio.factor

        for lot in lots:
            lot.quantity = lot.quantity * factor
            lot.unit_cost = lot.unit_cost / factor
            lot.origin = origin
            if self.policy.split_resets_acquisition_date:
                lot.acquisition_date = on_date
                lot.settlement_date = on_date
                lot.sequence_no = sequence_no

        self._check_conservation(symbol, before, _cost_by_currency(lots), on_date, origin.value)
        self.ledger.replace_lots(symbol, lots)
        logger.info(f"{origin.value} {ratio} applied to {symbol}: {len(lots)} lot(s), now {self.ledger.snapshot(symbol)}")

    def _settle_fraction(self, symbol: str, action: ReverseSplit, on_date: date, sequence_no: int) -> List[Disposal]:
        held = self.ledger.snapshot(symbol)
        fraction = held - int(held)
        if fraction <= 0:
            return []
        if action.cash_in_lieu_price is None:
            logger.warning(
                f"Reverse split left {fraction} fractional {symbol} share(s) without cash in lieu; kept open",
                extra={"ledger_context": {"symbol": symbol, "date": on_date}},
            )
            return []
        price = action.cash_in_lieu_price
        return self.ledger.close(
            symbol,
            fraction,
            on_date,
            proceeds=price * fraction,
            commission=Money.zero(price.currency),
            settlement_date=on_date,
            sequence_no=sequence_no,
            reason=DisposalReason.CASH_IN_LIEU,
        )

    def _rename(self, symbol: str, action: Rename, on_date: date, sequence_no: int):
        target = action.new_symbol
        if target == symbol:
            raise AmbiguousMatch("Rename to the same symbol", symbol=symbol, date=on_date)
        if self.ledger.snapshot(target) > 0:
            raise AmbiguousMatch(
                "Rename target already holds open lots",
                symbol=symbol, new_symbol=target, date=on_date, sequence_no=sequence_no,
            )

        lots = self.ledger.take_lots(symbol)
        for lot in lots:
            lot.symbol = target
            lot.origin = LotOrigin.RENAME
        self.ledger.replace_lots(target, lots)

        last = self.ledger.last_event_date(symbol)
        if last is not None:
            self.ledger.touch(target, last)
        self.ledger.touch(target, on_date)
        logger.info(f"Renamed {symbol} -> {target}: {len(lots)} lot(s)")

    def _spin_off_fraction(self, symbol: str, action: SpinOff, held: Decimal) -> Decimal:
        if action.allocation_ratio is not None:
            fraction = Decimal(action.allocation_ratio)
        else:
            if action.old_price.currency != action.new_price.currency:
                raise InvalidActionConfiguration(
                    "Spin-off prices must share a currency",
                    symbol=symbol, old_price=action.old_price, new_price=action.new_price,
                )
            old_value = held * action.old_price.amount
            new_value = held * action.ratio.factor * action.new_price.amount
            total = old_value + new_value
            if total <= 0:
                raise InvalidActionConfiguration("Spin-off fair values must be positive", symbol=symbol)
            fraction = new_value / total

        if not (0 < fraction < 1):
            raise InvalidActionConfiguration(
                "Spin-off cost allocation must be strictly between 0 and 1",
                symbol=symbol, new_symbol=action.new_symbol, allocation=fraction,
            )
        return fraction

    def _spin_off(self, symbol: str, action: SpinOff, on_date: date, sequence_no: int):
        if action.new_symbol == symbol:
            raise AmbiguousMatch("Spin-off into the parent symbol", symbol=symbol, date=on_date)

        held = self.ledger.snapshot(symbol)
        if held <= 0:
            logger.debug(f"Spin-off {symbol} -> {action.new_symbol}: no open lots")
            return

        fraction = self._spin_off_fraction(symbol, action, held)
        parents = self.ledger.take_lots(symbol)
        before = _cost_by_currency(parents)
        reset = self.policy.spin_off_resets_acquisition_date

        children = []
        for lot in parents:
            child_quantity = lot.quantity * action.ratio.factor
            child_cost = lot.total_cost() * fraction
            child_commission = lot.commission * fraction

            lot.unit_cost = lot.unit_cost * (1 - fraction)
            lot.commission = lot.commission - child_commission

            children.append(Lot(
                lot_id=f"{lot.lot_id}>{action.new_symbol}#{sequence_no}",
                symbol=action.new_symbol,
                quantity=child_quantity,
                unit_cost=child_cost / child_quantity,
                acquisition_date=on_date if reset else lot.acquisition_date,
                settlement_date=on_date if reset else lot.settlement_date,
                sequence_no=sequence_no if reset else lot.sequence_no,
                origin=LotOrigin.SPIN_OFF,
                commission=child_commission,
                parent_lot_id=lot.lot_id,
            ))

        after = _cost_by_currency(parents + children)
        self._check_conservation(symbol, before, after, on_date, "spin-off")

        self.ledger.replace_lots(symbol, parents)
        for child in children:
            self.ledger.open(child)
        self.ledger.touch(action.new_symbol, on_date)
        logger.info(
            f"Spin-off {symbol} -> {action.new_symbol}: {fraction:.6f} of cost moved to "
            f"{len(children)} child lot(s)"
        )

    def _stock_dividend(self, symbol: str, action: StockDividend, on_date: date, sequence_no: int):
        target = action.new_symbol or symbol
        if action.quantity is not None:
            quantity = Decimal(action.quantity)
        else:
            quantity = self.ledger.snapshot(symbol) * Decimal(action.quantity_per_held)
        if quantity <= 0:
            logger.debug(f"Stock dividend on {symbol}: no shares held, nothing received")
            return

        unit_cost = action.unit_cost or Money.zero(self._held_currency(symbol))
        self.ledger.open(Lot(
            lot_id=f"L{sequence_no}",
            symbol=target,
            quantity=quantity,
            unit_cost=unit_cost,
            acquisition_date=on_date,
            settlement_date=on_date,
            sequence_no=sequence_no,
            origin=LotOrigin.STOCK_DIVIDEND,
        ))
        self.ledger.touch(target, on_date)
        logger.info(f"Stock dividend: {quantity} {target} received on {symbol} at {unit_cost} per share")

    def _merge(self, symbol: str, action: Merger, on_date: date, sequence_no: int):
        target = action.into_symbol
        if target == symbol:
            raise AmbiguousMatch("Merger into the same symbol", symbol=symbol, date=on_date)

        old_lots = self.ledger.take_lots(symbol)
        before = _cost_by_currency(old_lots)
        preserve = self.policy.merger_preserves_acquisition_date
        factor = action.ratio.factor

        new_lots = [
            Lot(
                lot_id=f"{lot.lot_id}>{target}#{sequence_no}",
                symbol=target,
                quantity=lot.quantity * factor,
                unit_cost=lot.unit_cost / factor,
                acquisition_date=lot.acquisition_date if preserve else on_date,
                settlement_date=lot.settlement_date if preserve else on_date,
                sequence_no=lot.sequence_no if preserve else sequence_no,
                origin=LotOrigin.MERGER,
                commission=lot.commission,
                parent_lot_id=lot.lot_id,
            )
            for lot in old_lots
        ]
        self._check_conservation(symbol, before, _cost_by_currency(new_lots), on_date, "merger")

        for lot in new_lots:
            self.ledger.open(lot)
        self.ledger.touch(target, on_date)
        logger.info(f"Merged {symbol} into {target} at {action.ratio}: {len(new_lots)} lot(s)")

    def _delist(self, symbol: str, action: Delisting, on_date: date, sequence_no: int) -> List[Disposal]:
        held = self.ledger.snapshot(symbol)
        quantity = Decimal(action.quantity) if action.quantity is not None else held
        if quantity <= 0:
            logger.debug(f"Delisting {symbol}: no open position")
            return []

        proceeds = action.cash_settlement or Money.zero(self.policy.base_currency)
        return self.ledger.close(
            symbol,
            quantity,
            on_date,
            proceeds=proceeds,
            commission=Money.zero(proceeds.currency),
            settlement_date=on_date,
            sequence_no=sequence_no,
            reason=DisposalReason.DELISTING,
        )
