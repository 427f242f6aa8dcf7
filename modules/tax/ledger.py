"""
Lot Ledger - FIFO Cost Basis Tracking

Keeps, per symbol, the queue of open lots in FIFO order and turns closes
into Disposal records in base currency.

Currency handling:
- Cost basis is converted on the lot's acquisition date, or on its
  settlement date when the jurisdiction costs at settlement
- Proceeds are converted on the disposal trade date (settlement date
  under settlement costing)
- Commissions are converted on their own trade dates
- Every leg is rounded to cents before and after conversion, so a
  disposal carries the amounts a tax return would show

The ledger never creates short lots: overselling raises InsufficientQuantity
before anything is mutated.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

import copy
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from lib.utils.logging_config import setup_logger
from modules.tax.currency import CurrencyConverter
from modules.tax.errors import DataInconsistency, InsufficientQuantity, MissingSettlementDate
from modules.tax.policy import CostBasisDate, JurisdictionPolicy
from modules.tax.tax_events import Disposal, DisposalReason, Lot, Money

logger = setup_logger(__name__)


class LotLedger:
    """Open lots of one portfolio, keyed by symbol."""

    def __init__(self, converter: CurrencyConverter, policy: JurisdictionPolicy):
        self.converter = converter
        self.policy = policy

        self._lots: Dict[str, List[Lot]] = defaultdict(list)
        self._last_event: Dict[str, date] = {}

    # --- Queries -------------------------------------------------------------

    def snapshot(self, symbol: str) -> Decimal:
        """Net open quantity for a symbol."""
        return sum((lot.quantity for lot in self._lots.get(symbol, [])), Decimal(0))

    def lots(self, symbol: Optional[str] = None) -> List[Lot]:
        """Open lots in FIFO order (copies of the list, not of the lots)."""
        if symbol is not None:
            return list(self._lots.get(symbol, []))
        all_lots = []
        for sym in self.symbols():
            all_lots.extend(self._lots[sym])
        return all_lots

    def symbols(self) -> List[str]:
        """Symbols with open lots, sorted."""
        return sorted(sym for sym, lots in self._lots.items() if lots)

    def positions(self) -> Dict[str, Decimal]:
        return {sym: self.snapshot(sym) for sym in self.symbols()}

    def total_cost(self, symbol: str) -> Dict[str, Decimal]:
        """Σ quantity × unit cost per lot currency (used for value conservation)."""
        totals: Dict[str, Decimal] = defaultdict(Decimal)
        for lot in self._lots.get(symbol, []):
            totals[lot.unit_cost.currency] += lot.quantity * lot.unit_cost.amount
        return dict(totals)

    def is_known(self, symbol: str) -> bool:
        return bool(self._lots.get(symbol)) or symbol in self._last_event

    def last_event_date(self, symbol: str) -> Optional[date]:
        return self._last_event.get(symbol)

    def touch(self, symbol: str, on_date: date):
        """Record that an event for symbol was processed on on_date."""
        last = self._last_event.get(symbol)
        if last is None or on_date > last:
            self._last_event[symbol] = on_date

    # --- Mutations -----------------------------------------------------------

    def open(self, lot: Lot):
        """Add a lot to its symbol's queue, keeping FIFO order."""
        if lot.quantity <= 0:
            raise DataInconsistency(
                "Cannot open a lot with non-positive quantity",
                symbol=lot.symbol, lot_id=lot.lot_id, quantity=lot.quantity,
            )

        queue = self._lots[lot.symbol]
        queue.append(lot)
        # Stable sort: lots with equal keys keep insertion order
        queue.sort(key=Lot.fifo_key)
        logger.debug(
            f"Opened lot {lot.lot_id}: {lot.quantity} {lot.symbol} @ {lot.unit_cost} "
            f"acquired {lot.acquisition_date}"
        )

    def close(
        self,
        symbol: str,
        quantity: Decimal,
        on_date: date,
        proceeds: Money,
        commission: Money,
        settlement_date: Optional[date] = None,
        sequence_no: Optional[int] = None,
        reason: DisposalReason = DisposalReason.TRADE,
    ) -> List[Disposal]:
        """
        Close quantity shares oldest-first.

        Args:
            symbol: Symbol to close
            quantity: Shares to close (positive)
            on_date: Disposal trade date
            proceeds: Gross proceeds for the whole quantity, in trade currency
            commission: Disposal commission for the whole quantity
            settlement_date: Settlement date of the disposal
            sequence_no: Sequence number of the closing event
            reason: What closed the lots

        Returns:
            One Disposal per (partially) consumed lot, in FIFO order
        """
        if quantity <= 0:
            raise DataInconsistency("Close quantity must be positive", symbol=symbol, date=on_date, quantity=quantity)

        queue = self._lots.get(symbol, [])
        available = self.snapshot(symbol)
        if quantity > available:
            raise InsufficientQuantity(
                "Sell exceeds open quantity",
                symbol=symbol,
                date=on_date,
                requested=quantity,
                available=available,
                lot_ids=",".join(lot.lot_id for lot in queue) or None,
                sequence_no=sequence_no,
            )

        by_settlement = self.policy.cost_basis_date == CostBasisDate.SETTLEMENT
        if by_settlement and settlement_date is None:
            raise MissingSettlementDate(
                "Settlement-date costing requires the disposal settlement date",
                symbol=symbol, date=on_date, sequence_no=sequence_no,
            )
        proceeds_date = settlement_date if by_settlement else on_date

        # Plan the consumption before converting anything
        plan = []
        remaining = quantity
        for lot in queue:
            if remaining <= 0:
                break
            take = min(lot.quantity, remaining)
            plan.append((lot, take))
            remaining -= take

        proceeds_base = self.converter.convert_to_cents(proceeds, proceeds_date)
        commission_base = self.converter.convert_to_cents(commission, on_date)

        disposals = []
        allocated_proceeds = Money.zero(proceeds_base.currency)
        allocated_commission = Money.zero(commission_base.currency)
        for i, (lot, take) in enumerate(plan):
            # Last portion takes the remainder so the parts sum exactly
            if i == len(plan) - 1:
                portion_proceeds = proceeds_base - allocated_proceeds
                portion_commission = commission_base - allocated_commission
            else:
                fraction = take / quantity
                portion_proceeds = (proceeds_base * fraction).round(2)
                portion_commission = (commission_base * fraction).round(2)
            allocated_proceeds = allocated_proceeds + portion_proceeds
            allocated_commission = allocated_commission + portion_commission

            cost_date = lot.settlement_date if by_settlement else lot.acquisition_date
            cost_basis = self.converter.convert_to_cents(lot.unit_cost * take, cost_date)
            acquisition_commission = self.converter.convert_to_cents(
                lot.commission * (take / lot.quantity), lot.acquisition_date
            )

            disposals.append(Disposal(
                symbol=symbol,
                quantity=take,
                proceeds=portion_proceeds,
                cost_basis=cost_basis,
                commission=portion_commission,
                acquisition_commission=acquisition_commission,
                acquisition_date=lot.acquisition_date,
                disposal_date=on_date,
                lot_id=lot.lot_id,
                sequence_no=sequence_no if sequence_no is not None else lot.sequence_no,
                origin=lot.origin,
                reason=reason,
            ))

        # All conversions succeeded; now consume
        for lot, take in plan:
            if take == lot.quantity:
                queue.remove(lot)
            else:
                lot.commission = lot.commission - lot.commission * (take / lot.quantity)
                lot.quantity -= take

        for disposal in disposals:
            logger.debug(
                f"Closed {disposal.quantity} {symbol} from lot {disposal.lot_id}: "
                f"proceeds {disposal.proceeds}, cost {disposal.cost_basis}, gain {disposal.gain}"
            )
        return disposals

    def take_lots(self, symbol: str) -> List[Lot]:
        """Remove and return all open lots of symbol (corporate actions only)."""
        return self._lots.pop(symbol, [])

    def replace_lots(self, symbol: str, lots: List[Lot]):
        """Install lots as the symbol's queue, dropping exhausted ones."""
        queue = sorted((lot for lot in lots if not lot.is_exhausted()), key=Lot.fifo_key)
        if queue:
            self._lots[symbol] = queue
        else:
            self._lots.pop(symbol, None)

    def copy(self) -> "LotLedger":
        """Independent ledger with the same converter and policy."""
        clone = LotLedger(self.converter, self.policy)
        clone._lots = defaultdict(list, {sym: copy.deepcopy(lots) for sym, lots in self._lots.items() if lots})
        clone._last_event = dict(self._last_event)
        return clone
