"""
Lot, Disposal and Income Data Models

Defines the core data structures for tax basis tracking:
- Money: amount + currency, never mixed across currencies
- Lot: a tranche of shares with one acquisition date and unit cost
- Disposal: a lot (or portion) being closed, in base currency
- Income / Fee: cash events converted to base currency
- TaxResult: calculated tax for one year

Disposal, Income and Fee records are immutable once emitted and are the only
input to the tax calculators.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Money:
    """Decimal amount in a single currency."""

    amount: Decimal
    currency: str

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, "amount", Decimal(str(self.amount)))
        object.__setattr__(self, "currency", self.currency.upper())

    @classmethod
    def zero(cls, currency: str) -> "Money":
        return cls(Decimal(0), currency)

    def _check_currency(self, other: "Money"):
        if self.currency != other.currency:
            raise ValueError(f"Currency mismatch: {self.currency} vs {other.currency}")

    def __add__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, factor) -> "Money":
        return Money(self.amount * Decimal(factor), self.currency)

    __rmul__ = __mul__

    def __truediv__(self, divisor) -> "Money":
        return Money(self.amount / Decimal(divisor), self.currency)

    def __neg__(self) -> "Money":
        return Money(-self.amount, self.currency)

    def is_zero(self) -> bool:
        return self.amount == 0

    def round(self, places: int = 2) -> "Money":
        return Money(round_decimal(self.amount, places), self.currency)

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"


def round_decimal(value: Decimal, places: int = 2) -> Decimal:
    """Round half-up to the given number of decimal places."""
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


class LotOrigin(str, Enum):
    """How a lot came into existence."""
    PURCHASE = "purchase"
    SPLIT = "split"
    REVERSE_SPLIT = "reverse_split"
    SPIN_OFF = "spin_off"
    STOCK_DIVIDEND = "stock_dividend"
    MERGER = "merger"
    RENAME = "rename"
    SNAPSHOT = "snapshot"


class DisposalReason(str, Enum):
    """What closed the lot."""
    TRADE = "trade"
    DELISTING = "delisting"
    CASH_IN_LIEU = "cash_in_lieu"


class IncomeKind(str, Enum):
    DIVIDEND = "dividend"
    INTEREST = "interest"


@dataclass
class Lot:
    """
    A specific acquisition tracked for cost basis.

    Quantity and unit cost are mutated in place by splits; the lot is
    consumed oldest-first by closes. lot_id is derived from the event
    sequence number so identical replays produce identical ids.
    """

    lot_id: str
    symbol: str
    quantity: Decimal
    unit_cost: Money
    acquisition_date: date
    settlement_date: date
    sequence_no: int

    origin: LotOrigin = LotOrigin.PURCHASE
    commission: Optional[Money] = None
    parent_lot_id: Optional[str] = None

    def __post_init__(self):
        if self.commission is None:
            self.commission = Money.zero(self.unit_cost.currency)

    def fifo_key(self) -> Tuple[date, int]:
        """FIFO order: acquisition date, then event sequence number."""
        return (self.acquisition_date, self.sequence_no)

    def total_cost(self) -> Money:
        return self.unit_cost * self.quantity

    def is_exhausted(self) -> bool:
        return self.quantity <= 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lot_id": self.lot_id,
            "symbol": self.symbol,
            "quantity": self.quantity,
            "unit_cost": self.unit_cost.amount,
            "currency": self.unit_cost.currency,
            "acquisition_date": self.acquisition_date,
            "settlement_date": self.settlement_date,
            "sequence_no": self.sequence_no,
            "origin": self.origin.value,
            "commission": self.commission.amount,
            "commission_currency": self.commission.currency,
            "parent_lot_id": self.parent_lot_id,
        }

    def __repr__(self) -> str:
        return (
            f"Lot({self.lot_id}, {self.symbol}, qty={self.quantity}, "
            f"unit_cost={self.unit_cost}, acquired={self.acquisition_date})"
        )


@dataclass(frozen=True)
class Disposal:
    """
    A realized closing of a lot or lot portion.

    All amounts are in base currency. Cost basis was converted on the lot's
    acquisition (or settlement) date, proceeds on the disposal date.
    """

    symbol: str
    quantity: Decimal
    proceeds: Money
    cost_basis: Money
    commission: Money
    acquisition_commission: Money
    acquisition_date: date
    disposal_date: date
    lot_id: str
    sequence_no: int
    origin: LotOrigin = LotOrigin.PURCHASE
    reason: DisposalReason = DisposalReason.TRADE

    @property
    def gain(self) -> Money:
        """Proceeds minus cost basis minus both commissions."""
        return self.proceeds - self.cost_basis - self.commission - self.acquisition_commission

    @property
    def holding_period_days(self) -> int:
        return (self.disposal_date - self.acquisition_date).days

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "quantity": self.quantity,
            "proceeds": self.proceeds.amount,
            "cost_basis": self.cost_basis.amount,
            "commission": self.commission.amount,
            "acquisition_commission": self.acquisition_commission.amount,
            "currency": self.proceeds.currency,
            "acquisition_date": self.acquisition_date,
            "disposal_date": self.disposal_date,
            "lot_id": self.lot_id,
            "sequence_no": self.sequence_no,
            "origin": self.origin.value,
            "reason": self.reason.value,
        }


@dataclass(frozen=True)
class Income:
    """Dividend or interest payment converted on its payment date."""

    date: date
    kind: IncomeKind
    amount: Money
    tax_withheld: Money
    original_amount: Money
    original_tax_withheld: Money
    sequence_no: int
    symbol: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "kind": self.kind.value,
            "amount": self.amount.amount,
            "tax_withheld": self.tax_withheld.amount,
            "currency": self.amount.currency,
            "original_amount": self.original_amount.amount,
            "original_currency": self.original_amount.currency,
            "sequence_no": self.sequence_no,
            "symbol": self.symbol,
        }


@dataclass(frozen=True)
class Fee:
    """Standalone broker fee (custody, account maintenance)."""

    date: date
    amount: Money
    original_amount: Money
    sequence_no: int
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "amount": self.amount.amount,
            "currency": self.amount.currency,
            "original_amount": self.original_amount.amount,
            "original_currency": self.original_amount.currency,
            "sequence_no": self.sequence_no,
            "description": self.description,
        }


@dataclass
class TaxResult:
    """
    Calculated tax for one tax year.

    net_tax_payable is reported as is: negative means withheld tax and
    deductions exceed the computed liability.
    """

    jurisdiction: str
    tax_year: int
    currency: str
    taxable_gain: Decimal
    exempt_gain: Decimal
    taxable_income: Decimal
    tax_due: Decimal
    tax_withheld_credit: Decimal
    deductions: Decimal
    net_tax_payable: Decimal
    breakdown: Dict[str, Decimal]

    exempt_disposals: int = 0
    assumptions: List[str] = field(default_factory=list)
    notes: Optional[str] = None
    calculation_hash: Optional[str] = None
    calculator_version: str = "1.0"
    trading_tax_payment_date: Optional[date] = None
    income_tax_payment_date: Optional[date] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jurisdiction": self.jurisdiction,
            "tax_year": self.tax_year,
            "currency": self.currency,
            "taxable_gain": self.taxable_gain,
            "exempt_gain": self.exempt_gain,
            "taxable_income": self.taxable_income,
            "tax_due": self.tax_due,
            "tax_withheld_credit": self.tax_withheld_credit,
            "deductions": self.deductions,
            "net_tax_payable": self.net_tax_payable,
            "exempt_disposals": self.exempt_disposals,
            "breakdown": dict(self.breakdown),
            "trading_tax_payment_date": self.trading_tax_payment_date,
            "income_tax_payment_date": self.income_tax_payment_date,
        }
