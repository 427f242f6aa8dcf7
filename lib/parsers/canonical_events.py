"""
Canonical Event Model

Broker statements are parsed elsewhere into this broker-independent stream.
Each event carries a sequence number assigned at ingestion, a trade date,
an optional settlement date, a kind and a kind-specific payload.

Manual corporate actions from the portfolio configuration are merged into
the stream with fresh sequence numbers.
"""

import datetime as dt
import re
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from modules.tax.corporate_actions import (
    CorporateAction,
    Delisting,
    Merger,
    Ratio,
    Rename,
    ReverseSplit,
    SpinOff,
    StockDividend,
    StockSplit,
)
from modules.tax.errors import InvalidActionConfiguration
from modules.tax.policy import parse_config_date
from modules.tax.tax_events import IncomeKind, Money

_MONEY_PATTERN = re.compile(r"^\s*(-?[\d.]+)\s+([A-Za-z]{3})\s*$")


class EventKind(str, Enum):
    TRADE = "trade"
    CORPORATE_ACTION = "corporate_action"
    INCOME = "income"
    FEE = "fee"


class MoneyModel(BaseModel):
    """Amount + currency; also accepts the '95.02 USD' shorthand."""

    model_config = ConfigDict(frozen=True)

    amount: Decimal
    currency: str

    @model_validator(mode="before")
    @classmethod
    def parse_shorthand(cls, data):
        if isinstance(data, str):
            match = _MONEY_PATTERN.match(data)
            if not match:
                raise ValueError(f"Invalid money value: {data!r}")
            return {"amount": match.group(1), "currency": match.group(2)}
        if isinstance(data, Money):
            return {"amount": data.amount, "currency": data.currency}
        return data

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.strip().upper()

    def to_money(self) -> Money:
        return Money(self.amount, self.currency)


def _money(value: Optional[MoneyModel]) -> Optional[Money]:
    return value.to_money() if value is not None else None


class TradePayload(BaseModel):
    """Signed quantity: positive buys, negative sells."""

    symbol: str
    quantity: Decimal
    price: MoneyModel
    commission: Optional[MoneyModel] = None

    @field_validator("quantity")
    @classmethod
    def non_zero(cls, v: Decimal) -> Decimal:
        if v == 0:
            raise ValueError("Trade quantity cannot be zero")
        return v

    @field_validator("price")
    @classmethod
    def price_non_negative(cls, v: MoneyModel) -> MoneyModel:
        if v.amount < 0:
            raise ValueError(f"Price cannot be negative: {v.amount}")
        return v


class IncomePayload(BaseModel):
    kind: IncomeKind
    amount: MoneyModel
    tax_withheld: Optional[MoneyModel] = None
    symbol: Optional[str] = None


class FeePayload(BaseModel):
    amount: MoneyModel
    description: str = ""


class CorporateActionType(str, Enum):
    STOCK_SPLIT = "stock-split"
    REVERSE_SPLIT = "reverse-split"
    RENAME = "rename"
    SPIN_OFF = "spin-off"
    STOCK_DIVIDEND = "stock-dividend"
    MERGER = "merger"
    DELISTING = "delisting"


class CorporateActionPayload(BaseModel):
    """Flat wire form of a corporate action; to_action() builds the engine type."""

    type: CorporateActionType
    symbol: str

    ratio: Optional[str] = None
    new_symbol: Optional[str] = None
    allocation_ratio: Optional[Decimal] = None
    old_price: Optional[MoneyModel] = None
    new_price: Optional[MoneyModel] = None
    quantity: Optional[Decimal] = None
    quantity_per_held: Optional[Decimal] = None
    cash: Optional[MoneyModel] = None
    unit_cost: Optional[MoneyModel] = None

    @field_validator("ratio", mode="before")
    @classmethod
    def ratio_is_text(cls, v):
        # YAML 1.1 reads an unquoted 4:1 as the base-60 integer 241
        if v is not None and not isinstance(v, str):
            raise ValueError("Ratio must be a quoted 'new:old' string")
        return v

    def _require(self, field: str):
        value = getattr(self, field)
        if value is None:
            raise InvalidActionConfiguration(
                f"{self.type.value} requires '{field}'", symbol=self.symbol,
            )
        return value

    def to_action(self) -> CorporateAction:
        if self.type == CorporateActionType.STOCK_SPLIT:
            return StockSplit(Ratio.parse(self._require("ratio")))
        if self.type == CorporateActionType.REVERSE_SPLIT:
            return ReverseSplit(Ratio.parse(self._require("ratio")), cash_in_lieu_price=_money(self.cash))
        if self.type == CorporateActionType.RENAME:
            return Rename(self._require("new_symbol"))
        if self.type == CorporateActionType.SPIN_OFF:
            return SpinOff(
                new_symbol=self._require("new_symbol"),
                ratio=Ratio.parse(self.ratio) if self.ratio else Ratio(1, 1),
                allocation_ratio=self.allocation_ratio,
                old_price=_money(self.old_price),
                new_price=_money(self.new_price),
            )
        if self.type == CorporateActionType.STOCK_DIVIDEND:
            return StockDividend(
                new_symbol=self.new_symbol,
                quantity_per_held=self.quantity_per_held,
                quantity=self.quantity,
                unit_cost=_money(self.unit_cost),
            )
        if self.type == CorporateActionType.MERGER:
            return Merger(
                into_symbol=self._require("new_symbol"),
                ratio=Ratio.parse(self.ratio) if self.ratio else Ratio(1, 1),
            )
        if self.type == CorporateActionType.DELISTING:
            return Delisting(quantity=self.quantity, cash_settlement=_money(self.cash))
        raise TypeError(f"Unsupported corporate action type: {self.type}")


class ManualCorporateAction(CorporateActionPayload):
    """Corporate action supplied in configuration rather than by the broker."""

    date: dt.date

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v):
        return parse_config_date(v)


PAYLOAD_MODELS = {
    EventKind.TRADE: TradePayload,
    EventKind.CORPORATE_ACTION: CorporateActionPayload,
    EventKind.INCOME: IncomePayload,
    EventKind.FEE: FeePayload,
}

Payload = Union[TradePayload, CorporateActionPayload, IncomePayload, FeePayload]


class CanonicalEvent(BaseModel):
    """One broker-independent event in a portfolio stream."""

    sequence_no: int = Field(ge=0)
    date: dt.date
    settlement_date: Optional[dt.date] = None
    kind: EventKind
    payload: Any

    @model_validator(mode="after")
    def validate_payload(self) -> "CanonicalEvent":
        model = PAYLOAD_MODELS[self.kind]
        if isinstance(self.payload, BaseModel) and not isinstance(self.payload, model):
            raise ValueError(f"{self.kind.value} event carries a {type(self.payload).__name__} payload")
        if not isinstance(self.payload, model):
            self.payload = model.model_validate(self.payload)
        if self.settlement_date is not None and self.settlement_date < self.date:
            raise ValueError(f"Settlement date {self.settlement_date} precedes trade date {self.date}")
        return self

    @property
    def symbol(self) -> Optional[str]:
        return getattr(self.payload, "symbol", None)

    def sort_key(self):
        return (self.date, self.sequence_no)


def parse_events(records: Iterable[Mapping[str, Any]]) -> List[CanonicalEvent]:
    """Validate raw records into canonical events, preserving their order."""
    return [CanonicalEvent.model_validate(dict(record)) for record in records]


def merge_manual_actions(
    events: List[CanonicalEvent],
    actions: Iterable[ManualCorporateAction],
) -> List[CanonicalEvent]:
    """
    Add configured corporate actions to a stream.

    Manual actions get sequence numbers after the highest one in the stream,
    in configuration order; the result is sorted by (date, sequence_no).
    """
    next_sequence = max((e.sequence_no for e in events), default=-1) + 1
    merged = list(events)
    for action in actions:
        payload: Dict[str, Any] = action.model_dump(exclude={"date"})
        merged.append(CanonicalEvent(
            sequence_no=next_sequence,
            date=action.date,
            settlement_date=action.date,
            kind=EventKind.CORPORATE_ACTION,
            payload=CorporateActionPayload.model_validate(payload),
        ))
        next_sequence += 1
    return sorted(merged, key=CanonicalEvent.sort_key)
