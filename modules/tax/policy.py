"""
Jurisdiction Policy and Tax Year Configuration

Pydantic models for everything the operator decides per portfolio:
- JurisdictionPolicy: how the ledger converts and dates cost basis
- RateSchedule: flat or progressive tax rate for one period
- TaxYearConfig: rates by effective year, exemptions, deductions, precision
- TaxPaymentDay: which year a record is taxed in and when the tax is paid

Rates are effective-from: an entry for 2021 applies to 2021 and every later
year until the next entry. A year before the first entry has no rate.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

import re
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_PAYMENT_DAY = re.compile(r"^(\d{1,2})\.(\d{1,2})$")


class CostBasisDate(str, Enum):
    """Which date prices the cost basis of a lot in base currency."""
    TRADE = "trade"
    SETTLEMENT = "settlement"


class TaxExemption(str, Enum):
    TAX_FREE = "tax-free"
    LONG_TERM_OWNERSHIP = "long-term-ownership"


class JurisdictionPolicy(BaseModel):
    """Ledger-level rules that differ between tax jurisdictions."""

    model_config = ConfigDict(frozen=True)

    base_currency: str = "EUR"
    cost_basis_date: CostBasisDate = CostBasisDate.TRADE
    split_resets_acquisition_date: bool = False
    spin_off_resets_acquisition_date: bool = False
    merger_preserves_acquisition_date: bool = True
    value_epsilon: Decimal = Decimal("0.000001")

    @field_validator("base_currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        v = v.strip().upper()
        if len(v) != 3:
            raise ValueError(f"Invalid currency code: {v}")
        return v

    @field_validator("value_epsilon")
    @classmethod
    def epsilon_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("value_epsilon must be >= 0")
        return v


class TaxBracket(BaseModel):
    """Rate (percent) applied to the part of the base above threshold."""

    threshold: Decimal = Decimal(0)
    rate: Decimal

    @field_validator("threshold", "rate")
    @classmethod
    def non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Bracket threshold and rate must be >= 0")
        return v


class RateSchedule(BaseModel):
    """
    Either a flat rate or a list of progressive brackets, in percent.

    Progressive tax is marginal: T(base) sums each bracket's rate over the
    slice of the base between its threshold and the next one.
    """

    model_config = ConfigDict(frozen=True)

    rate: Optional[Decimal] = None
    brackets: Optional[List[TaxBracket]] = None

    @model_validator(mode="after")
    def exactly_one_form(self) -> "RateSchedule":
        if (self.rate is None) == (self.brackets is None):
            raise ValueError("Rate schedule needs either 'rate' or 'brackets'")
        if self.brackets is not None:
            if not self.brackets:
                raise ValueError("Progressive schedule needs at least one bracket")
            thresholds = [b.threshold for b in self.brackets]
            if thresholds != sorted(thresholds) or len(set(thresholds)) != len(thresholds):
                raise ValueError("Bracket thresholds must be strictly increasing")
            if thresholds[0] != 0:
                raise ValueError("First bracket must start at 0")
        elif self.rate < 0:
            raise ValueError("Rate must be >= 0")
        return self

    @property
    def is_progressive(self) -> bool:
        return self.brackets is not None

    def _cumulative(self, base: Decimal) -> Decimal:
        if base <= 0:
            return Decimal(0)
        total = Decimal(0)
        for i, bracket in enumerate(self.brackets):
            if base <= bracket.threshold:
                break
            upper = self.brackets[i + 1].threshold if i + 1 < len(self.brackets) else None
            top = base if upper is None else min(base, upper)
            total += (top - bracket.threshold) * bracket.rate / 100
        return total

    def tax(self, base: Decimal, prior: Decimal = Decimal(0)) -> Decimal:
        """
        Unrounded tax on base, stacked on top of prior income.

        Negative bases are taxed at zero. Flat schedules ignore prior.
        """
        if base <= 0:
            return Decimal(0)
        if not self.is_progressive:
            return base * self.rate / 100
        prior = max(prior, Decimal(0))
        return self._cumulative(prior + base) - self._cumulative(prior)

    def describe(self) -> str:
        if not self.is_progressive:
            return f"{self.rate}%"
        return " / ".join(f"{b.rate}% from {b.threshold}" for b in self.brackets)


def _coerce_schedules(value):
    if value is None:
        return value
    coerced = {}
    for year, schedule in dict(value).items():
        if isinstance(schedule, (int, float, str, Decimal)):
            schedule = {"rate": Decimal(str(schedule))}
        coerced[int(year)] = schedule
    return coerced


def parse_config_date(value):
    """Accept date objects, ISO strings and the dotted '2018.09.25' form."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    for fmt in ("%Y-%m-%d", "%Y.%m.%d", "%d.%m.%Y"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Invalid date: {value!r}")


class TaxPaymentDay(BaseModel):
    """
    When tax on a year's income is paid, and which year it belongs to.

    A regular account pays on a fixed day (default 15 March) of the year
    after the tax year. An account taxed on close (e.g. an individual
    investment account) pays the trading tax on its close date, and all of
    its trading income up to then belongs to the close year.

    Parsed from '15.03' or 'on-close' (the latter needs close_date).
    """

    model_config = ConfigDict(frozen=True)

    month: int = 3
    day: int = 15
    close_date: Optional[date] = None

    @model_validator(mode="after")
    def valid_day(self) -> "TaxPaymentDay":
        # Checked against a non-leap year: 29.02 is not a payment day
        try:
            date(2001, self.month, self.day)
        except ValueError:
            raise ValueError(f"Invalid tax payment day: {self.day:02d}.{self.month:02d}") from None
        return self

    @classmethod
    def parse(cls, value, close_date=None) -> "TaxPaymentDay":
        text = str(value).strip().lower()
        if text == "on-close":
            if close_date is None:
                raise ValueError("Tax payment day 'on-close' needs the account close date")
            return cls(close_date=parse_config_date(close_date))
        match = _PAYMENT_DAY.match(text)
        if not match:
            raise ValueError(f"Invalid tax payment day: {value!r} (expected 'DD.MM' or 'on-close')")
        return cls(day=int(match.group(1)), month=int(match.group(2)))

    @property
    def on_close(self) -> bool:
        return self.close_date is not None

    def tax_year(self, income_date: date, trading: bool) -> int:
        """Tax year that income received on income_date belongs to."""
        if not self.on_close:
            return income_date.year
        if income_date > self.close_date:
            raise ValueError(f"Income on {income_date} after the account close date {self.close_date}")
        return self.close_date.year if trading else income_date.year

    def payment_date(self, tax_year: int, trading: bool, withheld_at_year_end: bool = False) -> date:
        """
        Approximate day the tax for tax_year is paid.

        withheld_at_year_end: the broker withholds trading tax itself at the
        end of the year, so it is due on 1 January.
        """
        if self.on_close and trading:
            return self.close_date
        if trading and withheld_at_year_end:
            return date(tax_year + 1, 1, 1)
        return date(tax_year + 1, self.month, self.day)


class TaxYearConfig(BaseModel):
    """Per-portfolio tax parameters."""

    model_config = ConfigDict(frozen=True)

    trading_rates: Dict[int, RateSchedule]
    income_rates: Optional[Dict[int, RateSchedule]] = None

    # None means the operator has not decided; a set (possibly empty) is explicit
    exemptions: Optional[Set[TaxExemption]] = None
    lto_min_years: int = Field(default=3, ge=1)
    # Cap on the long-term ownership deduction per full year of ownership;
    # None exempts every qualifying gain in full
    lto_deduction_limit: Optional[Decimal] = Field(default=None, ge=0)

    deductions: Dict[date, Decimal] = Field(default_factory=dict)
    prior_income_by_year: Dict[int, Decimal] = Field(default_factory=dict)
    withholding_credit_limit: Optional[Decimal] = None
    tax_precision: int = Field(default=2, ge=0, le=2)
    tax_payment_day: TaxPaymentDay = Field(default_factory=TaxPaymentDay)

    @field_validator("trading_rates", "income_rates", mode="before")
    @classmethod
    def coerce_schedules(cls, v):
        return _coerce_schedules(v)

    @field_validator("deductions", mode="before")
    @classmethod
    def coerce_deduction_dates(cls, v):
        if v is None:
            return {}
        return {parse_config_date(k): amount for k, amount in dict(v).items()}

    @field_validator("tax_payment_day", mode="before")
    @classmethod
    def parse_payment_day(cls, v):
        if v is None:
            return TaxPaymentDay()
        if isinstance(v, str):
            return TaxPaymentDay.parse(v)
        return v

    @field_validator("exemptions")
    @classmethod
    def at_most_one_exemption(cls, v):
        if v is not None and len(v) > 1:
            raise ValueError("Only one tax exemption may be configured per portfolio")
        return v

    @field_validator("withholding_credit_limit")
    @classmethod
    def limit_is_percent(cls, v):
        if v is not None and not (0 <= v <= 100):
            raise ValueError("withholding_credit_limit must be a percentage between 0 and 100")
        return v

    def schedule_in_effect(self, rates: Dict[int, RateSchedule], year: int) -> Optional[RateSchedule]:
        """Latest schedule whose effective year is <= year."""
        effective = [y for y in rates if y <= year]
        if not effective:
            return None
        return rates[max(effective)]
