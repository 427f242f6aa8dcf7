"""
Base Class for Tax Calculators

A calculator turns the Disposal and Income records of a portfolio into a
TaxResult for one year. The computation itself is driven by TaxYearConfig
(rates, exemptions, deductions); jurisdiction subclasses contribute presets
and the few rules that differ (supported exemptions, fee treatment).

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from datetime import date
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple, Type

from core.hashing import calculate_sha256
from lib.utils.logging_config import get_perf_logger, setup_logger
from modules.tax.errors import (
    ConfigurationMissing,
    DataInconsistency,
    MissingExemptionPolicy,
    MissingTaxRate,
)
from modules.tax.long_term_ownership import ownership_years
from modules.tax.policy import JurisdictionPolicy, RateSchedule, TaxExemption, TaxYearConfig
from modules.tax.tax_events import Disposal, Income, TaxResult, round_decimal

logger = setup_logger(__name__)


class TaxCalculator:
    """
    Config-driven tax calculator; also the GENERIC jurisdiction.

    Subclasses override the class attributes and default_config() to
    provide a jurisdiction preset.
    """

    JURISDICTION_CODE = "GENERIC"
    JURISDICTION_NAME = "Generic"
    CALCULATOR_VERSION = "1.0"

    SUPPORTED_EXEMPTIONS: FrozenSet[TaxExemption] = frozenset(TaxExemption)
    FEES_REDUCE_GAIN = True
    # Broker withholds trading tax at year end (due 1 January)
    TRADING_TAX_WITHHELD_AT_YEAR_END = False

    def __init__(self, config: TaxYearConfig, jurisdiction: Optional[str] = None,
                 base_currency: Optional[str] = None):
        self.config = config
        self.jurisdiction = (jurisdiction or self.JURISDICTION_CODE).upper()
        self.base_currency = (base_currency or self.default_policy().base_currency).upper()

    # --- Presets -------------------------------------------------------------

    @classmethod
    def default_policy(cls) -> JurisdictionPolicy:
        return JurisdictionPolicy()

    @classmethod
    def default_config(cls, **overrides) -> TaxYearConfig:
        if "trading_rates" not in overrides:
            raise ConfigurationMissing(
                "The generic calculator has no preset rates; configure trading_rates",
                jurisdiction=cls.JURISDICTION_CODE,
            )
        return TaxYearConfig(**overrides)

    def get_jurisdiction_name(self) -> str:
        return self.JURISDICTION_NAME

    def get_jurisdiction_code(self) -> str:
        return self.jurisdiction

    # --- Building blocks -----------------------------------------------------

    def record_tax_year(self, on_date: date, trading: bool) -> int:
        """Tax year of a record, following the account's tax payment day."""
        try:
            return self.config.tax_payment_day.tax_year(on_date, trading)
        except ValueError as e:
            raise DataInconsistency(
                "Record dated after the account close date",
                jurisdiction=self.jurisdiction, date=on_date,
                close_date=self.config.tax_payment_day.close_date,
            ) from e

    def filter_disposals_by_year(self, disposals: Iterable[Disposal], tax_year: int) -> List[Disposal]:
        return [d for d in disposals if self.record_tax_year(d.disposal_date, trading=True) == tax_year]

    def filter_income_by_year(self, income: Iterable[Income], tax_year: int) -> List[Income]:
        return [i for i in income if self.record_tax_year(i.date, trading=False) == tax_year]

    def schedule_for(self, kind: str, tax_year: int) -> RateSchedule:
        """
        Rate schedule in effect for tax_year.

        Income falls back to the trading table only when no income table
        is configured at all.
        """
        if kind == "income" and self.config.income_rates is not None:
            rates = self.config.income_rates
        else:
            rates = self.config.trading_rates

        schedule = self.config.schedule_in_effect(rates, tax_year)
        if schedule is None:
            raise MissingTaxRate(
                f"No {kind} tax rate configured",
                jurisdiction=self.jurisdiction,
                year=tax_year,
                configured_years=",".join(str(y) for y in sorted(rates)) or None,
            )
        return schedule

    def gain_for_tax(self, disposal: Disposal) -> Decimal:
        if self.FEES_REDUCE_GAIN:
            return disposal.gain.amount
        return (disposal.proceeds - disposal.cost_basis).amount

    def is_exempt(self, disposal: Disposal, gain: Decimal, exemptions: Set[TaxExemption]) -> bool:
        if TaxExemption.TAX_FREE in exemptions:
            return True
        if TaxExemption.LONG_TERM_OWNERSHIP in exemptions:
            # Losses on long-held lots stay deductible
            if gain <= 0:
                return False
            years = ownership_years(disposal.acquisition_date, disposal.disposal_date)
            return years >= self.config.lto_min_years
        return False

    def lto_deduction(self, eligible: List[Tuple[Decimal, int]]) -> Tuple[Decimal, Optional[Decimal]]:
        """
        Long-term ownership deduction for qualifying (gain, years) pairs.

        With a per-year limit L the deduction is capped at
        L × Σ(gain × years) / Σ gain. Returns (deduction, cap or None).
        """
        total = sum((gain for gain, _ in eligible), Decimal(0))
        per_year = self.config.lto_deduction_limit
        if per_year is None or total <= 0:
            return total, None
        weighted_years = sum((gain * years for gain, years in eligible), Decimal(0)) / total
        cap = round_decimal(per_year * weighted_years, 2)
        return min(total, cap), cap

    def withholding_credit(self, item: Income) -> Decimal:
        withheld = item.tax_withheld.amount
        limit = self.config.withholding_credit_limit
        if limit is None:
            return withheld
        return min(withheld, item.amount.amount * limit / 100)

    def round_tax(self, amount: Decimal) -> Decimal:
        """Round to cents first, then to the jurisdiction's tax precision."""
        return round_decimal(round_decimal(amount, 2), self.config.tax_precision)

    def _exemptions(self, year_disposals: List[Disposal], tax_year: int) -> Set[TaxExemption]:
        exemptions = self.config.exemptions
        if exemptions is None:
            if year_disposals:
                raise MissingExemptionPolicy(
                    "Disposals exist but no tax exemption policy is configured (use an empty list for none)",
                    jurisdiction=self.jurisdiction,
                    year=tax_year,
                    disposals=len(year_disposals),
                    symbols=",".join(sorted({d.symbol for d in year_disposals})),
                )
            return set()

        unsupported = set(exemptions) - set(self.SUPPORTED_EXEMPTIONS)
        if unsupported:
            raise ConfigurationMissing(
                "Tax exemption not available in this jurisdiction",
                jurisdiction=self.jurisdiction,
                exemptions=",".join(sorted(e.value for e in unsupported)),
            )
        return set(exemptions)

    def _currency(self, disposals: List[Disposal], income: List[Income]) -> str:
        currencies = {d.proceeds.currency for d in disposals} | {i.amount.currency for i in income}
        if len(currencies) > 1:
            raise DataInconsistency(
                "Tax records are in more than one currency",
                currencies=",".join(sorted(currencies)),
            )
        return currencies.pop() if currencies else self.base_currency

    # --- Calculation ---------------------------------------------------------

    def calculate(self, disposals: Iterable[Disposal], income: Iterable[Income], tax_year: int) -> TaxResult:
        """
        Calculate tax for tax_year.

        Args:
            disposals: Disposal records (any years; filtered here)
            income: Income records (any years; filtered here)
            tax_year: Calendar year

        Returns:
            TaxResult in base currency

        Raises:
            MissingExemptionPolicy: disposals exist and exemptions is None
            MissingTaxRate: no rate in effect for tax_year
        """
        with get_perf_logger(logger, f"tax {self.jurisdiction} {tax_year}", threshold_ms=500):
            year_disposals = self.filter_disposals_by_year(disposals, tax_year)
            year_income = self.filter_income_by_year(income, tax_year)
            currency = self._currency(year_disposals, year_income)

            exemptions = self._exemptions(year_disposals, tax_year)
            trading_schedule = self.schedule_for("trading", tax_year)
            income_schedule = self.schedule_for("income", tax_year)

            taxable_gain = Decimal(0)
            exempt_gain = Decimal(0)
            total_gains = Decimal(0)
            total_losses = Decimal(0)
            exempt_count = 0
            lto_eligible: List[Tuple[Decimal, int]] = []
            for disposal in year_disposals:
                gain = self.gain_for_tax(disposal)
                if self.is_exempt(disposal, gain, exemptions):
                    exempt_count += 1
                    if TaxExemption.LONG_TERM_OWNERSHIP in exemptions:
                        years = ownership_years(disposal.acquisition_date, disposal.disposal_date)
                        lto_eligible.append((gain, years))
                    else:
                        exempt_gain += gain
                    continue
                taxable_gain += gain
                if gain >= 0:
                    total_gains += gain
                else:
                    total_losses += -gain

            lto_deduction, lto_cap = self.lto_deduction(lto_eligible)
            lto_excess = sum((gain for gain, _ in lto_eligible), Decimal(0)) - lto_deduction
            exempt_gain += lto_deduction
            taxable_gain += lto_excess
            total_gains += lto_excess

            taxable_income = sum((i.amount.amount for i in year_income), Decimal(0))
            prior = self.config.prior_income_by_year.get(tax_year, Decimal(0))

            # Bases are rounded to cents before a rate is applied
            trading_base = round_decimal(taxable_gain, 2)
            income_base = round_decimal(taxable_income, 2)
            trading_tax = self.round_tax(trading_schedule.tax(trading_base, prior))
            # Income is stacked on top of the trading base for progressive schedules
            income_tax = self.round_tax(
                income_schedule.tax(income_base, prior + max(trading_base, Decimal(0)))
            )
            tax_due = trading_tax + income_tax

            credit = round_decimal(sum((self.withholding_credit(i) for i in year_income), Decimal(0)), 2)
            deductions = round_decimal(sum(
                (amount for day, amount in self.config.deductions.items() if day.year == tax_year),
                Decimal(0),
            ), 2)
            net_tax_payable = tax_due - credit - deductions

        breakdown: Dict[str, Decimal] = {
            "total_gains": total_gains,
            "total_losses": total_losses,
            "trading_tax": trading_tax,
            "income_tax": income_tax,
            "dividends": sum((i.amount.amount for i in year_income if i.kind.value == "dividend"), Decimal(0)),
            "interest": sum((i.amount.amount for i in year_income if i.kind.value == "interest"), Decimal(0)),
            "tax_withheld": sum((i.tax_withheld.amount for i in year_income), Decimal(0)),
            "prior_income": prior,
            "lto_deduction": lto_deduction,
        }

        assumptions = [
            f"Trading tax rate: {trading_schedule.describe()}",
            f"Income tax rate: {income_schedule.describe()}",
            f"Exemptions: {', '.join(sorted(e.value for e in exemptions)) or 'none'}",
            f"Tax rounded to {self.config.tax_precision} decimal place(s) after rounding to cents",
        ]
        if TaxExemption.LONG_TERM_OWNERSHIP in exemptions:
            assumptions.append(f"Long-term ownership requires {self.config.lto_min_years} full years")
            if lto_cap is not None:
                assumptions.append(
                    f"Long-term ownership deduction capped at {lto_cap} "
                    f"({self.config.lto_deduction_limit} per full year of ownership)"
                )
        payment_day = self.config.tax_payment_day
        if payment_day.on_close:
            assumptions.append(f"Trading income taxed on account close ({payment_day.close_date})")
        if not self.FEES_REDUCE_GAIN:
            assumptions.append("Commissions do not reduce taxable gains")

        notes = None
        if net_tax_payable < 0:
            notes = f"Refund of {-net_tax_payable} {currency}: credits and deductions exceed the tax due"

        result = TaxResult(
            jurisdiction=self.jurisdiction,
            tax_year=tax_year,
            currency=currency,
            taxable_gain=taxable_gain,
            exempt_gain=exempt_gain,
            taxable_income=taxable_income,
            tax_due=tax_due,
            tax_withheld_credit=credit,
            deductions=deductions,
            net_tax_payable=net_tax_payable,
            breakdown=breakdown,
            exempt_disposals=exempt_count,
            assumptions=assumptions,
            notes=notes,
            calculator_version=self.CALCULATOR_VERSION,
            trading_tax_payment_date=payment_day.payment_date(
                tax_year, trading=True, withheld_at_year_end=self.TRADING_TAX_WITHHELD_AT_YEAR_END,
            ),
            income_tax_payment_date=payment_day.payment_date(tax_year, trading=False),
        )
        result.calculation_hash = calculate_sha256({
            "inputs": {
                "disposals": [d.to_dict() for d in year_disposals],
                "income": [i.to_dict() for i in year_income],
                "config": self.config.model_dump(mode="json"),
            },
            "outputs": result.to_dict(),
        })

        logger.info(
            f"{self.jurisdiction} {tax_year}: taxable gain {taxable_gain}, income {taxable_income}, "
            f"tax due {tax_due}, net payable {net_tax_payable} {currency}"
        )
        return result


# Registry of available calculators
_CALCULATOR_REGISTRY: Dict[str, Type[TaxCalculator]] = {}


def register_calculator(jurisdiction_code: str):
    """
    Decorator to register a tax calculator class.

    Usage:
        @register_calculator("RU")
        class RussiaTaxCalculator(TaxCalculator):
            ...
    """
    def decorator(cls: Type[TaxCalculator]):
        _CALCULATOR_REGISTRY[jurisdiction_code.upper()] = cls
        return cls
    return decorator


register_calculator(TaxCalculator.JURISDICTION_CODE)(TaxCalculator)


def get_calculator_class(jurisdiction_code: str) -> Type[TaxCalculator]:
    code = jurisdiction_code.upper()
    if code not in _CALCULATOR_REGISTRY:
        available = ", ".join(sorted(_CALCULATOR_REGISTRY))
        raise ConfigurationMissing(
            f"Tax calculator for '{jurisdiction_code}' not found",
            available=available,
        )
    return _CALCULATOR_REGISTRY[code]


def get_calculator(
    jurisdiction_code: str,
    config: Optional[TaxYearConfig] = None,
    base_currency: Optional[str] = None,
    **config_overrides,
) -> TaxCalculator:
    """
    Factory method to get a tax calculator instance.

    Args:
        jurisdiction_code: Registered code (e.g. "RU", "AT", "GENERIC")
        config: Complete TaxYearConfig; if omitted, the jurisdiction preset
            is used with config_overrides applied
        base_currency: Portfolio base currency (defaults to the preset's)

    Raises:
        ConfigurationMissing: unknown jurisdiction or no usable preset
    """
    calculator_class = get_calculator_class(jurisdiction_code)
    if config is None:
        config = calculator_class.default_config(**config_overrides)
    return calculator_class(config, base_currency=base_currency)


def list_available_jurisdictions() -> List[str]:
    """Sorted list of registered jurisdiction codes."""
    return sorted(_CALCULATOR_REGISTRY.keys())
