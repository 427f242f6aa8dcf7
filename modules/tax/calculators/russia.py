"""
Russian Tax Calculator (НДФЛ on investment income)

Implements the Russian personal income tax rules for brokerage accounts:
- 13% flat rate until 2020
- Progressive from 2021: 15% on the part of the annual base over 5,000,000 RUB
- From 2025 the investment income threshold is 2,400,000 RUB
- Tax computed in whole rubles (cents first, then rubles)
- Cost basis converted on the settlement date (Central Bank rate)
- Long-term ownership deduction (3 full years, up to 3,000,000 RUB per year
  of ownership) or tax-free (IIS type B) accounts
- Trading tax is withheld by the broker at year end; IIS accounts are taxed
  when they are closed (tax_payment_day: on-close)

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from decimal import Decimal

from modules.tax.calculators.base import TaxCalculator, register_calculator
from modules.tax.policy import CostBasisDate, JurisdictionPolicy, TaxYearConfig


def _progressive(threshold: int) -> dict:
    return {"brackets": [
        {"threshold": Decimal(0), "rate": Decimal(13)},
        {"threshold": Decimal(threshold), "rate": Decimal(15)},
    ]}


@register_calculator("RU")
class RussiaTaxCalculator(TaxCalculator):
    """
    Tax calculator for Russia.

    Key Rules:
    - Rates are effective-from a year and stay in force until replaced
    - Foreign withholding tax is credited against the income tax
    - Only one exemption (tax-free or long-term ownership) per account
    """

    JURISDICTION_CODE = "RU"
    JURISDICTION_NAME = "Russia"
    CALCULATOR_VERSION = "1.1-RU"

    TRADING_TAX_WITHHELD_AT_YEAR_END = True
    LTO_DEDUCTION_LIMIT = Decimal(3_000_000)

    RATES = {
        2000: {"rate": Decimal(13)},
        2021: _progressive(5_000_000),
        2025: _progressive(2_400_000),
    }

    @classmethod
    def default_policy(cls) -> JurisdictionPolicy:
        return JurisdictionPolicy(
            base_currency="RUB",
            cost_basis_date=CostBasisDate.SETTLEMENT,
            split_resets_acquisition_date=False,
            merger_preserves_acquisition_date=True,
        )

    @classmethod
    def default_config(cls, **overrides) -> TaxYearConfig:
        settings = {
            "trading_rates": cls.RATES,
            "income_rates": cls.RATES,
            "tax_precision": 0,
            "lto_min_years": 3,
            "lto_deduction_limit": cls.LTO_DEDUCTION_LIMIT,
        }
        settings.update(overrides)
        return TaxYearConfig(**settings)
