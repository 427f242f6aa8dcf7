"""
Austrian Tax Calculator (Kapitalertragsteuer - KESt)

Implements Austria's capital gains tax rules:
- 27.5% flat tax on all capital gains and investment income
- No annual tax-free allowance
- No holding period exemptions (abolished in 2011)
- Losses offset gains within the same tax year
- CRITICAL: Fees and costs CANNOT reduce taxable gains

References:
- Austrian Income Tax Act (EStG) §27a

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from decimal import Decimal

from modules.tax.calculators.base import TaxCalculator, register_calculator
from modules.tax.policy import CostBasisDate, JurisdictionPolicy, TaxYearConfig


@register_calculator("AT")
class AustriaTaxCalculator(TaxCalculator):
    """
    Tax calculator for Austria (Kapitalertragsteuer - KESt).

    Foreign withholding tax on dividends is creditable up to 15% of the
    gross dividend (double taxation treaties).
    """

    JURISDICTION_CODE = "AT"
    JURISDICTION_NAME = "Austria"
    CALCULATOR_VERSION = "2.0-AT"

    CAPITAL_GAINS_TAX_RATE = Decimal("27.5")
    TREATY_CREDIT_LIMIT = Decimal("15")

    SUPPORTED_EXEMPTIONS = frozenset()
    FEES_REDUCE_GAIN = False

    @classmethod
    def default_policy(cls) -> JurisdictionPolicy:
        return JurisdictionPolicy(base_currency="EUR", cost_basis_date=CostBasisDate.TRADE)

    @classmethod
    def default_config(cls, **overrides) -> TaxYearConfig:
        settings = {
            "trading_rates": {2012: {"rate": cls.CAPITAL_GAINS_TAX_RATE}},
            "exemptions": set(),
            "withholding_credit_limit": cls.TREATY_CREDIT_LIMIT,
            "tax_precision": 2,
        }
        settings.update(overrides)
        return TaxYearConfig(**settings)
