"""
Portfolio Configuration

Loads the operator's YAML (or JSON) configuration:

    portfolios:
      - name: ib
        jurisdiction: RU
        tax_exemptions: [long-term-ownership]
        tax_deductions:
          2021-04-01: 52000
        tax_payment_day: on-close
        account_close_date: 2024-12-20
        symbol_remapping:
          FB: META
        corporate_actions:
          - date: 2020-08-31
            symbol: AAPL
            type: stock-split
            ratio: "4:1"
    taxes:
      income:
        2021: 3000000

Ratios must be quoted: YAML reads an unquoted 4:1 as a number.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

import json
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from lib.parsers.canonical_events import ManualCorporateAction
from lib.utils.logging_config import setup_logger
from modules.tax.calculators.base import TaxCalculator, get_calculator_class
from modules.tax.errors import ConfigurationMissing
from modules.tax.policy import (
    CostBasisDate,
    JurisdictionPolicy,
    TaxExemption,
    TaxPaymentDay,
    TaxYearConfig,
    parse_config_date,
)

logger = setup_logger(__name__)


class TaxesConfig(BaseModel):
    """Taxes shared by all portfolios (e.g. salary already taxed this year)."""

    income: Dict[int, Decimal] = Field(default_factory=dict)


class PortfolioConfig(BaseModel):
    name: str
    jurisdiction: str = "GENERIC"
    currency: Optional[str] = None

    # None: not decided yet; []: explicitly no exemption
    tax_exemptions: Optional[List[TaxExemption]] = None
    tax_deductions: Dict[date, Decimal] = Field(default_factory=dict)
    symbol_remapping: Dict[str, str] = Field(default_factory=dict)
    corporate_actions: List[ManualCorporateAction] = Field(default_factory=list)

    cost_basis_date: Optional[CostBasisDate] = None
    split_resets_acquisition_date: Optional[bool] = None
    merger_preserves_acquisition_date: Optional[bool] = None
    spin_off_resets_acquisition_date: Optional[bool] = None

    trading_rates: Optional[Dict[int, Union[Decimal, dict]]] = None
    income_rates: Optional[Dict[int, Union[Decimal, dict]]] = None
    tax_precision: Optional[int] = None
    lto_deduction_limit: Optional[Decimal] = None

    # 'DD.MM' or 'on-close' (needs account_close_date)
    tax_payment_day: Optional[str] = None
    account_close_date: Optional[date] = None

    @field_validator("jurisdiction")
    @classmethod
    def upper_jurisdiction(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("tax_exemptions")
    @classmethod
    def single_exemption(cls, v):
        if v is not None and len(set(v)) > 1:
            raise ValueError("Only one tax exemption may be configured per portfolio")
        return v

    @field_validator("tax_deductions", mode="before")
    @classmethod
    def parse_deduction_dates(cls, v):
        if v is None:
            return {}
        return {parse_config_date(k): amount for k, amount in dict(v).items()}

    @field_validator("account_close_date", mode="before")
    @classmethod
    def parse_close_date(cls, v):
        return None if v is None else parse_config_date(v)

    @model_validator(mode="after")
    def payment_day_is_valid(self) -> "PortfolioConfig":
        self.payment_day()
        return self

    def payment_day(self) -> Optional[TaxPaymentDay]:
        if self.tax_payment_day is None:
            return None
        return TaxPaymentDay.parse(self.tax_payment_day, self.account_close_date)

    @property
    def calculator_class(self):
        return get_calculator_class(self.jurisdiction)

    def build_policy(self) -> JurisdictionPolicy:
        """Jurisdiction preset with this portfolio's overrides applied."""
        policy = self.calculator_class.default_policy()
        overrides = {
            key: getattr(self, key)
            for key in (
                "cost_basis_date",
                "split_resets_acquisition_date",
                "merger_preserves_acquisition_date",
                "spin_off_resets_acquisition_date",
            )
            if getattr(self, key) is not None
        }
        if self.currency:
            overrides["base_currency"] = self.currency
        if not overrides:
            return policy
        return JurisdictionPolicy(**{**policy.model_dump(), **overrides})

    def build_tax_config(self, taxes: Optional[TaxesConfig] = None) -> TaxYearConfig:
        overrides = {
            "deductions": self.tax_deductions,
            "prior_income_by_year": (taxes or TaxesConfig()).income,
        }
        if self.tax_exemptions is not None:
            overrides["exemptions"] = set(self.tax_exemptions)
        if self.tax_payment_day is not None:
            overrides["tax_payment_day"] = self.payment_day()
        for key in ("trading_rates", "income_rates", "tax_precision", "lto_deduction_limit"):
            if getattr(self, key) is not None:
                overrides[key] = getattr(self, key)
        return self.calculator_class.default_config(**overrides)

    def build_calculator(self, taxes: Optional[TaxesConfig] = None) -> TaxCalculator:
        return self.calculator_class(
            self.build_tax_config(taxes),
            base_currency=self.build_policy().base_currency,
        )


class AppConfig(BaseModel):
    portfolios: List[PortfolioConfig] = Field(default_factory=list)
    taxes: TaxesConfig = Field(default_factory=TaxesConfig)

    @field_validator("portfolios")
    @classmethod
    def unique_names(cls, v: List[PortfolioConfig]) -> List[PortfolioConfig]:
        names = [p.name for p in v]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate portfolio names: {', '.join(duplicates)}")
        return v

    def get_portfolio(self, name: str) -> PortfolioConfig:
        for portfolio in self.portfolios:
            if portfolio.name == name:
                return portfolio
        raise ConfigurationMissing(
            "Unknown portfolio",
            portfolio=name,
            available=", ".join(p.name for p in self.portfolios) or None,
        )


def load_config(path: Union[str, Path]) -> AppConfig:
    """
    Read a YAML or JSON configuration file.

    Raises:
        ConfigurationMissing: file missing or invalid
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationMissing("Configuration file not found", path=str(path))

    with open(path, "r", encoding="utf-8") as f:
        if path.suffix.lower() == ".json":
            raw = json.load(f)
        else:
            raw = yaml.safe_load(f)

    try:
        config = AppConfig.model_validate(raw or {})
    except ValidationError as e:
        raise ConfigurationMissing(f"Invalid configuration: {e}", path=str(path)) from e

    logger.info(f"Loaded configuration from {path}: {len(config.portfolios)} portfolio(s)")
    return config
