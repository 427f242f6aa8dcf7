"""
Tax Calculator System

Jurisdiction calculators for capital gains and investment income.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from .base import (
    TaxCalculator,
    get_calculator,
    get_calculator_class,
    list_available_jurisdictions,
    register_calculator,
)
from .austria import AustriaTaxCalculator
from .russia import RussiaTaxCalculator

__all__ = [
    "TaxCalculator",
    "AustriaTaxCalculator",
    "RussiaTaxCalculator",
    "get_calculator",
    "get_calculator_class",
    "list_available_jurisdictions",
    "register_calculator",
]
