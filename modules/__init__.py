"""
Modules Package

Business logic layer.

Modules:
- tax: lot ledger, corporate actions, event replay and tax calculation

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

__all__ = ['tax']
