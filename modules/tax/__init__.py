"""
Tax Module

Deterministic, verifiable cost basis and tax engine.

Features:
- FIFO lot ledger with currency-aware cost basis
- Corporate actions with value conservation checks
- Event-driven replay from chronological start
- SHA256 fingerprints of replay output
- Multiple jurisdiction support

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

__all__ = [
    'errors',
    'tax_events',
    'policy',
    'currency',
    'ledger',
    'corporate_actions',
    'engine',
    'long_term_ownership',
    'reporting',
    'calculators',
]
