"""
Core Kernel Module

Foundational storage and integrity utilities.

Components:
- db: SQLite connection manager, lot snapshot store, ECB rate cache
- hashing: canonical JSON and SHA256 fingerprints

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

__all__ = ['db', 'hashing']
