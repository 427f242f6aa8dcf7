"""
Library Package

Boundary adapters and shared utilities:
- ecb_rates / market_data: quote and FX providers
- config: portfolio configuration loader
- parsers: canonical event stream model
- utils: logging

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""
