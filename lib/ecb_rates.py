"""
European Central Bank (ECB) FX Rate Provider

Provides official ECB foreign exchange rates for tax computations.

Features:
- Fetches historical FX rates from the ECB SDMX API
- Looks back up to 4 days for weekends and holidays
- Optional permanent cache in SQLite (rates are immutable history)
- Raises RateNotAvailable instead of guessing

Only EUR is available as quote currency: ECB publishes foreign currency
units per EUR, the provider returns EUR per foreign unit.

API Documentation: https://data.ecb.europa.eu/help/api/data

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

import xml.etree.ElementTree as ET
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional

import requests

from lib.utils.logging_config import setup_logger
from modules.tax.errors import RateNotAvailable

logger = setup_logger(__name__)


class ECBRateProvider:
    """
    European Central Bank official FX rate provider.

    Implements the quote provider contract for pair keys such as 'USDEUR'.
    """

    API_URL = "https://data-api.ecb.europa.eu/service/data/EXR/D.{currency}.EUR.SP00.A"

    SUPPORTED_CURRENCIES = [
        "USD", "GBP", "CHF", "JPY", "CAD", "AUD", "NZD",
        "SEK", "NOK", "DKK", "PLN", "CZK", "HUF",
        "BGN", "HRK", "RON", "ISK", "TRY",
        "BRL", "CNY", "HKD", "IDR", "INR", "KRW", "MXN", "MYR",
        "PHP", "RUB", "SGD", "THB", "ZAR"
    ]

    LOOKBACK_DAYS = 4

    def __init__(self, session: Optional[requests.Session] = None, cache=None, timeout: float = 10):
        """
        Args:
            session: HTTP session (a fresh requests.Session by default)
            cache: Optional core.db.DatabaseManager used as permanent rate cache
            timeout: HTTP timeout in seconds
        """
        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": "PortfolioLedger/1.0 (Tax Compliance)",
            "Accept": "application/xml"
        })
        self.cache = cache
        self.timeout = timeout

    def rate(self, key: str, on_date: date) -> Decimal:
        """EUR per one unit of the pair's base currency on on_date."""
        if len(key) != 6:
            raise RateNotAvailable("ECB provider only prices currency pairs", key=key, date=on_date)
        from_currency, to_currency = key[:3].upper(), key[3:].upper()

        if to_currency != "EUR":
            raise RateNotAvailable("ECB only provides rates to EUR", key=key, date=on_date)
        if from_currency == "EUR":
            return Decimal(1)
        if from_currency not in self.SUPPORTED_CURRENCIES:
            raise RateNotAvailable(f"{from_currency} not published by ECB", key=key, date=on_date)

        if self.cache is not None:
            cached = self.cache.get_cached_rate(from_currency, to_currency, on_date)
            if cached is not None:
                logger.debug(f"ECB rate cache HIT: {from_currency}/EUR on {on_date} = {cached}")
                return Decimal(1) / cached

        for days_back in range(self.LOOKBACK_DAYS + 1):
            lookup_date = on_date - timedelta(days=days_back)
            quoted = self._fetch_from_api(lookup_date, from_currency)
            if quoted is None:
                continue
            if days_back:
                logger.info(f"ECB rate for {on_date} not published, using {lookup_date}: {from_currency}/EUR = {quoted}")
            if self.cache is not None:
                self.cache.cache_rate(from_currency, to_currency, on_date, quoted)
            return Decimal(1) / quoted

        raise RateNotAvailable(
            f"No ECB rate within {self.LOOKBACK_DAYS} days",
            key=key, date=on_date,
        )

    def _fetch_from_api(self, target_date: date, currency: str) -> Optional[Decimal]:
        """
        Fetch the ECB reference rate (currency units per EUR) for one day.

        Returns None when ECB published nothing for that day.
        """
        url = self.API_URL.format(currency=currency)
        params = {
            "startPeriod": target_date.isoformat(),
            "endPeriod": target_date.isoformat()
        }

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise RateNotAvailable(f"ECB API request failed: {e}", currency=currency, date=target_date) from e

        # ECB answers 404 for periods without observations
        if response.status_code == 404 or not response.content:
            return None
        try:
            response.raise_for_status()
        except requests.RequestException as e:
            raise RateNotAvailable(f"ECB API request failed: {e}", currency=currency, date=target_date) from e

        try:
            root = ET.fromstring(response.content)
        except ET.ParseError as e:
            raise RateNotAvailable(f"Failed to parse ECB response: {e}", currency=currency, date=target_date) from e

        namespaces = {
            'generic': 'http://www.sdmx.org/resources/sdmxml/schemas/v2_1/data/generic',
        }
        obs_values = root.findall('.//generic:ObsValue', namespaces)
        if not obs_values:
            # Structure-specific format uses a plain OBS_VALUE attribute
            obs_values = [obs for obs in root.iter() if obs.tag.endswith('Obs') and 'OBS_VALUE' in obs.attrib]
            values = [obs.attrib['OBS_VALUE'] for obs in obs_values]
        else:
            values = [obs.attrib.get('value') for obs in obs_values]

        for value_str in values:
            if not value_str:
                continue
            try:
                return Decimal(value_str)
            except InvalidOperation:
                logger.warning(f"Unparseable ECB value {value_str!r} for {currency} on {target_date}")

        logger.debug(f"No rate found in ECB response for {currency} on {target_date}")
        return None
