# =============================================================================
# core/services/exchange_rate_service.py - Currency Conversion
# =============================================================================
# Converts package prices to the invoice currency using the National Bank
# of Romania daily reference rates (nbrfxrates.xml).
#
# Only EUR -> RON is fetched; RON -> X is the inverse of X -> RON. The rate
# is cached for EXCHANGE_RATE_TTL_HOURS and a stale cached rate is used
# when the feed can't be reached.
# =============================================================================

import logging
import time
import xml.etree.ElementTree as ET
from typing import Callable

import httpx

from app.config import settings
from app.exceptions import ExchangeRateUnavailableError

logger = logging.getLogger(__name__)

BASE_CURRENCY = "RON"


def parse_bnr_rate(xml_text: str, currency: str) -> float:
    """
    Extract one currency's rate from a BNR rates document.

    Rates carry an optional multiplier attribute (e.g. 100 HUF); the
    returned value is always per single unit.

    Raises:
        ValueError: If the document can't be parsed or lacks the currency
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ValueError(f"Invalid BNR XML: {e}")

    # Elements are namespaced (http://www.bnr.ro/xsd); match on local name
    for element in root.iter():
        if element.tag.rsplit("}", 1)[-1] != "Rate":
            continue
        if element.get("currency") != currency:
            continue
        multiplier = float(element.get("multiplier") or 1)
        return float((element.text or "").strip()) / multiplier

    raise ValueError(f"{currency} rate not found in BNR data")


class ExchangeRateService:
    """
    Cached BNR exchange rates.

    Example:
        rate = exchange_rates.get_rate("EUR", "RON")   # 4.97
        exchange_rates.convert(100, "EUR", "RON")      # 497.0
    """

    def __init__(
        self,
        url: str | None = None,
        ttl_hours: float | None = None,
        http_client: httpx.Client | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.url = url or settings.BNR_RATES_URL
        self.ttl_seconds = (ttl_hours if ttl_hours is not None else settings.EXCHANGE_RATE_TTL_HOURS) * 3600
        self._http = http_client
        self._clock = clock
        self._rates: dict[str, float] = {}
        self._fetched_at: float | None = None

    def _is_fresh(self) -> bool:
        if self._fetched_at is None:
            return False
        return self._clock() - self._fetched_at < self.ttl_seconds

    def _fetch(self, currency: str) -> float:
        logger.info(f"Fetching {currency} -> {BASE_CURRENCY} rate from BNR")
        if self._http is not None:
            response = self._http.get(self.url)
        else:
            response = httpx.get(self.url, timeout=10.0)
        response.raise_for_status()
        return parse_bnr_rate(response.text, currency)

    def _rate_to_base(self, currency: str) -> float:
        cached = self._rates.get(currency)
        if cached is not None and self._is_fresh():
            return cached

        try:
            rate = self._fetch(currency)
        except (httpx.HTTPError, ValueError) as e:
            if cached is not None:
                logger.warning(f"BNR unavailable, using stale {currency} rate {cached}: {e}")
                return cached
            logger.error(f"No {currency} -> {BASE_CURRENCY} rate available: {e}")
            raise ExchangeRateUnavailableError(currency, BASE_CURRENCY, str(e))

        self._rates[currency] = rate
        self._fetched_at = self._clock()
        logger.info(f"{currency} -> {BASE_CURRENCY} rate: {rate}")
        return rate

    def get_rate(self, from_currency: str, to_currency: str = BASE_CURRENCY) -> float | None:
        """
        Rate that converts one unit of from_currency to to_currency.

        Returns:
            The rate, or None for unsupported pairs

        Raises:
            ExchangeRateUnavailableError: If no fresh or cached rate exists
        """
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()

        if from_currency == to_currency:
            return 1.0
        if from_currency == BASE_CURRENCY:
            inverse = self.get_rate(to_currency, BASE_CURRENCY)
            return 1 / inverse if inverse else None
        if from_currency == "EUR" and to_currency == BASE_CURRENCY:
            return self._rate_to_base("EUR")

        logger.warning(f"Unsupported currency conversion: {from_currency} -> {to_currency}")
        return None

    def convert(self, amount: float, from_currency: str, to_currency: str = BASE_CURRENCY) -> float:
        """
        Convert an amount, rounded to 2 decimals.

        Raises:
            ExchangeRateUnavailableError: If the pair is unsupported or no rate exists
        """
        rate = self.get_rate(from_currency, to_currency)
        if rate is None:
            raise ExchangeRateUnavailableError(from_currency, to_currency, "unsupported currency pair")
        return round(amount * rate, 2)

    def clear_cache(self) -> None:
        self._rates.clear()
        self._fetched_at = None


# Process-wide instance shared by request handlers
exchange_rates = ExchangeRateService()
