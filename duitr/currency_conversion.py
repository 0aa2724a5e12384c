from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
import json
import time
from typing import Mapping
from urllib.error import HTTPError, URLError
from urllib.request import urlopen

import structlog

logger = structlog.get_logger(__name__)

SUPPORTED_CURRENCIES = ("IDR", "USD")

# Target currency per 1 USD.
DEFAULT_RATES: dict[str, Decimal] = {
    "USD": Decimal("1"),
    "IDR": Decimal("15750"),
}


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def validate_supported_currency(value: str) -> str:
    normalized = normalize_currency(value)
    if normalized not in SUPPORTED_CURRENCIES:
        raise ValueError(f"Unsupported currency: {normalized}")
    return normalized


@dataclass(frozen=True)
class StaticRateProvider:
    """Deterministic, in-memory FX rates.

    Rates are expressed as target currency per 1 USD.
    """

    rates: Mapping[str, Decimal] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "rates", dict(self.rates or DEFAULT_RATES))

    def get_rate(self, currency: str) -> Decimal:
        normalized = normalize_currency(currency)
        try:
            return self.rates[normalized]
        except KeyError as exc:
            raise ValueError(f"Unsupported currency: {normalized}") from exc


class RateProviderUnavailable(RuntimeError):
    """Raised when a rate provider cannot fetch live rates."""


@dataclass(frozen=True)
class CachedRates:
    rates: Mapping[str, Decimal]
    expires_at: float


@dataclass
class ExchangeRateApiProvider:
    api_key: str
    base_currency: str = "USD"
    base_url: str = "https://v6.exchangerate-api.com/v6"
    cache_ttl_seconds: int = 24 * 60 * 60
    _cache: dict[str, CachedRates] = field(default_factory=dict)

    def get_rate(self, currency: str) -> Decimal:
        normalized = normalize_currency(currency)
        base_currency = normalize_currency(self.base_currency)
        if normalized == base_currency:
            return Decimal("1")

        rates = self._get_rates(base_currency)
        try:
            return rates[normalized]
        except KeyError as exc:
            raise ValueError(f"Unsupported currency: {normalized}") from exc

    def _get_rates(self, base_currency: str) -> Mapping[str, Decimal]:
        cached = self._cache.get(base_currency)
        now = time.monotonic()
        if cached and cached.expires_at > now:
            return cached.rates

        rates = self._fetch_rates(base_currency)
        self._cache[base_currency] = CachedRates(
            rates=rates, expires_at=now + self.cache_ttl_seconds
        )
        return rates

    def _fetch_rates(self, base_currency: str) -> Mapping[str, Decimal]:
        url = f"{self.base_url}/{self.api_key}/latest/{base_currency}"
        try:
            with urlopen(url, timeout=8) as response:
                payload = json.load(response)
        except (HTTPError, URLError, TimeoutError, json.JSONDecodeError) as exc:
            raise RateProviderUnavailable("Exchange rate API unavailable") from exc

        if payload.get("result") != "success":
            raise RateProviderUnavailable("Exchange rate API returned an error result")
        rates = payload.get("conversion_rates")
        if not isinstance(rates, dict):
            raise RateProviderUnavailable("Exchange rate response missing rates")

        parsed = {normalize_currency(code): Decimal(str(value)) for code, value in rates.items()}
        parsed[base_currency] = Decimal("1")
        return parsed


@dataclass(frozen=True)
class CompositeRateProvider:
    primary: StaticRateProvider | ExchangeRateApiProvider
    fallback: StaticRateProvider

    def get_rate(self, currency: str) -> Decimal:
        try:
            return self.primary.get_rate(currency)
        except RateProviderUnavailable as exc:
            logger.warning("exchange_rate_fallback", currency=currency, error=str(exc))
            return self.fallback.get_rate(currency)


RateProvider = StaticRateProvider | ExchangeRateApiProvider | CompositeRateProvider


def build_rate_provider(api_key: str | None) -> RateProvider:
    if not api_key:
        return StaticRateProvider()
    return CompositeRateProvider(
        primary=ExchangeRateApiProvider(api_key=api_key),
        fallback=StaticRateProvider(),
    )


def get_exchange_rate(
    base_currency: str,
    target_currency: str,
    rate_provider: RateProvider | None = None,
) -> Decimal:
    """Units of ``target_currency`` per 1 ``base_currency``."""
    provider = rate_provider or StaticRateProvider()
    normalized_base = normalize_currency(base_currency)
    normalized_target = normalize_currency(target_currency)
    if normalized_base == normalized_target:
        return Decimal("1")
    return provider.get_rate(normalized_target) / provider.get_rate(normalized_base)


def convert_amount(
    amount: Decimal | int | float | str,
    source_currency: str,
    target_currency: str,
    rate_provider: RateProvider | None = None,
) -> Decimal:
    """Convert a monetary amount for display."""
    coerced_amount = _coerce_amount(amount)
    if normalize_currency(source_currency) == normalize_currency(target_currency):
        return coerced_amount
    rate = get_exchange_rate(source_currency, target_currency, rate_provider)
    return coerced_amount * rate


def round_money(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
