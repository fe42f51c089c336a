"""
Rate Providers

Each provider answers one question: "what is one unit of this asset
worth in USD, now or on this day?" A provider either returns a positive
Rate or returns None; it never raises for provider-side failures. The
resolver walks an ordered list of providers and takes the first answer.
"""

import math
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

import structlog

from nami.audit import AuditLogger
from nami.models.ledger import (
    Asset,
    AssetType,
    Rate,
    RateSource,
    utc_now,
)
from nami.services.rates.queue import (
    MalformedPayloadError,
    ProviderError,
    ProviderRequestQueue,
)


logger = structlog.get_logger(__name__)


# CoinGecko ids for the tickers we hold; anything else is tried lower-cased
COINGECKO_IDS: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "USDT": "tether",
    "USDC": "usd-coin",
    "BNB": "binancecoin",
    "XRP": "ripple",
    "ADA": "cardano",
    "DOGE": "dogecoin",
    "TRX": "tron",
    "DOT": "polkadot",
    "MATIC": "matic-network",
    "AVAX": "avalanche-2",
    "XAU": "pax-gold",
    "GOLD": "pax-gold",
}


def crypto_id_for_symbol(symbol: str) -> str:
    normalized = symbol.strip().upper()
    return COINGECKO_IDS.get(normalized, normalized.lower())


def _positive_rate(value: Any, what: str) -> Decimal:
    """Coerce a JSON number into a positive Decimal or raise."""
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise MalformedPayloadError(f"{what}: expected a number, got {value!r}")
    try:
        rate = Decimal(str(value))
    except InvalidOperation:
        raise MalformedPayloadError(f"{what}: not a number: {value!r}")
    if not rate.is_finite() or rate <= 0:
        raise MalformedPayloadError(f"{what}: non-positive rate {value!r}")
    return rate


def _lookup(payload: Any, *path: str) -> Any:
    """Walk nested dict keys, raising MalformedPayloadError on a miss."""
    node = payload
    for key in path:
        if not isinstance(node, dict) or key not in node:
            raise MalformedPayloadError(f"Missing '{'.'.join(path)}' in provider payload")
        node = node[key]
    return node


class RateProvider(ABC):
    """
    One source of USD prices.

    Subclasses implement `supports` and `fetch_rate`; `try_resolve`
    turns provider failures into None so the chain can advance.
    """

    source: RateSource

    def __init__(
        self,
        queue: ProviderRequestQueue,
        timeout: float = 8.0,
        historical_timeout: float = 10.0,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._queue = queue
        self._timeout = timeout
        self._historical_timeout = historical_timeout
        self._audit_logger = audit_logger

    def attach_audit_logger(self, audit_logger: AuditLogger) -> None:
        """Audit failures through `audit_logger` unless one is already set."""
        if self._audit_logger is None:
            self._audit_logger = audit_logger

    @property
    def name(self) -> str:
        return self.source.value

    @abstractmethod
    def supports(self, asset: Asset, historical: bool) -> bool:
        """Can this provider price `asset` (for a past day when `historical`)?"""
        pass

    @abstractmethod
    async def fetch_rate(self, asset: Asset, at: Optional[datetime]) -> Decimal:
        """
        Fetch the USD rate.

        Args:
            asset: Asset to price
            at: Past instant for historical lookups, None for current

        Raises:
            ProviderError: On any failure
        """
        pass

    async def try_resolve(self, asset: Asset, at: Optional[datetime] = None) -> Optional[Rate]:
        """Fetch a rate, or return None if unsupported or failing."""
        if not self.supports(asset, historical=at is not None):
            return None

        try:
            rate_usd = await self.fetch_rate(asset, at)
        except ProviderError as e:
            logger.warning(
                "provider_failed",
                provider=self.name,
                asset=asset.key,
                at=at.isoformat() if at else None,
                error=str(e),
            )
            if self._audit_logger:
                await self._audit_logger.log_provider_failed(
                    provider=self.name,
                    asset_key=asset.key,
                    error_message=str(e),
                )
            return None

        return Rate(
            asset=asset,
            rate_usd=rate_usd,
            timestamp=at or utc_now(),
            source=self.source,
        )


class ExchangeRateHostProvider(RateProvider):
    """exchangerate.host aggregator (current FIAT rates)."""

    source = RateSource.EXCHANGE_RATE_HOST
    url = "https://api.exchangerate.host/latest"

    def supports(self, asset: Asset, historical: bool) -> bool:
        return asset.type == AssetType.FIAT and not historical

    async def fetch_rate(self, asset: Asset, at: Optional[datetime]) -> Decimal:
        data = await self._queue.get_json(
            self.url,
            params={"base": asset.symbol, "symbols": "USD"},
            timeout=self._timeout,
        )
        return _positive_rate(_lookup(data, "rates", "USD"), self.name)


class FrankfurterProvider(RateProvider):
    """frankfurter.app (ECB reference rates, current and by date)."""

    source = RateSource.FRANKFURTER
    base_url = "https://api.frankfurter.app"

    def supports(self, asset: Asset, historical: bool) -> bool:
        return asset.type == AssetType.FIAT

    async def fetch_rate(self, asset: Asset, at: Optional[datetime]) -> Decimal:
        path = at.date().isoformat() if at else "latest"
        data = await self._queue.get_json(
            f"{self.base_url}/{path}",
            params={"from": asset.symbol, "to": "USD"},
            timeout=self._historical_timeout if at else self._timeout,
        )
        return _positive_rate(_lookup(data, "rates", "USD"), self.name)


class ErApiProvider(RateProvider):
    """open.er-api.com (current FIAT rates, no key)."""

    source = RateSource.ER_API
    base_url = "https://open.er-api.com/v6/latest"

    def supports(self, asset: Asset, historical: bool) -> bool:
        return asset.type == AssetType.FIAT and not historical

    async def fetch_rate(self, asset: Asset, at: Optional[datetime]) -> Decimal:
        data = await self._queue.get_json(
            f"{self.base_url}/{asset.symbol}",
            timeout=self._timeout,
        )
        return _positive_rate(_lookup(data, "rates", "USD"), self.name)


class ExchangeRateApiProvider(RateProvider):
    """
    exchangerate-api.com v6 (keyed).

    Only serves latest rates; for past days it stands in as an
    approximation for currencies the ECB does not publish (e.g. VND).
    """

    source = RateSource.EXCHANGE_RATE_API
    base_url = "https://v6.exchangerate-api.com/v6"

    def __init__(self, queue: ProviderRequestQueue, api_key: Optional[str], **kwargs):
        super().__init__(queue, **kwargs)
        self._api_key = api_key

    def supports(self, asset: Asset, historical: bool) -> bool:
        return asset.type == AssetType.FIAT and bool(self._api_key)

    async def fetch_rate(self, asset: Asset, at: Optional[datetime]) -> Decimal:
        data = await self._queue.get_json(
            f"{self.base_url}/{self._api_key}/latest/USD",
            timeout=self._historical_timeout if at else self._timeout,
        )
        per_usd = _positive_rate(_lookup(data, "conversion_rates", asset.symbol), self.name)
        return Decimal(1) / per_usd


class CoinGeckoProvider(RateProvider):
    """
    CoinGecko market data for CRYPTO assets.

    Historical prices come from the daily market chart; the sample
    closest in time to the requested instant is used as-is.
    """

    source = RateSource.COINGECKO
    base_url = "https://api.coingecko.com/api/v3"

    def __init__(
        self,
        queue: ProviderRequestQueue,
        max_history_days: int = 365,
        clock: Callable[[], datetime] = utc_now,
        **kwargs,
    ):
        super().__init__(queue, **kwargs)
        self._max_history_days = max_history_days
        self._clock = clock

    def supports(self, asset: Asset, historical: bool) -> bool:
        return asset.type == AssetType.CRYPTO

    async def fetch_rate(self, asset: Asset, at: Optional[datetime]) -> Decimal:
        coin_id = crypto_id_for_symbol(asset.symbol)
        if at is None:
            return await self._fetch_current(coin_id)
        return await self._fetch_historical(coin_id, at)

    async def _fetch_current(self, coin_id: str) -> Decimal:
        data = await self._queue.get_json(
            f"{self.base_url}/simple/price",
            params={"ids": coin_id, "vs_currencies": "usd"},
            timeout=self._timeout,
        )
        return _positive_rate(_lookup(data, coin_id, "usd"), self.name)

    async def _fetch_historical(self, coin_id: str, at: datetime) -> Decimal:
        elapsed = self._clock() - at
        days = math.ceil(elapsed / timedelta(days=1)) or 1
        if days < 0 or days > self._max_history_days:
            raise ProviderError(
                f"{coin_id}: {days} days ago is outside the {self._max_history_days}-day history window"
            )

        data = await self._queue.get_json(
            f"{self.base_url}/coins/{coin_id}/market_chart",
            params={"vs_currency": "usd", "days": days, "interval": "daily"},
            timeout=self._historical_timeout,
        )
        prices = _lookup(data, "prices")
        if not isinstance(prices, list) or not prices:
            raise MalformedPayloadError(f"{coin_id}: empty price series")

        return _positive_rate(closest_sample(prices, at), self.name)


def closest_sample(prices: list, at: datetime) -> Any:
    """
    Price of the [timestamp_ms, price] sample nearest to `at`.

    Linear scan on absolute time delta; the first sample wins ties.
    """
    target_ms = at.timestamp() * 1000
    best_price = None
    best_delta = math.inf

    for sample in prices:
        if not isinstance(sample, (list, tuple)) or len(sample) < 2:
            raise MalformedPayloadError(f"Bad price sample: {sample!r}")
        try:
            delta = abs(float(sample[0]) - target_ms)
        except (TypeError, ValueError):
            raise MalformedPayloadError(f"Bad sample timestamp: {sample!r}")
        if delta < best_delta:
            best_delta = delta
            best_price = sample[1]

    return best_price


def default_providers(
    queue: ProviderRequestQueue,
    exchange_rate_api_key: Optional[str] = None,
    timeout: float = 8.0,
    historical_timeout: float = 10.0,
    max_history_days: int = 365,
    clock: Callable[[], datetime] = utc_now,
    audit_logger: Optional[AuditLogger] = None,
) -> list[RateProvider]:
    """The standard fallback chain, in priority order."""
    common = {
        "timeout": timeout,
        "historical_timeout": historical_timeout,
        "audit_logger": audit_logger,
    }
    return [
        ExchangeRateHostProvider(queue, **common),
        FrankfurterProvider(queue, **common),
        ErApiProvider(queue, **common),
        ExchangeRateApiProvider(queue, exchange_rate_api_key, **common),
        CoinGeckoProvider(queue, max_history_days=max_history_days, clock=clock, **common),
    ]


