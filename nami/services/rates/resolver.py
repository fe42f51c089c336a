"""
Rate Resolver

Resolves the USD price of an asset now or on a past day.

Resolution order for one (asset, day):
1. Cache (memory, then persisted) - a hit never touches the network
2. FIAT:USD -> 1, FIXED
3. Provider chain, first positive answer wins
4. Static fallback table -> FALLBACK
5. Nothing else -> 1, FIXED

DESIGN DECISION: get_rate_usd never raises because a provider is down.
Reduced accuracy is signalled through Rate.source instead, so a
valuation screen keeps working when every API is rate-limiting us.
Whatever is returned (including FIXED/FALLBACK) is cached for the day.
"""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, Iterable, Optional, Union

import structlog

from nami.audit import AuditLogger
from nami.config import RateSettings, get_settings
from nami.models.ledger import (
    Asset,
    Rate,
    RateSource,
    day_start,
    ensure_utc,
    utc_now,
)
from nami.services.rates.cache import RateCache
from nami.services.rates.providers import RateProvider, default_providers
from nami.services.rates.queue import (
    COINGECKO_HOST,
    ProviderRequestQueue,
    RetryPolicy,
)


logger = structlog.get_logger(__name__)

Instant = Union[datetime, str, None]


def parse_instant(value: Instant) -> Optional[datetime]:
    """Accept a datetime or an ISO-8601 string (trailing 'Z' allowed)."""
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Invalid ISO-8601 timestamp: {value!r}")
    return ensure_utc(value)


class RateResolver:
    """
    Cached, degrading USD rate lookup.

    The cache is injected; the provider chain defaults to the standard
    FX aggregators + CoinGecko sharing one request queue.
    """

    def __init__(
        self,
        cache: Optional[RateCache] = None,
        providers: Optional[list[RateProvider]] = None,
        settings: Optional[RateSettings] = None,
        queue: Optional[ProviderRequestQueue] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._settings = settings or get_settings().rates
        self._cache = cache if cache is not None else RateCache()
        self._audit_logger = audit_logger
        self._clock = clock
        self._sleep = sleep
        self._locks: dict[str, asyncio.Lock] = {}

        self._queue = queue
        if providers is None:
            if self._queue is None:
                self._queue = ProviderRequestQueue(
                    policy=RetryPolicy(
                        max_attempts=self._settings.max_attempts,
                        base_delay=self._settings.backoff_base_seconds,
                        backoff_factor=self._settings.backoff_factor,
                    ),
                    warmup_delays={COINGECKO_HOST: self._settings.coingecko_warmup_seconds},
                )
            providers = default_providers(
                self._queue,
                exchange_rate_api_key=self._settings.exchange_rate_api_key,
                timeout=self._settings.current_timeout_seconds,
                historical_timeout=self._settings.historical_timeout_seconds,
                max_history_days=self._settings.historical_crypto_max_days,
                clock=clock,
                audit_logger=audit_logger,
            )
        elif audit_logger is not None:
            for provider in providers:
                provider.attach_audit_logger(audit_logger)
        self._providers = providers

    @property
    def cache(self) -> RateCache:
        return self._cache

    @property
    def providers(self) -> list[RateProvider]:
        return list(self._providers)

    async def get_rate_usd(self, asset: Asset, at: Instant = None) -> Rate:
        """
        USD rate of `asset` at `at` (a past instant) or now (None / future).

        Never raises for provider failures; check `Rate.source`.
        """
        instant = parse_instant(at)
        now = self._clock()
        historical = instant is not None and instant < now
        day = day_start(instant if historical else now)
        key = RateCache.key_for(asset, day)

        cached = await self._cache.get(key)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(key, asyncio.Lock())
        try:
            async with lock:
                # Another caller may have resolved this key while we waited
                cached = await self._cache.get(key)
                if cached is not None:
                    return cached

                rate = await self._resolve(asset, instant if historical else None, day)
                await self._cache.put(key, rate)
                return rate
        finally:
            # Once cached, later callers are served before reaching a lock
            if self._locks.get(key) is lock:
                del self._locks[key]

    async def value_usd(self, asset: Asset, amount: Decimal, at: Instant = None) -> Decimal:
        """USD value of `amount` units of `asset`."""
        rate = await self.get_rate_usd(asset, at)
        return rate.value_of(amount)

    async def _resolve(
        self,
        asset: Asset,
        at: Optional[datetime],
        day: datetime,
    ) -> Rate:
        if asset.is_usd:
            return Rate(asset=asset, rate_usd=Decimal(1), timestamp=day, source=RateSource.FIXED)

        if not self._settings.disable_external:
            for provider in self._providers:
                rate = await provider.try_resolve(asset, at)
                if rate is not None:
                    logger.info(
                        "rate_resolved",
                        asset=asset.key,
                        day=day.date().isoformat(),
                        source=rate.source.value,
                        rate_usd=str(rate.rate_usd),
                    )
                    return Rate(
                        asset=asset,
                        rate_usd=rate.rate_usd,
                        timestamp=day,
                        source=rate.source,
                    )

        rate = self._degraded(asset, day)
        logger.warning(
            "rate_degraded",
            asset=asset.key,
            day=day.date().isoformat(),
            source=rate.source.value,
            external_disabled=self._settings.disable_external,
        )
        if self._audit_logger:
            await self._audit_logger.log_rate_degraded(rate)
        return rate

    def _degraded(self, asset: Asset, day: datetime) -> Rate:
        approx = self._settings.fiat_fallback_rates.get(asset.symbol)
        if approx is not None:
            return Rate(
                asset=asset,
                rate_usd=Decimal(str(approx)),
                timestamp=day,
                source=RateSource.FALLBACK,
            )
        return Rate(asset=asset, rate_usd=Decimal(1), timestamp=day, source=RateSource.FIXED)

    async def backfill_history(
        self,
        assets: Iterable[Asset],
        days: int = 30,
    ) -> dict[str, dict[str, int]]:
        """
        Resolve and cache every missing day in [today - days, today].

        Requests run one at a time with a pause between them. A day that
        only resolves to FIXED/FALLBACK counts as failed.

        Returns:
            {asset_key: {"total", "skipped", "success", "failed"}}
        """
        if days < 0:
            raise ValueError("days must be non-negative")

        results: dict[str, dict[str, int]] = {}
        if self._settings.disable_external:
            logger.info("backfill_skipped", reason="external rates disabled")
            return results

        today = day_start(self._clock())
        first_request = True

        for asset in assets:
            if asset.is_usd:
                continue

            counts = {"total": days + 1, "skipped": 0, "success": 0, "failed": 0}
            cached = await self._cache.cached_days(asset)

            for offset in range(days, -1, -1):
                day = today - timedelta(days=offset)
                if day in cached:
                    counts["skipped"] += 1
                    continue

                if not first_request:
                    await self._sleep(self._settings.backfill_delay_seconds)
                first_request = False

                rate = await self.get_rate_usd(asset, day)
                if rate.is_degraded:
                    counts["failed"] += 1
                else:
                    counts["success"] += 1

            logger.info("backfill_asset_done", asset=asset.key, **counts)
            results[asset.key] = counts

        return results

    async def aclose(self) -> None:
        if self._queue is not None:
            await self._queue.aclose()
