"""
Rate Cache

Two layers: an in-memory dict in front of an optional persisted store.
Keys are `TYPE:SYMBOL:YYYY-MM-DD` (UTC day), matching the daily
granularity of the providers. One cache object is built per process and
injected into the resolver; `flush()` empties the memory layer.
"""

from datetime import datetime
from typing import Optional

import structlog

from nami.models.ledger import Asset, Rate, day_start
from nami.services.storage import RateCacheStorageInterface, StorageError


logger = structlog.get_logger(__name__)


class RateCache:
    """Memory-first rate cache with an optional persisted layer."""

    def __init__(self, storage: Optional[RateCacheStorageInterface] = None):
        self._memory: dict[str, Rate] = {}
        self._storage = storage

    @staticmethod
    def key_for(asset: Asset, at: datetime) -> str:
        return f"{asset.key}:{day_start(at).date().isoformat()}"

    def __len__(self) -> int:
        return len(self._memory)

    def __contains__(self, key: str) -> bool:
        return key in self._memory

    async def get(self, key: str) -> Optional[Rate]:
        """Memory first, then the persisted layer (promoting hits into memory)."""
        rate = self._memory.get(key)
        if rate is not None:
            return rate

        if self._storage is None:
            return None

        try:
            rate = await self._storage.get_cached_rate(key)
        except StorageError as e:
            logger.warning("rate_cache_read_failed", key=key, error=str(e))
            return None

        if rate is not None:
            logger.debug("rate_cache_promoted", key=key)
            self._memory[key] = rate
        return rate

    async def put(self, key: str, rate: Rate) -> None:
        self._memory[key] = rate
        if self._storage is None:
            return

        try:
            await self._storage.save_rate(rate, key)
        except StorageError as e:
            # Memory layer still serves this process
            logger.error("rate_cache_write_failed", key=key, error=str(e))

    async def cached_days(self, asset: Asset) -> set[datetime]:
        """UTC days with a cached rate for `asset`, across both layers."""
        prefix = f"{asset.key}:"
        days = {r.timestamp for k, r in self._memory.items() if k.startswith(prefix)}
        if self._storage is not None:
            days |= await self._storage.get_cached_days(asset)
        return days

    def flush(self) -> None:
        """Drop the memory layer. The persisted layer is untouched."""
        self._memory.clear()
