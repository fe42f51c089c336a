"""
In-Memory Storage Implementation

Process-local backends for tests and offline runs. Records are deep
copied on the way in and out so callers never alias stored state.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from nami.models.audit import AuditEvent
from nami.models.ledger import Asset, Rate, Vault, VaultEntry
from nami.models.position import Position
from nami.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerStorageInterface,
    PositionStorageInterface,
    RateCacheStorageInterface,
)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Vaults and entries held in dicts/lists."""

    def __init__(self):
        self._vaults: dict[str, Vault] = {}
        self._entries: list[VaultEntry] = []

    async def get_vault(self, name: str) -> Optional[Vault]:
        vault = self._vaults.get(name)
        return vault.model_copy(deep=True) if vault else None

    async def list_vaults(self) -> list[Vault]:
        return [v.model_copy(deep=True) for v in self._vaults.values()]

    async def save_vault(self, vault: Vault) -> bool:
        self._vaults[vault.name] = vault.model_copy(deep=True)
        return True

    async def delete_vault(self, name: str) -> bool:
        return self._vaults.pop(name, None) is not None

    async def find_entries(self, vault: str) -> list[VaultEntry]:
        return [e.model_copy(deep=True) for e in self._entries if e.vault == vault]

    async def append_entry(self, entry: VaultEntry) -> bool:
        if any(e.id == entry.id for e in self._entries):
            raise DuplicateError(f"Vault entry already exists: {entry.id}")
        self._entries.append(entry.model_copy(deep=True))
        return True


class InMemoryPositionStorage(PositionStorageInterface):
    """Positions keyed by id."""

    def __init__(self):
        self._positions: dict[UUID, Position] = {}

    async def find_position(self, position_id: UUID) -> Optional[Position]:
        position = self._positions.get(position_id)
        return position.model_copy(deep=True) if position else None

    async def save_position(self, position: Position) -> bool:
        self._positions[position.id] = position.model_copy(deep=True)
        return True

    async def list_positions(
        self,
        asset: Optional[Asset] = None,
        account: Optional[str] = None,
        is_open: Optional[bool] = None,
    ) -> list[Position]:
        positions = []
        for position in self._positions.values():
            if asset and position.asset != asset:
                continue
            if account and position.account != account:
                continue
            if is_open is not None and position.is_open != is_open:
                continue
            positions.append(position.model_copy(deep=True))

        positions.sort(key=lambda p: p.deposit_date)
        return positions


class InMemoryRateCacheStorage(RateCacheStorageInterface):
    """Persisted-cache stand-in that also counts lookups."""

    def __init__(self):
        self._rates: dict[str, Rate] = {}
        self.lookups = 0

    async def get_cached_rate(self, key: str) -> Optional[Rate]:
        self.lookups += 1
        return self._rates.get(key)

    async def save_rate(self, rate: Rate, key: str) -> bool:
        self._rates[key] = rate
        return True

    async def get_cached_days(self, asset: Asset) -> set[datetime]:
        return {r.timestamp for r in self._rates.values() if r.asset == asset}


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
