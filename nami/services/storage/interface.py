"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Keep Google Sheets as a user-visible backend
2. Use in-memory storage for testing and offline runs
3. Swap in a real database later without touching ledger logic

The core only needs read-after-write consistency: persisted entries,
positions and rates can be read back and appended. Schemas, migrations
and transaction isolation belong to the backend.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from uuid import UUID

from nami.models.audit import AuditEvent
from nami.models.ledger import Asset, Rate, Vault, VaultEntry
from nami.models.position import Position


class LedgerStorageInterface(ABC):
    """
    Abstract interface for vaults and their append-only entries.
    """

    @abstractmethod
    async def get_vault(self, name: str) -> Optional[Vault]:
        """
        Retrieve a vault by name.

        Returns:
            The vault if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_vaults(self) -> list[Vault]:
        """
        List every vault, active and closed.
        """
        pass

    @abstractmethod
    async def save_vault(self, vault: Vault) -> bool:
        """
        Insert or replace a vault record (keyed by name).

        Returns:
            True if saved successfully

        Raises:
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def delete_vault(self, name: str) -> bool:
        """
        Delete a vault record. Entries are not touched.

        Returns:
            True if a vault was deleted
        """
        pass

    @abstractmethod
    async def find_entries(self, vault: str) -> list[VaultEntry]:
        """
        Get all entries of a vault.

        No ordering is guaranteed; callers sort by `at`.
        """
        pass

    @abstractmethod
    async def append_entry(self, entry: VaultEntry) -> bool:
        """
        Append an entry.

        Raises:
            DuplicateError: If an entry with the same id exists
            StorageError: If append fails
        """
        pass


class PositionStorageInterface(ABC):
    """
    Abstract interface for staking positions.
    """

    @abstractmethod
    async def find_position(self, position_id: UUID) -> Optional[Position]:
        """
        Retrieve a position by id.

        Returns:
            The position if found, None otherwise
        """
        pass

    @abstractmethod
    async def save_position(self, position: Position) -> bool:
        """
        Insert or replace a position (keyed by id).

        Raises:
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def list_positions(
        self,
        asset: Optional[Asset] = None,
        account: Optional[str] = None,
        is_open: Optional[bool] = None,
    ) -> list[Position]:
        """
        List positions with optional filters.

        Args:
            asset: Filter by asset identity
            account: Filter by investment account
            is_open: Filter by open/closed state

        Returns:
            Matching positions, oldest deposit first
        """
        pass


class RateCacheStorageInterface(ABC):
    """
    Abstract interface for the persisted rate cache.
    """

    @abstractmethod
    async def get_cached_rate(self, key: str) -> Optional[Rate]:
        """
        Look up a rate by cache key (`TYPE:SYMBOL:YYYY-MM-DD`).
        """
        pass

    @abstractmethod
    async def save_rate(self, rate: Rate, key: str) -> bool:
        """
        Persist a resolved rate under its cache key.
        """
        pass

    @abstractmethod
    async def get_cached_days(self, asset: Asset) -> set[datetime]:
        """
        UTC midnights for which a rate of `asset` is cached.
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one stake flow).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Args:
            entity_type: Type of entity (e.g., 'vault', 'position')
            entity_id: The entity's identifier

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
