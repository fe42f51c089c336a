"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
In-memory backends serve tests and offline runs; Google Sheets is the
persistent backend. Both are swappable behind the interfaces.
"""

from nami.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    PositionStorageInterface,
    RateCacheStorageInterface,
    StorageError,
)
from nami.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    InMemoryPositionStorage,
    InMemoryRateCacheStorage,
)
from nami.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    GoogleSheetsPositionStorage,
    GoogleSheetsRateCacheStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    "PositionStorageInterface",
    "RateCacheStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "InMemoryPositionStorage",
    "InMemoryRateCacheStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStorage",
    "GoogleSheetsPositionStorage",
    "GoogleSheetsRateCacheStorage",
]
