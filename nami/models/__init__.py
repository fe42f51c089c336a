"""
Data Models Package

This package contains all Pydantic models used in the Nami ledger core.
All data flowing through the system must conform to these schemas.
"""

from nami.models.ledger import (
    Asset,
    AssetType,
    Rate,
    RateSource,
    Vault,
    VaultEntry,
    VaultEntryType,
    VaultStats,
    VaultStatus,
    as_decimal,
    day_start,
    ensure_utc,
    utc_now,
)
from nami.models.position import (
    Position,
    PositionExit,
    PositionSummary,
    RealizedPnL,
    UnstakeRequest,
)
from nami.models.performance import (
    CashFlow,
    VaultPerformance,
)
from nami.models.validation import (
    ValidationIssue,
    ValidationResult,
)
from nami.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Asset",
    "AssetType",
    "Rate",
    "RateSource",
    "Vault",
    "VaultEntry",
    "VaultEntryType",
    "VaultStats",
    "VaultStatus",
    "as_decimal",
    "day_start",
    "ensure_utc",
    "utc_now",
    # Position models
    "Position",
    "PositionExit",
    "PositionSummary",
    "RealizedPnL",
    "UnstakeRequest",
    # Performance models
    "CashFlow",
    "VaultPerformance",
    # Validation models
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
