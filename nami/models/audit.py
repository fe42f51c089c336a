"""
Audit Models for Nami

Every state change in the ledger core is logged for audit purposes.
This provides:
1. Traceability of every vault entry and position change
2. Visibility into degraded valuations (which prices were approximations)
3. Debugging information when a provider misbehaves

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from nami.models.ledger import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Vault ledger
    VAULT_CREATED = "vault_created"
    VAULT_CLOSED = "vault_closed"
    VAULT_DELETED = "vault_deleted"
    VAULT_ENTRY_APPENDED = "vault_entry_appended"
    VALUATION_RECORDED = "valuation_recorded"

    # Positions
    POSITION_OPENED = "position_opened"
    POSITION_REDUCED = "position_reduced"
    POSITION_CLOSED = "position_closed"
    ACCOUNTING_VIOLATION = "accounting_violation"

    # Rate resolution
    RATE_DEGRADED = "rate_degraded"
    PROVIDER_FAILED = "provider_failed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'vault', 'position', 'rate')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Identifier of the entity (vault name, position id, asset key)"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., stake + mirrored deposit)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_code, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_code or "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.vault_created("Binance", correlation_id)
        event = AuditEventBuilder.position_opened(position, correlation_id)
    """

    @staticmethod
    def vault_created(
        vault: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VAULT_CREATED,
            entity_type="vault",
            entity_id=vault,
            correlation_id=correlation_id,
            description=f"Vault created: {vault}",
        )

    @staticmethod
    def vault_closed(
        vault: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VAULT_CLOSED,
            entity_type="vault",
            entity_id=vault,
            correlation_id=correlation_id,
            description=f"Vault closed: {vault}",
        )

    @staticmethod
    def vault_deleted(
        vault: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VAULT_DELETED,
            severity=AuditSeverity.WARNING,
            entity_type="vault",
            entity_id=vault,
            correlation_id=correlation_id,
            description=f"Vault deleted: {vault}",
        )

    @staticmethod
    def vault_entry_appended(
        vault: str,
        entry_id: UUID,
        entry_type: str,
        asset_key: str,
        amount: str,
        usd_value: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        event_type = (
            AuditEventType.VALUATION_RECORDED
            if entry_type == "VALUATION"
            else AuditEventType.VAULT_ENTRY_APPENDED
        )
        return AuditEvent(
            event_type=event_type,
            entity_type="vault",
            entity_id=vault,
            correlation_id=correlation_id,
            description=f"{entry_type} {amount} {asset_key} (${usd_value}) in {vault}",
            details={
                "entry_id": str(entry_id),
                "entry_type": entry_type,
                "asset": asset_key,
                "amount": amount,
                "usd_value": usd_value,
            },
        )

    @staticmethod
    def position_opened(
        position_id: UUID,
        asset_key: str,
        account: str,
        qty: str,
        cost_usd: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.POSITION_OPENED,
            entity_type="position",
            entity_id=str(position_id),
            correlation_id=correlation_id,
            description=f"Staked {qty} {asset_key} into {account} for ${cost_usd}",
            details={
                "asset": asset_key,
                "account": account,
                "qty": qty,
                "cost_usd": cost_usd,
            },
        )

    @staticmethod
    def position_unstaked(
        position_id: UUID,
        qty: str,
        exit_value_usd: str,
        pnl: str,
        closed: bool,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        event_type = (
            AuditEventType.POSITION_CLOSED
            if closed
            else AuditEventType.POSITION_REDUCED
        )
        return AuditEvent(
            event_type=event_type,
            entity_type="position",
            entity_id=str(position_id),
            correlation_id=correlation_id,
            description=f"Unstaked {qty} for ${exit_value_usd} (PnL ${pnl})",
            details={
                "qty": qty,
                "exit_value_usd": exit_value_usd,
                "pnl": pnl,
                "closed": closed,
            },
        )

    @staticmethod
    def accounting_violation(
        position_id: UUID,
        issues: list[dict],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNTING_VIOLATION,
            severity=AuditSeverity.WARNING,
            entity_type="position",
            entity_id=str(position_id),
            correlation_id=correlation_id,
            description=f"Unstake rejected with {len(issues)} issues",
            details={
                "issues": issues,
            },
        )

    @staticmethod
    def rate_degraded(
        asset_key: str,
        day: str,
        source: str,
        rate_usd: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RATE_DEGRADED,
            severity=AuditSeverity.WARNING,
            entity_type="rate",
            entity_id=asset_key,
            correlation_id=correlation_id,
            description=f"{asset_key} on {day} resolved from {source}",
            details={
                "day": day,
                "source": source,
                "rate_usd": rate_usd,
            },
        )

    @staticmethod
    def provider_failed(
        provider: str,
        asset_key: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROVIDER_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="rate",
            entity_id=asset_key,
            correlation_id=correlation_id,
            description=f"Rate provider failed: {provider}",
            error_message=error_message,
            details={
                "provider": provider,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
