"""
Audit Logger

DESIGN DECISION: Every state change in the ledger core is logged.
This provides:
1. Complete traceability of vault entries and position changes
2. A record of which valuations were degraded approximations
3. Debugging capability when providers misbehave

The audit logger:
- Is async to match the storage interface
- Gracefully handles failures (a failed audit write never breaks a ledger write)
- Supports correlation IDs to trace related events
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from nami.models.audit import AuditEvent, AuditEventBuilder
from nami.models.ledger import Rate, VaultEntry
from nami.models.position import Position, RealizedPnL
from nami.models.validation import ValidationResult
from nami.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through stdlib logging at `level`."""
    logging.basicConfig(format="%(message)s", level=level.upper())


def _fmt(value: Decimal) -> str:
    return format(value.normalize(), "f")


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Audit writes never fail the caller
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_vault_created(
        self,
        vault: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.vault_created(vault, correlation_id))

    async def log_vault_closed(
        self,
        vault: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.vault_closed(vault, correlation_id))

    async def log_vault_deleted(
        self,
        vault: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.vault_deleted(vault, correlation_id))

    async def log_vault_entry(
        self,
        entry: VaultEntry,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an appended vault entry (valuations get their own event type)."""
        event = AuditEventBuilder.vault_entry_appended(
            vault=entry.vault,
            entry_id=entry.id,
            entry_type=entry.type.value,
            asset_key=entry.asset.key,
            amount=_fmt(entry.amount),
            usd_value=_fmt(entry.usd_value),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_position_opened(
        self,
        position: Position,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.position_opened(
            position_id=position.id,
            asset_key=position.asset.key,
            account=position.account,
            qty=_fmt(position.deposit_qty),
            cost_usd=_fmt(position.deposit_cost),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_position_unstaked(
        self,
        realized: RealizedPnL,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.position_unstaked(
            position_id=realized.position_id,
            qty=_fmt(realized.quantity),
            exit_value_usd=_fmt(realized.exit_value_usd),
            pnl=_fmt(realized.pnl),
            closed=realized.closed,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_accounting_violation(
        self,
        position_id: UUID,
        result: ValidationResult,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.accounting_violation(
            position_id=position_id,
            issues=[issue.model_dump() for issue in result.issues],
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_rate_degraded(
        self,
        rate: Rate,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a rate that came from FIXED or FALLBACK."""
        event = AuditEventBuilder.rate_degraded(
            asset_key=rate.asset.key,
            day=rate.timestamp.date().isoformat(),
            source=rate.source.value,
            rate_usd=_fmt(rate.rate_usd),
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_provider_failed(
        self,
        provider: str,
        asset_key: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.provider_failed(
            provider=provider,
            asset_key=asset_key,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a flow (e.g., a stake mirrored into a vault).
    Pass it through all subsequent operations.
    """
    return uuid4()
