"""
Main Orchestrator for Nami

This module ties together all the components and defines the
end-to-end flows that touch more than one ledger:
1. Stake into a vault (position opened + DEPOSIT mirrored into the vault)
2. Unstake from a vault (position reduced/closed + WITHDRAW mirrored)
3. Income / expense (USD DEPOSIT / WITHDRAW on a spending vault)

DESIGN DECISION: The position book and the vault ledger are separate
stores. The orchestrator is the only place that writes both, and every
flow shares one correlation id so the audit trail shows the two writes
as a single operation.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

import structlog
from pydantic import ValidationError

from nami.audit import AuditLogger, configure_logging, create_correlation_id
from nami.config import RateSettings, Settings, get_settings
from nami.ledger import VaultLedger
from nami.models.ledger import Asset, VaultEntry, as_decimal
from nami.models.position import Position, RealizedPnL
from nami.positions import PositionAccountant
from nami.reports import PerformanceReporter
from nami.services.rates import RateCache, RateResolver
from nami.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    GoogleSheetsPositionStorage,
    GoogleSheetsRateCacheStorage,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    InMemoryPositionStorage,
    InMemoryRateCacheStorage,
    LedgerStorageInterface,
    PositionStorageInterface,
    RateCacheStorageInterface,
    StorageError,
)


logger = structlog.get_logger(__name__)

Number = Union[Decimal, int, float, str]


@dataclass
class AppComponents:
    """Everything a caller needs, wired to one set of storage backends."""

    ledger_storage: LedgerStorageInterface
    position_storage: PositionStorageInterface
    rate_cache_storage: RateCacheStorageInterface
    audit_storage: AuditStorageInterface
    audit_logger: AuditLogger
    rate_resolver: RateResolver
    ledger: VaultLedger
    accountant: PositionAccountant
    reporter: PerformanceReporter
    sheets_client: Optional[GoogleSheetsClient] = None

    async def aclose(self) -> None:
        """Release the HTTP client held by the rate resolver."""
        await self.rate_resolver.aclose()


class PortfolioFlow:
    """
    Flows that keep positions and vault ledgers in step.

    A position's `account` names the vault its units live in.
    """

    def __init__(
        self,
        components: AppComponents,
        spend_vault: Optional[str] = None,
    ):
        self._components = components
        self._ledger = components.ledger
        self._accountant = components.accountant
        self._audit_logger = components.audit_logger
        self._spend_vault = spend_vault or get_settings().app.default_spend_vault

    async def _report_storage_failure(
        self,
        operation: str,
        error: StorageError,
        correlation_id: UUID,
    ) -> None:
        await self._audit_logger.log_error(
            error_type="storage_error",
            error_message=str(error),
            details={"operation": operation},
            correlation_id=correlation_id,
        )

    async def stake_into_vault(
        self,
        asset: Asset,
        account: str,
        qty: Number,
        cost_usd: Optional[Number] = None,
        at: Optional[datetime] = None,
        note: Optional[str] = None,
    ) -> tuple[Position, VaultEntry]:
        """
        Open a position and deposit the same units into vault `account`.

        Returns:
            (position, deposit entry)
        """
        correlation_id = create_correlation_id()
        try:
            position = await self._accountant.stake(
                asset, account, qty, cost_usd, at, correlation_id=correlation_id,
            )
            entry = await self._ledger.deposit(
                account,
                asset,
                position.deposit_qty,
                position.deposit_cost,
                position.deposit_date,
                note=note or f"Stake {position.id}",
                correlation_id=correlation_id,
            )
        except StorageError as e:
            await self._report_storage_failure("stake_into_vault", e, correlation_id)
            raise

        return position, entry

    async def unstake_from_vault(
        self,
        position_id: UUID,
        exit_value_usd: Optional[Number] = None,
        qty: Optional[Number] = None,
        at: Optional[datetime] = None,
        close_all: bool = False,
        note: Optional[str] = None,
    ) -> tuple[Position, RealizedPnL, VaultEntry]:
        """
        Exit a position and withdraw the exited units from its vault.

        Returns:
            (updated position, realized PnL, withdraw entry)
        """
        correlation_id = create_correlation_id()
        try:
            position, realized = await self._accountant.unstake(
                position_id,
                exit_value_usd=exit_value_usd,
                qty=qty,
                at=at,
                close_all=close_all,
                correlation_id=correlation_id,
            )
            entry = await self._ledger.withdraw(
                position.account,
                position.asset,
                realized.quantity,
                realized.exit_value_usd,
                realized.at,
                note=note or f"Unstake {position.id}",
                correlation_id=correlation_id,
            )
        except StorageError as e:
            await self._report_storage_failure("unstake_from_vault", e, correlation_id)
            raise

        return position, realized, entry

    async def record_income(
        self,
        amount_usd: Number,
        vault: Optional[str] = None,
        at: Optional[datetime] = None,
        account: Optional[str] = None,
        note: Optional[str] = None,
    ) -> VaultEntry:
        """USD income into `vault` (the spending vault by default)."""
        amount = as_decimal(amount_usd)
        return await self._ledger.deposit(
            vault or self._spend_vault,
            Asset.usd(),
            amount,
            amount,
            at,
            account=account,
            note=note or "Income",
            correlation_id=create_correlation_id(),
        )

    async def record_expense(
        self,
        amount_usd: Number,
        vault: Optional[str] = None,
        at: Optional[datetime] = None,
        account: Optional[str] = None,
        note: Optional[str] = None,
    ) -> VaultEntry:
        """USD expense out of `vault` (the spending vault by default)."""
        amount = as_decimal(amount_usd)
        return await self._ledger.withdraw(
            vault or self._spend_vault,
            Asset.usd(),
            amount,
            amount,
            at,
            account=account,
            note=note or "Expense",
            correlation_id=create_correlation_id(),
        )


def create_app_components(
    settings: Optional[Settings] = None,
    use_google_sheets: bool = False,
    rate_settings: Optional[RateSettings] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Root settings (defaults to the cached environment settings)
        use_google_sheets: Persist to Google Sheets instead of memory.
                    Falls back to memory when the sheet cannot be reached.
        rate_settings: Override for the rate resolver settings

    Returns:
        Wired AppComponents
    """
    settings = settings or get_settings()
    configure_logging(settings.app.log_level)

    sheets_client = None
    ledger_storage: LedgerStorageInterface = InMemoryLedgerStorage()
    position_storage: PositionStorageInterface = InMemoryPositionStorage()
    rate_cache_storage: RateCacheStorageInterface = InMemoryRateCacheStorage()
    audit_storage: AuditStorageInterface = InMemoryAuditStorage()

    if use_google_sheets:
        try:
            client = GoogleSheetsClient()
            client.get_spreadsheet()
        except (StorageError, ValidationError) as e:
            # Storage not configured or unreachable - continue in memory
            logger.warning("google_sheets_unavailable", error=str(e))
        else:
            sheets_client = client
            ledger_storage = GoogleSheetsLedgerStorage(client)
            position_storage = GoogleSheetsPositionStorage(client)
            rate_cache_storage = GoogleSheetsRateCacheStorage(client)
            audit_storage = GoogleSheetsAuditStorage(client)

    audit_logger = AuditLogger(audit_storage)
    rate_resolver = RateResolver(
        cache=RateCache(rate_cache_storage),
        settings=rate_settings or settings.rates,
        audit_logger=audit_logger,
    )
    ledger = VaultLedger(ledger_storage, rate_resolver, audit_logger)
    accountant = PositionAccountant(position_storage, rate_resolver, audit_logger)
    reporter = PerformanceReporter(ledger, accountant, rate_resolver)

    return AppComponents(
        ledger_storage=ledger_storage,
        position_storage=position_storage,
        rate_cache_storage=rate_cache_storage,
        audit_storage=audit_storage,
        audit_logger=audit_logger,
        rate_resolver=rate_resolver,
        ledger=ledger,
        accountant=accountant,
        reporter=reporter,
        sheets_client=sheets_client,
    )
