"""
Vault Ledger

Append-only deposit/withdraw/valuation entries per named vault, with
balances and assets-under-management derived by folding the entries.

DESIGN DECISION: AUM has two derivations.
- If the vault has any VALUATION entry, AUM is the latest snapshot plus
  net flows since it. A manually entered NAV (e.g. a fund's reported
  value) beats anything we could reconstruct.
- Otherwise every non-zero unit balance is revalued at the current rate
  and summed.

Entries are folded in `at` order; storage order is never trusted.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

import structlog

from nami.audit import AuditLogger, create_correlation_id
from nami.models.ledger import (
    Asset,
    Vault,
    VaultEntry,
    VaultEntryType,
    VaultStats,
    VaultStatus,
    as_decimal,
    ensure_utc,
    utc_now,
)
from nami.models.validation import ValidationResult
from nami.services.rates import RateResolver
from nami.services.storage import LedgerStorageInterface
from nami.validation import LedgerValidator


logger = structlog.get_logger(__name__)

Number = Union[Decimal, int, float, str]

# Unit balances smaller than this are treated as empty
DUST = Decimal("1e-12")


class VaultError(Exception):
    """Base exception for vault operations."""
    pass


class VaultNotFoundError(VaultError):
    """No vault with the given name."""
    pass


class InvalidVaultFlowError(VaultError):
    """A deposit/withdraw/valuation failed validation."""

    def __init__(self, message: str, result: Optional[ValidationResult] = None):
        super().__init__(message)
        self.result = result


def sort_entries(entries: list[VaultEntry]) -> list[VaultEntry]:
    """Timestamp order; entries with equal `at` keep their relative order."""
    return sorted(entries, key=lambda e: e.at)


class VaultLedger:
    """
    Vault lifecycle and entry ledger.

    `add_vault_entry` is the raw append; deposit/withdraw/record_valuation
    are the checked, priced helpers most callers want.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        rate_resolver: RateResolver,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[LedgerValidator] = None,
    ):
        self._storage = storage
        self._rates = rate_resolver
        self._audit_logger = audit_logger
        self._validator = validator or LedgerValidator()

    # =========================================================================
    # VAULT LIFECYCLE
    # =========================================================================

    async def ensure_vault(
        self,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Create the vault if it does not exist.

        Returns:
            True if created, False if it already existed
        """
        name = name.strip()
        if not name:
            raise ValueError("Vault name cannot be empty")

        if await self._storage.get_vault(name) is not None:
            return False

        await self._storage.save_vault(Vault(name=name))
        logger.info("vault_created", vault=name)
        if self._audit_logger:
            await self._audit_logger.log_vault_created(name, correlation_id)
        return True

    async def get_vault(self, name: str) -> Vault:
        """
        Raises:
            VaultNotFoundError: Unknown vault
        """
        vault = await self._storage.get_vault(name.strip())
        if vault is None:
            raise VaultNotFoundError(f"Vault not found: {name}")
        return vault

    async def list_vaults(self, active_only: bool = False) -> list[Vault]:
        vaults = await self._storage.list_vaults()
        if active_only:
            vaults = [v for v in vaults if v.is_active]
        return sorted(vaults, key=lambda v: v.name.lower())

    async def end_vault(
        self,
        name: str,
        at: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Mark a vault CLOSED. Its entries are kept.

        Returns:
            False if the vault does not exist
        """
        vault = await self._storage.get_vault(name.strip())
        if vault is None:
            return False
        if vault.status == VaultStatus.CLOSED:
            return True

        vault.status = VaultStatus.CLOSED
        vault.closed_at = ensure_utc(at) if at else utc_now()
        await self._storage.save_vault(vault)

        logger.info("vault_closed", vault=vault.name)
        if self._audit_logger:
            await self._audit_logger.log_vault_closed(vault.name, correlation_id)
        return True

    async def delete_vault(
        self,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """Remove the vault record. Entries stay in the append-only log."""
        deleted = await self._storage.delete_vault(name.strip())
        if deleted:
            logger.warning("vault_deleted", vault=name)
            if self._audit_logger:
                await self._audit_logger.log_vault_deleted(name, correlation_id)
        return deleted

    # =========================================================================
    # ENTRIES
    # =========================================================================

    async def add_vault_entry(
        self,
        entry: VaultEntry,
        correlation_id: Optional[UUID] = None,
    ) -> VaultEntry:
        """
        Append an entry as-is.

        The caller makes sure the vault exists (see ensure_vault).
        """
        await self._storage.append_entry(entry)
        logger.info(
            "vault_entry_appended",
            vault=entry.vault,
            entry_type=entry.type.value,
            asset=entry.asset.key,
            amount=str(entry.amount),
            usd_value=str(entry.usd_value),
        )
        if self._audit_logger:
            await self._audit_logger.log_vault_entry(entry, correlation_id)
        return entry

    async def get_vault_entries(self, name: str) -> list[VaultEntry]:
        """Entries of a vault in timestamp order."""
        return sort_entries(await self._storage.find_entries(name.strip()))

    async def _flow(
        self,
        entry_type: VaultEntryType,
        name: str,
        asset: Asset,
        amount: Number,
        usd_value: Optional[Number],
        at: Optional[datetime],
        account: Optional[str],
        note: Optional[str],
        correlation_id: Optional[UUID],
    ) -> VaultEntry:
        amount = as_decimal(amount)
        at = ensure_utc(at) if at else utc_now()
        value = as_decimal(usd_value) if usd_value is not None else None

        result = self._validator.validate_flow(entry_type, amount, value, at)
        if not result.is_valid:
            raise InvalidVaultFlowError(result.summary(), result)

        if value is None:
            value = await self._rates.value_usd(asset, amount, at)

        await self.ensure_vault(name, correlation_id)
        entry = VaultEntry(
            vault=name.strip(),
            type=entry_type,
            asset=asset,
            amount=amount,
            usd_value=value,
            at=at,
            account=account,
            note=note,
        )
        return await self.add_vault_entry(entry, correlation_id)

    async def deposit(
        self,
        name: str,
        asset: Asset,
        amount: Number,
        usd_value: Optional[Number] = None,
        at: Optional[datetime] = None,
        account: Optional[str] = None,
        note: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> VaultEntry:
        """
        Record units flowing into a vault (created on demand).

        When `usd_value` is omitted the amount is priced at `at`.

        Raises:
            InvalidVaultFlowError: Non-positive amount or bad USD value
        """
        return await self._flow(
            VaultEntryType.DEPOSIT, name, asset, amount, usd_value,
            at, account, note, correlation_id,
        )

    async def withdraw(
        self,
        name: str,
        asset: Asset,
        amount: Number,
        usd_value: Optional[Number] = None,
        at: Optional[datetime] = None,
        account: Optional[str] = None,
        note: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> VaultEntry:
        """Record units flowing out of a vault. See deposit."""
        return await self._flow(
            VaultEntryType.WITHDRAW, name, asset, amount, usd_value,
            at, account, note, correlation_id,
        )

    async def record_valuation(
        self,
        name: str,
        value_usd: Number,
        at: Optional[datetime] = None,
        note: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> VaultEntry:
        """Snapshot the vault's total USD value (moves no units)."""
        return await self._flow(
            VaultEntryType.VALUATION, name, Asset.usd(), Decimal("0"), value_usd,
            at, None, note or "Manual valuation update", correlation_id,
        )

    # =========================================================================
    # DERIVED FIGURES
    # =========================================================================

    async def vault_stats(self, name: str, as_of: Optional[datetime] = None) -> VaultStats:
        """
        Fold the vault's entries into totals, balances and AUM.

        Balances are per asset key; AUM follows the valuation rule in the
        module docstring. With `as_of`, only entries dated up to it count
        and unit balances are revalued at that instant's rates.
        """
        entries = await self.get_vault_entries(name)
        if as_of is not None:
            as_of = ensure_utc(as_of)
            entries = [e for e in entries if e.at <= as_of]

        deposited = Decimal("0")
        withdrawn = Decimal("0")
        balances: dict[str, Decimal] = {}
        assets: dict[str, Asset] = {}
        last_valuation: Optional[Decimal] = None
        last_valuation_at: Optional[datetime] = None
        net_since_valuation = Decimal("0")

        for entry in entries:
            key = entry.asset.key
            if entry.type == VaultEntryType.DEPOSIT:
                deposited += entry.usd_value
                net_since_valuation += entry.usd_value
                balances[key] = balances.get(key, Decimal("0")) + entry.amount
                assets[key] = entry.asset
            elif entry.type == VaultEntryType.WITHDRAW:
                withdrawn += entry.usd_value
                net_since_valuation -= entry.usd_value
                balances[key] = balances.get(key, Decimal("0")) - entry.amount
                assets[key] = entry.asset
            elif entry.type == VaultEntryType.VALUATION:
                last_valuation = entry.usd_value
                last_valuation_at = entry.at
                net_since_valuation = Decimal("0")

        if last_valuation is not None:
            aum = last_valuation + net_since_valuation
        else:
            aum = Decimal("0")
            for key, units in balances.items():
                if abs(units) <= DUST:
                    continue
                aum += await self._rates.value_usd(assets[key], units, as_of)

        return VaultStats(
            vault=name.strip(),
            total_deposited_usd=deposited,
            total_withdrawn_usd=withdrawn,
            aum_usd=aum,
            last_valuation_usd=last_valuation,
            last_valuation_at=last_valuation_at,
            balances=balances,
            entry_count=len(entries),
        )

    # =========================================================================
    # COMPOSITE FLOWS
    # =========================================================================

    async def transfer(
        self,
        from_vault: str,
        to_vault: str,
        asset: Asset,
        amount: Number,
        usd_value: Optional[Number] = None,
        at: Optional[datetime] = None,
        note: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[VaultEntry, VaultEntry]:
        """
        Move units between vaults: WITHDRAW from source, DEPOSIT into target,
        each naming the other vault as its account.
        """
        if from_vault.strip() == to_vault.strip():
            raise ValueError("Cannot transfer a vault into itself")

        correlation_id = correlation_id or create_correlation_id()
        at = ensure_utc(at) if at else utc_now()
        if usd_value is None:
            usd_value = await self._rates.value_usd(asset, as_decimal(amount), at)

        out_entry = await self.withdraw(
            from_vault, asset, amount, usd_value, at,
            account=to_vault, note=note or f"Transfer to {to_vault}",
            correlation_id=correlation_id,
        )
        in_entry = await self.deposit(
            to_vault, asset, amount, usd_value, at,
            account=from_vault, note=note or f"Transfer from {from_vault}",
            correlation_id=correlation_id,
        )
        return out_entry, in_entry

    async def distribute_reward(
        self,
        name: str,
        amount_usd: Number,
        destination: str = "Spend",
        at: Optional[datetime] = None,
        note: Optional[str] = None,
        mark: bool = True,
        new_total_usd: Optional[Number] = None,
        correlation_id: Optional[UUID] = None,
    ) -> dict[str, VaultEntry]:
        """
        Pay a reward out of a vault into another one.

        With `mark`, a valuation is first recorded at `new_total_usd`
        (default: current AUM + reward), so the reward shows up as growth
        before it is withdrawn.

        Returns:
            {"valuation"?, "withdraw", "deposit"} entries
        """
        amount = as_decimal(amount_usd)
        if amount <= 0:
            raise InvalidVaultFlowError(f"Reward must be positive (got {amount})")

        await self.get_vault(name)
        correlation_id = correlation_id or create_correlation_id()
        at = ensure_utc(at) if at else utc_now()
        usd = Asset.usd()
        entries: dict[str, VaultEntry] = {}

        if mark:
            if new_total_usd is None:
                stats = await self.vault_stats(name)
                total = stats.aum_usd + amount
            else:
                total = as_decimal(new_total_usd)
            entries["valuation"] = await self.record_valuation(
                name, total, at,
                note=f"Reward valuation before distributing ${amount}",
                correlation_id=correlation_id,
            )

        entries["withdraw"] = await self.withdraw(
            name, usd, amount, amount, at,
            account=destination, note=note or f"Reward to {destination}",
            correlation_id=correlation_id,
        )
        entries["deposit"] = await self.deposit(
            destination, usd, amount, amount, at,
            account=name, note=note or f"Reward from {name}",
            correlation_id=correlation_id,
        )
        return entries
