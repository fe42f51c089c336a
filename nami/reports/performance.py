"""
Performance Reporter

Turns vault ledgers and positions into return figures.

DESIGN DECISION: Reports are read-only projections. Cash flows are
rebuilt from stored entries on every call and never persisted, so a
corrected entry is reflected immediately.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

import structlog

from nami.ledger import VaultLedger
from nami.models.ledger import Asset, VaultEntry, VaultEntryType, ensure_utc, utc_now
from nami.models.performance import CashFlow, VaultPerformance
from nami.models.position import Position, PositionSummary
from nami.positions import PositionAccountant
from nami.returns import (
    calculate_irr,
    calculate_irr_based_apr,
    days_between,
    period_return,
)
from nami.services.rates import RateResolver


logger = structlog.get_logger(__name__)


def _offset(start: datetime, at: datetime) -> float:
    return float(max(days_between(start, at), 0))


class PerformanceReporter:
    """Vault and position return reporting."""

    def __init__(
        self,
        ledger: VaultLedger,
        accountant: PositionAccountant,
        rate_resolver: RateResolver,
    ):
        self._ledger = ledger
        self._accountant = accountant
        self._rates = rate_resolver

    # =========================================================================
    # CASH FLOW TIMELINES
    # =========================================================================

    @staticmethod
    def vault_cash_flows(
        entries: list[VaultEntry],
        as_of: datetime,
        terminal_value: Decimal,
    ) -> list[CashFlow]:
        """
        Deposits negative, withdrawals positive, valuations skipped.

        Offsets are whole days from the first entry. A positive
        `terminal_value` is appended at `as_of` as if the vault were
        liquidated then.
        """
        if not entries:
            return []

        start = entries[0].at
        flows = []
        for entry in entries:
            if entry.type == VaultEntryType.DEPOSIT:
                amount = -float(entry.usd_value)
            elif entry.type == VaultEntryType.WITHDRAW:
                amount = float(entry.usd_value)
            else:
                continue
            flows.append(CashFlow(amount=amount, days_from_start=_offset(start, entry.at)))

        if terminal_value > 0:
            flows.append(CashFlow(
                amount=float(terminal_value),
                days_from_start=_offset(start, as_of),
            ))
        return flows

    @staticmethod
    def position_cash_flows(
        position: Position,
        as_of: datetime,
        market_value: Decimal = Decimal("0"),
    ) -> list[CashFlow]:
        """Stake negative, each exit positive, open remainder at market."""
        start = position.deposit_date
        flows = [CashFlow(amount=-float(position.deposit_cost), days_from_start=0)]
        for item in position.exits:
            flows.append(CashFlow(
                amount=float(item.exit_value_usd),
                days_from_start=_offset(start, item.at),
            ))
        if position.is_open and market_value > 0:
            flows.append(CashFlow(
                amount=float(market_value),
                days_from_start=_offset(start, as_of),
            ))
        return flows

    # =========================================================================
    # REPORTS
    # =========================================================================

    async def vault_performance(
        self,
        name: str,
        as_of: Optional[datetime] = None,
    ) -> VaultPerformance:
        """
        ROI, IRR and APR of a vault, treating AUM at `as_of` as the
        terminal value.

        Entries dated after `as_of` are ignored, both in the cash flows and
        in the AUM fold.

        Raises:
            VaultNotFoundError: Unknown vault
        """
        vault = await self._ledger.get_vault(name)
        # No as_of values the vault at current rates
        stats = await self._ledger.vault_stats(vault.name, as_of)
        as_of = ensure_utc(as_of) if as_of else utc_now()

        entries = [e for e in await self._ledger.get_vault_entries(vault.name) if e.at <= as_of]

        deposited = sum(
            (e.usd_value for e in entries if e.type == VaultEntryType.DEPOSIT),
            Decimal("0"),
        )
        withdrawn = sum(
            (e.usd_value for e in entries if e.type == VaultEntryType.WITHDRAW),
            Decimal("0"),
        )
        aum = stats.aum_usd
        pnl = aum + withdrawn - deposited
        roi = float(pnl / deposited) if deposited > 0 else 0.0

        days = days_between(entries[0].at, as_of) if entries else 0
        flows = self.vault_cash_flows(entries, as_of, aum)
        irr = calculate_irr(flows)
        apr = calculate_irr_based_apr(flows, days, roi)

        logger.info(
            "vault_performance_computed",
            vault=vault.name,
            days=days,
            roi=roi,
            irr=irr,
            flows=len(flows),
        )

        return VaultPerformance(
            vault=vault.name,
            as_of=as_of,
            days=days,
            deposited_usd=deposited,
            withdrawn_usd=withdrawn,
            aum_usd=aum,
            pnl_usd=pnl,
            roi_percent=roi * 100,
            irr=irr,
            apr_percent=apr,
            period_return_percent=period_return(irr, days) * 100,
            cash_flows=flows,
        )

    async def position_summary(
        self,
        asset: Optional[Asset] = None,
        account: Optional[str] = None,
    ) -> PositionSummary:
        """
        Roll up positions, valuing open ones at the current rate.

        Unrealized PnL is market value minus the cost basis still attached
        to the open quantity.
        """
        positions = await self._accountant.list_positions(asset=asset, account=account)
        summary = PositionSummary(total_positions=len(positions))

        for position in positions:
            summary.total_deposits_usd += position.deposit_cost
            summary.total_withdrawals_usd += position.withdrawn_value
            summary.realized_pnl_usd += position.realized_pnl

            if position.is_open:
                summary.open_positions += 1
                market_value = await self._rates.value_usd(position.asset, position.remaining_qty)
                summary.open_market_value_usd += market_value
                summary.unrealized_pnl_usd += market_value - position.remaining_cost_basis
            else:
                summary.closed_positions += 1

        return summary
