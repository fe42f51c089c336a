"""
Position Accountant

Stake/unstake lifecycle with cost-basis tracking.

DESIGN DECISION: The accounting itself lives in two pure functions,
`open_position` and `apply_unstake`. They take values and return new
values; nothing is mutated in place. The PositionAccountant service
around them only loads, validates, prices, persists and audits.

Cost basis rules:
- Partial exit of q units: cost = deposit_cost * q / deposit_qty, always
  against the ORIGINAL stake quantity, never the remaining one.
- close_all: the whole remaining quantity exits against the part of
  deposit_cost not yet attributed to earlier exits. With no earlier
  exits that is the full original deposit_cost.
- Over-unstaking is rejected, never clamped.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

import structlog

from nami.audit import AuditLogger, create_correlation_id
from nami.models.ledger import Asset, as_decimal, ensure_utc, utc_now
from nami.models.position import (
    Position,
    PositionExit,
    RealizedPnL,
    UnstakeRequest,
)
from nami.models.validation import ValidationResult
from nami.services.rates import RateResolver
from nami.services.storage import PositionStorageInterface
from nami.validation import LedgerValidator


logger = structlog.get_logger(__name__)

Number = Union[Decimal, int, float, str]


class PositionError(Exception):
    """Base exception for position accounting."""
    pass


class PositionNotFoundError(PositionError):
    """No position with the given id."""
    pass


class PositionClosedError(PositionError):
    """Unstake attempted on a closed position."""
    pass


class AccountingViolationError(PositionError):
    """The request would break a position invariant (e.g. over-unstake)."""

    def __init__(self, message: str, result: Optional[ValidationResult] = None):
        super().__init__(message)
        self.result = result


# =============================================================================
# PURE TRANSITIONS
# =============================================================================

def roi_percent(pnl: Decimal, cost: Decimal) -> Decimal:
    """PnL / cost x 100, or 0 when there is no cost basis."""
    if cost <= 0:
        return Decimal("0")
    return pnl / cost * 100


def open_position(
    asset: Asset,
    account: str,
    qty: Number,
    cost_usd: Number,
    at: Optional[datetime] = None,
) -> Position:
    """A fresh OPEN position with remaining_qty == deposit_qty."""
    qty = as_decimal(qty)
    return Position(
        asset=asset,
        account=account,
        deposit_qty=qty,
        deposit_cost=as_decimal(cost_usd),
        deposit_date=ensure_utc(at) if at else utc_now(),
        remaining_qty=qty,
    )


def apply_unstake(
    position: Position,
    request: UnstakeRequest,
) -> tuple[Position, RealizedPnL]:
    """
    Apply one unstake to a position.

    Returns:
        (updated position, realized PnL of this exit). The input
        position is left untouched.

    Raises:
        PositionClosedError: Position already closed
        AccountingViolationError: qty missing, non-positive, or above remaining
    """
    if not position.is_open:
        raise PositionClosedError(f"Position {position.id} is already closed")
    if request.at < position.deposit_date:
        raise AccountingViolationError("Unstake is dated before the stake")

    if request.close_all:
        qty = position.remaining_qty
        cost = position.remaining_cost_basis
    else:
        qty = request.qty
        if qty is None or qty <= 0:
            raise AccountingViolationError(
                f"Unstake quantity must be positive (got {qty})"
            )
        if qty > position.remaining_qty:
            raise AccountingViolationError(
                f"Unstake quantity {qty} exceeds remaining {position.remaining_qty}"
            )
        cost = position.deposit_cost * qty / position.deposit_qty

    pnl = request.exit_value_usd - cost
    remaining = position.remaining_qty - qty
    closed = request.close_all or remaining == 0

    exit_record = PositionExit(
        quantity=qty,
        exit_value_usd=request.exit_value_usd,
        cost_basis=cost,
        pnl=pnl,
        at=request.at,
        close_all=request.close_all,
    )

    updated = position.model_dump()
    updated.update(
        remaining_qty=Decimal("0") if closed else remaining,
        exit_date=request.at if closed else None,
        realized_pnl=position.realized_pnl + pnl,
        withdrawn_qty=position.withdrawn_qty + qty,
        withdrawn_value=position.withdrawn_value + request.exit_value_usd,
        cost_basis_exited=position.cost_basis_exited + cost,
        exits=[*position.exits, exit_record],
    )
    new_position = Position.model_validate(updated)

    realized = RealizedPnL(
        position_id=position.id,
        quantity=qty,
        cost_basis=cost,
        exit_value_usd=request.exit_value_usd,
        pnl=pnl,
        roi_percent=roi_percent(pnl, cost),
        closed=closed,
        at=request.at,
    )
    return new_position, realized


# =============================================================================
# SERVICE
# =============================================================================

class PositionAccountant:
    """
    Persists and audits position transitions.

    When a USD value is not supplied, it is priced through the rate
    resolver at the transaction time.
    """

    def __init__(
        self,
        storage: PositionStorageInterface,
        rate_resolver: Optional[RateResolver] = None,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[LedgerValidator] = None,
    ):
        self._storage = storage
        self._rates = rate_resolver
        self._audit_logger = audit_logger
        self._validator = validator or LedgerValidator()

    async def _value(self, asset: Asset, qty: Decimal, at: datetime) -> Decimal:
        if self._rates is None:
            raise ValueError(
                f"No USD value given for {qty} {asset.key} and no rate resolver configured"
            )
        return await self._rates.value_usd(asset, qty, at)

    async def stake(
        self,
        asset: Asset,
        account: str,
        qty: Number,
        cost_usd: Optional[Number] = None,
        at: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Position:
        """
        Open a position.

        Raises:
            AccountingViolationError: If the stake fails validation
        """
        qty = as_decimal(qty)
        at = ensure_utc(at) if at else utc_now()
        cost = as_decimal(cost_usd) if cost_usd is not None else None

        result = self._validator.validate_stake(qty, cost, at)
        if not result.is_valid:
            raise AccountingViolationError(result.summary(), result)

        if cost is None:
            cost = await self._value(asset, qty, at)

        position = open_position(asset, account, qty, cost, at)
        await self._storage.save_position(position)

        logger.info(
            "position_opened",
            position_id=str(position.id),
            asset=asset.key,
            account=account,
            qty=str(qty),
            cost_usd=str(cost),
        )
        if self._audit_logger:
            await self._audit_logger.log_position_opened(
                position,
                correlation_id=correlation_id or create_correlation_id(),
            )
        return position

    async def unstake(
        self,
        position_id: UUID,
        exit_value_usd: Optional[Number] = None,
        qty: Optional[Number] = None,
        at: Optional[datetime] = None,
        close_all: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Position, RealizedPnL]:
        """
        Exit part or all of a position.

        Raises:
            PositionNotFoundError: Unknown position id
            PositionClosedError: Position already closed
            AccountingViolationError: Request fails validation
        """
        correlation_id = correlation_id or create_correlation_id()

        position = await self._storage.find_position(position_id)
        if position is None:
            raise PositionNotFoundError(f"Position not found: {position_id}")
        if not position.is_open:
            raise PositionClosedError(f"Position {position_id} is already closed")

        at = ensure_utc(at) if at else utc_now()
        qty = as_decimal(qty) if qty is not None and not close_all else None
        exit_qty = position.remaining_qty if close_all else qty

        # Validate the raw input before pricing it; model constraints apply after
        draft = UnstakeRequest.model_construct(
            exit_value_usd=as_decimal(exit_value_usd) if exit_value_usd is not None else Decimal("0"),
            qty=qty,
            at=at,
            close_all=close_all,
        )
        result = self._validator.validate_unstake(position, draft)
        if not result.is_valid:
            logger.warning(
                "unstake_rejected",
                position_id=str(position_id),
                issues=[issue.message for issue in result.errors],
            )
            if self._audit_logger:
                await self._audit_logger.log_accounting_violation(
                    position_id, result, correlation_id=correlation_id,
                )
            raise AccountingViolationError(result.summary(), result)

        if exit_value_usd is None:
            exit_value = await self._value(position.asset, exit_qty, at)
        else:
            exit_value = draft.exit_value_usd

        request = UnstakeRequest(
            exit_value_usd=exit_value,
            qty=qty,
            at=at,
            close_all=close_all,
        )
        updated, realized = apply_unstake(position, request)
        await self._storage.save_position(updated)

        logger.info(
            "position_unstaked",
            position_id=str(position_id),
            qty=str(realized.quantity),
            exit_value_usd=str(realized.exit_value_usd),
            cost_basis=str(realized.cost_basis),
            pnl=str(realized.pnl),
            closed=realized.closed,
        )
        if self._audit_logger:
            await self._audit_logger.log_position_unstaked(realized, correlation_id=correlation_id)
        return updated, realized

    async def get_position(self, position_id: UUID) -> Position:
        """
        Raises:
            PositionNotFoundError: Unknown position id
        """
        position = await self._storage.find_position(position_id)
        if position is None:
            raise PositionNotFoundError(f"Position not found: {position_id}")
        return position

    async def list_positions(
        self,
        asset: Optional[Asset] = None,
        account: Optional[str] = None,
        is_open: Optional[bool] = None,
    ) -> list[Position]:
        return await self._storage.list_positions(asset=asset, account=account, is_open=is_open)

    async def find_open_positions(self, asset: Asset, account: str) -> list[Position]:
        """Open positions of `asset` held in `account`, oldest first."""
        return await self._storage.list_positions(asset=asset, account=account, is_open=True)
