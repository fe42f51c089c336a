"""
Staking Position Models

A position is opened once by a stake and reduced by one or more unstakes.

DESIGN DECISION: Cost basis is always traceable to the original
(deposit_qty, deposit_cost) pair. Each exit records the share of that
original cost it consumed, so the sum of realized PnL over all exits
equals total exit value minus total attributed cost.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from nami.models.ledger import Asset, ensure_utc, utc_now


class PositionExit(BaseModel):
    """One unstake applied to a position."""
    model_config = ConfigDict(frozen=True)

    quantity: Decimal = Field(..., gt=0)
    exit_value_usd: Decimal = Field(..., ge=0)
    cost_basis: Decimal = Field(..., ge=0)
    pnl: Decimal
    at: datetime
    close_all: bool = False

    @field_validator('at')
    @classmethod
    def normalize_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class Position(BaseModel):
    """
    Stake lifecycle record.

    State machine: OPEN -> OPEN (reduced)* -> CLOSED. No transition out
    of CLOSED.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4
    )
    asset: Asset
    account: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Investment account holding the stake"
    )

    # Original stake
    deposit_qty: Decimal = Field(
        ...,
        gt=0,
        description="Units staked"
    )
    deposit_cost: Decimal = Field(
        ...,
        ge=0,
        description="USD paid for the stake"
    )
    deposit_date: datetime = Field(
        default_factory=utc_now
    )
    exit_date: Optional[datetime] = None

    # Running state
    remaining_qty: Decimal = Field(
        ...,
        ge=0,
        description="Units still staked"
    )
    realized_pnl: Decimal = Field(
        default=Decimal("0"),
        description="PnL accumulated across all exits"
    )
    withdrawn_qty: Decimal = Field(default=Decimal("0"), ge=0)
    withdrawn_value: Decimal = Field(default=Decimal("0"), ge=0)
    cost_basis_exited: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Share of deposit_cost already attributed to exits"
    )
    exits: list[PositionExit] = Field(default_factory=list)

    @field_validator('deposit_date', 'exit_date')
    @classmethod
    def normalize_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    @model_validator(mode='after')
    def validate_quantities(self) -> 'Position':
        if self.remaining_qty > self.deposit_qty:
            raise ValueError("Remaining quantity cannot exceed deposited quantity")
        if self.exit_date and self.exit_date < self.deposit_date:
            raise ValueError("Exit date cannot be before deposit date")
        return self

    @computed_field
    @property
    def is_open(self) -> bool:
        return self.remaining_qty > 0 and self.exit_date is None

    @property
    def deposit_unit_cost(self) -> Decimal:
        return self.deposit_cost / self.deposit_qty

    @property
    def remaining_cost_basis(self) -> Decimal:
        """Part of the original cost not yet attributed to an exit."""
        return self.deposit_cost - self.cost_basis_exited

    @property
    def withdrawal_unit_price(self) -> Optional[Decimal]:
        if self.withdrawn_qty <= 0:
            return None
        return self.withdrawn_value / self.withdrawn_qty


class UnstakeRequest(BaseModel):
    """
    Input to an unstake transition.

    With close_all=True, `qty` is ignored and the whole remaining
    quantity exits.
    """

    exit_value_usd: Decimal = Field(
        ...,
        ge=0,
        description="USD realized for the exited quantity"
    )
    qty: Optional[Decimal] = Field(
        default=None,
        description="Units to exit (required unless close_all)"
    )
    at: datetime = Field(
        default_factory=utc_now
    )
    close_all: bool = False

    @field_validator('at')
    @classmethod
    def normalize_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class RealizedPnL(BaseModel):
    """Profit or loss recognized by one unstake."""
    model_config = ConfigDict(frozen=True)

    position_id: UUID
    quantity: Decimal
    cost_basis: Decimal
    exit_value_usd: Decimal
    pnl: Decimal
    roi_percent: Decimal
    closed: bool
    at: datetime


class PositionSummary(BaseModel):
    """Portfolio-level roll-up over a set of positions."""

    total_positions: int = 0
    open_positions: int = 0
    closed_positions: int = 0
    total_deposits_usd: Decimal = Decimal("0")
    total_withdrawals_usd: Decimal = Decimal("0")
    realized_pnl_usd: Decimal = Decimal("0")
    open_market_value_usd: Decimal = Decimal("0")
    unrealized_pnl_usd: Decimal = Decimal("0")

    @computed_field
    @property
    def total_pnl_usd(self) -> Decimal:
        return self.realized_pnl_usd + self.unrealized_pnl_usd

    @computed_field
    @property
    def roi_percent(self) -> float:
        if self.total_deposits_usd <= 0:
            return 0.0
        return float(self.total_pnl_usd / self.total_deposits_usd * 100)
