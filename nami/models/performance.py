"""
Performance Models

Cash-flow timelines and the report records derived from them. Cash flows
are ephemeral projections of ledger entries or position exits; they are
never persisted.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class CashFlow(BaseModel):
    """
    One flow on a money-weighted timeline.

    Negative amounts are outflows (deposits), positive amounts are
    inflows (withdrawals or terminal value).
    """
    model_config = ConfigDict(frozen=True)

    amount: float
    days_from_start: float = Field(
        ...,
        ge=0,
        description="Offset from the first flow, in days"
    )


class VaultPerformance(BaseModel):
    """Return metrics for one vault as of a point in time."""

    vault: str
    as_of: datetime
    days: int
    deposited_usd: Decimal
    withdrawn_usd: Decimal
    aum_usd: Decimal
    pnl_usd: Decimal
    roi_percent: float
    irr: float = Field(
        ...,
        description="Annual money-weighted return as a decimal"
    )
    apr_percent: float
    period_return_percent: float
    cash_flows: list[CashFlow] = Field(default_factory=list)
