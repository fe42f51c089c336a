"""Position accounting package."""

from nami.positions.accountant import (
    AccountingViolationError,
    PositionAccountant,
    PositionClosedError,
    PositionError,
    PositionNotFoundError,
    apply_unstake,
    open_position,
    roi_percent,
)

__all__ = [
    # Service
    "PositionAccountant",
    # Pure transitions
    "apply_unstake",
    "open_position",
    "roi_percent",
    # Exceptions
    "AccountingViolationError",
    "PositionClosedError",
    "PositionError",
    "PositionNotFoundError",
]
