"""Return metrics package."""

from nami.returns.calculator import (
    annualize_rate,
    calculate_irr,
    calculate_irr_based_apr,
    calculate_roi,
    days_between,
    period_return,
    to_iso_date,
)

__all__ = [
    "annualize_rate",
    "calculate_irr",
    "calculate_irr_based_apr",
    "calculate_roi",
    "days_between",
    "period_return",
    "to_iso_date",
]
