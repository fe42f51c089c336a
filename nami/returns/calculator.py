"""
Return Calculator

Money-weighted return metrics from irregular cash-flow timelines.

Cash flows are CashFlow(amount, days_from_start):
- negative amount = deposit (money going in)
- positive amount = withdrawal or terminal value (money coming out)

IRR is the annual rate r solving  sum(CF_i / (1 + r)^(days_i / 365)) = 0.

DESIGN DECISION: Nothing here raises for numeric reasons. Degenerate
input returns 0, a total loss returns -1, and a Newton-Raphson run that
does not converge falls back to a simple annualized return. Callers
render these numbers directly.
"""

import math
from datetime import date, datetime
from typing import Iterable, Union

from nami.models.ledger import day_start
from nami.models.performance import CashFlow


# Newton-Raphson candidates are clamped to [-99.9%, +1000%]
MIN_RATE = -0.999
MAX_RATE = 10.0

# Holding periods shorter than this are reported unannualized
MIN_ANNUALIZE_DAYS = 30

DateLike = Union[date, datetime]


def _pow(base: float, exponent: float) -> float:
    try:
        return math.pow(base, exponent)
    except OverflowError:
        return math.inf


def _npv(cash_flows: list[CashFlow], rate: float) -> float:
    total = 0.0
    for cf in cash_flows:
        years = cf.days_from_start / 365
        total += cf.amount / math.pow(1 + rate, years)
    return total


def _npv_derivative(cash_flows: list[CashFlow], rate: float) -> float:
    total = 0.0
    for cf in cash_flows:
        years = cf.days_from_start / 365
        total += (-cf.amount * years) / math.pow(1 + rate, years + 1)
    return total


def calculate_irr(
    cash_flows: Iterable[CashFlow],
    max_iterations: int = 100,
    tolerance: float = 1e-10,
) -> float:
    """
    Annual internal rate of return as a decimal (0.2 == 20%).

    Args:
        cash_flows: Flows in any order; they are sorted by day first
        max_iterations: Newton-Raphson iteration cap
        tolerance: Stop once successive rates differ by less than this

    Returns:
        The IRR; 0 without meaningful deposits; -1 for a total loss in
        the two-flow case
    """
    flows = sorted(cash_flows, key=lambda cf: cf.days_from_start)
    if not flows:
        return 0.0

    total_in = sum(-cf.amount for cf in flows if cf.amount < 0)
    total_out = sum(cf.amount for cf in flows if cf.amount > 0)

    if total_in < 1e-8:
        return 0.0

    # One deposit followed by one terminal value: closed form
    if len(flows) == 2 and flows[0].amount < 0 and flows[1].amount > 0:
        pv = -flows[0].amount
        fv = flows[1].amount
        days = flows[1].days_from_start - flows[0].days_from_start
        if days <= 0 or pv <= 0:
            return 0.0
        ratio = fv / pv
        if ratio <= 0:
            return -1.0
        return _pow(ratio, 365 / days) - 1

    rate = (total_out - total_in) / total_in
    rate = max(MIN_RATE, min(MAX_RATE, rate))

    for _ in range(max_iterations):
        try:
            f = _npv(flows, rate)
            f_prime = _npv_derivative(flows, rate)
        except (OverflowError, ZeroDivisionError):
            break

        if abs(f_prime) < 1e-12 or not math.isfinite(f_prime):
            break

        new_rate = rate - f / f_prime
        if math.isnan(new_rate):
            break
        clamped = max(MIN_RATE, min(MAX_RATE, new_rate))

        if abs(clamped - rate) < tolerance:
            return clamped

        rate = clamped

    # Not converged: simple annualized return over the whole window
    total_days = max(cf.days_from_start for cf in flows)
    if total_days > 0:
        simple_return = (total_out - total_in) / total_in
        return _pow(1 + simple_return, 365 / total_days) - 1

    return 0.0


def calculate_irr_based_apr(
    cash_flows: Iterable[CashFlow],
    total_days: float,
    roi: float,
) -> float:
    """
    APR in percent from the IRR.

    Windows under 30 days return `roi * 100` unannualized; stretching a
    few days of return to a year is misleading.

    Args:
        cash_flows: Deposits negative, withdrawals/terminal value positive
        total_days: Days from first deposit to the measurement date
        roi: Simple ROI as a decimal (used for short windows)
    """
    if total_days < MIN_ANNUALIZE_DAYS:
        return roi * 100
    return calculate_irr(cash_flows) * 100


def calculate_roi(profit: float, cost: float) -> float:
    """profit / cost x 100; 0 when cost <= 0."""
    if cost <= 0:
        return 0.0
    return profit / cost * 100


def annualize_rate(rate: float, days: float) -> float:
    """Compound a period return to a year, in percent; 0 when days <= 0."""
    if days <= 0:
        return 0.0
    return (_pow(1 + rate, 365 / days) - 1) * 100


def period_return(irr: float, days: float) -> float:
    """Annual IRR de-annualized to a `days`-long period (decimal)."""
    if days <= 0:
        return 0.0
    return _pow(1 + irr, days / 365) - 1


# =============================================================================
# DATE HELPERS
# =============================================================================

def to_iso_date(value: DateLike) -> str:
    """YYYY-MM-DD of the UTC day."""
    if isinstance(value, datetime):
        return day_start(value).date().isoformat()
    return value.isoformat()


def days_between(start: DateLike, end: DateLike) -> int:
    """Whole UTC calendar days from `start` to `end` (negative if reversed)."""
    start_day = day_start(start).date() if isinstance(start, datetime) else start
    end_day = day_start(end).date() if isinstance(end, datetime) else end
    return (end_day - start_day).days
