"""
Tests for the return calculator.

Pure numerics: no I/O, no clock.
"""

import math
from datetime import date, datetime, timezone

import pytest

from nami.models.performance import CashFlow
from nami.returns import (
    annualize_rate,
    calculate_irr,
    calculate_irr_based_apr,
    calculate_roi,
    days_between,
    period_return,
    to_iso_date,
)


def flows(*pairs):
    return [CashFlow(amount=amount, days_from_start=days) for amount, days in pairs]


class TestCalculateIRR:
    """Tests for the money-weighted IRR."""

    def test_two_flow_closed_form(self):
        """-1000 then +1200 a year later is 20% a year."""
        irr = calculate_irr(flows((-1000, 0), (1200, 365)))
        assert abs(irr - 0.20) < 1e-9

    def test_two_flow_half_year(self):
        """Closed form compounds a half-year return to a full year."""
        irr = calculate_irr(flows((-1000, 0), (1100, 182.5)))
        assert irr == pytest.approx(1.1 ** 2 - 1, abs=1e-12)

    def test_empty_flows(self):
        """No flows means no return."""
        assert calculate_irr([]) == 0.0

    def test_no_deposits(self):
        """Only inflows: nothing was invested, so 0."""
        assert calculate_irr(flows((100, 0), (200, 30))) == 0.0

    def test_two_flow_same_day(self):
        """Zero elapsed days in the closed form returns 0."""
        assert calculate_irr(flows((-1000, 0), (1200, 0))) == 0.0

    def test_newton_raphson_multiple_flows(self):
        """The solved rate zeroes the NPV."""
        cash_flows = flows((-1000, 0), (-500, 100), (200, 200), (1500, 365))
        irr = calculate_irr(cash_flows)

        npv = sum(cf.amount / (1 + irr) ** (cf.days_from_start / 365) for cf in cash_flows)
        assert abs(npv) < 1e-6
        assert 0 < irr < 1

    def test_newton_raphson_matches_closed_form(self):
        """Three flows that net to one deposit/one exit agree with the closed form."""
        irr = calculate_irr(flows((-600, 0), (-400, 0), (1200, 365)))
        assert irr == pytest.approx(0.20, abs=1e-8)

    def test_total_loss_is_clamped(self):
        """A near-total loss stays within the clamp instead of diverging."""
        irr = calculate_irr(flows((-1000, 0), (-1000, 10), (1, 365)))
        assert -0.999 <= irr < 0

    def test_order_of_flows_does_not_matter_for_newton(self):
        """Newton-Raphson path is order independent."""
        a = calculate_irr(flows((-1000, 0), (-500, 100), (1700, 365)))
        b = calculate_irr(flows((1700, 365), (-500, 100), (-1000, 0)))
        assert a == pytest.approx(b, abs=1e-9)

    def test_two_flow_closed_form_any_order(self):
        """A terminal value listed before its deposit still uses the closed form."""
        irr = calculate_irr(flows((1200, 365), (-1000, 0)))
        assert abs(irr - 0.20) < 1e-9

    def test_never_raises(self):
        """Huge gains over one day do not blow up."""
        irr = calculate_irr(flows((-1, 0), (1e6, 1)))
        assert irr > 0 or math.isinf(irr)


class TestAprAndRoi:
    """Tests for APR, ROI and annualization helpers."""

    def test_short_window_uses_roi(self):
        """Windows under 30 days are not annualized."""
        apr = calculate_irr_based_apr(flows((-1000, 0), (1100, 10)), total_days=10, roi=0.10)
        assert apr == pytest.approx(10.0)

    def test_long_window_uses_irr(self):
        """From 30 days on, APR is IRR x 100."""
        apr = calculate_irr_based_apr(flows((-1000, 0), (1200, 365)), total_days=365, roi=0.20)
        assert apr == pytest.approx(20.0, abs=1e-7)

    def test_roi(self):
        """ROI is profit over cost in percent."""
        assert calculate_roi(30, 300) == pytest.approx(10.0)
        assert calculate_roi(-225, 500) == pytest.approx(-45.0)

    def test_roi_without_cost(self):
        """Zero or negative cost gives 0 rather than dividing."""
        assert calculate_roi(100, 0) == 0.0
        assert calculate_roi(100, -5) == 0.0

    def test_annualize_rate(self):
        """A 10% half-year compounds to 21% a year."""
        assert annualize_rate(0.10, 182.5) == pytest.approx(21.0)

    def test_annualize_rate_no_days(self):
        """No elapsed time annualizes to 0."""
        assert annualize_rate(0.10, 0) == 0.0

    def test_period_return_inverts_annualization(self):
        """De-annualizing 20% over a full year gives 20%."""
        assert period_return(0.20, 365) == pytest.approx(0.20)
        assert period_return(0.20, 0) == 0.0


class TestDateHelpers:
    """Tests for the UTC day helpers."""

    def test_to_iso_date(self):
        """Datetimes are reduced to their UTC day."""
        at = datetime(2024, 3, 1, 23, 30, tzinfo=timezone.utc)
        assert to_iso_date(at) == "2024-03-01"
        assert to_iso_date(date(2024, 3, 1)) == "2024-03-01"

    def test_days_between_counts_calendar_days(self):
        """Times of day are ignored; only UTC dates count."""
        start = datetime(2024, 1, 1, 23, 0, tzinfo=timezone.utc)
        end = datetime(2024, 1, 2, 1, 0, tzinfo=timezone.utc)
        assert days_between(start, end) == 1
        assert days_between(end, start) == -1

    def test_days_between_leap_year(self):
        """2024 has 366 days."""
        assert days_between(date(2024, 1, 1), date(2025, 1, 1)) == 366


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
