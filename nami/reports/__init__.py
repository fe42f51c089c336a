"""Performance reporting package."""

from nami.reports.performance import PerformanceReporter

__all__ = ["PerformanceReporter"]
