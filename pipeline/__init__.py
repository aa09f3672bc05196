"""
Pipeline package: aggregation engine, build progress and the report builder.
"""

from .builder import ReportBuilder
from .engine import AggregationEngine, AggregateSnapshot
from .progress import BuildState, ProgressReporter
from .session import ReportSession

__all__ = ["ReportBuilder", "AggregationEngine", "AggregateSnapshot", "BuildState", "ProgressReporter", "ReportSession"]
