# Application Stats Package
from .metrics_calculator import EnrichedStats, MetricsCalculator
from .service import ActivitySummary, StatsAggregator

__all__ = ["MetricsCalculator", "EnrichedStats", "StatsAggregator", "ActivitySummary"]
