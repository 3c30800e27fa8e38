"""
Metrics aggregation engine.

Pure, synchronous functions over materialized rows:
periods (window resolution) -> aggregator (sums and ratios) ->
changes (period-over-period deltas) -> insights (qualitative observations).
"""

from marketpulse.engine.aggregator import (
    aggregate,
    build_daily_series,
    build_monthly_series,
    rank_groups,
)
from marketpulse.engine.changes import compare, growth_rate, percent_change
from marketpulse.engine.insights import generate_insights
from marketpulse.engine.periods import resolve_days, resolve_period

__all__ = [
    "aggregate",
    "build_daily_series",
    "build_monthly_series",
    "compare",
    "generate_insights",
    "growth_rate",
    "percent_change",
    "rank_groups",
    "resolve_days",
    "resolve_period",
]
