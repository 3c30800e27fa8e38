"""
Change Calculator - period-over-period percent change per metric.

Zero-baseline policy: when the previous value is 0 the change is 0 if the
current value is also 0, otherwise ``zero_baseline_change_pct`` (100 by
default, configurable through InsightThresholds). A change from a negative
baseline divides by its magnitude so an improvement reads as an increase.
"""

from collections.abc import Sequence
from decimal import Decimal
from typing import Optional, Union

import structlog

from marketpulse.config import get_insight_thresholds
from marketpulse.models.analytics import Aggregate, ChangeMetric, GroupAggregate
from marketpulse.models.enums import ChangeDirection

logger = structlog.get_logger()

ZERO = Decimal("0")
HUNDRED = Decimal("100")

COMPARED_METRICS = (
    "total_revenue",
    "total_profit",
    "total_units",
    "transaction_count",
    "completed_count",
    "completed_revenue",
    "completed_profit",
    "avg_order_value",
    "profit_margin",
    "completion_rate",
)

Number = Union[Decimal, int, float]


def _to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def _zero_baseline(override: Optional[Number]) -> Decimal:
    if override is not None:
        return _to_decimal(override)
    return _to_decimal(get_insight_thresholds().zero_baseline_change_pct)


def percent_change(
    current: Number,
    previous: Number,
    zero_baseline: Optional[Number] = None,
) -> Decimal:
    """
    Percent change from ``previous`` to ``current``.

    Returns (current - previous) / |previous| * 100 when previous != 0,
    otherwise 0 when current == 0 and the zero-baseline value when not.
    """
    cur = _to_decimal(current)
    prev = _to_decimal(previous)
    if prev == 0:
        return ZERO if cur == 0 else _zero_baseline(zero_baseline)
    return (cur - prev) / abs(prev) * HUNDRED


def direction_of(change: Decimal) -> ChangeDirection:
    if change > 0:
        return ChangeDirection.INCREASE
    if change < 0:
        return ChangeDirection.DECREASE
    return ChangeDirection.FLAT


def change_metric(
    metric: str,
    current: Number,
    previous: Number,
    zero_baseline: Optional[Number] = None,
) -> ChangeMetric:
    """Build a ChangeMetric for one named value pair."""
    value = percent_change(current, previous, zero_baseline)
    return ChangeMetric(
        metric=metric,
        current=_to_decimal(current),
        previous=_to_decimal(previous),
        value=value,
        direction=direction_of(value),
    )


def compare(
    current: Aggregate,
    previous: Aggregate,
    zero_baseline: Optional[Number] = None,
) -> dict[str, ChangeMetric]:
    """
    Percent change for every comparable metric of two Aggregates.

    Args:
        current: Aggregate for the current period
        previous: Aggregate for the previous period
        zero_baseline: Override for the zero-baseline change value

    Returns:
        Metric name -> ChangeMetric, in a fixed metric order
    """
    baseline = _zero_baseline(zero_baseline)
    changes = {
        name: change_metric(name, getattr(current, name), getattr(previous, name), baseline)
        for name in COMPARED_METRICS
    }
    logger.debug(
        "comparison_computed",
        revenue_change=str(changes["total_revenue"].value),
        profit_change=str(changes["total_profit"].value),
    )
    return changes


def growth_rate(
    series: Sequence[GroupAggregate],
    field: str = "total_profit",
    zero_baseline: Optional[Number] = None,
) -> Decimal:
    """
    Percent change of ``field`` between the two most recent points of a series.

    Points are ordered by group key ("YYYY-MM" sorts chronologically).
    Returns 0 when the series has fewer than two points.
    """
    if len(series) < 2:
        return ZERO
    ordered = sorted(series, key=lambda g: g.group_key)
    latest, prior = ordered[-1], ordered[-2]
    return percent_change(getattr(latest, field), getattr(prior, field), zero_baseline)
