"""
Insight Generator - qualitative observations from aggregates and rankings.

Produces up to five insights (revenue growth, platform gap, product
concentration, profit margin, seasonality). Every threshold comes from
``InsightThresholds``. Missing optional inputs suppress the matching
insight; the generator never raises for them.
"""

from collections.abc import Sequence
from decimal import Decimal
from typing import Optional

import structlog

from marketpulse.config import InsightThresholds, get_insight_thresholds
from marketpulse.engine.aggregator import rank_groups
from marketpulse.engine.changes import percent_change
from marketpulse.models.analytics import Aggregate, GroupAggregate, Insight
from marketpulse.models.enums import InsightType, Priority, Sentiment
from marketpulse.utils.formatting import format_percent

logger = structlog.get_logger()

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def _d(value: float) -> Decimal:
    return Decimal(str(value))


def _name(group: GroupAggregate) -> str:
    return group.label or group.group_key


def revenue_growth_insight(
    current: Aggregate,
    previous: Aggregate,
    thresholds: InsightThresholds,
) -> Insight:
    growth = percent_change(
        current.total_revenue, previous.total_revenue, thresholds.zero_baseline_change_pct
    )

    if growth > _d(thresholds.growth_positive_pct):
        sentiment = Sentiment.POSITIVE
    elif growth >= 0:
        sentiment = Sentiment.NEUTRAL
    else:
        sentiment = Sentiment.NEGATIVE

    if growth < _d(thresholds.growth_high_priority_pct):
        priority = Priority.HIGH
    elif growth < 0:
        priority = Priority.MEDIUM
    else:
        priority = Priority.LOW

    if growth > 0:
        description = f"Revenue grew {format_percent(growth)} compared to the previous period"
    elif growth < 0:
        description = f"Revenue fell {format_percent(abs(growth))} compared to the previous period"
    else:
        description = "Revenue is unchanged from the previous period"

    declining = growth < 0
    return Insight(
        type=InsightType.REVENUE_GROWTH,
        title="Revenue Growth",
        description=description,
        sentiment=sentiment,
        value=growth,
        actionable=declining,
        recommendations=[
            "Review marketing strategy on underperforming platforms",
            "Focus on products with high profit margins",
            "Analyse customer feedback for improvements",
        ]
        if declining
        else [],
        priority=priority,
    )


def platform_gap_insight(
    ranked_groups: Sequence[GroupAggregate],
    thresholds: InsightThresholds,
) -> Insight:
    top, bottom = ranked_groups[0], ranked_groups[-1]
    if top.total_revenue:
        gap = (top.total_revenue - bottom.total_revenue) / top.total_revenue * HUNDRED
    else:
        gap = ZERO

    actionable = gap > _d(thresholds.gap_actionable_pct)
    return Insight(
        type=InsightType.PLATFORM_PERFORMANCE,
        title="Platform Performance",
        description=f"{_name(top)} outperforms {_name(bottom)} by {format_percent(gap)}",
        sentiment=Sentiment.NEUTRAL,
        value=gap,
        actionable=actionable,
        recommendations=[
            f"Apply what works on {_name(top)} to {_name(bottom)}",
            "Increase product visibility on the underperforming platform",
            "Review pricing on platforms with low conversion",
        ]
        if actionable
        else [],
        priority=Priority.HIGH if gap > _d(thresholds.gap_high_priority_pct) else Priority.MEDIUM,
    )


def concentration_insight(
    current: Aggregate,
    groups: Sequence[GroupAggregate],
    thresholds: InsightThresholds,
) -> Insight:
    top_n = thresholds.concentration_top_n
    top = rank_groups(groups, by="revenue")[:top_n]
    top_revenue = sum((g.total_revenue for g in top), ZERO)
    if current.total_revenue:
        share = top_revenue / current.total_revenue * HUNDRED
    else:
        share = ZERO

    if share > _d(thresholds.concentration_negative_pct):
        sentiment = Sentiment.NEGATIVE
    elif share > _d(thresholds.concentration_neutral_pct):
        sentiment = Sentiment.NEUTRAL
    else:
        sentiment = Sentiment.POSITIVE

    actionable = share > _d(thresholds.concentration_actionable_pct)
    return Insight(
        type=InsightType.PRODUCT_CONCENTRATION,
        title="Product Concentration",
        description=f"Top {top_n} products account for {format_percent(share)} of total revenue",
        sentiment=sentiment,
        value=share,
        actionable=actionable,
        recommendations=[
            "Diversify the product portfolio to reduce risk",
            "Develop new products with high margin potential",
            "Cross-sell existing products to the customer base",
        ]
        if actionable
        else [],
        priority=(
            Priority.HIGH
            if share > _d(thresholds.concentration_negative_pct)
            else Priority.MEDIUM
        ),
    )


def margin_insight(current: Aggregate, thresholds: InsightThresholds) -> Insight:
    margin = current.profit_margin
    positive = _d(thresholds.margin_positive_pct)
    neutral = _d(thresholds.margin_neutral_pct)

    if margin > positive:
        sentiment = Sentiment.POSITIVE
        description = f"Profit margin is very healthy ({format_percent(margin)})"
    elif margin > neutral:
        sentiment = Sentiment.NEUTRAL
        description = f"Profit margin is within the normal range ({format_percent(margin)})"
    else:
        sentiment = Sentiment.NEGATIVE
        description = f"Profit margin needs optimisation ({format_percent(margin)})"

    if margin < _d(thresholds.margin_critical_pct):
        priority = Priority.HIGH
    elif margin < neutral:
        priority = Priority.MEDIUM
    else:
        priority = Priority.LOW

    actionable = margin < neutral
    return Insight(
        type=InsightType.PROFIT_MARGIN,
        title="Profit Margin",
        description=description,
        sentiment=sentiment,
        value=margin,
        actionable=actionable,
        recommendations=[
            "Review the cost structure for operational efficiency",
            "Negotiate supplier prices to reduce cost",
            "Optimise pricing to improve margin",
            "Drop low-margin products from the portfolio",
        ]
        if actionable
        else [],
        priority=priority,
    )


def coefficient_of_variation(values: Sequence[Decimal]) -> Decimal:
    """Population standard deviation over mean, as a percent. 0 when the mean is 0."""
    if not values:
        return ZERO
    count = Decimal(len(values))
    mean = sum(values, ZERO) / count
    if mean == 0:
        return ZERO
    variance = sum(((v - mean) ** 2 for v in values), ZERO) / count
    return variance.sqrt() / abs(mean) * HUNDRED


def seasonality_insight(
    monthly_series: Sequence[GroupAggregate],
    thresholds: InsightThresholds,
) -> Insight:
    cv = coefficient_of_variation([m.total_revenue for m in monthly_series])
    actionable = cv > _d(thresholds.seasonality_actionable_cv_pct)
    return Insight(
        type=InsightType.SEASONALITY,
        title="Seasonal Pattern",
        description=f"Monthly sales vary by {format_percent(cv)} across the year",
        sentiment=Sentiment.NEUTRAL,
        value=cv,
        actionable=actionable,
        recommendations=[
            "Build inventory ahead of peak season",
            "Plan promotions for the low season",
            "Shift marketing budget along the seasonal pattern",
        ]
        if actionable
        else [],
        priority=Priority.MEDIUM,
    )


def generate_insights(
    current: Aggregate,
    previous: Optional[Aggregate] = None,
    ranked_groups: Sequence[GroupAggregate] = (),
    monthly_series: Optional[Sequence[GroupAggregate]] = None,
    concentration_groups: Optional[Sequence[GroupAggregate]] = None,
    thresholds: Optional[InsightThresholds] = None,
) -> list[Insight]:
    """
    Derive business insights, ordered high > medium > low priority.

    Args:
        current: Aggregate for the current period
        previous: Aggregate for the previous period; enables the growth insight
        ranked_groups: Groups (usually platforms) ranked best first; two or
            more enable the gap insight
        monthly_series: Monthly aggregates; enough months enable the
            seasonality insight
        concentration_groups: Groups (usually products) whose top entries
            measure revenue concentration; defaults to ``ranked_groups``
        thresholds: Threshold overrides (default: configured thresholds)

    Returns:
        Insights, stably sorted by priority
    """
    thresholds = thresholds or get_insight_thresholds()
    insights: list[Insight] = []

    if previous is not None:
        insights.append(revenue_growth_insight(current, previous, thresholds))

    ranked = list(ranked_groups or ())
    if len(ranked) > 1:
        insights.append(platform_gap_insight(ranked, thresholds))

    concentration_source = ranked if concentration_groups is None else list(concentration_groups)
    insights.append(concentration_insight(current, concentration_source, thresholds))

    insights.append(margin_insight(current, thresholds))

    if monthly_series is not None and len(monthly_series) >= thresholds.seasonality_min_months:
        insights.append(seasonality_insight(monthly_series, thresholds))

    ordered = sorted(insights, key=lambda i: i.priority.rank)
    logger.info(
        "insights_generated",
        count=len(ordered),
        actionable=sum(1 for i in ordered if i.actionable),
        types=[i.type.value for i in ordered],
    )
    return ordered
