"""
Analytics value shapes: periods, aggregates, changes, and insights.

These are derived, per-request values. They are computed fresh from
transaction rows and never persisted. Money and percentages are Decimal
internally and render as JSON numbers.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import BaseModel, Field, PlainSerializer, model_validator

from marketpulse.models.enums import (
    ChangeDirection,
    InsightType,
    Priority,
    Sentiment,
)

ZERO = Decimal("0")

Money = Annotated[
    Decimal,
    PlainSerializer(lambda v: float(v), return_type=float, when_used="json"),
]
Percent = Money


class PeriodBounds(BaseModel):
    """An inclusive pair of instants bounding a reporting period."""

    start: datetime = Field(description="Period start")
    end: datetime = Field(description="Period end")

    @model_validator(mode="after")
    def validate_order(self) -> "PeriodBounds":
        """Ensure start does not come after end."""
        if self.start > self.end:
            raise ValueError("Period start must not be after period end")
        return self

    @property
    def length(self):
        return self.end - self.start


class PeriodWindow(BaseModel):
    """
    The current reporting period and the equal-length period right before it.

    ``previous.end`` always equals ``current.start``.
    """

    timeframe: str = Field(description="Timeframe as requested")
    days: int = Field(ge=0, description="Period length in days")
    current: PeriodBounds
    previous: PeriodBounds
    fallback_applied: bool = Field(
        default=False, description="True when an unknown timeframe fell back to 30 days"
    )


class Aggregate(BaseModel):
    """
    Summed and derived metrics over a set of transaction rows.

    Ratios are derived once after all rows are summed:
    avg_order_value = completed_revenue / completed_count,
    profit_margin = total_profit / total_revenue * 100,
    completion_rate = completed_count / transaction_count * 100.
    Each is 0 when its denominator is 0.
    """

    total_revenue: Money = ZERO
    total_cost: Money = ZERO
    total_profit: Money = ZERO
    total_units: int = 0
    transaction_count: int = 0
    completed_count: int = 0
    completed_revenue: Money = ZERO
    completed_profit: Money = ZERO
    status_counts: dict[str, int] = Field(default_factory=dict)
    status_revenue: dict[str, Money] = Field(default_factory=dict)
    skipped_rows: int = Field(default=0, description="Inputs that were not rows at all")
    coerced_fields: int = Field(default=0, description="Field values coerced to zero")

    avg_order_value: Money = ZERO
    profit_margin: Percent = ZERO
    completion_rate: Percent = ZERO


class GroupAggregate(Aggregate):
    """An Aggregate for one group key, with the group's first and last sale."""

    group_key: str
    label: Optional[str] = None
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None


class ChangeMetric(BaseModel):
    """Percent change of one metric between two periods."""

    metric: str
    current: Money
    previous: Money
    value: Percent = Field(description="Percent change")
    direction: ChangeDirection


class Insight(BaseModel):
    """A qualitative, sentiment-tagged observation about the business."""

    type: InsightType
    title: str
    description: str
    sentiment: Sentiment
    value: Percent
    actionable: bool
    recommendations: list[str] = Field(default_factory=list)
    priority: Priority
