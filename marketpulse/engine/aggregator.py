"""
Row Aggregator - the single shared reduction from transaction rows to metrics.

Every analytics view (dashboard summary, platform and product performance,
comparisons, insights, exports) goes through ``aggregate`` so they agree on
which statuses count as completed and on how ratios are derived.

Sums are Decimal and accumulate in one pass. Ratios are derived only after
the pass completes. Nothing is rounded here.
"""

from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any, Callable, Optional, Union

import structlog

from marketpulse.engine.coercion import CoercedRow, coerce_row
from marketpulse.models.analytics import Aggregate, GroupAggregate
from marketpulse.models.enums import DeliveryStatus, RankMetric

logger = structlog.get_logger()

ZERO = Decimal("0")
HUNDRED = Decimal("100")
UNKNOWN_GROUP = "UNKNOWN"
DEFAULT_COMPLETED = frozenset({DeliveryStatus.COMPLETED})

RANK_FIELDS = {
    RankMetric.REVENUE: "total_revenue",
    RankMetric.PROFIT: "total_profit",
    RankMetric.MARGIN: "profit_margin",
    RankMetric.TRANSACTION_COUNT: "transaction_count",
    RankMetric.UNITS: "total_units",
}


class _Accumulator:
    """Running sums for one Aggregate."""

    __slots__ = (
        "total_revenue",
        "total_cost",
        "total_profit",
        "total_units",
        "transaction_count",
        "completed_count",
        "completed_revenue",
        "completed_profit",
        "status_counts",
        "status_revenue",
        "skipped_rows",
        "coerced_fields",
        "label",
        "first_seen",
        "last_seen",
    )

    def __init__(self):
        self.total_revenue = ZERO
        self.total_cost = ZERO
        self.total_profit = ZERO
        self.total_units = 0
        self.transaction_count = 0
        self.completed_count = 0
        self.completed_revenue = ZERO
        self.completed_profit = ZERO
        self.status_counts: dict[str, int] = {}
        self.status_revenue: dict[str, Decimal] = {}
        self.skipped_rows = 0
        self.coerced_fields = 0
        self.label: Optional[str] = None
        self.first_seen = None
        self.last_seen = None

    def add(self, row: CoercedRow, completed_statuses: frozenset) -> None:
        self.total_revenue += row.selling_price
        self.total_cost += row.cost_price
        self.total_profit += row.profit
        self.total_units += row.quantity
        self.transaction_count += 1
        self.coerced_fields += row.coerced_fields

        if row.status is not None:
            key = row.status.value
            self.status_counts[key] = self.status_counts.get(key, 0) + 1
            self.status_revenue[key] = self.status_revenue.get(key, ZERO) + row.selling_price
            if row.status in completed_statuses:
                self.completed_count += 1
                self.completed_revenue += row.selling_price
                self.completed_profit += row.profit

        if row.occurred_at is not None:
            if self.first_seen is None or row.occurred_at < self.first_seen:
                self.first_seen = row.occurred_at
            if self.last_seen is None or row.occurred_at > self.last_seen:
                self.last_seen = row.occurred_at

    def _ratios(self) -> dict:
        return {
            "avg_order_value": (
                self.completed_revenue / self.completed_count if self.completed_count else ZERO
            ),
            "profit_margin": (
                self.total_profit / self.total_revenue * HUNDRED if self.total_revenue else ZERO
            ),
            "completion_rate": (
                Decimal(self.completed_count) / Decimal(self.transaction_count) * HUNDRED
                if self.transaction_count
                else ZERO
            ),
        }

    def _sums(self) -> dict:
        return {
            "total_revenue": self.total_revenue,
            "total_cost": self.total_cost,
            "total_profit": self.total_profit,
            "total_units": self.total_units,
            "transaction_count": self.transaction_count,
            "completed_count": self.completed_count,
            "completed_revenue": self.completed_revenue,
            "completed_profit": self.completed_profit,
            "status_counts": dict(self.status_counts),
            "status_revenue": dict(self.status_revenue),
            "skipped_rows": self.skipped_rows,
            "coerced_fields": self.coerced_fields,
        }

    def build(self) -> Aggregate:
        return Aggregate(**self._sums(), **self._ratios())

    def build_group(self, group_key: str) -> GroupAggregate:
        return GroupAggregate(
            **self._sums(),
            **self._ratios(),
            group_key=group_key,
            label=self.label,
            first_seen=self.first_seen,
            last_seen=self.last_seen,
        )


def _group_key(row: CoercedRow, group_by: str) -> str:
    value = row.get(group_by)
    if value is None:
        return UNKNOWN_GROUP
    key = str(value).strip()
    return key or UNKNOWN_GROUP


def _completed_set(completed_statuses: Optional[Iterable]) -> frozenset:
    if completed_statuses is None:
        return DEFAULT_COMPLETED
    return frozenset(
        s for s in (DeliveryStatus.from_label(v) for v in completed_statuses) if s is not None
    )


def _bucket(
    rows: Iterable[Any],
    key_fn: Callable[[CoercedRow], Optional[str]],
    label_field: Optional[str],
    completed: frozenset,
) -> tuple[dict[str, _Accumulator], int, int]:
    buckets: dict[str, _Accumulator] = {}
    skipped = 0
    unplaced = 0
    for raw in rows:
        row = coerce_row(raw)
        if row is None:
            skipped += 1
            continue
        key = key_fn(row)
        if key is None:
            unplaced += 1
            continue
        acc = buckets.get(key)
        if acc is None:
            acc = buckets[key] = _Accumulator()
        acc.add(row, completed)
        if label_field and acc.label is None:
            label = row.get(label_field)
            if label is not None and str(label).strip():
                acc.label = str(label).strip()
    return buckets, skipped, unplaced


def aggregate(
    rows: Iterable[Any],
    group_by: Optional[str] = None,
    label_field: Optional[str] = None,
    completed_statuses: Optional[Iterable] = None,
) -> Union[Aggregate, dict[str, GroupAggregate]]:
    """
    Reduce transaction rows to an Aggregate, or to one GroupAggregate per key.

    Args:
        rows: Row mappings (or TransactionRecord models) in any order
        group_by: Row key to partition by (e.g. "platform_id", "product_sku").
            Rows without the key fall into the "UNKNOWN" group.
        label_field: Row key used to fill GroupAggregate.label
        completed_statuses: Statuses counted as completed (default: Completed)

    Returns:
        Aggregate when ungrouped; dict of group key -> GroupAggregate otherwise.
        Empty input yields an all-zero Aggregate or an empty dict.
    """
    completed = _completed_set(completed_statuses)

    if group_by is None:
        acc = _Accumulator()
        for raw in rows:
            row = coerce_row(raw)
            if row is None:
                acc.skipped_rows += 1
                continue
            acc.add(row, completed)
        result = acc.build()
        if result.skipped_rows or result.coerced_fields:
            logger.warning(
                "rows_coerced",
                skipped_rows=result.skipped_rows,
                coerced_fields=result.coerced_fields,
            )
        logger.debug(
            "aggregation_completed",
            transaction_count=result.transaction_count,
            total_revenue=str(result.total_revenue),
        )
        return result

    buckets, skipped, _ = _bucket(
        rows, lambda r: _group_key(r, group_by), label_field, completed
    )
    if skipped:
        logger.warning("rows_skipped", group_by=group_by, skipped_rows=skipped)
    groups = {key: acc.build_group(key) for key, acc in buckets.items()}
    logger.debug("grouped_aggregation_completed", group_by=group_by, group_count=len(groups))
    return groups


def rank_groups(
    groups: Union[Mapping[str, GroupAggregate], Iterable[GroupAggregate]],
    by: Union[str, RankMetric] = RankMetric.REVENUE,
) -> list[GroupAggregate]:
    """
    Order groups by a metric, descending. Ties break by group key ascending.

    Returns a new list; the same input always yields the same order.
    """
    metric = RankMetric(by)
    field = RANK_FIELDS[metric]
    items = list(groups.values()) if isinstance(groups, Mapping) else list(groups)
    by_key = sorted(items, key=lambda g: g.group_key)
    return sorted(by_key, key=lambda g: getattr(g, field), reverse=True)


def _series(
    rows: Iterable[Any],
    fmt: str,
    completed_statuses: Optional[Iterable],
) -> list[GroupAggregate]:
    completed = _completed_set(completed_statuses)
    buckets, _, unplaced = _bucket(
        rows,
        lambda r: r.occurred_at.strftime(fmt) if r.occurred_at is not None else None,
        None,
        completed,
    )
    if unplaced:
        logger.debug("series_rows_without_timestamp", count=unplaced)
    return [buckets[key].build_group(key) for key in sorted(buckets)]


def build_monthly_series(
    rows: Iterable[Any],
    completed_statuses: Optional[Iterable] = None,
) -> list[GroupAggregate]:
    """Bucket rows by calendar month ("YYYY-MM"), oldest first. Untimed rows are ignored."""
    return _series(rows, "%Y-%m", completed_statuses)


def build_daily_series(
    rows: Iterable[Any],
    completed_statuses: Optional[Iterable] = None,
) -> list[GroupAggregate]:
    """Bucket rows by calendar day ("YYYY-MM-DD"), oldest first. Untimed rows are ignored."""
    return _series(rows, "%Y-%m-%d", completed_statuses)
