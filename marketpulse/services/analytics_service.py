"""
Analytics Service - period-over-period views over stored transactions.

Resolves the reporting window, fetches the current and previous periods
in parallel, and runs every view through the shared engine
(aggregate -> compare -> generate_insights). Also assembles the ExportData
bundle the exporters render.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import structlog

from marketpulse.config import InsightThresholds, get_insight_thresholds
from marketpulse.engine.aggregator import (
    aggregate,
    build_daily_series,
    build_monthly_series,
    rank_groups,
)
from marketpulse.engine.changes import change_metric, compare, growth_rate, percent_change
from marketpulse.engine.insights import generate_insights
from marketpulse.engine.periods import resolve_days, resolve_period
from marketpulse.models.analytics import GroupAggregate, PeriodBounds, PeriodWindow
from marketpulse.models.enums import DeliveryStatus, RankMetric
from marketpulse.models.exports import (
    DateRange,
    ExportData,
    ExportSummary,
    GrowthSummary,
    MonthlyTrendRow,
    PlatformPerformanceRow,
    ProductRow,
    TransactionRow,
)
from marketpulse.storage.base import StorageBackend

ZERO = Decimal("0")
HUNDRED = Decimal("100")
INSIGHT_HISTORY_DAYS = 365

# Long-lived pool: worker threads keep their thread-local DuckDB connections
_EXECUTOR = ThreadPoolExecutor(max_workers=3, thread_name_prefix="analytics")


class AnalyticsService:
    """
    Sales analytics over a resolved reporting window.

    Every public method takes a timeframe ("7d", "30d", "90d", "1y") and
    optional platform/store filters, and an optional ``now`` so results are
    reproducible in tests.
    """

    def __init__(
        self,
        storage: StorageBackend,
        thresholds: Optional[InsightThresholds] = None,
    ):
        self.storage = storage
        self.thresholds = thresholds or get_insight_thresholds()
        self.logger = structlog.get_logger()

    # =========================================================================
    # Fetching
    # =========================================================================

    def _query(
        self,
        bounds: PeriodBounds,
        platform_ids: Optional[list[str]],
        store_ids: Optional[list[str]],
        end_inclusive: bool,
    ) -> list[dict[str, Any]]:
        return self.storage.query_transactions(
            start=bounds.start,
            end=bounds.end,
            platform_ids=platform_ids,
            store_ids=store_ids,
            end_inclusive=end_inclusive,
        )

    def fetch_periods(
        self,
        window: PeriodWindow,
        platform_ids: Optional[list[str]] = None,
        store_ids: Optional[list[str]] = None,
        history: Optional[PeriodBounds] = None,
    ) -> tuple[list[dict], list[dict], Optional[list[dict]]]:
        """
        Fetch current, previous (and optionally history) rows concurrently.

        The previous period is half-open at its end so a row stamped exactly
        at the boundary is counted once, in the current period.
        """
        current_f = _EXECUTOR.submit(self._query, window.current, platform_ids, store_ids, True)
        previous_f = _EXECUTOR.submit(self._query, window.previous, platform_ids, store_ids, False)
        history_f = (
            _EXECUTOR.submit(self._query, history, platform_ids, store_ids, True)
            if history is not None
            else None
        )
        current_rows = current_f.result()
        previous_rows = previous_f.result()
        history_rows = history_f.result() if history_f is not None else None

        self.logger.debug(
            "periods_fetched",
            timeframe=window.timeframe,
            current_rows=len(current_rows),
            previous_rows=len(previous_rows),
            history_rows=len(history_rows) if history_rows is not None else None,
        )
        return current_rows, previous_rows, history_rows

    def _platform_names(self) -> dict[str, str]:
        return {p.id: p.platform_name for p in self.storage.list_platforms(active_only=False)}

    def _store_names(self) -> dict[str, str]:
        return {s.id: s.store_name for s in self.storage.list_stores(active_only=False)}

    @staticmethod
    def _labelled(groups: dict[str, GroupAggregate], names: dict[str, str]) -> dict[str, GroupAggregate]:
        return {
            key: g.model_copy(update={"label": names.get(key, g.label or key)})
            for key, g in groups.items()
        }

    @staticmethod
    def _period(window: PeriodWindow) -> dict:
        return {
            "timeframe": window.timeframe,
            "days": window.days,
            "fallback_applied": window.fallback_applied,
            "current": window.current.model_dump(mode="json"),
            "previous": window.previous.model_dump(mode="json"),
        }

    # =========================================================================
    # Views
    # =========================================================================

    def summary(
        self,
        timeframe: str,
        platform_ids: Optional[list[str]] = None,
        store_ids: Optional[list[str]] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """
        Dashboard summary: current and previous Aggregates plus changes.

        Returns:
            {"period": {...}, "current": Aggregate, "previous": Aggregate,
             "changes": {metric: ChangeMetric}}
        """
        window = resolve_period(timeframe, now)
        current_rows, previous_rows, _ = self.fetch_periods(window, platform_ids, store_ids)

        current = aggregate(current_rows)
        previous = aggregate(previous_rows)
        changes = compare(current, previous, self.thresholds.zero_baseline_change_pct)

        self.logger.info(
            "summary_computed",
            timeframe=window.timeframe,
            transactions=current.transaction_count,
            revenue_change=str(changes["total_revenue"].value),
        )
        return {
            "period": self._period(window),
            "current": current,
            "previous": previous,
            "changes": changes,
        }

    def platform_performance(
        self,
        timeframe: str,
        platform_ids: Optional[list[str]] = None,
        store_ids: Optional[list[str]] = None,
        sort_by: RankMetric = RankMetric.REVENUE,
        now: Optional[datetime] = None,
    ) -> dict:
        """Per-platform aggregates ranked by ``sort_by``, each with revenue growth."""
        window = resolve_period(timeframe, now)
        current_rows, previous_rows, _ = self.fetch_periods(window, platform_ids, store_ids)

        names = self._platform_names()
        current = self._labelled(aggregate(current_rows, group_by="platform_id"), names)
        previous = aggregate(previous_rows, group_by="platform_id")
        ranked = rank_groups(current, by=sort_by)

        platforms = []
        for group in ranked:
            prior = previous.get(group.group_key)
            prior_revenue = prior.total_revenue if prior is not None else ZERO
            platforms.append(
                {
                    **group.model_dump(mode="json"),
                    "platform_id": group.group_key,
                    "platform_name": group.label,
                    "revenue_growth": change_metric(
                        "total_revenue",
                        group.total_revenue,
                        prior_revenue,
                        self.thresholds.zero_baseline_change_pct,
                    ).model_dump(mode="json"),
                }
            )

        self.logger.info("platform_performance_computed", platforms=len(platforms))
        return {"period": self._period(window), "sort_by": RankMetric(sort_by).value, "platforms": platforms}

    def product_performance(
        self,
        timeframe: str,
        platform_ids: Optional[list[str]] = None,
        store_ids: Optional[list[str]] = None,
        search: Optional[str] = None,
        sort_by: RankMetric = RankMetric.REVENUE,
        limit: int = 50,
        now: Optional[datetime] = None,
    ) -> dict:
        """
        Per-SKU aggregates with first/last sale dates.

        The summary covers every product matching ``search``; ``limit`` only
        trims the returned list.
        """
        window = resolve_period(timeframe, now)
        rows = self._query(window.current, platform_ids, store_ids, True)
        groups = aggregate(rows, group_by="product_sku", label_field="product_name")

        matched = list(groups.values())
        if search:
            needle = search.strip().lower()
            matched = [
                g
                for g in matched
                if needle in g.group_key.lower() or needle in (g.label or "").lower()
            ]

        ranked = rank_groups(matched, by=sort_by)
        total_revenue = sum((g.total_revenue for g in matched), ZERO)
        total_units = sum(g.total_units for g in matched)
        average_margin = (
            sum((g.profit_margin for g in matched), ZERO) / Decimal(len(matched)) if matched else ZERO
        )

        self.logger.info(
            "product_performance_computed",
            products=len(matched),
            search=search,
            sort_by=RankMetric(sort_by).value,
        )
        return {
            "period": self._period(window),
            "products": ranked[:limit],
            "summary": {
                "total_products": len(matched),
                "total_revenue": total_revenue,
                "total_units": total_units,
                "average_margin": average_margin,
            },
        }

    def comparison(
        self,
        timeframe: str,
        platform_ids: Optional[list[str]] = None,
        store_ids: Optional[list[str]] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """Current vs previous period, overall and per platform."""
        window = resolve_period(timeframe, now)
        current_rows, previous_rows, _ = self.fetch_periods(window, platform_ids, store_ids)

        current = aggregate(current_rows)
        previous = aggregate(previous_rows)
        changes = compare(current, previous, self.thresholds.zero_baseline_change_pct)

        names = self._platform_names()
        current_groups = aggregate(current_rows, group_by="platform_id")
        previous_groups = aggregate(previous_rows, group_by="platform_id")
        by_platform = []
        for key in sorted(set(current_groups) | set(previous_groups)):
            cur = current_groups.get(key)
            prev = previous_groups.get(key)
            cur_rev = cur.total_revenue if cur is not None else ZERO
            prev_rev = prev.total_revenue if prev is not None else ZERO
            by_platform.append(
                {
                    "platform_id": key,
                    "platform_name": names.get(key, key),
                    "current_revenue": cur_rev,
                    "previous_revenue": prev_rev,
                    "change": change_metric(
                        "total_revenue", cur_rev, prev_rev, self.thresholds.zero_baseline_change_pct
                    ),
                }
            )

        self.logger.info(
            "comparison_computed",
            timeframe=window.timeframe,
            platforms=len(by_platform),
        )
        return {
            "period": self._period(window),
            "current": current,
            "previous": previous,
            "changes": changes,
            "platforms": by_platform,
        }

    def trend(
        self,
        timeframe: str,
        platform_ids: Optional[list[str]] = None,
        store_ids: Optional[list[str]] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """Monthly and daily series over the current window, plus profit growth."""
        window = resolve_period(timeframe, now)
        rows = self._query(window.current, platform_ids, store_ids, True)

        monthly = build_monthly_series(rows)
        daily = build_daily_series(rows)
        return {
            "period": self._period(window),
            "monthly": monthly,
            "daily": daily,
            "profit_growth_rate": growth_rate(
                monthly, "total_profit", self.thresholds.zero_baseline_change_pct
            ),
        }

    def store_profit(
        self,
        timeframe: str,
        platform_ids: Optional[list[str]] = None,
        store_ids: Optional[list[str]] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """
        Per-store gross profit on completed orders, less ad spend in the window.

        Ad spend booked without a store is reported as unattributed.
        """
        window = resolve_period(timeframe, now)
        rows = self._query(window.current, platform_ids, store_ids, True)
        groups = self._labelled(aggregate(rows, group_by="store_id"), self._store_names())

        expenses = self.storage.list_ad_expenses(
            start_date=window.current.start.date(),
            end_date=window.current.end.date(),
            platform_ids=platform_ids,
            store_ids=store_ids,
        )
        ad_cost: dict[str, Decimal] = {}
        unattributed = ZERO
        for expense in expenses:
            if expense.store_id:
                ad_cost[expense.store_id] = ad_cost.get(expense.store_id, ZERO) + expense.amount
            else:
                unattributed += expense.amount

        stores = []
        for key in sorted(set(groups) | set(ad_cost)):
            group = groups.get(key)
            gross = group.completed_profit if group is not None else ZERO
            revenue = group.completed_revenue if group is not None else ZERO
            cost = ad_cost.get(key, ZERO)
            net = gross - cost
            stores.append(
                {
                    "store_id": key,
                    "store_name": group.label if group is not None else key,
                    "completed_orders": group.completed_count if group is not None else 0,
                    "completed_revenue": revenue,
                    "gross_profit": gross,
                    "total_ad_cost": cost,
                    "net_profit": net,
                    "net_margin": net / revenue * HUNDRED if revenue else ZERO,
                }
            )
        stores.sort(key=lambda s: s["store_id"])
        stores.sort(key=lambda s: s["net_profit"], reverse=True)

        return {
            "period": self._period(window),
            "stores": stores,
            "totals": {
                "gross_profit": sum((s["gross_profit"] for s in stores), ZERO),
                "total_ad_cost": sum((s["total_ad_cost"] for s in stores), ZERO) + unattributed,
                "unattributed_ad_cost": unattributed,
                "net_profit": sum((s["net_profit"] for s in stores), ZERO) - unattributed,
            },
        }

    def insights(
        self,
        timeframe: str,
        platform_ids: Optional[list[str]] = None,
        store_ids: Optional[list[str]] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """
        Business insights over platform rankings, product concentration, and
        a twelve-month series ending at the window end.
        """
        window = resolve_period(timeframe, now)
        history = resolve_days(INSIGHT_HISTORY_DAYS, now=window.current.end).current
        current_rows, previous_rows, history_rows = self.fetch_periods(
            window, platform_ids, store_ids, history=history
        )

        current = aggregate(current_rows)
        previous = aggregate(previous_rows)
        platforms = rank_groups(
            self._labelled(aggregate(current_rows, group_by="platform_id"), self._platform_names()),
            by=RankMetric.REVENUE,
        )
        products = rank_groups(
            aggregate(current_rows, group_by="product_sku", label_field="product_name"),
            by=RankMetric.REVENUE,
        )
        monthly = build_monthly_series(history_rows or [])

        insights = generate_insights(
            current,
            previous=previous,
            ranked_groups=platforms,
            monthly_series=monthly,
            concentration_groups=products,
            thresholds=self.thresholds,
        )
        return {
            "period": self._period(window),
            "insights": insights,
            "months_analysed": len(monthly),
        }

    # =========================================================================
    # Export bundle
    # =========================================================================

    def build_export_data(
        self,
        timeframe: str,
        platform_ids: Optional[list[str]] = None,
        store_ids: Optional[list[str]] = None,
        max_transactions: int = 5000,
        top_products: int = 10,
        now: Optional[datetime] = None,
    ) -> ExportData:
        """Assemble the presentation-ready bundle every exporter renders."""
        window = resolve_period(timeframe, now)
        current_rows, previous_rows, _ = self.fetch_periods(window, platform_ids, store_ids)
        platform_names = self._platform_names()
        store_names = self._store_names()

        current = aggregate(current_rows)
        previous = aggregate(previous_rows)
        platforms = rank_groups(
            self._labelled(aggregate(current_rows, group_by="platform_id"), platform_names)
        )
        products = rank_groups(
            aggregate(current_rows, group_by="product_sku", label_field="product_name")
        )
        monthly = build_monthly_series(current_rows)

        ordered_rows = sorted(
            current_rows,
            key=lambda r: (r.get("occurred_at") or datetime.min, r.get("id") or ""),
            reverse=True,
        )[:max_transactions]

        data = ExportData(
            generated_at=window.current.end,
            timeframe=window.timeframe,
            summary=ExportSummary(
                total_revenue=current.total_revenue,
                total_profit=current.total_profit,
                total_transactions=current.transaction_count,
                avg_order_value=current.avg_order_value,
                profit_margin=current.profit_margin,
                top_platform=(platforms[0].label or platforms[0].group_key) if platforms else "-",
                top_product=(products[0].label or products[0].group_key) if products else "-",
            ),
            date_range=DateRange(start=window.current.start, end=window.current.end),
            platform_performance=[
                PlatformPerformanceRow(
                    name=g.label or g.group_key,
                    revenue=g.total_revenue,
                    profit=g.total_profit,
                    profit_margin=g.profit_margin,
                    transactions=g.transaction_count,
                    completion_rate=g.completion_rate,
                )
                for g in platforms
            ],
            top_products=[
                ProductRow(
                    name=g.label or g.group_key,
                    sku=g.group_key,
                    quantity_sold=g.total_units,
                    revenue=g.total_revenue,
                    profit=g.total_profit,
                    profit_margin=g.profit_margin,
                )
                for g in products[:top_products]
            ],
            transactions=[self._transaction_row(r, platform_names, store_names) for r in ordered_rows],
            growth=GrowthSummary(
                revenue=percent_change(
                    current.total_revenue, previous.total_revenue,
                    self.thresholds.zero_baseline_change_pct,
                ),
                transactions=percent_change(
                    current.transaction_count, previous.transaction_count,
                    self.thresholds.zero_baseline_change_pct,
                ),
                profit=percent_change(
                    current.total_profit, previous.total_profit,
                    self.thresholds.zero_baseline_change_pct,
                ),
            ),
            monthly_trend=[
                MonthlyTrendRow(
                    month=m.group_key,
                    revenue=m.total_revenue,
                    profit=m.total_profit,
                    transactions=m.transaction_count,
                )
                for m in monthly
            ],
        )

        self.logger.info(
            "export_data_built",
            timeframe=window.timeframe,
            transactions=len(data.transactions),
            platforms=len(data.platform_performance),
        )
        return data

    @staticmethod
    def _transaction_row(
        row: dict[str, Any],
        platform_names: dict[str, str],
        store_names: dict[str, str],
    ) -> TransactionRow:
        occurred = row.get("occurred_at")
        status = DeliveryStatus.from_label(row.get("delivery_status"))
        selling = row.get("selling_price") or ZERO
        cost = row.get("cost_price") or ZERO
        profit = row.get("profit")
        return TransactionRow(
            order_date=occurred.strftime("%Y-%m-%d") if isinstance(occurred, datetime) else "",
            platform=platform_names.get(row.get("platform_id"), row.get("platform_id") or ""),
            store=store_names.get(row.get("store_id"), row.get("store_id") or ""),
            order_number=row.get("order_number") or "",
            product_name=row.get("product_name") or "",
            quantity=row.get("quantity") or 0,
            cost_price=cost,
            selling_price=selling,
            profit=profit if profit is not None else selling - cost,
            status=status.label if status is not None else str(row.get("delivery_status") or ""),
        )
