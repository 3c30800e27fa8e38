"""
Unit tests for the MarketPulse analytics engine.

Covers period resolution, row coercion, aggregation (grouping, ranking,
series), the change calculator and the insight generator, including the
reference scenarios the engine is specified against.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from marketpulse.config import InsightThresholds
from marketpulse.engine.aggregator import (
    UNKNOWN_GROUP,
    aggregate,
    build_daily_series,
    build_monthly_series,
    rank_groups,
)
from marketpulse.engine.changes import COMPARED_METRICS, compare, growth_rate, percent_change
from marketpulse.engine.coercion import coerce_row, parse_money, parse_quantity, parse_timestamp
from marketpulse.engine.insights import (
    coefficient_of_variation,
    concentration_insight,
    generate_insights,
    margin_insight,
    platform_gap_insight,
    revenue_growth_insight,
)
from marketpulse.engine.periods import FALLBACK_DAYS, resolve_days, resolve_period, to_naive_utc
from marketpulse.models.analytics import Aggregate
from marketpulse.models.enums import (
    ChangeDirection,
    DeliveryStatus,
    InsightType,
    Priority,
    RankMetric,
    Sentiment,
)
from tests.conftest import NOW, make_group, make_record, make_row


@pytest.fixture
def thresholds():
    return InsightThresholds()


# ============================================================================
# Period Resolver
# ============================================================================


class TestResolvePeriod:
    """Test timeframe -> current/previous windows."""

    @pytest.mark.parametrize(
        "timeframe,days",
        [("7d", 7), ("30d", 30), ("90d", 90), ("1y", 365)],
    )
    def test_known_timeframes(self, timeframe, days):
        window = resolve_period(timeframe, now=NOW)
        assert window.days == days
        assert window.current.end == NOW
        assert window.current.start == NOW - timedelta(days=days)
        assert window.fallback_applied is False

    def test_previous_is_adjacent_and_equal_length(self):
        window = resolve_period("30d", now=NOW)
        assert window.previous.end == window.current.start
        assert window.previous.length == window.current.length

    def test_unknown_timeframe_falls_back_and_flags(self):
        window = resolve_period("2w", now=NOW)
        assert window.days == FALLBACK_DAYS
        assert window.fallback_applied is True
        assert window.timeframe == "2w"

    def test_none_timeframe_falls_back(self):
        window = resolve_period(None, now=NOW)
        assert window.fallback_applied is True

    def test_zero_days_gives_empty_windows(self):
        window = resolve_days(0, now=NOW)
        assert window.current.start == window.current.end == NOW
        assert window.previous.start == window.previous.end == NOW

    def test_negative_days_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            resolve_days(-1, now=NOW)

    def test_aware_now_normalized_to_naive_utc(self):
        aware = datetime(2024, 6, 30, 19, 0, tzinfo=timezone(timedelta(hours=7)))
        window = resolve_period("7d", now=aware)
        assert window.current.end == datetime(2024, 6, 30, 12, 0)
        assert window.current.end.tzinfo is None

    def test_to_naive_utc_accepts_date(self):
        assert to_naive_utc(date(2024, 1, 2)) == datetime(2024, 1, 2)


# ============================================================================
# Row coercion
# ============================================================================


class TestCoercion:
    """Test the coerce-to-zero policy at the aggregation boundary."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            (100, Decimal("100")),
            ("150000", Decimal("150000")),
            ("Rp 1,250,000", Decimal("1250000")),
            (12.5, Decimal("12.5")),
            (Decimal("7.25"), Decimal("7.25")),
        ],
    )
    def test_parse_money_valid(self, raw, expected):
        assert parse_money(raw) == (expected, False)

    @pytest.mark.parametrize("raw", [None, "", "abc", float("nan"), float("inf"), True, [1]])
    def test_parse_money_invalid_coerces_to_zero(self, raw):
        assert parse_money(raw) == (Decimal("0"), True)

    def test_parse_quantity(self):
        assert parse_quantity("3") == (3, False)
        assert parse_quantity(2) == (2, False)
        assert parse_quantity("2.5") == (0, True)
        assert parse_quantity("lots") == (0, True)
        assert parse_quantity(None) == (0, True)

    def test_parse_timestamp_variants(self):
        assert parse_timestamp("2024-06-01T10:00:00Z") == datetime(2024, 6, 1, 10, 0)
        assert parse_timestamp("2024-06-01") == datetime(2024, 6, 1)
        assert parse_timestamp(date(2024, 6, 1)) == datetime(2024, 6, 1)
        assert parse_timestamp("not a date") is None
        assert parse_timestamp(None) is None

    def test_missing_profit_is_derived(self):
        row = coerce_row({"selling_price": "100", "cost_price": "70", "quantity": 1})
        assert row.profit == Decimal("30")
        assert row.coerced_fields == 0

    def test_non_mapping_returns_none(self):
        assert coerce_row("garbage") is None
        assert coerce_row(42) is None

    def test_model_rows_accepted(self):
        row = coerce_row(make_record(selling_price="200", cost_price="150"))
        assert row.selling_price == Decimal("200")
        assert row.status == DeliveryStatus.COMPLETED

    def test_status_labels_resolve(self):
        assert coerce_row(make_row(status="Selesai")).status == DeliveryStatus.COMPLETED
        assert coerce_row(make_row(status="Batal")).status == DeliveryStatus.CANCELLED
        assert coerce_row(make_row(status="unknown")).status is None

    def test_sku_reference_alias(self):
        row = coerce_row({"sku_reference": "SKU-9", "selling_price": 1, "profit": 1, "quantity": 1})
        assert row.get("product_sku") == "SKU-9"


# ============================================================================
# Row Aggregator
# ============================================================================


class TestAggregate:
    """Test aggregate() sums and derived ratios."""

    def test_empty_rows_all_zero(self):
        result = aggregate([])
        assert result == Aggregate()
        assert result.total_revenue == 0
        assert result.profit_margin == 0
        assert result.avg_order_value == 0
        assert result.completion_rate == 0

    def test_reference_scenario_current_period(self):
        rows = [
            make_row(100, 20, DeliveryStatus.COMPLETED),
            make_row(50, -5, DeliveryStatus.CANCELLED),
        ]
        result = aggregate(rows)
        assert result.total_revenue == Decimal("150")
        assert result.completed_revenue == Decimal("100")
        assert result.total_profit == Decimal("15")
        assert result.profit_margin == Decimal("10")
        assert result.transaction_count == 2
        assert result.completed_count == 1
        assert result.completion_rate == Decimal("50")
        assert result.avg_order_value == Decimal("100")

    def test_status_breakdown(self):
        rows = [
            make_row(100, 10, DeliveryStatus.COMPLETED),
            make_row(40, 5, DeliveryStatus.COMPLETED),
            make_row(30, 3, DeliveryStatus.RETURNED),
        ]
        result = aggregate(rows)
        assert result.status_counts == {"completed": 2, "returned": 1}
        assert result.status_revenue["completed"] == Decimal("140")

    def test_custom_completed_statuses(self):
        rows = [make_row(100, 10, DeliveryStatus.COMPLETED), make_row(60, 6, DeliveryStatus.SHIPPING)]
        result = aggregate(rows, completed_statuses=["completed", "Sedang Dikirim"])
        assert result.completed_count == 2
        assert result.completed_revenue == Decimal("160")

    def test_malformed_rows_do_not_abort(self):
        rows = [
            make_row(100, 20),
            make_row("not-a-number", 5),
            "not a row",
            None,
        ]
        result = aggregate(rows)
        assert result.transaction_count == 2
        assert result.total_revenue == Decimal("100")
        assert result.skipped_rows == 2
        assert result.coerced_fields >= 1

    def test_missing_status_counts_but_not_completed(self):
        result = aggregate([make_row(100, 10, status=None)])
        assert result.transaction_count == 1
        assert result.completed_count == 0
        assert result.status_counts == {}


class TestGroupedAggregate:
    """Test aggregate(group_by=...) partitioning."""

    def test_partitions_by_key(self):
        rows = [
            make_row(100, 10, platform_id="shopee"),
            make_row(50, 5, platform_id="tokopedia"),
            make_row(25, 5, platform_id="shopee"),
        ]
        groups = aggregate(rows, group_by="platform_id")
        assert set(groups) == {"shopee", "tokopedia"}
        assert groups["shopee"].total_revenue == Decimal("125")
        assert groups["shopee"].transaction_count == 2
        assert sum(g.transaction_count for g in groups.values()) == len(rows)

    def test_missing_key_goes_to_unknown_group(self):
        rows = [make_row(100, 10, platform_id=None), make_row(10, 1, platform_id="  ")]
        groups = aggregate(rows, group_by="platform_id")
        assert list(groups) == [UNKNOWN_GROUP]
        assert groups[UNKNOWN_GROUP].transaction_count == 2

    def test_label_and_first_last_seen(self):
        rows = [
            make_row(100, 10, product_sku="SKU-A", product_name="Kemeja", occurred_at=NOW - timedelta(days=3)),
            make_row(100, 10, product_sku="SKU-A", product_name="Kemeja v2", occurred_at=NOW),
        ]
        group = aggregate(rows, group_by="product_sku", label_field="product_name")["SKU-A"]
        assert group.label == "Kemeja"
        assert group.first_seen == NOW - timedelta(days=3)
        assert group.last_seen == NOW

    def test_empty_rows_give_empty_dict(self):
        assert aggregate([], group_by="platform_id") == {}


class TestRankGroups:
    """Test deterministic ranking."""

    def test_descending_by_revenue(self):
        groups = [make_group("a", 10), make_group("b", 30), make_group("c", 20)]
        assert [g.group_key for g in rank_groups(groups)] == ["b", "c", "a"]

    def test_ties_break_by_key(self):
        groups = {k: make_group(k, 50) for k in ("zeta", "alpha", "mid")}
        assert [g.group_key for g in rank_groups(groups)] == ["alpha", "mid", "zeta"]

    def test_rank_by_units(self):
        groups = [make_group("a", 10, total_units=5), make_group("b", 30, total_units=1)]
        assert [g.group_key for g in rank_groups(groups, by=RankMetric.UNITS)] == ["a", "b"]

    def test_unknown_metric_rejected(self):
        with pytest.raises(ValueError):
            rank_groups([make_group("a", 1)], by="popularity")


class TestSeries:
    """Test monthly and daily bucketing."""

    def test_monthly_series_sorted(self):
        rows = [
            make_row(100, 10, occurred_at=datetime(2024, 3, 5)),
            make_row(50, 5, occurred_at=datetime(2024, 1, 20)),
            make_row(25, 5, occurred_at=datetime(2024, 3, 28)),
        ]
        series = build_monthly_series(rows)
        assert [m.group_key for m in series] == ["2024-01", "2024-03"]
        assert series[1].total_revenue == Decimal("125")

    def test_daily_series_ignores_untimed_rows(self):
        rows = [make_row(100, 10, occurred_at=datetime(2024, 3, 5, 9)), make_row(5, 1, occurred_at=None)]
        series = build_daily_series(rows)
        assert [d.group_key for d in series] == ["2024-03-05"]


# ============================================================================
# Change Calculator
# ============================================================================


class TestChanges:
    """Test percent change and the zero-baseline policy."""

    def test_percent_change_basic(self):
        assert percent_change(Decimal("100"), Decimal("80")) == Decimal("25")
        assert percent_change(60, 80) == Decimal("-25")

    def test_zero_baseline_policy(self):
        assert percent_change(0, 0) == 0
        assert percent_change(10, 0) == Decimal("100")
        assert percent_change(-10, 0) == Decimal("100")
        assert percent_change(10, 0, zero_baseline=0) == 0

    def test_negative_baseline_uses_magnitude(self):
        assert percent_change(-50, -100) == Decimal("50")

    def test_reference_scenario_completed_revenue_change(self):
        current = aggregate(
            [make_row(100, 20, DeliveryStatus.COMPLETED), make_row(50, -5, DeliveryStatus.CANCELLED)]
        )
        previous = aggregate([make_row(80, 10, DeliveryStatus.COMPLETED)])
        changes = compare(current, previous)
        change = changes["completed_revenue"]
        assert change.value == Decimal("25")
        assert change.direction == ChangeDirection.INCREASE
        assert change.current == Decimal("100")
        assert change.previous == Decimal("80")

    def test_compare_covers_all_metrics_in_order(self):
        changes = compare(Aggregate(), Aggregate())
        assert tuple(changes) == COMPARED_METRICS

    def test_compare_identical_is_flat(self):
        agg = aggregate([make_row(100, 20), make_row(30, 3, DeliveryStatus.RETURNED)])
        for change in compare(agg, agg).values():
            assert change.value == 0
            assert change.direction == ChangeDirection.FLAT

    def test_growth_rate_uses_last_two_points(self):
        series = build_monthly_series(
            [
                make_row(100, 10, occurred_at=datetime(2024, 1, 5)),
                make_row(100, 20, occurred_at=datetime(2024, 2, 5)),
                make_row(100, 30, occurred_at=datetime(2024, 3, 5)),
            ]
        )
        assert growth_rate(series) == Decimal("50")

    def test_growth_rate_short_series(self):
        assert growth_rate([]) == 0
        assert growth_rate([make_group("2024-01", 10)]) == 0


# ============================================================================
# Insight Generator
# ============================================================================


class TestMarginInsight:
    def test_reference_scenario_healthy_margin(self, thresholds):
        current = Aggregate(total_revenue=Decimal("1000"), total_profit=Decimal("300"), profit_margin=Decimal("30"))
        insight = margin_insight(current, thresholds)
        assert insight.value == Decimal("30")
        assert insight.sentiment == Sentiment.POSITIVE
        assert insight.actionable is False
        assert insight.recommendations == []

    def test_margin_from_aggregated_rows(self, thresholds):
        current = aggregate([make_row(1000, 300)])
        assert margin_insight(current, thresholds).sentiment == Sentiment.POSITIVE

    def test_low_margin_is_actionable_high_priority(self, thresholds):
        insight = margin_insight(Aggregate(profit_margin=Decimal("5")), thresholds)
        assert insight.sentiment == Sentiment.NEGATIVE
        assert insight.actionable is True
        assert insight.priority == Priority.HIGH
        assert insight.recommendations

    def test_normal_margin_is_neutral(self, thresholds):
        insight = margin_insight(Aggregate(profit_margin=Decimal("20")), thresholds)
        assert insight.sentiment == Sentiment.NEUTRAL
        assert insight.priority == Priority.LOW


class TestConcentrationInsight:
    def test_reference_scenario_top_five_hold_ninety_percent(self, thresholds):
        current = Aggregate(total_revenue=Decimal("1000"))
        groups = [make_group(f"p{i}", 180) for i in range(5)] + [
            make_group(f"tail{i}", 20) for i in range(5)
        ]
        insight = concentration_insight(current, groups, thresholds)
        assert insight.value == Decimal("90")
        assert insight.sentiment == Sentiment.NEGATIVE
        assert insight.actionable is True
        assert insight.priority == Priority.HIGH

    def test_only_top_n_counted(self, thresholds):
        current = Aggregate(total_revenue=Decimal("100"))
        groups = [make_group(f"p{i}", 10) for i in range(10)]
        insight = concentration_insight(current, groups, thresholds)
        assert insight.value == Decimal("50")
        assert insight.sentiment == Sentiment.POSITIVE
        assert insight.actionable is False

    def test_zero_revenue_is_zero_share(self, thresholds):
        insight = concentration_insight(Aggregate(), [], thresholds)
        assert insight.value == 0


class TestGrowthAndGapInsights:
    def test_strong_growth_positive(self, thresholds):
        insight = revenue_growth_insight(
            Aggregate(total_revenue=Decimal("120")), Aggregate(total_revenue=Decimal("100")), thresholds
        )
        assert insight.value == Decimal("20")
        assert insight.sentiment == Sentiment.POSITIVE
        assert insight.actionable is False

    def test_flat_growth_neutral(self, thresholds):
        insight = revenue_growth_insight(
            Aggregate(total_revenue=Decimal("100")), Aggregate(total_revenue=Decimal("100")), thresholds
        )
        assert insight.sentiment == Sentiment.NEUTRAL
        assert insight.priority == Priority.LOW

    def test_sharp_decline_high_priority(self, thresholds):
        insight = revenue_growth_insight(
            Aggregate(total_revenue=Decimal("50")), Aggregate(total_revenue=Decimal("100")), thresholds
        )
        assert insight.sentiment == Sentiment.NEGATIVE
        assert insight.priority == Priority.HIGH
        assert insight.actionable is True

    def test_platform_gap(self, thresholds):
        ranked = [make_group("shopee", 1000, label="Shopee"), make_group("lazada", 200, label="Lazada")]
        insight = platform_gap_insight(ranked, thresholds)
        assert insight.value == Decimal("80")
        assert insight.actionable is True
        assert insight.priority == Priority.HIGH
        assert "Shopee" in insight.description

    @pytest.mark.parametrize(
        "bottom,actionable,priority",
        [
            (50, False, Priority.MEDIUM),
            (40, True, Priority.MEDIUM),
            (30, True, Priority.MEDIUM),
            (25, True, Priority.HIGH),
        ],
    )
    def test_platform_gap_boundaries(self, thresholds, bottom, actionable, priority):
        """Gaps of exactly 50% and 70% sit on the lower side of each cutoff."""
        ranked = [make_group("shopee", 100), make_group("lazada", bottom)]
        insight = platform_gap_insight(ranked, thresholds)
        assert insight.value == Decimal(100 - bottom)
        assert insight.actionable is actionable
        assert insight.priority == priority
        assert bool(insight.recommendations) is actionable


class TestGenerateInsights:
    def test_minimal_inputs_give_concentration_and_margin(self, thresholds):
        insights = generate_insights(Aggregate(), thresholds=thresholds)
        assert {i.type for i in insights} == {InsightType.PRODUCT_CONCENTRATION, InsightType.PROFIT_MARGIN}

    def test_all_inputs_give_five_insights_sorted_by_priority(self, thresholds):
        current = aggregate([make_row(1000, 50)])
        previous = aggregate([make_row(2000, 100)])
        ranked = [make_group("a", 900), make_group("b", 100)]
        monthly = [make_group(f"2024-{m:02d}", 100 * m) for m in range(1, 8)]
        insights = generate_insights(
            current, previous=previous, ranked_groups=ranked, monthly_series=monthly, thresholds=thresholds
        )
        assert len(insights) == 5
        ranks = [i.priority.rank for i in insights]
        assert ranks == sorted(ranks)

    def test_short_monthly_series_suppresses_seasonality(self, thresholds):
        monthly = [make_group(f"2024-{m:02d}", 100) for m in range(1, 4)]
        insights = generate_insights(Aggregate(), monthly_series=monthly, thresholds=thresholds)
        assert InsightType.SEASONALITY not in {i.type for i in insights}

    def test_equal_priorities_keep_generation_order(self, thresholds):
        """Gap, concentration and seasonality all medium; margin low."""
        current = Aggregate(total_revenue=Decimal("100"), profit_margin=Decimal("20"))
        ranked = [make_group("shopee", 100), make_group("lazada", 40)]
        products = [make_group("SKU-A", 40), make_group("SKU-B", 30)]
        monthly = [make_group(f"2024-{m:02d}", 100) for m in range(1, 7)]

        insights = generate_insights(
            current,
            ranked_groups=ranked,
            monthly_series=monthly,
            concentration_groups=products,
            thresholds=thresholds,
        )

        assert [i.type for i in insights] == [
            InsightType.PLATFORM_PERFORMANCE,
            InsightType.PRODUCT_CONCENTRATION,
            InsightType.SEASONALITY,
            InsightType.PROFIT_MARGIN,
        ]
        assert [i.priority for i in insights] == [Priority.MEDIUM] * 3 + [Priority.LOW]

    def test_seasonality_needs_six_months(self, thresholds):
        five = [make_group(f"2024-{m:02d}", 100) for m in range(1, 6)]
        six = five + [make_group("2024-06", 100)]
        assert InsightType.SEASONALITY not in {
            i.type for i in generate_insights(Aggregate(), monthly_series=five, thresholds=thresholds)
        }
        assert InsightType.SEASONALITY in {
            i.type for i in generate_insights(Aggregate(), monthly_series=six, thresholds=thresholds)
        }

    @pytest.mark.parametrize(
        "low,high,cv,actionable",
        [
            (100, 100, 0, False),
            (70, 130, 30, False),
            (50, 150, 50, True),
        ],
    )
    def test_seasonality_actionable_above_thirty_percent(self, thresholds, low, high, cv, actionable):
        monthly = [make_group(f"2024-{m:02d}", low if m % 2 else high) for m in range(1, 7)]
        insights = generate_insights(Aggregate(), monthly_series=monthly, thresholds=thresholds)
        seasonality = next(i for i in insights if i.type == InsightType.SEASONALITY)
        assert seasonality.value == Decimal(cv)
        assert seasonality.actionable is actionable
        assert seasonality.priority == Priority.MEDIUM

    def test_coefficient_of_variation(self):
        assert coefficient_of_variation([]) == 0
        assert coefficient_of_variation([Decimal("0"), Decimal("0")]) == 0
        assert coefficient_of_variation([Decimal("10"), Decimal("10")]) == 0
        assert coefficient_of_variation([Decimal("5"), Decimal("15")]) == Decimal("50")

    def test_thresholds_are_overridable(self):
        strict = InsightThresholds(margin_positive_pct=40, margin_neutral_pct=35, margin_critical_pct=10)
        insight = margin_insight(Aggregate(profit_margin=Decimal("30")), strict)
        assert insight.sentiment == Sentiment.NEGATIVE
        assert insight.actionable is True

    def test_threshold_bands_validated(self):
        with pytest.raises(ValueError):
            InsightThresholds(margin_neutral_pct=30, margin_positive_pct=20)
