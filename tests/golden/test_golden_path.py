"""
Golden Path (End-to-End) Tests for MarketPulse.

A fixed marketplace export goes through the whole pipeline: CSV import,
period summary, platform and product rankings, store profit, insights and
every report format. Expected numbers are computed by hand from the
dataset below.

Dataset (reference instant NOW = 2024-06-30 12:00, 30-day window):
    current  [2024-05-31 12:00, 2024-06-30 12:00]
        G-1  shopee/store-1     Kemeja  200000 / 150000  Selesai
        G-2  shopee/store-1     Celana  300000 / 240000  Selesai (2 units)
        G-3  tokopedia/store-3  Kemeja  100000 /  70000  Sedang Dikirim
        G-4  tokopedia/store-3  Topi     50000 /  30000  Batal
        G-5  shopee/store-2     Celana  100000 /  80000  Selesai, exactly at the window start
    previous [2024-05-01 12:00, 2024-05-31 12:00)
        G-0  shopee/store-1     Kemeja  500000 / 400000  Selesai
"""

import io
from datetime import date
from decimal import Decimal

import pandas as pd
import pytest

from marketpulse.models.catalog import AdExpense, Platform, Store
from marketpulse.models.enums import (
    ChangeDirection,
    InsightType,
    Priority,
    RankMetric,
    Sentiment,
    UploadStatus,
)
from marketpulse.models.exports import ExportOptions
from marketpulse.services import exporters
from marketpulse.services.analytics_service import AnalyticsService
from marketpulse.services.import_service import CSVImportService
from marketpulse.storage.duckdb_storage import DuckDBStorage
from tests.conftest import NOW, csv_row, make_csv, make_session

GOLDEN_ROWS = [
    csv_row("G-0", sku_reference="SKU-A", product_name="Kemeja", quantity="1",
            selling_price="500000", cost_price="400000", order_created_at="2024-05-20 10:00:00"),
    csv_row("G-1", sku_reference="SKU-A", product_name="Kemeja", quantity="1",
            selling_price="200000", cost_price="150000", order_created_at="2024-06-10 09:00:00"),
    csv_row("G-2", sku_reference="SKU-B", product_name="Celana", quantity="2",
            selling_price="300000", cost_price="240000", order_created_at="2024-06-15 14:00:00"),
    csv_row("G-3", sku_reference="SKU-A", product_name="Kemeja", quantity="1",
            selling_price="100000", cost_price="70000", delivery_status="Sedang Dikirim",
            order_created_at="2024-06-20 08:00:00", platform_id="tokopedia", store_id="store-3"),
    csv_row("G-4", sku_reference="SKU-C", product_name="Topi", quantity="1",
            selling_price="50000", cost_price="30000", delivery_status="Batal",
            order_created_at="2024-06-25 10:00:00", platform_id="tokopedia", store_id="store-3"),
    csv_row("G-5", sku_reference="SKU-B", product_name="Celana", quantity="1",
            selling_price="100000", cost_price="80000", order_created_at="2024-05-31 12:00:00",
            store_id="store-2"),
]


def _seed_catalog(storage):
    storage.create_platform(Platform(id="shopee", platform_name="Shopee", platform_code="SHP"))
    storage.create_platform(Platform(id="tokopedia", platform_name="Tokopedia", platform_code="TKP"))
    storage.create_store(Store(id="store-1", store_name="Toko Utama", platform_id="shopee"))
    storage.create_store(Store(id="store-2", store_name="Toko Kedua", platform_id="shopee"))
    storage.create_store(Store(id="store-3", store_name="Toko Tokped", platform_id="tokopedia"))
    storage.create_ad_expense(
        AdExpense(expense_date=date(2024, 6, 12), platform_id="shopee", store_id="store-1", amount=Decimal("20000"))
    )


@pytest.fixture
def golden_storage(mock_storage):
    _seed_catalog(mock_storage)
    result = CSVImportService(mock_storage).import_csv(
        make_csv(GOLDEN_ROWS), "golden.csv", make_session()
    )
    assert result.status == UploadStatus.COMPLETED
    assert result.inserted_rows == 6
    return mock_storage


# ============================================================================
# Scenario 1: Import -> Summary
# ============================================================================


def test_golden_summary_totals(golden_storage):
    """
    Golden path: the 30-day summary over the fixed dataset.

    The row stamped exactly at the window start belongs to the current
    period and is not double counted in the previous one.
    """
    data = AnalyticsService(golden_storage).summary("30d", now=NOW)
    current, previous, changes = data["current"], data["previous"], data["changes"]

    assert current.total_revenue == Decimal("750000")
    assert current.total_profit == Decimal("180000")
    assert current.transaction_count == 5
    assert current.completed_count == 3
    assert current.avg_order_value == Decimal("200000")
    assert current.profit_margin == Decimal("24")
    assert current.completion_rate == Decimal("60")

    assert previous.total_revenue == Decimal("500000")
    assert previous.transaction_count == 1

    assert changes["total_revenue"].value == Decimal("50")
    assert changes["total_revenue"].direction == ChangeDirection.INCREASE
    assert changes["transaction_count"].value == Decimal("400")
    assert changes["total_profit"].value == Decimal("80")


# ============================================================================
# Scenario 2: Rankings
# ============================================================================


def test_golden_platform_ranking(golden_storage):
    data = AnalyticsService(golden_storage).platform_performance("30d", now=NOW)
    platforms = data["platforms"]

    assert [p["platform_name"] for p in platforms] == ["Shopee", "Tokopedia"]
    assert platforms[0]["total_revenue"] == 600000
    assert platforms[0]["revenue_growth"]["value"] == 20
    # No previous Tokopedia sales: zero baseline
    assert platforms[1]["revenue_growth"]["value"] == 100


def test_golden_product_ranking(golden_storage):
    service = AnalyticsService(golden_storage)

    by_revenue = service.product_performance("30d", now=NOW)
    assert [p.group_key for p in by_revenue["products"]] == ["SKU-B", "SKU-A", "SKU-C"]
    assert by_revenue["products"][0].label == "Celana"
    assert by_revenue["products"][0].total_units == 3
    assert by_revenue["summary"]["total_revenue"] == Decimal("750000")

    by_margin = service.product_performance("30d", sort_by=RankMetric.MARGIN, limit=1, now=NOW)
    # SKU-C margin 40%, SKU-A 26.67%, SKU-B 20%
    assert [p.group_key for p in by_margin["products"]] == ["SKU-C"]
    assert by_margin["summary"]["total_products"] == 3


def test_golden_store_profit(golden_storage):
    data = AnalyticsService(golden_storage).store_profit("30d", now=NOW)
    stores = {s["store_id"]: s for s in data["stores"]}

    assert stores["store-1"]["gross_profit"] == Decimal("110000")
    assert stores["store-1"]["total_ad_cost"] == Decimal("20000")
    assert stores["store-1"]["net_profit"] == Decimal("90000")
    assert stores["store-2"]["net_profit"] == Decimal("20000")
    # Shipping and cancelled orders carry no completed profit
    assert stores["store-3"]["gross_profit"] == Decimal("0")
    assert [s["store_id"] for s in data["stores"]] == ["store-1", "store-2", "store-3"]
    assert data["totals"]["net_profit"] == Decimal("110000")


# ============================================================================
# Scenario 3: Insights
# ============================================================================


def test_golden_insights(golden_storage):
    """
    Golden path: insight set and ordering for the fixed dataset.

    - Platform gap (600000 - 150000) / 600000 = 75%: actionable, high
    - Three products hold 100% of revenue: negative, actionable, high
    - Revenue growth 50%: positive, low
    - Margin 24%: neutral, low
    """
    insights = AnalyticsService(golden_storage).insights("30d", now=NOW)["insights"]
    by_type = {i.type: i for i in insights}

    assert [i.type for i in insights] == [
        InsightType.PLATFORM_PERFORMANCE,
        InsightType.PRODUCT_CONCENTRATION,
        InsightType.REVENUE_GROWTH,
        InsightType.PROFIT_MARGIN,
    ]

    gap = by_type[InsightType.PLATFORM_PERFORMANCE]
    assert gap.value == Decimal("75")
    assert gap.actionable
    assert gap.priority == Priority.HIGH

    concentration = by_type[InsightType.PRODUCT_CONCENTRATION]
    assert concentration.sentiment == Sentiment.NEGATIVE
    assert concentration.recommendations

    growth = by_type[InsightType.REVENUE_GROWTH]
    assert growth.sentiment == Sentiment.POSITIVE
    assert not growth.actionable

    margin = by_type[InsightType.PROFIT_MARGIN]
    assert margin.sentiment == Sentiment.NEUTRAL
    assert margin.priority == Priority.LOW


# ============================================================================
# Scenario 4: Reports
# ============================================================================


def test_golden_reports(golden_storage):
    data = AnalyticsService(golden_storage).build_export_data("30d", now=NOW)

    assert data.summary.top_platform == "Shopee"
    assert data.summary.top_product == "Celana"
    assert [t.order_number for t in data.transactions] == ["G-4", "G-3", "G-2", "G-1", "G-5"]

    frame = pd.read_csv(io.BytesIO(exporters.render_csv(data)))
    assert frame["selling_price"].sum() == 750000
    assert set(frame["status"]) == {"Selesai", "Sedang Dikirim", "Batal"}

    sheets = pd.read_excel(io.BytesIO(exporters.render_excel(data)), sheet_name=None, engine="openpyxl")
    assert list(sheets["Platforms"]["platform"]) == ["Shopee", "Tokopedia"]

    assert exporters.render_pdf(data).startswith(b"%PDF")

    text = exporters.render_whatsapp(data, ExportOptions(include_emoji=False))
    assert text.splitlines() == [
        "*Sales Report*",
        "31 May 2024 - 30 Jun 2024",
        "",
        "Revenue: Rp 750.000",
        "Profit: Rp 180.000",
        "Transactions: 5",
        "Margin: 24.0%",
        "Avg order: Rp 200.000",
        "",
        "Revenue growth: +50.0%",
        "Transaction growth: +400.0%",
        "",
        "Top platform: Shopee",
        "Top product: Celana",
        "",
        "_Generated 2024-06-30 12:00_",
    ]


# ============================================================================
# Scenario 5: Same pipeline on DuckDB
# ============================================================================


def test_golden_duckdb_matches_memory(tmp_path, golden_storage):
    """
    Golden path: importing the dataset into a real DuckDB file gives the
    same summary and store profit as the in-memory backend.
    """
    storage = DuckDBStorage(db_path=str(tmp_path / "golden.duckdb"))
    _seed_catalog(storage)
    result = CSVImportService(storage).import_csv(make_csv(GOLDEN_ROWS), "golden.csv", make_session())
    assert result.inserted_rows == 6

    duck = AnalyticsService(storage)
    memory = AnalyticsService(golden_storage)

    duck_summary = duck.summary("30d", now=NOW)
    memory_summary = memory.summary("30d", now=NOW)
    assert duck_summary["current"].total_revenue == memory_summary["current"].total_revenue
    assert duck_summary["previous"].total_revenue == memory_summary["previous"].total_revenue
    assert duck_summary["changes"]["total_revenue"].value == Decimal("50")

    duck_profit = duck.store_profit("30d", now=NOW)
    assert duck_profit["totals"] == memory.store_profit("30d", now=NOW)["totals"]

    reimport = CSVImportService(storage).import_csv(make_csv(GOLDEN_ROWS), "golden.csv", make_session())
    assert reimport.inserted_rows == 0
    assert reimport.duplicate_rows == 6
