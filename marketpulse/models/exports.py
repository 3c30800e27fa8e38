"""
Report export models.

``ExportData`` is the presentation-ready bundle every exporter renders; it
is assembled once by the analytics service so CSV, Excel, PDF and WhatsApp
outputs always agree.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from marketpulse.models.analytics import Money, Percent


class ExportSummary(BaseModel):
    total_revenue: Money
    total_profit: Money
    total_transactions: int
    avg_order_value: Money
    profit_margin: Percent
    top_platform: str
    top_product: str


class DateRange(BaseModel):
    start: datetime
    end: datetime


class PlatformPerformanceRow(BaseModel):
    name: str
    revenue: Money
    profit: Money
    profit_margin: Percent
    transactions: int
    completion_rate: Percent


class ProductRow(BaseModel):
    name: str
    sku: str
    quantity_sold: int
    revenue: Money
    profit: Money
    profit_margin: Percent


class TransactionRow(BaseModel):
    order_date: str
    platform: str
    store: str
    order_number: str
    product_name: str
    quantity: int
    cost_price: Money
    selling_price: Money
    profit: Money
    status: str


class GrowthSummary(BaseModel):
    revenue: Percent
    transactions: Percent
    profit: Percent


class MonthlyTrendRow(BaseModel):
    month: str
    revenue: Money
    profit: Money
    transactions: int


class ExportData(BaseModel):
    """Everything a report needs, already aggregated."""

    generated_at: datetime
    timeframe: str
    summary: ExportSummary
    date_range: DateRange
    platform_performance: list[PlatformPerformanceRow] = Field(default_factory=list)
    top_products: list[ProductRow] = Field(default_factory=list)
    transactions: list[TransactionRow] = Field(default_factory=list)
    growth: Optional[GrowthSummary] = None
    monthly_trend: list[MonthlyTrendRow] = Field(default_factory=list)


class ExportOptions(BaseModel):
    """Rendering switches shared by the exporters."""

    delimiter: str = Field(default=",", description="CSV field delimiter")
    include_headers: bool = Field(default=True, description="Write the CSV header row")
    multiple_sheets: bool = Field(default=True, description="Excel: one sheet per section")
    include_emoji: bool = Field(default=True, description="WhatsApp: decorate lines with emoji")
    compact_format: bool = Field(default=False, description="WhatsApp: omit blank separator lines")
    key_metrics_only: bool = Field(default=False, description="WhatsApp: summary KPIs only")

    @field_validator("delimiter")
    @classmethod
    def validate_delimiter(cls, v: str) -> str:
        """CSV delimiters are a single character."""
        if v == "\\t":
            v = "\t"
        if len(v) != 1:
            raise ValueError("Delimiter must be a single character")
        return v
