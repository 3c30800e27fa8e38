"""
Report exporters.

Every renderer takes the same ``ExportData`` bundle so the CSV, Excel, PDF
and WhatsApp outputs agree on the numbers. Binary formats return bytes,
WhatsApp returns plain text.
"""

import io
from datetime import datetime
from decimal import Decimal
from typing import Optional

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import pandas as pd  # noqa: E402
from matplotlib.backends.backend_pdf import PdfPages  # noqa: E402

from marketpulse.engine.periods import utcnow  # noqa: E402
from marketpulse.models.exports import ExportData, ExportOptions  # noqa: E402
from marketpulse.utils.formatting import format_currency, format_number, format_percent  # noqa: E402
from marketpulse.utils.logging import get_logger  # noqa: E402

logger = get_logger(__name__)

CSV_COLUMNS = [
    "date",
    "platform",
    "store",
    "order_number",
    "product",
    "quantity",
    "cost_price",
    "selling_price",
    "profit",
    "status",
]

MEDIA_TYPES = {
    "csv": "text/csv",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "pdf": "application/pdf",
    "txt": "text/plain",
}


def export_filename(ext: str, now: Optional[datetime] = None) -> str:
    """Download name such as ``sales-report-20240315-0930.csv``."""
    now = now or utcnow()
    return f"sales-report-{now.strftime('%Y%m%d-%H%M')}.{ext}"


def _float(value: Decimal) -> float:
    return float(value)


def _transactions_frame(data: ExportData) -> pd.DataFrame:
    rows = [
        {
            "date": t.order_date,
            "platform": t.platform,
            "store": t.store,
            "order_number": t.order_number,
            "product": t.product_name,
            "quantity": t.quantity,
            "cost_price": _float(t.cost_price),
            "selling_price": _float(t.selling_price),
            "profit": _float(t.profit),
            "status": t.status,
        }
        for t in data.transactions
    ]
    return pd.DataFrame(rows, columns=CSV_COLUMNS)


def _summary_frame(data: ExportData) -> pd.DataFrame:
    s = data.summary
    rows = [
        ("Period", data.timeframe),
        ("Start", data.date_range.start.strftime("%Y-%m-%d")),
        ("End", data.date_range.end.strftime("%Y-%m-%d")),
        ("Total revenue", _float(s.total_revenue)),
        ("Total profit", _float(s.total_profit)),
        ("Transactions", s.total_transactions),
        ("Average order value", _float(s.avg_order_value)),
        ("Profit margin (%)", _float(s.profit_margin)),
        ("Top platform", s.top_platform),
        ("Top product", s.top_product),
    ]
    if data.growth is not None:
        rows += [
            ("Revenue growth (%)", _float(data.growth.revenue)),
            ("Transaction growth (%)", _float(data.growth.transactions)),
            ("Profit growth (%)", _float(data.growth.profit)),
        ]
    rows.append(("Generated at", data.generated_at.strftime("%Y-%m-%d %H:%M")))
    return pd.DataFrame(rows, columns=["metric", "value"])


def _platforms_frame(data: ExportData) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "platform": p.name,
                "revenue": _float(p.revenue),
                "profit": _float(p.profit),
                "profit_margin": _float(p.profit_margin),
                "transactions": p.transactions,
                "completion_rate": _float(p.completion_rate),
            }
            for p in data.platform_performance
        ],
        columns=["platform", "revenue", "profit", "profit_margin", "transactions", "completion_rate"],
    )


def _products_frame(data: ExportData) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "product": p.name,
                "sku": p.sku,
                "quantity_sold": p.quantity_sold,
                "revenue": _float(p.revenue),
                "profit": _float(p.profit),
                "profit_margin": _float(p.profit_margin),
            }
            for p in data.top_products
        ],
        columns=["product", "sku", "quantity_sold", "revenue", "profit", "profit_margin"],
    )


def _monthly_frame(data: ExportData) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "month": m.month,
                "revenue": _float(m.revenue),
                "profit": _float(m.profit),
                "transactions": m.transactions,
            }
            for m in data.monthly_trend
        ],
        columns=["month", "revenue", "profit", "transactions"],
    )


def render_csv(data: ExportData, options: Optional[ExportOptions] = None) -> bytes:
    """Transactions as CSV, one row per order line."""
    options = options or ExportOptions()
    frame = _transactions_frame(data)
    text = frame.to_csv(index=False, sep=options.delimiter, header=options.include_headers)
    logger.info("export_rendered", format="csv", rows=len(frame))
    return text.encode("utf-8")


def render_excel(data: ExportData, options: Optional[ExportOptions] = None) -> bytes:
    """
    Workbook with a Summary sheet and, when ``multiple_sheets`` is set,
    Platforms, Products, Transactions and Monthly Trend sheets.

    Single-sheet mode stacks the summary and transactions on one "Report" sheet.
    """
    options = options or ExportOptions()
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        summary = _summary_frame(data)
        if options.multiple_sheets:
            summary.to_excel(writer, sheet_name="Summary", index=False)
            _platforms_frame(data).to_excel(writer, sheet_name="Platforms", index=False)
            _products_frame(data).to_excel(writer, sheet_name="Products", index=False)
            _transactions_frame(data).to_excel(writer, sheet_name="Transactions", index=False)
            _monthly_frame(data).to_excel(writer, sheet_name="Monthly Trend", index=False)
        else:
            summary.to_excel(writer, sheet_name="Report", index=False)
            _transactions_frame(data).to_excel(
                writer, sheet_name="Report", index=False, startrow=len(summary) + 2
            )
    logger.info(
        "export_rendered",
        format="xlsx",
        rows=len(data.transactions),
        multiple_sheets=options.multiple_sheets,
    )
    return buffer.getvalue()


def _table_page(pdf: PdfPages, title: str, frame: pd.DataFrame) -> None:
    fig, ax = plt.subplots(figsize=(11.69, 8.27))
    ax.axis("off")
    ax.set_title(title, fontsize=14, fontweight="bold", loc="left")
    if frame.empty:
        ax.text(0.5, 0.5, "No data for this period", ha="center", va="center")
    else:
        table = ax.table(
            cellText=frame.astype(str).values.tolist(),
            colLabels=list(frame.columns),
            loc="upper center",
            cellLoc="left",
        )
        table.auto_set_font_size(False)
        table.set_fontsize(8)
        table.scale(1, 1.3)
    pdf.savefig(fig)
    plt.close(fig)


def render_pdf(data: ExportData, currency_symbol: str = "Rp") -> bytes:
    """Summary page (KPI table plus platform revenue chart) and a top-products page."""
    s = data.summary
    kpis = [
        ["Total revenue", format_currency(s.total_revenue, currency_symbol)],
        ["Total profit", format_currency(s.total_profit, currency_symbol)],
        ["Transactions", format_number(s.total_transactions)],
        ["Average order value", format_currency(s.avg_order_value, currency_symbol)],
        ["Profit margin", format_percent(s.profit_margin)],
        ["Top platform", s.top_platform],
        ["Top product", s.top_product],
    ]
    if data.growth is not None:
        kpis.append(["Revenue growth", format_percent(data.growth.revenue)])

    buffer = io.BytesIO()
    with PdfPages(buffer) as pdf:
        fig, (ax_table, ax_chart) = plt.subplots(2, 1, figsize=(8.27, 11.69))
        fig.suptitle(
            f"Sales Report {data.date_range.start:%Y-%m-%d} to {data.date_range.end:%Y-%m-%d}",
            fontsize=14,
            fontweight="bold",
        )
        ax_table.axis("off")
        table = ax_table.table(cellText=kpis, colLabels=["Metric", "Value"], loc="center", cellLoc="left")
        table.auto_set_font_size(False)
        table.set_fontsize(10)
        table.scale(1, 1.5)

        names = [p.name for p in data.platform_performance]
        revenue = [_float(p.revenue) for p in data.platform_performance]
        if names:
            ax_chart.bar(names, revenue, color="#2563eb")
            ax_chart.set_ylabel(f"Revenue ({currency_symbol})")
            ax_chart.tick_params(axis="x", rotation=30)
        else:
            ax_chart.axis("off")
            ax_chart.text(0.5, 0.5, "No platform data", ha="center", va="center")
        ax_chart.set_title("Revenue by platform", loc="left")
        fig.tight_layout()
        pdf.savefig(fig)
        plt.close(fig)

        _table_page(pdf, "Top products", _products_frame(data))

    logger.info("export_rendered", format="pdf", platforms=len(data.platform_performance))
    return buffer.getvalue()


def _signed_percent(value: Decimal) -> str:
    text = format_percent(value)
    return text if value < 0 else f"+{text}"


def render_whatsapp(
    data: ExportData,
    options: Optional[ExportOptions] = None,
    currency_symbol: str = "Rp",
) -> str:
    """Short chat-friendly summary of the period."""
    options = options or ExportOptions()

    def line(emoji: str, text: str) -> str:
        return f"{emoji} {text}" if options.include_emoji else text

    s = data.summary
    blank = [] if options.compact_format else [""]
    lines = [
        line("📊", "*Sales Report*"),
        f"{data.date_range.start:%d %b %Y} - {data.date_range.end:%d %b %Y}",
        *blank,
        line("💰", f"Revenue: {format_currency(s.total_revenue, currency_symbol)}"),
        line("📈", f"Profit: {format_currency(s.total_profit, currency_symbol)}"),
        line("🛒", f"Transactions: {format_number(s.total_transactions)}"),
        line("📉" if s.profit_margin < 0 else "💹", f"Margin: {format_percent(s.profit_margin)}"),
    ]

    if not options.key_metrics_only:
        lines += [
            line("🧾", f"Avg order: {format_currency(s.avg_order_value, currency_symbol)}"),
        ]
        if data.growth is not None:
            lines += [
                *blank,
                line("🚀", f"Revenue growth: {_signed_percent(data.growth.revenue)}"),
                line("📦", f"Transaction growth: {_signed_percent(data.growth.transactions)}"),
            ]
        lines += [
            *blank,
            line("🏆", f"Top platform: {s.top_platform}"),
            line("⭐", f"Top product: {s.top_product}"),
        ]

    lines += [*blank, f"_Generated {data.generated_at:%Y-%m-%d %H:%M}_"]
    return "\n".join(lines)
