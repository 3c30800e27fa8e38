"""
Row coercion at the aggregation boundary.

Raw rows come from storage, CSV files, or callers. A malformed value must
never abort an aggregation, so every field is parsed explicitly:
unparseable money and quantities become zero and are counted, unknown
statuses become None, and inputs that are not rows at all are skipped.
"""

import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import BaseModel

from marketpulse.engine.periods import to_naive_utc
from marketpulse.models.enums import DeliveryStatus

ZERO = Decimal("0")

# Source-data spellings accepted alongside the canonical field names
FIELD_ALIASES = {
    "product_sku": ("product_sku", "sku_reference"),
    "occurred_at": ("occurred_at", "order_created_at"),
}


@dataclass(frozen=True)
class CoercedRow:
    """A row with every numeric field parsed. ``source`` keeps the original mapping."""

    selling_price: Decimal
    cost_price: Decimal
    profit: Decimal
    quantity: int
    status: Optional[DeliveryStatus]
    occurred_at: Optional[datetime]
    coerced_fields: int
    source: Mapping

    def get(self, key: str, default: Any = None) -> Any:
        """Read a raw field, honouring source-data aliases."""
        for name in FIELD_ALIASES.get(key, (key,)):
            value = self.source.get(name)
            if value is not None:
                return value
        return default


def parse_money(value: Any) -> tuple[Decimal, bool]:
    """
    Parse a money value.

    Returns:
        (amount, coerced) where coerced is True when the value was replaced by 0
    """
    if isinstance(value, bool) or value is None:
        return ZERO, True
    if isinstance(value, Decimal):
        return (value, False) if value.is_finite() else (ZERO, True)
    if isinstance(value, int):
        return Decimal(value), False
    if isinstance(value, float):
        if not math.isfinite(value):
            return ZERO, True
        return Decimal(str(value)), False
    if isinstance(value, str):
        text = value.strip()
        if text[:2].lower() == "rp":
            text = text[2:]
        text = text.replace(",", "").replace("_", "").replace(" ", "")
        if not text:
            return ZERO, True
        try:
            amount = Decimal(text)
        except InvalidOperation:
            return ZERO, True
        return (amount, False) if amount.is_finite() else (ZERO, True)
    return ZERO, True


def parse_quantity(value: Any) -> tuple[int, bool]:
    """Parse a unit count. Non-integral or unparseable values coerce to 0."""
    if isinstance(value, bool) or value is None:
        return 0, True
    if isinstance(value, int):
        return value, False
    if not isinstance(value, (float, Decimal, str)):
        return 0, True
    amount, coerced = parse_money(value)
    if coerced or amount != amount.to_integral_value():
        return 0, True
    return int(amount), False


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a datetime, date, or ISO-8601 string to naive UTC. Failures give None."""
    if isinstance(value, (datetime, date)):
        return to_naive_utc(value)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return to_naive_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def as_mapping(row: Any) -> Optional[Mapping]:
    """Return the row as a mapping, or None when it is not a row."""
    if isinstance(row, Mapping):
        return row
    if isinstance(row, BaseModel):
        return row.model_dump()
    return None


def coerce_row(row: Any) -> Optional[CoercedRow]:
    """
    Parse one raw row for aggregation.

    Returns None when ``row`` is not a mapping or model. A missing profit is
    derived as selling_price - cost_price; an unparseable one counts as
    coerced and is set to 0.
    """
    mapping = as_mapping(row)
    if mapping is None:
        return None

    coerced = 0
    selling, bad = parse_money(mapping.get("selling_price"))
    coerced += bad
    cost, bad = parse_money(mapping.get("cost_price"))
    coerced += bad

    raw_profit = mapping.get("profit")
    if raw_profit is None:
        profit = selling - cost
    else:
        profit, bad = parse_money(raw_profit)
        coerced += bad

    quantity, bad = parse_quantity(mapping.get("quantity"))
    coerced += bad

    occurred = mapping.get("occurred_at")
    if occurred is None:
        occurred = mapping.get("order_created_at")

    return CoercedRow(
        selling_price=selling,
        cost_price=cost,
        profit=profit,
        quantity=quantity,
        status=DeliveryStatus.from_label(mapping.get("delivery_status")),
        occurred_at=parse_timestamp(occurred),
        coerced_fields=coerced,
        source=mapping,
    )
