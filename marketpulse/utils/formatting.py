"""
Presentation helpers. The only place analytics values get rounded.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

Number = Union[Decimal, int, float]


def _decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_decimal(value: Number, places: int = 2) -> Decimal:
    """Round half-up to ``places`` decimal places."""
    quantum = Decimal(1).scaleb(-places)
    return _decimal(value).quantize(quantum, rounding=ROUND_HALF_UP)


def format_percent(value: Number, places: int = 1) -> str:
    """12.345 -> '12.3%'."""
    return f"{round_decimal(value, places)}%"


def format_number(value: Number) -> str:
    """Whole number with '.' thousands separators (id-ID style): 1234567 -> '1.234.567'."""
    whole = round_decimal(value, 0)
    return f"{whole:,.0f}".replace(",", ".")


def format_currency(value: Number, symbol: str = "Rp") -> str:
    """Whole-unit currency: 1234567 -> 'Rp 1.234.567', -500 -> '-Rp 500'."""
    amount = round_decimal(value, 0)
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol} {format_number(abs(amount))}"


def format_compact(value: Number) -> str:
    """1_500_000 -> '1.5M', 2500 -> '2.5K'."""
    amount = _decimal(value)
    if abs(amount) >= 1_000_000:
        return f"{round_decimal(amount / 1_000_000, 1)}M"
    if abs(amount) >= 1_000:
        return f"{round_decimal(amount / 1_000, 1)}K"
    return str(round_decimal(amount, 0))
