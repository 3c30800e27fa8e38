"""
Enumeration types for MarketPulse.

All enums inherit from str so they serialize to JSON without custom encoders
and compare equal to their raw values coming out of storage.
"""

from enum import Enum
from typing import Optional


class DeliveryStatus(str, Enum):
    """
    Fulfilment state of a sale line item.

    Marketplace exports label these in Indonesian; ``from_label`` accepts both
    the Indonesian labels and the English values.
    """

    COMPLETED = "completed"
    SHIPPING = "shipping"
    CANCELLED = "cancelled"
    RETURNED = "returned"
    PENDING_CONFIRMATION = "pending_confirmation"

    @property
    def label(self) -> str:
        """Marketplace (Indonesian) label for this status."""
        return STATUS_LABELS[self]

    @classmethod
    def from_label(cls, value: object) -> Optional["DeliveryStatus"]:
        """
        Resolve a status from an enum member, English value, or marketplace label.

        Returns None for missing or unrecognised values.
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        key = " ".join(value.strip().lower().replace("_", " ").split())
        if not key:
            return None
        return _STATUS_LOOKUP.get(key)


STATUS_LABELS = {
    DeliveryStatus.COMPLETED: "Selesai",
    DeliveryStatus.SHIPPING: "Sedang Dikirim",
    DeliveryStatus.CANCELLED: "Batal",
    DeliveryStatus.RETURNED: "Return",
    DeliveryStatus.PENDING_CONFIRMATION: "Menunggu Konfirmasi",
}

_STATUS_LOOKUP = {}
for _status, _label in STATUS_LABELS.items():
    _STATUS_LOOKUP[_label.lower()] = _status
    _STATUS_LOOKUP[_status.value.replace("_", " ")] = _status
_STATUS_LOOKUP["pending"] = DeliveryStatus.PENDING_CONFIRMATION
_STATUS_LOOKUP["canceled"] = DeliveryStatus.CANCELLED


class Timeframe(str, Enum):
    """Symbolic reporting windows."""

    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"
    LAST_90_DAYS = "90d"
    LAST_YEAR = "1y"


class ChangeDirection(str, Enum):
    """Direction of a period-over-period change."""

    INCREASE = "increase"
    DECREASE = "decrease"
    FLAT = "flat"


class Sentiment(str, Enum):
    """Tone of a business insight."""

    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class Priority(str, Enum):
    """Insight priority. Ordering is high > medium > low."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 0, "medium": 1, "low": 2}[self.value]


class InsightType(str, Enum):
    """Kinds of business insight produced by the insight generator."""

    REVENUE_GROWTH = "revenue_growth"
    PLATFORM_PERFORMANCE = "platform_performance"
    PRODUCT_CONCENTRATION = "product_concentration"
    PROFIT_MARGIN = "profit_margin"
    SEASONALITY = "seasonality"


class RankMetric(str, Enum):
    """Metrics groups can be ranked by."""

    REVENUE = "revenue"
    PROFIT = "profit"
    MARGIN = "margin"
    TRANSACTION_COUNT = "transaction_count"
    UNITS = "units"


class UserRole(str, Enum):
    """Access roles, highest first."""

    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    MANAGER = "manager"
    VIEWER = "viewer"

    @property
    def level(self) -> int:
        return {"super_admin": 3, "admin": 2, "manager": 1, "viewer": 0}[self.value]

    def at_least(self, other: "UserRole") -> bool:
        """True when this role grants everything ``other`` grants."""
        return self.level >= other.level


class DuplicateOption(str, Enum):
    """How CSV import treats order numbers that already exist."""

    SKIP = "skip"
    OVERWRITE = "overwrite"


class UploadStatus(str, Enum):
    """Lifecycle of an upload batch."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class ExportFormat(str, Enum):
    """Report export targets."""

    CSV = "csv"
    EXCEL = "excel"
    PDF = "pdf"
    WHATSAPP = "whatsapp"
