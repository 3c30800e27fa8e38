"""
Pydantic models for MarketPulse.

Stored entities (transactions, catalog, users, upload batches) and the
derived analytics shapes (aggregates, change metrics, insights).
"""

from marketpulse.models.analytics import (
    Aggregate,
    ChangeMetric,
    GroupAggregate,
    Insight,
    Money,
    PeriodBounds,
    PeriodWindow,
)
from marketpulse.models.catalog import AdExpense, AdExpenseCreate, Platform, PlatformCreate, Store, StoreCreate
from marketpulse.models.enums import (
    ChangeDirection,
    DeliveryStatus,
    DuplicateOption,
    ExportFormat,
    InsightType,
    Priority,
    RankMetric,
    Sentiment,
    Timeframe,
    UploadStatus,
    UserRole,
)
from marketpulse.models.exports import ExportData, ExportOptions
from marketpulse.models.transactions import TransactionCreate, TransactionRecord, TransactionUpdate
from marketpulse.models.uploads import ImportResult, UploadBatch, ValidationIssue
from marketpulse.models.users import LoginRequest, TokenResponse, User, UserCreate

__all__ = [
    "AdExpense",
    "AdExpenseCreate",
    "Aggregate",
    "ChangeDirection",
    "ChangeMetric",
    "DeliveryStatus",
    "DuplicateOption",
    "ExportData",
    "ExportFormat",
    "ExportOptions",
    "GroupAggregate",
    "ImportResult",
    "Insight",
    "InsightType",
    "LoginRequest",
    "Money",
    "PeriodBounds",
    "PeriodWindow",
    "Platform",
    "PlatformCreate",
    "Priority",
    "RankMetric",
    "Sentiment",
    "Store",
    "StoreCreate",
    "Timeframe",
    "TokenResponse",
    "TransactionCreate",
    "TransactionRecord",
    "TransactionUpdate",
    "UploadBatch",
    "UploadStatus",
    "User",
    "UserCreate",
    "UserRole",
    "ValidationIssue",
]
