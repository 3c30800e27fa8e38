"""
Manual transaction entry and maintenance.
"""

from typing import Optional

from marketpulse.auth.session import AuthSession
from marketpulse.engine.periods import to_naive_utc, utcnow
from marketpulse.errors import DuplicateTransactionError, NotFoundError
from marketpulse.models.enums import DeliveryStatus
from marketpulse.models.transactions import (
    TransactionCreate,
    TransactionFilters,
    TransactionPage,
    TransactionRecord,
    TransactionUpdate,
)
from marketpulse.storage.base import StorageBackend
from marketpulse.utils.logging import get_logger

logger = get_logger(__name__)

MAX_PAGE_SIZE = 200

# Columns a PATCH may explicitly clear with null
CLEARABLE_FIELDS = {"manual_order_number", "pic_name", "product_sku", "expedition", "tracking_number"}


class TransactionService:
    """CRUD over stored transactions with profit kept consistent."""

    def __init__(self, storage: StorageBackend):
        self.storage = storage

    def _ensure_unique(self, order_number: str, platform_id: str, exclude_id: Optional[str] = None) -> None:
        existing = self.storage.find_existing_orders([order_number])
        match = existing.get((order_number, platform_id))
        if match is not None and match != exclude_id:
            raise DuplicateTransactionError(
                f"Order '{order_number}' already exists for this platform",
                details={"order_number": order_number, "platform_id": platform_id, "existing_id": match},
            )

    def create(self, payload: TransactionCreate, session: AuthSession) -> TransactionRecord:
        """Store a manually entered transaction. Raises DuplicateTransactionError (409)."""
        self._ensure_unique(payload.order_number, payload.platform_id)

        now = utcnow()
        record = TransactionRecord(
            **payload.model_dump(),
            profit=payload.profit,
            created_by=session.user_id,
            created_at=now,
            updated_at=now,
        )
        record.occurred_at = to_naive_utc(record.occurred_at)
        self.storage.insert_transactions([record])

        logger.info(
            "transaction_created",
            transaction_id=record.id,
            order_number=record.order_number,
            user_id=session.user_id,
        )
        return record

    def get(self, transaction_id: str) -> TransactionRecord:
        record = self.storage.get_transaction(transaction_id)
        if record is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return record

    def list_page(self, filters: TransactionFilters, page: int = 1, limit: int = 50) -> TransactionPage:
        page = max(1, page)
        limit = max(1, min(MAX_PAGE_SIZE, limit))
        items, total = self.storage.list_transactions(filters, offset=(page - 1) * limit, limit=limit)
        return TransactionPage(items=items, total_count=total, page=page, limit=limit)

    def status_summary(self, filters: TransactionFilters) -> dict:
        """Per-status counts for the filter set, with every status present."""
        counts = self.storage.count_by_status(filters)
        by_status = {status.value: counts.get(status.value, 0) for status in DeliveryStatus}
        return {"total": sum(by_status.values()), "by_status": by_status}

    def update(self, transaction_id: str, payload: TransactionUpdate, session: AuthSession) -> TransactionRecord:
        """Apply a partial update. Profit follows the resulting prices."""
        current = self.get(transaction_id)
        updates = {
            key: value
            for key, value in payload.model_dump(exclude_unset=True).items()
            if value is not None or key in CLEARABLE_FIELDS
        }

        order_number = updates.get("order_number", current.order_number)
        platform_id = updates.get("platform_id", current.platform_id)
        if (order_number, platform_id) != (current.order_number, current.platform_id):
            self._ensure_unique(order_number, platform_id, exclude_id=transaction_id)

        if "cost_price" in updates or "selling_price" in updates:
            selling = updates.get("selling_price", current.selling_price)
            cost = updates.get("cost_price", current.cost_price)
            updates["profit"] = selling - cost
        if "occurred_at" in updates:
            updates["occurred_at"] = to_naive_utc(updates["occurred_at"])

        if not self.storage.update_transaction(transaction_id, **updates):
            raise NotFoundError(f"Transaction {transaction_id} not found")

        logger.info(
            "transaction_edited",
            transaction_id=transaction_id,
            fields=sorted(updates),
            user_id=session.user_id,
        )
        return self.get(transaction_id)

    def delete(self, transaction_id: str, session: AuthSession) -> None:
        if not self.storage.delete_transaction(transaction_id):
            raise NotFoundError(f"Transaction {transaction_id} not found")
        logger.info("transaction_removed", transaction_id=transaction_id, user_id=session.user_id)
