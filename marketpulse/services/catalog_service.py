"""
Catalog maintenance: store edits, ad spend corrections and the product list.

Platforms and stores are never hard-deleted because stored transactions and
ad expenses keep referring to them; a store is retired by clearing its
active flag.
"""

from typing import Optional

from marketpulse.auth.session import AuthSession
from marketpulse.engine.periods import utcnow
from marketpulse.errors import BadRequestError, ConflictError, NotFoundError
from marketpulse.models.catalog import (
    AdExpense,
    AdExpenseUpdate,
    Product,
    ProductCreate,
    ProductUpdate,
    Store,
    StoreUpdate,
)
from marketpulse.storage.base import StorageBackend
from marketpulse.utils.logging import get_logger

logger = get_logger(__name__)

# Fields a PATCH may explicitly clear with null
CLEARABLE_STORE_FIELDS = {"store_id_external", "pic_name"}
CLEARABLE_EXPENSE_FIELDS = {"store_id", "notes"}
CLEARABLE_PRODUCT_FIELDS = {"category"}


def _patch(payload, clearable: set[str]) -> dict:
    return {
        key: value
        for key, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or key in clearable
    }


class CatalogService:
    def __init__(self, storage: StorageBackend):
        self.storage = storage

    def check_store_platform(self, platform_id: str, store_id: Optional[str]) -> None:
        """
        Check that a platform exists and, when given, that the store is on it.

        Raises:
            NotFoundError: If the platform or store does not exist
            BadRequestError: If the store belongs to another platform
        """
        if self.storage.get_platform(platform_id) is None:
            raise NotFoundError(f"Platform {platform_id} not found")
        if store_id:
            store = self.storage.get_store(store_id)
            if store is None:
                raise NotFoundError(f"Store {store_id} not found")
            if store.platform_id != platform_id:
                raise BadRequestError("Store does not belong to the given platform")

    # =========================================================================
    # Stores
    # =========================================================================

    def get_store(self, store_id: str) -> Store:
        store = self.storage.get_store(store_id)
        if store is None:
            raise NotFoundError(f"Store {store_id} not found")
        return store

    def update_store(self, store_id: str, payload: StoreUpdate, session: AuthSession) -> Store:
        self.get_store(store_id)
        updates = _patch(payload, CLEARABLE_STORE_FIELDS)
        if "platform_id" in updates and self.storage.get_platform(updates["platform_id"]) is None:
            raise NotFoundError(f"Platform {updates['platform_id']} not found")

        store = self.storage.update_store(store_id, **updates)
        logger.info("store_edited", store_id=store_id, fields=sorted(updates), user_id=session.user_id)
        return store

    def deactivate_store(self, store_id: str, session: AuthSession) -> Store:
        """Retire a store. Its history stays in every report."""
        self.get_store(store_id)
        store = self.storage.update_store(store_id, is_active=False)
        logger.info("store_deactivated", store_id=store_id, user_id=session.user_id)
        return store

    # =========================================================================
    # Ad expenses
    # =========================================================================

    def update_ad_expense(self, expense_id: str, payload: AdExpenseUpdate, session: AuthSession) -> AdExpense:
        """Correct a booked expense. The platform/store pairing is re-checked."""
        current = self.storage.get_ad_expense(expense_id)
        if current is None:
            raise NotFoundError(f"Ad expense {expense_id} not found")

        updates = _patch(payload, CLEARABLE_EXPENSE_FIELDS)
        self.check_store_platform(
            updates.get("platform_id", current.platform_id),
            updates.get("store_id", current.store_id),
        )

        expense = self.storage.update_ad_expense(expense_id, **updates)
        logger.info(
            "ad_expense_edited",
            expense_id=expense_id,
            fields=sorted(updates),
            user_id=session.user_id,
        )
        return expense

    # =========================================================================
    # Products
    # =========================================================================

    def _ensure_unique_sku(self, sku: str, exclude_id: Optional[str] = None) -> None:
        existing = self.storage.get_product_by_sku(sku)
        if existing is not None and existing.id != exclude_id:
            raise ConflictError(
                f"SKU '{sku}' already exists",
                details={"sku_reference": sku, "existing_id": existing.id},
            )

    def create_product(self, payload: ProductCreate, session: AuthSession) -> Product:
        """Add a product. Raises ConflictError (409) when the SKU is taken."""
        self._ensure_unique_sku(payload.sku_reference)

        now = utcnow()
        product = Product(**payload.model_dump(), created_at=now, updated_at=now)
        self.storage.create_product(product)
        logger.info(
            "product_created",
            product_id=product.id,
            sku=product.sku_reference,
            user_id=session.user_id,
        )
        return product

    def list_products(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None,
        active_only: bool = True,
    ) -> list[Product]:
        search = search.strip() if search else None
        return self.storage.list_products(search=search or None, category=category, active_only=active_only)

    def get_product(self, product_id: str) -> Product:
        product = self.storage.get_product(product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        return product

    def update_product(self, product_id: str, payload: ProductUpdate, session: AuthSession) -> Product:
        self.get_product(product_id)
        updates = _patch(payload, CLEARABLE_PRODUCT_FIELDS)
        if "sku_reference" in updates:
            self._ensure_unique_sku(updates["sku_reference"], exclude_id=product_id)

        product = self.storage.update_product(product_id, **updates)
        logger.info("product_edited", product_id=product_id, fields=sorted(updates), user_id=session.user_id)
        return product

    def product_stats(self) -> dict:
        """Catalog counts: active and inactive products and distinct categories."""
        products = self.storage.list_products(active_only=False)
        active = [p for p in products if p.is_active]
        return {
            "total_products": len(active),
            "inactive_products": len(products) - len(active),
            "total_categories": len({p.category for p in active if p.category}),
            "uncategorized": sum(1 for p in active if not p.category),
        }
