"""
Abstract storage interface for MarketPulse.

The analytics engine only needs one read capability from storage: rows in a
date range, optionally narrowed to platforms and stores
(``query_transactions``). Everything else here backs the surrounding
application: manual entry, CSV import, catalog, ad spend, and users.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Optional

from marketpulse.models.catalog import AdExpense, Platform, Product, Store
from marketpulse.models.transactions import TransactionFilters, TransactionRecord
from marketpulse.models.uploads import UploadBatch
from marketpulse.models.users import User


class StorageError(Exception):
    """Base exception for all storage operation failures."""

    pass


class StorageBackend(ABC):
    """
    Abstract base class for all storage implementations.

    Implementations should ensure:
    - Thread safety for concurrent access (current and previous period
      queries run in parallel)
    - Atomic bulk writes with rollback on failure
    - Structured logging and StorageError on failure
    """

    # =========================================================================
    # Transactions
    # =========================================================================

    @abstractmethod
    def query_transactions(
        self,
        start: datetime,
        end: datetime,
        platform_ids: Optional[list[str]] = None,
        store_ids: Optional[list[str]] = None,
        end_inclusive: bool = True,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """
        Read raw transaction rows whose ``occurred_at`` falls in a date range.

        Args:
            start: Inclusive lower bound
            end: Upper bound, inclusive unless ``end_inclusive`` is False.
                Adjacent periods query the earlier one half-open so a row on
                the shared boundary belongs to exactly one period.
            platform_ids: Restrict to these platforms (None or empty: all)
            store_ids: Restrict to these stores (None or empty: all)
            limit: Optional cap on returned rows, newest first

        Returns:
            Row mappings with the TransactionRecord field names

        Raises:
            StorageError: If the query fails
        """
        pass

    @abstractmethod
    def insert_transactions(self, records: list[TransactionRecord]) -> list[str]:
        """
        Insert transactions atomically.

        Returns:
            Ids of the inserted rows, in input order

        Raises:
            StorageError: If any insert fails (nothing is written)
        """
        pass

    @abstractmethod
    def upsert_transactions(
        self,
        inserts: list[TransactionRecord],
        overwrites: dict[str, dict[str, Any]],
    ) -> tuple[list[str], int]:
        """
        Overwrite existing transactions and insert new ones as one unit.

        Args:
            inserts: New records
            overwrites: Transaction id -> column updates for stored rows

        Returns:
            (ids of inserted rows, number of rows overwritten)

        Raises:
            StorageError: If any write fails (nothing is written)
        """
        pass

    @abstractmethod
    def get_transaction(self, transaction_id: str) -> Optional[TransactionRecord]:
        """Read one transaction, or None if it does not exist."""
        pass

    @abstractmethod
    def update_transaction(self, transaction_id: str, **updates) -> bool:
        """
        Update columns of one transaction and bump ``updated_at``.

        Returns:
            True if a row was updated, False if the id does not exist
        """
        pass

    @abstractmethod
    def delete_transaction(self, transaction_id: str) -> bool:
        """Delete one transaction. Returns False if the id does not exist."""
        pass

    @abstractmethod
    def list_transactions(
        self,
        filters: TransactionFilters,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[TransactionRecord], int]:
        """
        Filtered, paginated listing, newest first.

        Returns:
            (page of records, total matching count)
        """
        pass

    @abstractmethod
    def count_by_status(self, filters: TransactionFilters) -> dict[str, int]:
        """Count matching transactions per delivery status value."""
        pass

    @abstractmethod
    def find_existing_orders(
        self, order_numbers: list[str]
    ) -> dict[tuple[str, str], str]:
        """
        Look up stored orders by order number.

        Returns:
            (order_number, platform_id) -> transaction id for every stored match
        """
        pass

    # =========================================================================
    # Catalog
    # =========================================================================

    @abstractmethod
    def create_platform(self, platform: Platform) -> str:
        pass

    @abstractmethod
    def list_platforms(self, active_only: bool = True) -> list[Platform]:
        pass

    @abstractmethod
    def get_platform(self, platform_id: str) -> Optional[Platform]:
        pass

    @abstractmethod
    def create_store(self, store: Store) -> str:
        pass

    @abstractmethod
    def list_stores(self, platform_id: Optional[str] = None, active_only: bool = True) -> list[Store]:
        pass

    @abstractmethod
    def get_store(self, store_id: str) -> Optional[Store]:
        pass

    @abstractmethod
    def update_store(self, store_id: str, **updates) -> Optional[Store]:
        """
        Update columns of one store.

        Returns:
            The updated store, or None if the id does not exist
        """
        pass

    # =========================================================================
    # Products
    # =========================================================================

    @abstractmethod
    def create_product(self, product: Product) -> str:
        pass

    @abstractmethod
    def list_products(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None,
        active_only: bool = True,
    ) -> list[Product]:
        """
        Products ordered by name.

        ``search`` matches SKU or product name, case-insensitively.
        """
        pass

    @abstractmethod
    def get_product(self, product_id: str) -> Optional[Product]:
        pass

    @abstractmethod
    def get_product_by_sku(self, sku: str) -> Optional[Product]:
        pass

    @abstractmethod
    def update_product(self, product_id: str, **updates) -> Optional[Product]:
        """Update columns of one product and bump ``updated_at``."""
        pass

    # =========================================================================
    # Upload batches
    # =========================================================================

    @abstractmethod
    def write_upload_batch(self, batch: UploadBatch) -> str:
        """Insert or replace an upload batch record."""
        pass

    @abstractmethod
    def read_upload_batch(self, batch_id: str) -> Optional[UploadBatch]:
        pass

    @abstractmethod
    def list_upload_batches(self, limit: int = 20) -> list[UploadBatch]:
        """Most recent batches first."""
        pass

    # =========================================================================
    # Ad expenses
    # =========================================================================

    @abstractmethod
    def create_ad_expense(self, expense: AdExpense) -> str:
        pass

    @abstractmethod
    def list_ad_expenses(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        platform_ids: Optional[list[str]] = None,
        store_ids: Optional[list[str]] = None,
    ) -> list[AdExpense]:
        """Ad expenses with inclusive date bounds, newest first."""
        pass

    @abstractmethod
    def get_ad_expense(self, expense_id: str) -> Optional[AdExpense]:
        pass

    @abstractmethod
    def update_ad_expense(self, expense_id: str, **updates) -> Optional[AdExpense]:
        pass

    @abstractmethod
    def delete_ad_expense(self, expense_id: str) -> bool:
        pass

    # =========================================================================
    # Users
    # =========================================================================

    @abstractmethod
    def create_user(self, user: User) -> str:
        pass

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[User]:
        pass

    @abstractmethod
    def update_last_login(self, user_id: str, at: datetime) -> None:
        pass

    @abstractmethod
    def list_users(self, active_only: bool = False) -> list[User]:
        """Users ordered by creation time."""
        pass

    @abstractmethod
    def update_user(self, user_id: str, **updates) -> Optional[User]:
        """
        Update columns of one user (name, role, active flag, password hash).

        Returns:
            The updated user, or None if the id does not exist
        """
        pass

    # =========================================================================
    # System
    # =========================================================================

    @abstractmethod
    def ping(self) -> bool:
        """True when the store answers a trivial query."""
        pass
