"""
DuckDB storage implementation for MarketPulse.

A local columnar store for sales transactions and the surrounding catalog.
Range scans over ``occurred_at`` are the hot path (every analytics request
reads a current and a previous period), which DuckDB's zone maps serve
without secondary indexes.

Key features:
- Per-thread connections to one database file
- Idempotent schema creation on first use
- Atomic bulk inserts and upserts with rollback on error
- Structured logging and StorageError on every failure
"""

import json
import os
import threading
from contextlib import contextmanager
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import duckdb
import structlog

from marketpulse.engine.periods import to_naive_utc, utcnow
from marketpulse.models.catalog import AdExpense, Platform, Product, Store
from marketpulse.models.transactions import TransactionFilters, TransactionRecord
from marketpulse.models.uploads import UploadBatch
from marketpulse.models.users import User

from .base import StorageBackend, StorageError

logger = structlog.get_logger(__name__)

TRANSACTION_COLUMNS = (
    "id",
    "order_number",
    "manual_order_number",
    "pic_name",
    "platform_id",
    "store_id",
    "product_sku",
    "product_name",
    "quantity",
    "cost_price",
    "selling_price",
    "profit",
    "delivery_status",
    "expedition",
    "tracking_number",
    "occurred_at",
    "upload_batch_id",
    "created_by",
    "created_at",
    "updated_at",
)

UPDATABLE_TRANSACTION_COLUMNS = frozenset(TRANSACTION_COLUMNS) - {
    "id",
    "created_at",
    "updated_at",
    "created_by",
}

INSERT_TRANSACTION_SQL = f"""
    INSERT INTO sales_transactions ({", ".join(TRANSACTION_COLUMNS)})
    VALUES ({", ".join("?" for _ in TRANSACTION_COLUMNS)})
"""

STORE_UPDATABLE = frozenset({"store_name", "store_id_external", "platform_id", "pic_name", "is_active"})
PRODUCT_UPDATABLE = frozenset(
    {"sku_reference", "product_name", "category", "base_cost", "is_active", "updated_at"}
)
AD_EXPENSE_UPDATABLE = frozenset({"expense_date", "platform_id", "store_id", "amount", "notes"})
USER_UPDATABLE = frozenset({"full_name", "role", "is_active", "password_hash"})

TABLES = (
    "sales_transactions",
    "products",
    "upload_batches",
    "ad_expenses",
    "stores",
    "platforms",
    "users",
)


def _fetch_dicts(cursor) -> list[dict[str, Any]]:
    columns = [d[0] for d in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def _db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return to_naive_utc(value)
    return value


def _in_clause(column: str, values: list[str], params: list) -> str:
    params.extend(values)
    placeholders = ", ".join("?" for _ in values)
    return f" AND {column} IN ({placeholders})"


class DuckDBStorage(StorageBackend):
    """
    DuckDB implementation of the storage backend.

    Attributes:
        db_path: Path to the DuckDB database file
        _local: Thread-local storage for per-thread connections
        _lock: Thread lock for schema operations
        _initialized: Flag tracking whether schema is initialized
    """

    def __init__(self, db_path: str = "./data/marketpulse.duckdb", threads: Optional[int] = None):
        """
        Initialize DuckDB storage backend.

        Args:
            db_path: Path to DuckDB database file
            threads: DuckDB worker threads per connection (default: DuckDB's choice)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.threads = threads

        self._local = threading.local()
        self._lock = threading.Lock()
        self._initialized = False

        logger.info("duckdb_storage_initialized", db_path=str(self.db_path))

        self._initialize_schema()

    @contextmanager
    def _get_connection(self):
        """
        Get a thread-local DuckDB connection.

        Yields:
            DuckDB connection instance

        Raises:
            StorageError: If connection cannot be established
        """
        if not hasattr(self._local, "connection"):
            try:
                self._local.connection = duckdb.connect(str(self.db_path))
                if self.threads:
                    self._local.connection.execute(f"SET threads TO {int(self.threads)}")
                logger.debug("duckdb_connection_created", thread_id=threading.get_ident())
            except Exception as e:
                logger.error("duckdb_connection_failed", error=str(e))
                raise StorageError(f"Failed to connect to DuckDB: {e}") from e

        try:
            yield self._local.connection
        except Exception:
            try:
                self._local.connection.rollback()
            except duckdb.Error as rollback_error:
                # No transaction was open
                logger.debug("duckdb_rollback_skipped", reason=str(rollback_error))
            raise

    def _initialize_schema(self):
        """
        Create all tables. Idempotent and safe to call multiple times.

        Raises:
            StorageError: If schema creation fails
        """
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return

            try:
                with self._get_connection() as conn:
                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS users (
                            id VARCHAR PRIMARY KEY,
                            email VARCHAR NOT NULL,
                            full_name VARCHAR NOT NULL,
                            role VARCHAR NOT NULL,
                            password_hash VARCHAR NOT NULL,
                            is_active BOOLEAN NOT NULL DEFAULT TRUE,
                            last_login TIMESTAMP,
                            created_at TIMESTAMP NOT NULL
                        )
                    """)

                    conn.execute("""
                        CREATE UNIQUE INDEX IF NOT EXISTS idx_users_email
                        ON users(email)
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS platforms (
                            id VARCHAR PRIMARY KEY,
                            platform_name VARCHAR NOT NULL,
                            platform_code VARCHAR NOT NULL,
                            is_active BOOLEAN NOT NULL DEFAULT TRUE,
                            created_at TIMESTAMP NOT NULL
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS stores (
                            id VARCHAR PRIMARY KEY,
                            store_name VARCHAR NOT NULL,
                            store_id_external VARCHAR,
                            platform_id VARCHAR NOT NULL,
                            pic_name VARCHAR,
                            is_active BOOLEAN NOT NULL DEFAULT TRUE,
                            created_at TIMESTAMP NOT NULL
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS products (
                            id VARCHAR PRIMARY KEY,
                            sku_reference VARCHAR NOT NULL,
                            product_name VARCHAR NOT NULL,
                            category VARCHAR,
                            base_cost DECIMAL(18, 2) NOT NULL DEFAULT 0,
                            is_active BOOLEAN NOT NULL DEFAULT TRUE,
                            created_at TIMESTAMP NOT NULL,
                            updated_at TIMESTAMP NOT NULL
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS sales_transactions (
                            id VARCHAR PRIMARY KEY,
                            order_number VARCHAR NOT NULL,
                            manual_order_number VARCHAR,
                            pic_name VARCHAR,
                            platform_id VARCHAR NOT NULL,
                            store_id VARCHAR NOT NULL,
                            product_sku VARCHAR,
                            product_name VARCHAR NOT NULL,
                            quantity INTEGER NOT NULL,
                            cost_price DECIMAL(18, 2) NOT NULL,
                            selling_price DECIMAL(18, 2) NOT NULL,
                            profit DECIMAL(18, 2) NOT NULL,
                            delivery_status VARCHAR NOT NULL,
                            expedition VARCHAR,
                            tracking_number VARCHAR,
                            occurred_at TIMESTAMP NOT NULL,
                            upload_batch_id VARCHAR,
                            created_by VARCHAR,
                            created_at TIMESTAMP NOT NULL,
                            updated_at TIMESTAMP NOT NULL
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS upload_batches (
                            id VARCHAR PRIMARY KEY,
                            filename VARCHAR NOT NULL,
                            status VARCHAR NOT NULL,
                            total_rows INTEGER NOT NULL,
                            processed_rows INTEGER NOT NULL,
                            duplicate_rows INTEGER NOT NULL,
                            failed_rows INTEGER NOT NULL,
                            duplicate_option VARCHAR NOT NULL,
                            uploaded_at TIMESTAMP NOT NULL,
                            uploaded_by VARCHAR,
                            processing_time_seconds DOUBLE,
                            error_log JSON
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS ad_expenses (
                            id VARCHAR PRIMARY KEY,
                            expense_date DATE NOT NULL,
                            platform_id VARCHAR NOT NULL,
                            store_id VARCHAR,
                            amount DECIMAL(18, 2) NOT NULL,
                            notes VARCHAR,
                            created_by VARCHAR,
                            created_at TIMESTAMP NOT NULL
                        )
                    """)

                    conn.commit()
                    logger.info("duckdb_schema_initialized", table_count=len(TABLES))
                    self._initialized = True

            except Exception as e:
                logger.error("duckdb_schema_initialization_failed", error=str(e))
                raise StorageError(f"Failed to initialize schema: {e}") from e

    def clear_for_testing(self) -> None:
        """
        Delete all rows. For testing only; a no-op unless TESTING is set.
        """
        if not os.environ.get("TESTING"):
            return
        with self._get_connection() as conn:
            for table in TABLES:
                conn.execute(f"DELETE FROM {table}")
            conn.commit()

    def _update_row(self, table: str, row_id: str, updates: dict[str, Any], allowed: frozenset) -> None:
        """Set columns of one row in a catalog or user table."""
        unknown = set(updates) - allowed
        if unknown:
            raise StorageError(f"Cannot update {table} columns: {sorted(unknown)}")
        if not updates:
            return

        assignments = ", ".join(f"{col} = ?" for col in updates)
        params = [_db_value(v) for v in updates.values()] + [row_id]

        try:
            with self._get_connection() as conn:
                conn.execute(f"UPDATE {table} SET {assignments} WHERE id = ?", params)
                conn.commit()
                logger.info("row_updated", table=table, row_id=row_id, fields=sorted(updates))

        except Exception as e:
            logger.error("update_row_failed", table=table, row_id=row_id, error=str(e))
            raise StorageError(f"Failed to update {table}: {e}") from e

    # =========================================================================
    # Transactions
    # =========================================================================

    def query_transactions(
        self,
        start: datetime,
        end: datetime,
        platform_ids: Optional[list[str]] = None,
        store_ids: Optional[list[str]] = None,
        end_inclusive: bool = True,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """Read raw transaction rows in a date range."""
        try:
            with self._get_connection() as conn:
                query = f"""
                    SELECT {", ".join(TRANSACTION_COLUMNS)}
                    FROM sales_transactions
                    WHERE occurred_at >= ?
                """
                params: list[Any] = [to_naive_utc(start)]

                query += " AND occurred_at <= ?" if end_inclusive else " AND occurred_at < ?"
                params.append(to_naive_utc(end))

                if platform_ids:
                    query += _in_clause("platform_id", platform_ids, params)
                if store_ids:
                    query += _in_clause("store_id", store_ids, params)

                if limit is not None:
                    query += " ORDER BY occurred_at DESC, id LIMIT ?"
                    params.append(int(limit))

                rows = _fetch_dicts(conn.execute(query, params))
                logger.debug(
                    "transactions_queried",
                    start=str(start),
                    end=str(end),
                    end_inclusive=end_inclusive,
                    count=len(rows),
                )
                return rows

        except Exception as e:
            logger.error("query_transactions_failed", error=str(e))
            raise StorageError(f"Failed to query transactions: {e}") from e

    def _insert_values(self, records: list[TransactionRecord]) -> list[list[Any]]:
        now = utcnow()
        values = []
        for record in records:
            data = record.model_dump()
            data["created_at"] = data.get("created_at") or now
            data["updated_at"] = now
            values.append([_db_value(data[col]) for col in TRANSACTION_COLUMNS])
        return values

    @staticmethod
    def _update_statement(transaction_id: str, updates: dict[str, Any]) -> tuple[str, list[Any]]:
        unknown = set(updates) - UPDATABLE_TRANSACTION_COLUMNS
        if unknown:
            raise StorageError(f"Cannot update columns: {sorted(unknown)}")

        assignments = [f"{col} = ?" for col in updates] + ["updated_at = ?"]
        params = [_db_value(v) for v in updates.values()] + [utcnow(), transaction_id]
        return f"UPDATE sales_transactions SET {', '.join(assignments)} WHERE id = ?", params

    def insert_transactions(self, records: list[TransactionRecord]) -> list[str]:
        """Insert transactions in one database transaction."""
        if not records:
            return []

        values = self._insert_values(records)
        try:
            with self._get_connection() as conn:
                conn.begin()
                conn.executemany(INSERT_TRANSACTION_SQL, values)
                conn.commit()
                logger.info("transactions_inserted", count=len(records))
                return [r.id for r in records]

        except Exception as e:
            logger.error("insert_transactions_failed", count=len(records), error=str(e))
            raise StorageError(f"Failed to insert transactions: {e}") from e

    def upsert_transactions(
        self,
        inserts: list[TransactionRecord],
        overwrites: dict[str, dict[str, Any]],
    ) -> tuple[list[str], int]:
        """Apply overwrites and inserts in one database transaction."""
        statements = [self._update_statement(txn_id, updates) for txn_id, updates in overwrites.items()]
        values = self._insert_values(inserts)

        try:
            with self._get_connection() as conn:
                conn.begin()
                overwritten = 0
                for sql, params in statements:
                    result = conn.execute(sql, params).fetchone()
                    overwritten += int(result[0]) if result else 0
                if values:
                    conn.executemany(INSERT_TRANSACTION_SQL, values)
                conn.commit()
                logger.info("transactions_upserted", inserted=len(inserts), overwritten=overwritten)
                return [r.id for r in inserts], overwritten

        except Exception as e:
            logger.error(
                "upsert_transactions_failed",
                inserts=len(inserts),
                overwrites=len(overwrites),
                error=str(e),
            )
            raise StorageError(f"Failed to upsert transactions: {e}") from e

    def get_transaction(self, transaction_id: str) -> Optional[TransactionRecord]:
        """Read one transaction by id."""
        try:
            with self._get_connection() as conn:
                rows = _fetch_dicts(
                    conn.execute(
                        f"SELECT {', '.join(TRANSACTION_COLUMNS)} FROM sales_transactions WHERE id = ?",
                        [transaction_id],
                    )
                )
                return TransactionRecord(**rows[0]) if rows else None

        except Exception as e:
            logger.error("get_transaction_failed", transaction_id=transaction_id, error=str(e))
            raise StorageError(f"Failed to read transaction: {e}") from e

    def update_transaction(self, transaction_id: str, **updates) -> bool:
        """Update columns of one transaction."""
        sql, params = self._update_statement(transaction_id, updates)

        try:
            with self._get_connection() as conn:
                result = conn.execute(sql, params).fetchone()
                conn.commit()
                updated = bool(result and result[0])
                logger.info(
                    "transaction_updated",
                    transaction_id=transaction_id,
                    fields=sorted(updates),
                    updated=updated,
                )
                return updated

        except Exception as e:
            logger.error("update_transaction_failed", transaction_id=transaction_id, error=str(e))
            raise StorageError(f"Failed to update transaction: {e}") from e

    def delete_transaction(self, transaction_id: str) -> bool:
        """Delete one transaction by id."""
        try:
            with self._get_connection() as conn:
                result = conn.execute(
                    "DELETE FROM sales_transactions WHERE id = ?", [transaction_id]
                ).fetchone()
                conn.commit()
                deleted = bool(result and result[0])
                logger.info("transaction_deleted", transaction_id=transaction_id, deleted=deleted)
                return deleted

        except Exception as e:
            logger.error("delete_transaction_failed", transaction_id=transaction_id, error=str(e))
            raise StorageError(f"Failed to delete transaction: {e}") from e

    def _filter_clause(self, filters: TransactionFilters) -> tuple[str, list[Any]]:
        clause = " WHERE 1=1"
        params: list[Any] = []

        if filters.order_number:
            clause += " AND order_number ILIKE ?"
            params.append(f"%{filters.order_number}%")

        if filters.delivery_status:
            clause += " AND delivery_status = ?"
            params.append(filters.delivery_status.value)

        if filters.platform_ids:
            clause += _in_clause("platform_id", filters.platform_ids, params)

        if filters.store_ids:
            clause += _in_clause("store_id", filters.store_ids, params)

        if filters.start:
            clause += " AND occurred_at >= ?"
            params.append(to_naive_utc(filters.start))

        if filters.end:
            clause += " AND occurred_at <= ?"
            params.append(to_naive_utc(filters.end))

        if filters.search:
            clause += " AND (product_name ILIKE ? OR product_sku ILIKE ? OR order_number ILIKE ?)"
            pattern = f"%{filters.search}%"
            params.extend([pattern, pattern, pattern])

        return clause, params

    def list_transactions(
        self,
        filters: TransactionFilters,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[TransactionRecord], int]:
        """Filtered, paginated transactions, newest first."""
        clause, params = self._filter_clause(filters)

        try:
            with self._get_connection() as conn:
                total = conn.execute(
                    f"SELECT COUNT(*) FROM sales_transactions{clause}", params
                ).fetchone()[0]

                rows = _fetch_dicts(
                    conn.execute(
                        f"""
                        SELECT {", ".join(TRANSACTION_COLUMNS)}
                        FROM sales_transactions{clause}
                        ORDER BY occurred_at DESC, id
                        LIMIT ? OFFSET ?
                        """,
                        params + [limit, offset],
                    )
                )
                records = [TransactionRecord(**row) for row in rows]
                logger.debug("transactions_listed", count=len(records), total=total)
                return records, total

        except Exception as e:
            logger.error("list_transactions_failed", error=str(e))
            raise StorageError(f"Failed to list transactions: {e}") from e

    def count_by_status(self, filters: TransactionFilters) -> dict[str, int]:
        """Count matching transactions per status."""
        clause, params = self._filter_clause(filters)

        try:
            with self._get_connection() as conn:
                result = conn.execute(
                    f"""
                    SELECT delivery_status, COUNT(*)
                    FROM sales_transactions{clause}
                    GROUP BY delivery_status
                    """,
                    params,
                ).fetchall()
                return {row[0]: row[1] for row in result}

        except Exception as e:
            logger.error("count_by_status_failed", error=str(e))
            raise StorageError(f"Failed to count transactions: {e}") from e

    def find_existing_orders(self, order_numbers: list[str]) -> dict[tuple[str, str], str]:
        """Map (order_number, platform_id) -> id for stored orders."""
        unique = sorted(set(order_numbers))
        if not unique:
            return {}

        try:
            with self._get_connection() as conn:
                params: list[Any] = []
                in_clause = _in_clause("order_number", unique, params)
                result = conn.execute(
                    f"""
                    SELECT order_number, platform_id, id
                    FROM sales_transactions
                    WHERE 1=1{in_clause}
                    ORDER BY created_at
                    """,
                    params,
                ).fetchall()
                existing: dict[tuple[str, str], str] = {}
                for order_number, platform_id, txn_id in result:
                    existing.setdefault((order_number, platform_id), txn_id)
                return existing

        except Exception as e:
            logger.error("find_existing_orders_failed", count=len(unique), error=str(e))
            raise StorageError(f"Failed to look up orders: {e}") from e

    # =========================================================================
    # Catalog
    # =========================================================================

    def create_platform(self, platform: Platform) -> str:
        """Insert a platform."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO platforms (id, platform_name, platform_code, is_active, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [
                        platform.id,
                        platform.platform_name,
                        platform.platform_code,
                        platform.is_active,
                        platform.created_at or utcnow(),
                    ],
                )
                conn.commit()
                logger.info("platform_created", platform_id=platform.id, code=platform.platform_code)
                return platform.id

        except Exception as e:
            logger.error("create_platform_failed", error=str(e))
            raise StorageError(f"Failed to create platform: {e}") from e

    def list_platforms(self, active_only: bool = True) -> list[Platform]:
        """List platforms by name."""
        try:
            with self._get_connection() as conn:
                query = "SELECT * FROM platforms"
                if active_only:
                    query += " WHERE is_active"
                query += " ORDER BY platform_name"
                return [Platform(**row) for row in _fetch_dicts(conn.execute(query))]

        except Exception as e:
            logger.error("list_platforms_failed", error=str(e))
            raise StorageError(f"Failed to list platforms: {e}") from e

    def get_platform(self, platform_id: str) -> Optional[Platform]:
        try:
            with self._get_connection() as conn:
                rows = _fetch_dicts(
                    conn.execute("SELECT * FROM platforms WHERE id = ?", [platform_id])
                )
                return Platform(**rows[0]) if rows else None

        except Exception as e:
            logger.error("get_platform_failed", platform_id=platform_id, error=str(e))
            raise StorageError(f"Failed to read platform: {e}") from e

    def create_store(self, store: Store) -> str:
        """Insert a store."""
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO stores (
                        id, store_name, store_id_external, platform_id, pic_name,
                        is_active, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        store.id,
                        store.store_name,
                        store.store_id_external,
                        store.platform_id,
                        store.pic_name,
                        store.is_active,
                        store.created_at or utcnow(),
                    ],
                )
                conn.commit()
                logger.info("store_created", store_id=store.id, platform_id=store.platform_id)
                return store.id

        except Exception as e:
            logger.error("create_store_failed", error=str(e))
            raise StorageError(f"Failed to create store: {e}") from e

    def list_stores(self, platform_id: Optional[str] = None, active_only: bool = True) -> list[Store]:
        """List stores by name, optionally for one platform."""
        try:
            with self._get_connection() as conn:
                query = "SELECT * FROM stores WHERE 1=1"
                params: list[Any] = []
                if platform_id:
                    query += " AND platform_id = ?"
                    params.append(platform_id)
                if active_only:
                    query += " AND is_active"
                query += " ORDER BY store_name"
                return [Store(**row) for row in _fetch_dicts(conn.execute(query, params))]

        except Exception as e:
            logger.error("list_stores_failed", error=str(e))
            raise StorageError(f"Failed to list stores: {e}") from e

    def get_store(self, store_id: str) -> Optional[Store]:
        try:
            with self._get_connection() as conn:
                rows = _fetch_dicts(conn.execute("SELECT * FROM stores WHERE id = ?", [store_id]))
                return Store(**rows[0]) if rows else None

        except Exception as e:
            logger.error("get_store_failed", store_id=store_id, error=str(e))
            raise StorageError(f"Failed to read store: {e}") from e

    def update_store(self, store_id: str, **updates) -> Optional[Store]:
        self._update_row("stores", store_id, updates, STORE_UPDATABLE)
        return self.get_store(store_id)

    # =========================================================================
    # Products
    # =========================================================================

    def create_product(self, product: Product) -> str:
        """Insert a product."""
        now = utcnow()
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO products (
                        id, sku_reference, product_name, category, base_cost,
                        is_active, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        product.id,
                        product.sku_reference,
                        product.product_name,
                        product.category,
                        product.base_cost,
                        product.is_active,
                        product.created_at or now,
                        product.updated_at or now,
                    ],
                )
                conn.commit()
                logger.info("product_created", product_id=product.id, sku=product.sku_reference)
                return product.id

        except Exception as e:
            logger.error("create_product_failed", error=str(e))
            raise StorageError(f"Failed to create product: {e}") from e

    def list_products(
        self,
        search: Optional[str] = None,
        category: Optional[str] = None,
        active_only: bool = True,
    ) -> list[Product]:
        """Products by name, optionally matching a SKU or name fragment."""
        try:
            with self._get_connection() as conn:
                query = "SELECT * FROM products WHERE 1=1"
                params: list[Any] = []
                if search:
                    query += " AND (product_name ILIKE ? OR sku_reference ILIKE ?)"
                    pattern = f"%{search}%"
                    params.extend([pattern, pattern])
                if category:
                    query += " AND category = ?"
                    params.append(category)
                if active_only:
                    query += " AND is_active"
                query += " ORDER BY product_name, sku_reference"
                return [Product(**row) for row in _fetch_dicts(conn.execute(query, params))]

        except Exception as e:
            logger.error("list_products_failed", error=str(e))
            raise StorageError(f"Failed to list products: {e}") from e

    def _read_product(self, column: str, value: str) -> Optional[Product]:
        try:
            with self._get_connection() as conn:
                rows = _fetch_dicts(
                    conn.execute(f"SELECT * FROM products WHERE {column} = ?", [value])
                )
                return Product(**rows[0]) if rows else None

        except Exception as e:
            logger.error("read_product_failed", column=column, error=str(e))
            raise StorageError(f"Failed to read product: {e}") from e

    def get_product(self, product_id: str) -> Optional[Product]:
        return self._read_product("id", product_id)

    def get_product_by_sku(self, sku: str) -> Optional[Product]:
        return self._read_product("sku_reference", sku.strip())

    def update_product(self, product_id: str, **updates) -> Optional[Product]:
        if updates:
            updates["updated_at"] = utcnow()
        self._update_row("products", product_id, updates, PRODUCT_UPDATABLE)
        return self.get_product(product_id)

    # =========================================================================
    # Upload batches
    # =========================================================================

    def write_upload_batch(self, batch: UploadBatch) -> str:
        """Insert a batch, or update its progress columns if it exists."""
        error_log = json.dumps([issue.model_dump(mode="json") for issue in batch.error_log])

        try:
            with self._get_connection() as conn:
                exists = conn.execute(
                    "SELECT 1 FROM upload_batches WHERE id = ?", [batch.id]
                ).fetchone()

                if exists:
                    conn.execute(
                        """
                        UPDATE upload_batches SET
                            status = ?, total_rows = ?, processed_rows = ?,
                            duplicate_rows = ?, failed_rows = ?,
                            processing_time_seconds = ?, error_log = ?
                        WHERE id = ?
                        """,
                        [
                            batch.status.value,
                            batch.total_rows,
                            batch.processed_rows,
                            batch.duplicate_rows,
                            batch.failed_rows,
                            batch.processing_time_seconds,
                            error_log,
                            batch.id,
                        ],
                    )
                else:
                    conn.execute(
                        """
                        INSERT INTO upload_batches (
                            id, filename, status, total_rows, processed_rows,
                            duplicate_rows, failed_rows, duplicate_option,
                            uploaded_at, uploaded_by, processing_time_seconds, error_log
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        [
                            batch.id,
                            batch.filename,
                            batch.status.value,
                            batch.total_rows,
                            batch.processed_rows,
                            batch.duplicate_rows,
                            batch.failed_rows,
                            batch.duplicate_option.value,
                            to_naive_utc(batch.uploaded_at),
                            batch.uploaded_by,
                            batch.processing_time_seconds,
                            error_log,
                        ],
                    )
                conn.commit()
                logger.debug("upload_batch_written", batch_id=batch.id, status=batch.status.value)
                return batch.id

        except Exception as e:
            logger.error("write_upload_batch_failed", batch_id=batch.id, error=str(e))
            raise StorageError(f"Failed to write upload batch: {e}") from e

    @staticmethod
    def _batch_from_row(row: dict[str, Any]) -> UploadBatch:
        row["error_log"] = json.loads(row["error_log"]) if row.get("error_log") else []
        return UploadBatch(**row)

    def read_upload_batch(self, batch_id: str) -> Optional[UploadBatch]:
        try:
            with self._get_connection() as conn:
                rows = _fetch_dicts(
                    conn.execute("SELECT * FROM upload_batches WHERE id = ?", [batch_id])
                )
                return self._batch_from_row(rows[0]) if rows else None

        except Exception as e:
            logger.error("read_upload_batch_failed", batch_id=batch_id, error=str(e))
            raise StorageError(f"Failed to read upload batch: {e}") from e

    def list_upload_batches(self, limit: int = 20) -> list[UploadBatch]:
        try:
            with self._get_connection() as conn:
                rows = _fetch_dicts(
                    conn.execute(
                        "SELECT * FROM upload_batches ORDER BY uploaded_at DESC LIMIT ?", [limit]
                    )
                )
                return [self._batch_from_row(row) for row in rows]

        except Exception as e:
            logger.error("list_upload_batches_failed", error=str(e))
            raise StorageError(f"Failed to list upload batches: {e}") from e

    # =========================================================================
    # Ad expenses
    # =========================================================================

    def create_ad_expense(self, expense: AdExpense) -> str:
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO ad_expenses (
                        id, expense_date, platform_id, store_id, amount,
                        notes, created_by, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        expense.id,
                        expense.expense_date,
                        expense.platform_id,
                        expense.store_id,
                        expense.amount,
                        expense.notes,
                        expense.created_by,
                        expense.created_at or utcnow(),
                    ],
                )
                conn.commit()
                logger.info(
                    "ad_expense_created",
                    expense_id=expense.id,
                    platform_id=expense.platform_id,
                    amount=str(expense.amount),
                )
                return expense.id

        except Exception as e:
            logger.error("create_ad_expense_failed", error=str(e))
            raise StorageError(f"Failed to create ad expense: {e}") from e

    def list_ad_expenses(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        platform_ids: Optional[list[str]] = None,
        store_ids: Optional[list[str]] = None,
    ) -> list[AdExpense]:
        try:
            with self._get_connection() as conn:
                query = "SELECT * FROM ad_expenses WHERE 1=1"
                params: list[Any] = []

                if start_date:
                    query += " AND expense_date >= ?"
                    params.append(start_date)
                if end_date:
                    query += " AND expense_date <= ?"
                    params.append(end_date)
                if platform_ids:
                    query += _in_clause("platform_id", platform_ids, params)
                if store_ids:
                    query += _in_clause("store_id", store_ids, params)

                query += " ORDER BY expense_date DESC, id"
                return [AdExpense(**row) for row in _fetch_dicts(conn.execute(query, params))]

        except Exception as e:
            logger.error("list_ad_expenses_failed", error=str(e))
            raise StorageError(f"Failed to list ad expenses: {e}") from e

    def get_ad_expense(self, expense_id: str) -> Optional[AdExpense]:
        try:
            with self._get_connection() as conn:
                rows = _fetch_dicts(
                    conn.execute("SELECT * FROM ad_expenses WHERE id = ?", [expense_id])
                )
                return AdExpense(**rows[0]) if rows else None

        except Exception as e:
            logger.error("get_ad_expense_failed", expense_id=expense_id, error=str(e))
            raise StorageError(f"Failed to read ad expense: {e}") from e

    def update_ad_expense(self, expense_id: str, **updates) -> Optional[AdExpense]:
        self._update_row("ad_expenses", expense_id, updates, AD_EXPENSE_UPDATABLE)
        return self.get_ad_expense(expense_id)

    def delete_ad_expense(self, expense_id: str) -> bool:
        try:
            with self._get_connection() as conn:
                result = conn.execute(
                    "DELETE FROM ad_expenses WHERE id = ?", [expense_id]
                ).fetchone()
                conn.commit()
                deleted = bool(result and result[0])
                logger.info("ad_expense_deleted", expense_id=expense_id, deleted=deleted)
                return deleted

        except Exception as e:
            logger.error("delete_ad_expense_failed", expense_id=expense_id, error=str(e))
            raise StorageError(f"Failed to delete ad expense: {e}") from e

    # =========================================================================
    # Users
    # =========================================================================

    def create_user(self, user: User) -> str:
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO users (
                        id, email, full_name, role, password_hash, is_active,
                        last_login, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        user.id,
                        user.email,
                        user.full_name,
                        user.role.value,
                        user.password_hash,
                        user.is_active,
                        user.last_login,
                        user.created_at or utcnow(),
                    ],
                )
                conn.commit()
                logger.info("user_created", user_id=user.id, role=user.role.value)
                return user.id

        except Exception as e:
            logger.error("create_user_failed", error=str(e))
            raise StorageError(f"Failed to create user: {e}") from e

    def _read_user(self, column: str, value: str) -> Optional[User]:
        try:
            with self._get_connection() as conn:
                rows = _fetch_dicts(
                    conn.execute(f"SELECT * FROM users WHERE {column} = ?", [value])
                )
                return User(**rows[0]) if rows else None

        except Exception as e:
            logger.error("read_user_failed", column=column, error=str(e))
            raise StorageError(f"Failed to read user: {e}") from e

    def get_user(self, user_id: str) -> Optional[User]:
        return self._read_user("id", user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self._read_user("email", email.strip().lower())

    def update_last_login(self, user_id: str, at: datetime) -> None:
        try:
            with self._get_connection() as conn:
                conn.execute(
                    "UPDATE users SET last_login = ? WHERE id = ?",
                    [to_naive_utc(at), user_id],
                )
                conn.commit()

        except Exception as e:
            logger.error("update_last_login_failed", user_id=user_id, error=str(e))
            raise StorageError(f"Failed to update last login: {e}") from e

    def list_users(self, active_only: bool = False) -> list[User]:
        try:
            with self._get_connection() as conn:
                query = "SELECT * FROM users"
                if active_only:
                    query += " WHERE is_active"
                query += " ORDER BY created_at, email"
                return [User(**row) for row in _fetch_dicts(conn.execute(query))]

        except Exception as e:
            logger.error("list_users_failed", error=str(e))
            raise StorageError(f"Failed to list users: {e}") from e

    def update_user(self, user_id: str, **updates) -> Optional[User]:
        self._update_row("users", user_id, updates, USER_UPDATABLE)
        return self.get_user(user_id)

    # =========================================================================
    # System
    # =========================================================================

    def ping(self) -> bool:
        try:
            with self._get_connection() as conn:
                return conn.execute("SELECT 1").fetchone()[0] == 1
        except Exception as e:
            logger.warning("duckdb_ping_failed", error=str(e))
            return False
