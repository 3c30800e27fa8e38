"""
Pytest configuration and shared fixtures for the MarketPulse test suite.

Data factories, an in-memory storage backend, environment isolation, and
reusable fixtures across all test types (unit, integration, golden,
property-based).
"""

import os
import tempfile
import uuid as _uuid
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Optional
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

# Set testing environment BEFORE importing app
# Use temp path (must not exist - DuckDB creates the file). :memory: causes
# per-connection DB which breaks multi-threaded tests.
_test_db_path = os.path.join(tempfile.gettempdir(), f"marketpulse_test_{_uuid.uuid4().hex[:8]}.duckdb")
os.environ["TESTING"] = "true"
os.environ["DB_PATH"] = _test_db_path
os.environ["JWT_SECRET"] = "test-secret-not-for-production"
os.environ["LOG_FORMAT"] = "console"
os.environ["BOOTSTRAP_ADMIN_EMAIL"] = "admin@marketpulse.test"
os.environ["BOOTSTRAP_ADMIN_PASSWORD"] = "admin-password-123"

ADMIN_EMAIL = os.environ["BOOTSTRAP_ADMIN_EMAIL"]
ADMIN_PASSWORD = os.environ["BOOTSTRAP_ADMIN_PASSWORD"]

# Fixed reference instant so period math is reproducible
NOW = datetime(2024, 6, 30, 12, 0, 0)


# ---------------------------------------------------------------------------
# Pydantic model factories, reusable across all test suites
# ---------------------------------------------------------------------------

from marketpulse.auth.passwords import hash_password
from marketpulse.auth.session import AuthSession, issue_session
from marketpulse.engine.periods import to_naive_utc, utcnow
from marketpulse.models.analytics import GroupAggregate
from marketpulse.models.catalog import AdExpense, Platform, Product, Store
from marketpulse.models.enums import DeliveryStatus, UserRole
from marketpulse.models.transactions import TransactionFilters, TransactionRecord
from marketpulse.models.uploads import UploadBatch
from marketpulse.models.users import User
from marketpulse.storage.base import StorageBackend, StorageError


def make_row(
    selling_price: Any = 100,
    profit: Any = 20,
    status: Any = DeliveryStatus.COMPLETED,
    quantity: Any = 1,
    **overrides,
) -> dict:
    """Factory for a raw aggregation row (the shape storage queries return)."""
    defaults = dict(
        id=str(uuid4()),
        order_number=f"ORD-{uuid4().hex[:8].upper()}",
        platform_id="shopee",
        store_id="store-1",
        product_sku="SKU-1",
        product_name="Kaos Polos",
        quantity=quantity,
        selling_price=selling_price,
        cost_price=None,
        profit=profit,
        delivery_status=status.value if isinstance(status, DeliveryStatus) else status,
        occurred_at=NOW - timedelta(days=1),
    )
    defaults.update(overrides)
    if defaults["cost_price"] is None and profit is not None:
        try:
            defaults["cost_price"] = Decimal(str(selling_price)) - Decimal(str(profit))
        except ArithmeticError:
            defaults["cost_price"] = 0
    return defaults


def make_record(
    order_number: Optional[str] = None,
    selling_price: str = "150000",
    cost_price: str = "100000",
    status: DeliveryStatus = DeliveryStatus.COMPLETED,
    occurred_at: Optional[datetime] = None,
    **overrides,
) -> TransactionRecord:
    """Factory for a stored TransactionRecord."""
    selling = Decimal(selling_price)
    cost = Decimal(cost_price)
    defaults = dict(
        order_number=order_number or f"ORD-{uuid4().hex[:8].upper()}",
        platform_id="shopee",
        store_id="store-1",
        product_sku="SKU-1",
        product_name="Kaos Polos",
        quantity=1,
        cost_price=cost,
        selling_price=selling,
        profit=selling - cost,
        delivery_status=status,
        occurred_at=occurred_at or NOW - timedelta(days=1),
    )
    defaults.update(overrides)
    return TransactionRecord(**defaults)


def make_group(group_key: str, total_revenue: Any, **overrides) -> GroupAggregate:
    """Factory for a GroupAggregate with a given revenue."""
    defaults = dict(group_key=group_key, total_revenue=Decimal(str(total_revenue)))
    defaults.update(overrides)
    return GroupAggregate(**defaults)


def make_user(
    email: str = "manager@marketpulse.test",
    role: UserRole = UserRole.MANAGER,
    password: str = "manager-password",
    **overrides,
) -> User:
    defaults = dict(
        email=email,
        full_name="Test User",
        role=role,
        password_hash=hash_password(password),
    )
    defaults.update(overrides)
    return User(**defaults)


def make_session(role: UserRole = UserRole.MANAGER, **overrides) -> AuthSession:
    """A real signed session for a throwaway user."""
    return issue_session(make_user(role=role, **overrides))


def make_csv(rows: list[dict], columns: Optional[list[str]] = None) -> bytes:
    """Build CSV bytes from row dicts."""
    columns = columns or [
        "order_number",
        "product_name",
        "sku_reference",
        "quantity",
        "selling_price",
        "cost_price",
        "delivery_status",
        "order_created_at",
        "platform_id",
        "store_id",
    ]
    lines = [",".join(columns)]
    for row in rows:
        lines.append(",".join(str(row.get(c, "")) for c in columns))
    return ("\n".join(lines) + "\n").encode("utf-8")


def csv_row(order_number: str, **overrides) -> dict:
    defaults = dict(
        order_number=order_number,
        product_name="Kaos Polos",
        sku_reference="SKU-1",
        quantity="2",
        selling_price="150000",
        cost_price="100000",
        delivery_status="Selesai",
        order_created_at="2024-06-20 10:15:00",
        platform_id="shopee",
        store_id="store-1",
    )
    defaults.update(overrides)
    return defaults


# ---------------------------------------------------------------------------
# Mock storage: in-memory backend for unit tests
# ---------------------------------------------------------------------------

def _matches(record: TransactionRecord, filters: TransactionFilters) -> bool:
    if filters.order_number and filters.order_number.lower() not in record.order_number.lower():
        return False
    if filters.delivery_status and record.delivery_status != filters.delivery_status:
        return False
    if filters.platform_ids and record.platform_id not in filters.platform_ids:
        return False
    if filters.store_ids and record.store_id not in filters.store_ids:
        return False
    if filters.start and record.occurred_at < to_naive_utc(filters.start):
        return False
    if filters.end and record.occurred_at > to_naive_utc(filters.end):
        return False
    if filters.search:
        needle = filters.search.lower()
        haystack = [record.product_name, record.product_sku or "", record.order_number]
        if not any(needle in h.lower() for h in haystack):
            return False
    return True


class MockStorage(StorageBackend):
    """
    In-memory StorageBackend for unit tests.

    Environment isolation: no I/O, fresh state per instance.
    """

    def __init__(self):
        self._transactions: dict[str, TransactionRecord] = {}
        self._platforms: dict[str, Platform] = {}
        self._stores: dict[str, Store] = {}
        self._batches: dict[str, UploadBatch] = {}
        self._ad_expenses: dict[str, AdExpense] = {}
        self._users: dict[str, User] = {}
        self._products: dict[str, Product] = {}
        self.query_calls: list[dict] = []

    # --- Transactions ---
    def query_transactions(self, start, end, platform_ids=None, store_ids=None, end_inclusive=True, limit=None):
        self.query_calls.append({"start": start, "end": end, "end_inclusive": end_inclusive})
        rows = []
        for r in self._transactions.values():
            if r.occurred_at < start:
                continue
            if r.occurred_at > end or (not end_inclusive and r.occurred_at == end):
                continue
            if platform_ids and r.platform_id not in platform_ids:
                continue
            if store_ids and r.store_id not in store_ids:
                continue
            row = r.model_dump()
            row["delivery_status"] = r.delivery_status.value
            rows.append(row)
        if limit is not None:
            rows = sorted(rows, key=lambda x: x["occurred_at"], reverse=True)[:limit]
        return rows

    def insert_transactions(self, records):
        for r in records:
            self._transactions[r.id] = r.model_copy()
        return [r.id for r in records]

    def upsert_transactions(self, inserts, overwrites):
        # Stage every change before applying any of them
        staged = {
            txn_id: self._transactions[txn_id].model_copy(update=updates)
            for txn_id, updates in overwrites.items()
            if txn_id in self._transactions
        }
        for r in inserts:
            if r.id in self._transactions:
                raise StorageError(f"Duplicate transaction id {r.id}")
            staged[r.id] = r.model_copy()
        self._transactions.update(staged)
        return [r.id for r in inserts], len(staged) - len(inserts)

    def get_transaction(self, transaction_id):
        record = self._transactions.get(transaction_id)
        return record.model_copy() if record is not None else None

    def update_transaction(self, transaction_id, **updates):
        record = self._transactions.get(transaction_id)
        if record is None:
            return False
        self._transactions[transaction_id] = record.model_copy(update=updates)
        return True

    def delete_transaction(self, transaction_id):
        return self._transactions.pop(transaction_id, None) is not None

    def list_transactions(self, filters, offset=0, limit=50):
        matched = [r for r in self._transactions.values() if _matches(r, filters)]
        matched.sort(key=lambda r: (r.occurred_at, r.id), reverse=True)
        return matched[offset : offset + limit], len(matched)

    def count_by_status(self, filters):
        counts: dict[str, int] = {}
        for r in self._transactions.values():
            if _matches(r, filters):
                counts[r.delivery_status.value] = counts.get(r.delivery_status.value, 0) + 1
        return counts

    def find_existing_orders(self, order_numbers):
        wanted = set(order_numbers)
        existing = {}
        for r in self._transactions.values():
            if r.order_number in wanted:
                existing.setdefault((r.order_number, r.platform_id), r.id)
        return existing

    # --- Catalog ---
    def create_platform(self, platform):
        self._platforms[platform.id] = platform
        return platform.id

    def list_platforms(self, active_only=True):
        return [p for p in self._platforms.values() if p.is_active or not active_only]

    def get_platform(self, platform_id):
        return self._platforms.get(platform_id)

    def create_store(self, store):
        self._stores[store.id] = store
        return store.id

    def list_stores(self, platform_id=None, active_only=True):
        return [
            s
            for s in self._stores.values()
            if (s.is_active or not active_only) and (platform_id is None or s.platform_id == platform_id)
        ]

    def get_store(self, store_id):
        return self._stores.get(store_id)

    def update_store(self, store_id, **updates):
        store = self._stores.get(store_id)
        if store is None:
            return None
        self._stores[store_id] = store.model_copy(update=updates)
        return self._stores[store_id]

    # --- Products ---
    def create_product(self, product):
        self._products[product.id] = product
        return product.id

    def list_products(self, search=None, category=None, active_only=True):
        results = []
        for p in self._products.values():
            if active_only and not p.is_active:
                continue
            if category and p.category != category:
                continue
            if search and not any(search.lower() in h.lower() for h in (p.product_name, p.sku_reference)):
                continue
            results.append(p)
        return sorted(results, key=lambda p: (p.product_name, p.sku_reference))

    def get_product(self, product_id):
        return self._products.get(product_id)

    def get_product_by_sku(self, sku):
        return next((p for p in self._products.values() if p.sku_reference == sku.strip()), None)

    def update_product(self, product_id, **updates):
        product = self._products.get(product_id)
        if product is None:
            return None
        self._products[product_id] = product.model_copy(update={**updates, "updated_at": utcnow()})
        return self._products[product_id]

    # --- Upload batches ---
    def write_upload_batch(self, batch):
        self._batches[batch.id] = batch.model_copy()
        return batch.id

    def read_upload_batch(self, batch_id):
        return self._batches.get(batch_id)

    def list_upload_batches(self, limit=20):
        ordered = sorted(self._batches.values(), key=lambda b: b.uploaded_at, reverse=True)
        return ordered[:limit]

    # --- Ad expenses ---
    def create_ad_expense(self, expense):
        self._ad_expenses[expense.id] = expense
        return expense.id

    def list_ad_expenses(self, start_date=None, end_date=None, platform_ids=None, store_ids=None):
        results = []
        for e in self._ad_expenses.values():
            if start_date and e.expense_date < start_date:
                continue
            if end_date and e.expense_date > end_date:
                continue
            if platform_ids and e.platform_id not in platform_ids:
                continue
            if store_ids and e.store_id not in store_ids:
                continue
            results.append(e)
        return sorted(results, key=lambda e: (e.expense_date, e.id), reverse=True)

    def get_ad_expense(self, expense_id):
        return self._ad_expenses.get(expense_id)

    def update_ad_expense(self, expense_id, **updates):
        expense = self._ad_expenses.get(expense_id)
        if expense is None:
            return None
        self._ad_expenses[expense_id] = expense.model_copy(update=updates)
        return self._ad_expenses[expense_id]

    def delete_ad_expense(self, expense_id):
        return self._ad_expenses.pop(expense_id, None) is not None

    # --- Users ---
    def create_user(self, user):
        self._users[user.id] = user
        return user.id

    def get_user(self, user_id):
        return self._users.get(user_id)

    def get_user_by_email(self, email):
        email = email.strip().lower()
        return next((u for u in self._users.values() if u.email == email), None)

    def update_last_login(self, user_id, at):
        user = self._users.get(user_id)
        if user is not None:
            user.last_login = at

    def list_users(self, active_only=False):
        return [u for u in self._users.values() if u.is_active or not active_only]

    def update_user(self, user_id, **updates):
        user = self._users.get(user_id)
        if user is None:
            return None
        self._users[user_id] = user.model_copy(update=updates)
        return self._users[user_id]

    def ping(self):
        return True


# ---------------------------------------------------------------------------
# Pytest fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_storage():
    """Fresh MockStorage instance for each test."""
    return MockStorage()


@pytest.fixture
def populated_storage(mock_storage):
    """
    MockStorage with two platforms, three stores and a fixed set of sales
    across the current and previous 30-day windows ending at NOW.
    """
    mock_storage.create_platform(Platform(id="shopee", platform_name="Shopee", platform_code="SHP"))
    mock_storage.create_platform(Platform(id="tokopedia", platform_name="Tokopedia", platform_code="TKP"))
    mock_storage.create_store(Store(id="store-1", store_name="Toko Utama", platform_id="shopee"))
    mock_storage.create_store(Store(id="store-2", store_name="Toko Kedua", platform_id="shopee"))
    mock_storage.create_store(Store(id="store-3", store_name="Toko Tokped", platform_id="tokopedia"))

    current = [
        make_record("C-1", "300000", "200000", store_id="store-1", product_sku="SKU-A", product_name="Kemeja"),
        make_record("C-2", "200000", "150000", store_id="store-2", product_sku="SKU-B", product_name="Celana"),
        make_record(
            "C-3", "100000", "90000",
            platform_id="tokopedia", store_id="store-3", product_sku="SKU-A", product_name="Kemeja",
        ),
        make_record(
            "C-4", "50000", "40000", status=DeliveryStatus.CANCELLED,
            store_id="store-1", product_sku="SKU-C", product_name="Topi",
        ),
    ]
    previous = [
        make_record(
            "P-1", "400000", "300000", occurred_at=NOW - timedelta(days=40),
            product_sku="SKU-A", product_name="Kemeja",
        ),
    ]
    mock_storage.insert_transactions(current + previous)
    mock_storage.create_ad_expense(
        AdExpense(expense_date=date(2024, 6, 20), platform_id="shopee", store_id="store-1", amount=Decimal("30000"))
    )
    mock_storage.create_ad_expense(
        AdExpense(expense_date=date(2024, 6, 21), platform_id="shopee", amount=Decimal("5000"))
    )
    return mock_storage


@pytest.fixture
def manager_session():
    return make_session(UserRole.MANAGER)


@pytest.fixture
def viewer_session():
    return make_session(UserRole.VIEWER, email="viewer@marketpulse.test")


@pytest.fixture
def client():
    """FastAPI test client for integration tests (runs the app lifespan)."""
    from marketpulse.main import app
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers(client):
    """Bearer headers for the bootstrap admin."""
    response = client.post("/api/v1/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert response.status_code == 200, response.text
    return {
        "Authorization": f"Bearer {response.json()['access_token']}",
        "X-Request-ID": str(uuid4()),
    }
