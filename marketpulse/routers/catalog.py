"""
Catalog router - platforms, stores, products and advertising spend.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from marketpulse.auth.dependencies import get_auth_session, require_writer
from marketpulse.auth.session import AuthSession
from marketpulse.engine.periods import utcnow
from marketpulse.errors import ConflictError, NotFoundError
from marketpulse.models.catalog import (
    AdExpense,
    AdExpenseCreate,
    AdExpenseUpdate,
    Platform,
    PlatformCreate,
    ProductCreate,
    ProductUpdate,
    Store,
    StoreCreate,
    StoreUpdate,
)
from marketpulse.routers.params import split_ids
from marketpulse.services.catalog_service import CatalogService
from marketpulse.storage import get_storage
from marketpulse.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


# =============================================================================
# Platforms
# =============================================================================


@router.get("/platforms")
async def list_platforms(
    active_only: bool = True,
    session: AuthSession = Depends(get_auth_session),
):
    return {"success": True, "data": get_storage().list_platforms(active_only=active_only)}


@router.post("/platforms", status_code=status.HTTP_201_CREATED)
async def create_platform(payload: PlatformCreate, session: AuthSession = Depends(require_writer)):
    storage = get_storage()
    codes = {p.platform_code for p in storage.list_platforms(active_only=False)}
    if payload.platform_code in codes:
        raise ConflictError(f"Platform code '{payload.platform_code}' already exists")

    platform = Platform(**payload.model_dump(), created_at=utcnow())
    storage.create_platform(platform)
    logger.info("platform_created", platform_id=platform.id, code=platform.platform_code)
    return {"success": True, "data": platform}


# =============================================================================
# Stores
# =============================================================================


@router.get("/stores")
async def list_stores(
    platform_id: Optional[str] = None,
    active_only: bool = True,
    session: AuthSession = Depends(get_auth_session),
):
    stores = get_storage().list_stores(platform_id=platform_id, active_only=active_only)
    return {"success": True, "data": stores}


@router.post("/stores", status_code=status.HTTP_201_CREATED)
async def create_store(payload: StoreCreate, session: AuthSession = Depends(require_writer)):
    storage = get_storage()
    if storage.get_platform(payload.platform_id) is None:
        raise NotFoundError(f"Platform {payload.platform_id} not found")

    store = Store(**payload.model_dump(), created_at=utcnow())
    storage.create_store(store)
    logger.info("store_created", store_id=store.id, platform_id=store.platform_id)
    return {"success": True, "data": store}


@router.patch("/stores/{store_id}")
async def update_store(store_id: str, payload: StoreUpdate, session: AuthSession = Depends(require_writer)):
    store = CatalogService(get_storage()).update_store(store_id, payload, session)
    return {"success": True, "data": store}


@router.delete("/stores/{store_id}")
async def deactivate_store(store_id: str, session: AuthSession = Depends(require_writer)):
    """Soft delete: the store is hidden from active lists, its history is kept."""
    store = CatalogService(get_storage()).deactivate_store(store_id, session)
    return {"success": True, "data": store}


# =============================================================================
# Ad expenses
# =============================================================================


@router.get("/ad-expenses")
async def list_ad_expenses(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    platform_ids: Optional[list[str]] = Query(None),
    store_ids: Optional[list[str]] = Query(None),
    session: AuthSession = Depends(get_auth_session),
):
    """Ad spend with inclusive date bounds, newest first."""
    expenses = get_storage().list_ad_expenses(
        start_date=start_date,
        end_date=end_date,
        platform_ids=split_ids(platform_ids),
        store_ids=split_ids(store_ids),
    )
    total = sum((e.amount for e in expenses), 0)
    return {"success": True, "data": {"expenses": expenses, "total_amount": total}}


@router.post("/ad-expenses", status_code=status.HTTP_201_CREATED)
async def create_ad_expense(payload: AdExpenseCreate, session: AuthSession = Depends(require_writer)):
    storage = get_storage()
    CatalogService(storage).check_store_platform(payload.platform_id, payload.store_id)

    expense = AdExpense(**payload.model_dump(), created_by=session.user_id, created_at=utcnow())
    storage.create_ad_expense(expense)
    logger.info(
        "ad_expense_recorded",
        expense_id=expense.id,
        platform_id=expense.platform_id,
        amount=str(expense.amount),
    )
    return {"success": True, "data": expense}


@router.patch("/ad-expenses/{expense_id}")
async def update_ad_expense(
    expense_id: str,
    payload: AdExpenseUpdate,
    session: AuthSession = Depends(require_writer),
):
    expense = CatalogService(get_storage()).update_ad_expense(expense_id, payload, session)
    return {"success": True, "data": expense}


@router.delete("/ad-expenses/{expense_id}")
async def delete_ad_expense(expense_id: str, session: AuthSession = Depends(require_writer)):
    if not get_storage().delete_ad_expense(expense_id):
        raise NotFoundError(f"Ad expense {expense_id} not found")
    logger.info("ad_expense_deleted", expense_id=expense_id, user_id=session.user_id)
    return {"success": True, "message": f"Ad expense {expense_id} deleted"}


# =============================================================================
# Products
# =============================================================================


@router.get("/products")
async def list_products(
    search: Optional[str] = Query(None, description="SKU or product name fragment"),
    category: Optional[str] = None,
    active_only: bool = True,
    session: AuthSession = Depends(get_auth_session),
):
    products = CatalogService(get_storage()).list_products(
        search=search, category=category, active_only=active_only
    )
    return {"success": True, "data": products}


@router.get("/products/stats")
async def product_stats(session: AuthSession = Depends(get_auth_session)):
    return {"success": True, "data": CatalogService(get_storage()).product_stats()}


@router.get("/products/{product_id}")
async def get_product(product_id: str, session: AuthSession = Depends(get_auth_session)):
    return {"success": True, "data": CatalogService(get_storage()).get_product(product_id)}


@router.post("/products", status_code=status.HTTP_201_CREATED)
async def create_product(payload: ProductCreate, session: AuthSession = Depends(require_writer)):
    product = CatalogService(get_storage()).create_product(payload, session)
    return {"success": True, "data": product}


@router.patch("/products/{product_id}")
async def update_product(
    product_id: str,
    payload: ProductUpdate,
    session: AuthSession = Depends(require_writer),
):
    product = CatalogService(get_storage()).update_product(product_id, payload, session)
    return {"success": True, "data": product}
