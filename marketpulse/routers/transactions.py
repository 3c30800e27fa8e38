"""
Transactions router - manual entry, listing, status summary and edits.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from marketpulse.auth.dependencies import get_auth_session, require_writer
from marketpulse.auth.session import AuthSession
from marketpulse.models.enums import DeliveryStatus
from marketpulse.models.transactions import TransactionCreate, TransactionFilters, TransactionUpdate
from marketpulse.routers.params import split_ids
from marketpulse.services.transaction_service import TransactionService
from marketpulse.storage import get_storage
from marketpulse.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


def transaction_filters(
    order_number: Optional[str] = None,
    delivery_status: Optional[DeliveryStatus] = None,
    platform_ids: Optional[list[str]] = Query(None),
    store_ids: Optional[list[str]] = Query(None),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    search: Optional[str] = None,
) -> TransactionFilters:
    return TransactionFilters(
        order_number=order_number,
        delivery_status=delivery_status,
        platform_ids=split_ids(platform_ids) or [],
        store_ids=split_ids(store_ids) or [],
        start=start,
        end=end,
        search=search,
    )


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_transaction(
    payload: TransactionCreate,
    session: AuthSession = Depends(require_writer),
):
    """
    Record a transaction entered by hand.
    Profit is computed from the prices; a repeated order number on the same platform is rejected with 409.
    """
    record = TransactionService(get_storage()).create(payload, session)
    return {"success": True, "data": record}


@router.get("/")
async def list_transactions(
    filters: TransactionFilters = Depends(transaction_filters),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    session: AuthSession = Depends(get_auth_session),
):
    """Filtered listing, newest first, with the total match count."""
    logger.info("transactions_list", page=page, limit=limit, user_id=session.user_id)
    result = TransactionService(get_storage()).list_page(filters, page=page, limit=limit)
    return {"success": True, "data": result}


@router.get("/summary")
async def transaction_status_summary(
    filters: TransactionFilters = Depends(transaction_filters),
    session: AuthSession = Depends(get_auth_session),
):
    """Counts per delivery status for the same filters as the listing."""
    return {"success": True, "data": TransactionService(get_storage()).status_summary(filters)}


@router.get("/{transaction_id}")
async def get_transaction(transaction_id: str, session: AuthSession = Depends(get_auth_session)):
    return {"success": True, "data": TransactionService(get_storage()).get(transaction_id)}


@router.patch("/{transaction_id}")
async def update_transaction(
    transaction_id: str,
    payload: TransactionUpdate,
    session: AuthSession = Depends(require_writer),
):
    record = TransactionService(get_storage()).update(transaction_id, payload, session)
    return {"success": True, "data": record}


@router.delete("/{transaction_id}")
async def delete_transaction(transaction_id: str, session: AuthSession = Depends(require_writer)):
    TransactionService(get_storage()).delete(transaction_id, session)
    return {"success": True, "message": f"Transaction {transaction_id} deleted"}
