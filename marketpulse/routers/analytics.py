"""
Analytics router - period summaries, rankings, trends and insights.

All endpoints share ``timeframe`` / ``platform_ids`` / ``store_ids``.
Unknown timeframes fall back to 30 days and say so in ``period.fallback_applied``.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from marketpulse.auth.dependencies import get_auth_session
from marketpulse.auth.session import AuthSession
from marketpulse.models.enums import RankMetric
from marketpulse.routers.params import ScopeParams
from marketpulse.services.analytics_service import AnalyticsService
from marketpulse.storage import get_storage
from marketpulse.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


def _service() -> AnalyticsService:
    return AnalyticsService(get_storage())


@router.get("/summary")
async def analytics_summary(
    scope: ScopeParams = Depends(),
    session: AuthSession = Depends(get_auth_session),
):
    """Current and previous period aggregates with per-metric changes."""
    logger.info("analytics_summary", timeframe=scope.timeframe, user_id=session.user_id)
    data = _service().summary(scope.timeframe, scope.platform_ids, scope.store_ids)
    return {"success": True, "data": data}


@router.get("/platforms")
async def platform_performance(
    scope: ScopeParams = Depends(),
    sort_by: RankMetric = RankMetric.REVENUE,
    session: AuthSession = Depends(get_auth_session),
):
    data = _service().platform_performance(
        scope.timeframe, scope.platform_ids, scope.store_ids, sort_by=sort_by
    )
    return {"success": True, "data": data}


@router.get("/products")
async def product_performance(
    scope: ScopeParams = Depends(),
    search: Optional[str] = None,
    sort_by: RankMetric = RankMetric.REVENUE,
    limit: int = Query(50, ge=1, le=500),
    session: AuthSession = Depends(get_auth_session),
):
    data = _service().product_performance(
        scope.timeframe,
        scope.platform_ids,
        scope.store_ids,
        search=search,
        sort_by=sort_by,
        limit=limit,
    )
    return {"success": True, "data": data}


@router.get("/comparison")
async def period_comparison(
    scope: ScopeParams = Depends(),
    session: AuthSession = Depends(get_auth_session),
):
    data = _service().comparison(scope.timeframe, scope.platform_ids, scope.store_ids)
    return {"success": True, "data": data}


@router.get("/trend")
async def sales_trend(
    scope: ScopeParams = Depends(),
    session: AuthSession = Depends(get_auth_session),
):
    data = _service().trend(scope.timeframe, scope.platform_ids, scope.store_ids)
    return {"success": True, "data": data}


@router.get("/stores/profit")
async def store_profit(
    scope: ScopeParams = Depends(),
    session: AuthSession = Depends(get_auth_session),
):
    """Completed-order profit per store, net of ad spend."""
    data = _service().store_profit(scope.timeframe, scope.platform_ids, scope.store_ids)
    return {"success": True, "data": data}


@router.get("/insights")
async def business_insights(
    scope: ScopeParams = Depends(),
    session: AuthSession = Depends(get_auth_session),
):
    """Generated insights, highest priority first."""
    data = _service().insights(scope.timeframe, scope.platform_ids, scope.store_ids)
    logger.info("insights_served", count=len(data["insights"]), user_id=session.user_id)
    return {"success": True, "data": data}
