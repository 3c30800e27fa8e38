"""
Shared query parameters for analytics and export endpoints.
"""

from typing import Optional

from fastapi import Query

from marketpulse.config import get_settings


def split_ids(values: Optional[list[str]]) -> Optional[list[str]]:
    """Accept both repeated params and comma lists: ``?platform_ids=a,b&platform_ids=c``."""
    if not values:
        return None
    ids = [part.strip() for value in values for part in value.split(",") if part.strip()]
    return ids or None


class ScopeParams:
    """Timeframe plus optional platform/store filters."""

    def __init__(
        self,
        timeframe: Optional[str] = Query(None, description="7d, 30d, 90d or 1y"),
        platform_ids: Optional[list[str]] = Query(None, description="Platform ids"),
        store_ids: Optional[list[str]] = Query(None, description="Store ids"),
    ):
        self.timeframe = timeframe or get_settings().default_timeframe
        self.platform_ids = split_ids(platform_ids)
        self.store_ids = split_ids(store_ids)
