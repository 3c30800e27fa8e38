"""
Period resolution: symbolic timeframe -> current and previous windows.

The previous window is the same length as the current one and ends exactly
where the current one starts. All instants are naive UTC, matching the
TIMESTAMP columns in storage.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union

import structlog

from marketpulse.models.analytics import PeriodBounds, PeriodWindow
from marketpulse.models.enums import Timeframe

logger = structlog.get_logger()

TIMEFRAME_DAYS = {
    Timeframe.LAST_7_DAYS.value: 7,
    Timeframe.LAST_30_DAYS.value: 30,
    Timeframe.LAST_90_DAYS.value: 90,
    Timeframe.LAST_YEAR.value: 365,
}
FALLBACK_DAYS = 30


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Union[datetime, date]) -> datetime:
    """Normalize a date or datetime to a naive UTC datetime."""
    if not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day)
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def resolve_days(
    days: int,
    now: Optional[datetime] = None,
    timeframe: Optional[str] = None,
) -> PeriodWindow:
    """
    Build the current/previous window pair for a period of ``days`` days.

    Args:
        days: Period length, must be >= 0
        now: Reference instant (default: current UTC time)
        timeframe: Label recorded on the result (default: "<days>d")

    Returns:
        PeriodWindow with current = [now - D, now] and previous = [now - 2D, now - D]
    """
    if days < 0:
        raise ValueError(f"Period length must be non-negative, got {days}")

    end = to_naive_utc(now) if now is not None else utcnow()
    span = timedelta(days=days)
    current_start = end - span

    return PeriodWindow(
        timeframe=timeframe or f"{days}d",
        days=days,
        current=PeriodBounds(start=current_start, end=end),
        previous=PeriodBounds(start=current_start - span, end=current_start),
    )


def resolve_period(
    timeframe: Union[str, Timeframe, None],
    now: Optional[datetime] = None,
) -> PeriodWindow:
    """
    Resolve a symbolic timeframe ("7d", "30d", "90d", "1y").

    Unknown timeframes fall back to 30 days. The fallback is logged and
    flagged on the returned window rather than applied silently.
    """
    key = timeframe.value if isinstance(timeframe, Timeframe) else timeframe
    days = TIMEFRAME_DAYS.get(key) if isinstance(key, str) else None

    if days is None:
        logger.warning(
            "timeframe_fallback",
            timeframe=key,
            fallback_days=FALLBACK_DAYS,
        )
        window = resolve_days(FALLBACK_DAYS, now=now, timeframe=str(key))
        return window.model_copy(update={"fallback_applied": True})

    return resolve_days(days, now=now, timeframe=key)
