"""
System health router.
"""

import time

from fastapi import APIRouter

from marketpulse import __version__
from marketpulse.config import get_settings
from marketpulse.storage import get_storage
from marketpulse.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()

# Track startup time for uptime calculation
_startup_time = time.time()


@router.get("/health")
async def system_health():
    """
    Health check for load balancers and monitoring.
    Reports database connectivity; a failing database degrades the status.
    """
    settings = get_settings()
    database_ok = get_storage().ping()
    if not database_ok:
        logger.warning("health_degraded", reason="database_unreachable")

    return {
        "status": "healthy" if database_ok else "degraded",
        "version": __version__,
        "uptime_seconds": round(time.time() - _startup_time, 1),
        "database": "connected" if database_ok else "unreachable",
        "dev_mode": settings.dev_mode,
    }
