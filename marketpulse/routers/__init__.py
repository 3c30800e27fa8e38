"""API routers for all endpoints."""

from marketpulse.routers import analytics, auth, catalog, exports, system, transactions, uploads

__all__ = [
    "auth",
    "transactions",
    "uploads",
    "analytics",
    "catalog",
    "exports",
    "system",
]
