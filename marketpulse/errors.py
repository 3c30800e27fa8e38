"""
Domain exceptions raised by services and mapped to HTTP responses in the app factory.
"""

from typing import Any, Optional


class MarketPulseError(Exception):
    """Base class for domain errors with an HTTP status."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(MarketPulseError):
    """A referenced entity does not exist."""

    status_code = 404


class DuplicateTransactionError(MarketPulseError):
    """An order number is already stored for the same platform."""

    status_code = 409


class BadRequestError(MarketPulseError):
    """The request is well-formed but refers to inconsistent data."""

    status_code = 400


class ImportValidationError(BadRequestError):
    """An uploaded file cannot be imported at all (bad encoding, missing columns, too large)."""

    status_code = 400


class PermissionDeniedError(MarketPulseError):
    """The session's role does not allow the operation."""

    status_code = 403


class ConflictError(MarketPulseError):
    """A unique value (such as a user's email) is already taken."""

    status_code = 409


class AuthenticationError(MarketPulseError):
    """Credentials were rejected."""

    status_code = 401
