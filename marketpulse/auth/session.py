"""
Explicit authentication sessions.

An ``AuthSession`` is resolved from the bearer token on every request and
handed to whichever handler or service needs identity. There is no ambient
"current user": token issue, refresh and revocation all go through the
auth router, which owns the ``RevokedTokens`` registry on ``app.state``.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError
from pydantic import BaseModel, ConfigDict

from marketpulse.auth.jwt import create_access_token, decode_access_token
from marketpulse.errors import PermissionDeniedError
from marketpulse.models.enums import UserRole
from marketpulse.models.users import User


class AuthSession(BaseModel):
    """Identity of the caller for one request."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    full_name: str
    role: UserRole
    token: str
    token_id: str
    issued_at: datetime
    expires_at: datetime

    @property
    def can_write(self) -> bool:
        """Managers and above may change data."""
        return self.role.at_least(UserRole.MANAGER)

    def require(self, role: UserRole) -> "AuthSession":
        """Return self, or raise PermissionDeniedError if the role is too low."""
        if not self.role.at_least(role):
            raise PermissionDeniedError(
                f"Role '{self.role.value}' cannot perform this action; requires '{role.value}'"
            )
        return self

    @property
    def expires_in(self) -> int:
        return max(0, int((self.expires_at - self.issued_at).total_seconds()))


def issue_session(user: User, expires_delta: Optional[timedelta] = None) -> AuthSession:
    """Sign a fresh token for ``user`` and wrap it in a session."""
    token = create_access_token(
        data={
            "sub": user.id,
            "email": user.email,
            "name": user.full_name,
            "role": user.role.value,
        },
        expires_delta=expires_delta,
    )
    return session_from_token(token)


def session_from_token(token: str) -> AuthSession:
    """
    Decode a bearer token into a session.

    Raises:
        JWTError: If the token is invalid, expired, or missing claims
    """
    payload = decode_access_token(token)
    if not payload.get("sub") or not payload.get("role") or not payload.get("jti"):
        raise JWTError("Token is missing required claims")
    try:
        role = UserRole(payload["role"])
    except ValueError as e:
        raise JWTError(f"Unknown role: {payload['role']}") from e

    return AuthSession(
        user_id=payload["sub"],
        email=payload.get("email", ""),
        full_name=payload.get("name", ""),
        role=role,
        token=token,
        token_id=payload["jti"],
        issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )


class RevokedTokens:
    """Token ids revoked by logout or refresh, kept until they would expire anyway."""

    def __init__(self):
        self._expiry: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def revoke(self, session: AuthSession) -> None:
        with self._lock:
            self._prune()
            self._expiry[session.token_id] = session.expires_at

    def is_revoked(self, token_id: str) -> bool:
        with self._lock:
            return token_id in self._expiry

    def _prune(self) -> None:
        now = datetime.now(timezone.utc)
        for token_id in [t for t, exp in self._expiry.items() if exp <= now]:
            del self._expiry[token_id]

    def __len__(self) -> int:
        return len(self._expiry)
