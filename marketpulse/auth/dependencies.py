"""
FastAPI dependencies for authentication and authorization.
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from marketpulse.auth.session import AuthSession, RevokedTokens, session_from_token
from marketpulse.errors import PermissionDeniedError
from marketpulse.models.enums import UserRole
from marketpulse.utils.logging import bind_session_context, get_logger

logger = get_logger(__name__)
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_revoked_tokens(request: Request) -> RevokedTokens:
    """The revocation registry owned by the running app."""
    return request.app.state.revoked_tokens


async def get_auth_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    revoked: RevokedTokens = Depends(get_revoked_tokens),
) -> AuthSession:
    """
    Resolve the caller's session from the bearer token.

    Raises:
        HTTPException: 401 if the token is missing, invalid, expired or revoked
    """
    if not credentials:
        logger.warning("auth_failed", reason="missing_token")
        raise _unauthorized("Missing authentication token")

    try:
        session = session_from_token(credentials.credentials)
    except JWTError as e:
        logger.warning("auth_failed", reason="invalid_token", error=str(e))
        raise _unauthorized(f"Invalid authentication token: {str(e)}")

    if revoked.is_revoked(session.token_id):
        logger.warning("auth_failed", reason="revoked_token", user_id=session.user_id)
        raise _unauthorized("Session has been logged out")

    bind_session_context(session.user_id, session.role.value)
    logger.debug("auth_success")
    return session


def require_role(role: UserRole):
    """Build a dependency that resolves the session and enforces a minimum role."""

    async def dependency(session: AuthSession = Depends(get_auth_session)) -> AuthSession:
        try:
            return session.require(role)
        except PermissionDeniedError as e:
            logger.warning(
                "auth_forbidden",
                user_id=session.user_id,
                role=session.role.value,
                required=role.value,
            )
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.message)

    return dependency


require_writer = require_role(UserRole.MANAGER)
require_admin = require_role(UserRole.ADMIN)
