"""
Authentication router - login, token refresh, logout and account administration.

This router is the only place sessions are issued or revoked.
"""

from fastapi import APIRouter, Depends, status

from marketpulse.auth.dependencies import get_auth_session, get_revoked_tokens, require_admin
from marketpulse.auth.session import AuthSession, RevokedTokens, issue_session
from marketpulse.models.users import LoginRequest, TokenResponse, UserCreate, UserUpdate
from marketpulse.services.auth_service import AuthService
from marketpulse.storage import get_storage
from marketpulse.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


@router.post("/login", response_model=TokenResponse)
async def login(credentials: LoginRequest):
    """Exchange email and password for a bearer token."""
    user, session = AuthService(get_storage()).login(credentials.email, credentials.password)

    logger.info("jwt_issued", user_id=user.id)
    return TokenResponse(access_token=session.token, expires_in=session.expires_in, user=user)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    session: AuthSession = Depends(get_auth_session),
    revoked: RevokedTokens = Depends(get_revoked_tokens),
):
    """
    Issue a fresh token for the current session.
    The presented token is revoked so it cannot be refreshed twice.
    """
    user = AuthService(get_storage()).current_user(session)
    fresh = issue_session(user)
    revoked.revoke(session)

    logger.info("jwt_refreshed", user_id=user.id)
    return TokenResponse(access_token=fresh.token, expires_in=fresh.expires_in, user=user)


@router.post("/logout")
async def logout(
    session: AuthSession = Depends(get_auth_session),
    revoked: RevokedTokens = Depends(get_revoked_tokens),
):
    """Revoke the presented token."""
    revoked.revoke(session)
    logger.info("user_logout", user_id=session.user_id)
    return {"success": True, "message": "Logged out successfully"}


@router.get("/me")
async def me(session: AuthSession = Depends(get_auth_session)):
    user = AuthService(get_storage()).current_user(session)
    return {"success": True, "data": user}


@router.post("/users", status_code=status.HTTP_201_CREATED)
async def create_user(payload: UserCreate, session: AuthSession = Depends(require_admin)):
    """Create an account (admin only)."""
    user = AuthService(get_storage()).create_user(payload)
    logger.info("user_registered", user_id=user.id, role=user.role.value, created_by=session.user_id)
    return {"success": True, "data": user}


@router.get("/users")
async def list_users(active_only: bool = False, session: AuthSession = Depends(require_admin)):
    return {"success": True, "data": AuthService(get_storage()).list_users(active_only=active_only)}


@router.patch("/users/{user_id}")
async def update_user(user_id: str, payload: UserUpdate, session: AuthSession = Depends(require_admin)):
    """Edit an account's name, role or password (admin only)."""
    user = AuthService(get_storage()).update_user(user_id, payload, session)
    return {"success": True, "data": user}


@router.post("/users/{user_id}/toggle-active")
async def toggle_user_active(user_id: str, session: AuthSession = Depends(require_admin)):
    """Flip an account between active and disabled."""
    user = AuthService(get_storage()).toggle_active(user_id, session)
    return {"success": True, "data": user}
