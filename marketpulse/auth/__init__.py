"""JWT authentication, password hashing, and explicit request sessions."""

from marketpulse.auth.dependencies import get_auth_session, require_admin, require_role, require_writer
from marketpulse.auth.jwt import create_access_token, decode_access_token
from marketpulse.auth.passwords import hash_password, verify_password
from marketpulse.auth.session import AuthSession, RevokedTokens, issue_session, session_from_token

__all__ = [
    "AuthSession",
    "RevokedTokens",
    "create_access_token",
    "decode_access_token",
    "get_auth_session",
    "hash_password",
    "issue_session",
    "require_admin",
    "require_role",
    "require_writer",
    "session_from_token",
    "verify_password",
]
