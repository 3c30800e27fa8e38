"""
User accounts, login and account administration.
"""

from typing import Optional

from marketpulse.auth.passwords import hash_password, verify_password
from marketpulse.auth.session import AuthSession, issue_session
from marketpulse.engine.periods import utcnow
from marketpulse.errors import (
    AuthenticationError,
    BadRequestError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
)
from marketpulse.models.enums import UserRole
from marketpulse.models.users import User, UserCreate, UserUpdate
from marketpulse.storage.base import StorageBackend
from marketpulse.utils.logging import get_logger

logger = get_logger(__name__)


class AuthService:
    def __init__(self, storage: StorageBackend):
        self.storage = storage

    def login(self, email: str, password: str) -> tuple[User, AuthSession]:
        """
        Check credentials and open a session.

        Unknown email, wrong password and inactive accounts all fail with the
        same message.

        Raises:
            AuthenticationError: If the credentials are rejected
        """
        user = self.storage.get_user_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            logger.warning("login_failed", email=email, reason="bad_credentials")
            raise AuthenticationError("Invalid email or password")
        if not user.is_active:
            logger.warning("login_failed", email=email, reason="inactive")
            raise AuthenticationError("Invalid email or password")

        now = utcnow()
        self.storage.update_last_login(user.id, now)
        user.last_login = now
        session = issue_session(user)

        logger.info("login_succeeded", user_id=user.id, role=user.role.value)
        return user, session

    def current_user(self, session: AuthSession) -> User:
        user = self.storage.get_user(session.user_id)
        if user is None or not user.is_active:
            raise AuthenticationError("Account no longer exists")
        return user

    def create_user(self, payload: UserCreate) -> User:
        """Register an account. Raises ConflictError when the email is taken."""
        email = payload.email.strip().lower()
        if self.storage.get_user_by_email(email) is not None:
            raise ConflictError(f"User {email} already exists")

        user = User(
            email=email,
            full_name=payload.full_name,
            role=payload.role,
            password_hash=hash_password(payload.password),
            created_at=utcnow(),
        )
        self.storage.create_user(user)
        return user

    def ensure_bootstrap_admin(self, email: str, password: str) -> Optional[User]:
        """Create the configured super admin if it does not exist yet."""
        if not email or not password:
            return None
        existing = self.storage.get_user_by_email(email)
        if existing is not None:
            return existing

        user = self.create_user(
            UserCreate(
                email=email,
                full_name="Administrator",
                password=password,
                role=UserRole.SUPER_ADMIN,
            )
        )
        logger.info("bootstrap_admin_created", user_id=user.id)
        return user

    # =========================================================================
    # User management
    # =========================================================================

    def list_users(self, active_only: bool = False) -> list[User]:
        return self.storage.list_users(active_only=active_only)

    def _managed_user(self, user_id: str, session: AuthSession) -> User:
        user = self.storage.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        if not session.role.at_least(user.role):
            raise PermissionDeniedError("Cannot manage an account with a higher role")
        return user

    def update_user(self, user_id: str, payload: UserUpdate, session: AuthSession) -> User:
        """
        Edit name, role or password of an account.

        Raises:
            NotFoundError: If the user does not exist
            PermissionDeniedError: If the target or the new role outranks the caller
            BadRequestError: If callers try to change their own role
        """
        user = self._managed_user(user_id, session)
        updates = payload.model_dump(exclude_unset=True, exclude_none=True)

        role = updates.get("role")
        if role is not None and role != user.role:
            if user_id == session.user_id:
                raise BadRequestError("You cannot change your own role")
            if not session.role.at_least(role):
                raise PermissionDeniedError(f"Cannot grant role '{role.value}'")

        password = updates.pop("password", None)
        if password is not None:
            updates["password_hash"] = hash_password(password)

        updated = self.storage.update_user(user_id, **updates)
        logger.info(
            "user_updated",
            user_id=user_id,
            fields=sorted(updates),
            updated_by=session.user_id,
        )
        return updated

    def set_active(self, user_id: str, active: bool, session: AuthSession) -> User:
        """Enable or disable an account. Disabled accounts cannot log in."""
        self._managed_user(user_id, session)
        if user_id == session.user_id and not active:
            raise BadRequestError("You cannot deactivate your own account")

        updated = self.storage.update_user(user_id, is_active=active)
        logger.info("user_active_changed", user_id=user_id, is_active=active, updated_by=session.user_id)
        return updated

    def toggle_active(self, user_id: str, session: AuthSession) -> User:
        user = self._managed_user(user_id, session)
        return self.set_active(user_id, not user.is_active, session)
