"""
User and session models.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from marketpulse.models.enums import UserRole


class User(BaseModel):
    """A dashboard user. ``password_hash`` never leaves the service."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    email: str
    full_name: str
    role: UserRole = UserRole.VIEWER
    password_hash: str = Field(exclude=True, repr=False)
    is_active: bool = True
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class LoginRequest(BaseModel):
    """Email/password credentials."""

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        """Minimal shape check; the user lookup is the real validation."""
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v


class TokenResponse(BaseModel):
    """JWT token response."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: User


class UserCreate(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    full_name: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=8, max_length=255)
    role: UserRole = UserRole.VIEWER


class UserUpdate(BaseModel):
    """Admin edit of an account. Omitted fields are left unchanged."""

    full_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    role: Optional[UserRole] = None
    password: Optional[str] = Field(default=None, min_length=8, max_length=255)
