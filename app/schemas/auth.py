"""Request/response schemas for auth and user endpoints."""

import re
from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from app.core.security import PASSWORD_MAX_LEN, PASSWORD_MIN_LEN

USERNAME_PATTERN = re.compile(r"^[a-z0-9_]{3,30}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
NAME_MAX_LEN = 100


class RegisterRequest(BaseModel):
    """Registration fields (sent as multipart form alongside the optional avatar)."""

    email: str = Field(..., max_length=320)
    username: str
    password: str = Field(..., min_length=PASSWORD_MIN_LEN, max_length=PASSWORD_MAX_LEN)
    first_name: str = Field(default="", max_length=NAME_MAX_LEN)
    last_name: str = Field(default="", max_length=NAME_MAX_LEN)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        email = v.strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise ValueError("Invalid email address")
        return email

    @field_validator("username")
    @classmethod
    def normalize_username(cls, v: str) -> str:
        username = v.strip().lower()
        if not USERNAME_PATTERN.match(username):
            raise ValueError(
                "Username must be 3-30 characters of lowercase letters, digits or underscore"
            )
        return username

    @field_validator("first_name", "last_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class LoginRequest(BaseModel):
    """Credentials for login. identifier is an email or a username."""

    identifier: str = Field(
        ...,
        min_length=1,
        max_length=320,
        validation_alias=AliasChoices("identifier", "email", "username"),
    )
    password: str = Field(..., min_length=1, max_length=PASSWORD_MAX_LEN)


class TokenResponse(BaseModel):
    """Access token returned by login and refresh. The refresh token travels only in the cookie."""

    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type")


class MessageResponse(BaseModel):
    message: str


class UserPublic(BaseModel):
    """User as exposed to clients: never includes password_hash or refresh_token."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    username: str
    first_name: str
    last_name: str
    role: str | None
    avatar_url: str | None
    stripe_customer_id: str | None
    stripe_subscription_id: str | None
    subscription_status: str
    subscription_current_period_end: datetime | None
    subscription_cancel_at: datetime | None
    subscription_cancel_at_period_end: bool
    subscription_price_id: str | None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class UsersListResponse(BaseModel):
    """Response for GET /users (admin only)."""

    users: list[UserPublic]


class ProfileUpdateRequest(BaseModel):
    """Editable profile fields. Username and email are not editable here."""

    first_name: str | None = Field(default=None, max_length=NAME_MAX_LEN)
    last_name: str | None = Field(default=None, max_length=NAME_MAX_LEN)


class RoleUpdateRequest(BaseModel):
    role: Literal["user", "admin"]


class DeletedUserResponse(BaseModel):
    message: str
    user: UserPublic
