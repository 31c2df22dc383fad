"""ORM model for application users: credentials, session slot, avatar and subscription snapshot."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, String, func

from app.models.base import Base

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_ADMIN)

SUBSCRIPTION_STATUS_INACTIVE = "inactive"
SUBSCRIPTION_STATUS_CANCELED = "canceled"


def new_user_id() -> str:
    """Ids are generated in memory so blob keys can be derived before the row is persisted."""
    return str(uuid.uuid4())


class User(Base):
    """
    User account for JWT authentication, role-based access control and billing.

    role: 'admin' or 'user'. Rows created before roles existed may hold NULL;
    the session guard backfills them on first authenticated request.
    refresh_token: the single currently valid refresh token (NULL when logged out).
    """

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_user_id)
    email = Column(String(320), nullable=False, unique=True, index=True)
    username = Column(String(30), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False, default="")
    last_name = Column(String(100), nullable=False, default="")
    role = Column(String(32), nullable=True, default=ROLE_USER, index=True)
    avatar_url = Column(String(2048), nullable=True)
    refresh_token = Column(String(1024), nullable=True)

    stripe_customer_id = Column(String(255), nullable=True, unique=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True, index=True)
    subscription_status = Column(
        String(64), nullable=False, default=SUBSCRIPTION_STATUS_INACTIVE
    )
    subscription_current_period_end = Column(DateTime(timezone=True), nullable=True)
    subscription_cancel_at = Column(DateTime(timezone=True), nullable=True)
    subscription_cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    subscription_price_id = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN
