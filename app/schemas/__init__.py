"""Pydantic request/response schemas."""

from app.schemas.auth import (
    LoginRequest,
    RegisterRequest,
    TokenResponse,
    UserPublic,
    UsersListResponse,
)
from app.schemas.billing import (
    CheckoutSessionResponse,
    PlanResponse,
    PortalSessionResponse,
    SubscriptionStatusResponse,
    WebhookAck,
)
from app.schemas.health import HealthResponse

__all__ = [
    "CheckoutSessionResponse",
    "HealthResponse",
    "LoginRequest",
    "PlanResponse",
    "PortalSessionResponse",
    "RegisterRequest",
    "SubscriptionStatusResponse",
    "TokenResponse",
    "UserPublic",
    "UsersListResponse",
    "WebhookAck",
]
