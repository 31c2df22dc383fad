"""Response schemas for billing endpoints and webhook acknowledgements."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class CheckoutSessionResponse(BaseModel):
    id: str
    url: str | None


class PortalSessionResponse(BaseModel):
    url: str


class PlanProduct(BaseModel):
    id: str | None = None
    name: str | None = None
    description: str | None = None


class PlanResponse(BaseModel):
    """Configured subscription price with its product summary."""

    id: str
    currency: str | None = None
    unit_amount: int | None = None
    recurring: dict[str, Any] | None = None
    nickname: str | None = None
    product: PlanProduct = Field(default_factory=PlanProduct)


class SubscriptionStatusResponse(BaseModel):
    stripe_customer_id: str | None
    stripe_subscription_id: str | None
    subscription_status: str | None
    subscription_current_period_end: datetime | None
    subscription_cancel_at: datetime | None
    subscription_cancel_at_period_end: bool
    subscription_price_id: str | None


class WebhookAck(BaseModel):
    """received is False when the event was acknowledged without processing."""

    received: bool
