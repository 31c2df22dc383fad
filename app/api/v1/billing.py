"""Billing endpoints: plan, subscription status, checkout and billing-portal sessions."""

from typing import Annotated

from fastapi import APIRouter, Depends

from app.api.deps import get_app_base_url, get_billing_client, get_user_store
from app.api.v1.auth import get_current_user
from app.core.config import Settings, get_settings
from app.models.user import User
from app.repositories.users import UserStore
from app.schemas.billing import (
    CheckoutSessionResponse,
    PlanResponse,
    PortalSessionResponse,
    SubscriptionStatusResponse,
)
from app.services import checkout
from app.services.stripe_client import StripeClient

router = APIRouter()


@router.get("/plan", response_model=PlanResponse)
async def get_plan(
    _user: Annotated[User, Depends(get_current_user)],
    client: Annotated[StripeClient | None, Depends(get_billing_client)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> PlanResponse:
    return await checkout.get_plan(client, settings)


@router.get("/status", response_model=SubscriptionStatusResponse)
def get_status(
    current_user: Annotated[User, Depends(get_current_user)],
) -> SubscriptionStatusResponse:
    return checkout.subscription_status(current_user)


@router.post("/checkout-session", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    current_user: Annotated[User, Depends(get_current_user)],
    store: Annotated[UserStore, Depends(get_user_store)],
    client: Annotated[StripeClient | None, Depends(get_billing_client)],
    settings: Annotated[Settings, Depends(get_settings)],
    base_url: Annotated[str | None, Depends(get_app_base_url)],
) -> CheckoutSessionResponse:
    """
    Start a subscription checkout for the current user.

    Creates the billing customer on first use. Answers 503 when billing, the
    price or the application URL is not configured.
    """
    return await checkout.start_checkout(store, client, settings, current_user, base_url)


@router.post("/portal-session", response_model=PortalSessionResponse)
async def create_portal_session(
    current_user: Annotated[User, Depends(get_current_user)],
    client: Annotated[StripeClient | None, Depends(get_billing_client)],
    base_url: Annotated[str | None, Depends(get_app_base_url)],
) -> PortalSessionResponse:
    """Open the billing portal for a user who already has a billing customer."""
    return await checkout.open_billing_portal(client, current_user, base_url)
