"""Checkout orchestration: lazy billing-customer provisioning plus checkout and billing-portal sessions."""

import logging
from typing import TYPE_CHECKING, Any

from app.core.errors import ServiceUnavailableError, UpstreamError, ValidationError
from app.models.user import User
from app.repositories.users import UserStore
from app.schemas.billing import (
    CheckoutSessionResponse,
    PlanProduct,
    PlanResponse,
    PortalSessionResponse,
    SubscriptionStatusResponse,
)
from app.services.stripe_client import BillingProviderError, StripeClient

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

# A user in one of these states cannot start a second checkout.
LIVE_SUBSCRIPTION_STATUSES = frozenset({"active", "trialing", "past_due", "incomplete"})

BILLING_NOT_CONFIGURED = "Billing is not configured"


def resolve_app_url(
    configured_url: str | None,
    origin: str | None,
    scheme: str | None,
    host: str | None,
) -> str | None:
    """Base URL for redirects: configured override, then request Origin, then request scheme://host."""
    if configured_url and configured_url.strip():
        return configured_url.strip().rstrip("/")
    if origin and origin.strip() and origin.strip().lower() != "null":
        return origin.strip().rstrip("/")
    if host and host.strip():
        return f"{scheme or 'https'}://{host.strip()}".rstrip("/")
    return None


def _require_client(client: StripeClient | None) -> StripeClient:
    if client is None:
        raise ServiceUnavailableError(BILLING_NOT_CONFIGURED)
    return client


def _require_price_id(settings: "Settings") -> str:
    if not settings.STRIPE_PRICE_ID:
        raise ServiceUnavailableError(BILLING_NOT_CONFIGURED)
    return settings.STRIPE_PRICE_ID


def _require_base_url(base_url: str | None) -> str:
    if not base_url:
        raise ServiceUnavailableError("Unable to determine application URL")
    return base_url


def _display_name(user: User) -> str | None:
    return " ".join(part for part in (user.first_name, user.last_name) if part) or None


async def ensure_customer(store: UserStore, client: StripeClient, user: User) -> str:
    """
    Return the user's billing customer id, creating the customer on first use.

    The id is committed before any further provider call so a retry after a
    crash reuses it instead of creating a second customer.
    """
    if user.stripe_customer_id:
        return user.stripe_customer_id
    customer = await client.create_customer(
        email=user.email,
        name=_display_name(user),
        metadata={"user_id": user.id},
        idempotency_key=f"customer-{user.id}",
    )
    user.stripe_customer_id = customer["id"]
    store.save(user)
    logger.info(
        "Billing customer created",
        extra={"user_id": user.id, "customer_id": user.stripe_customer_id},
    )
    return user.stripe_customer_id


async def start_checkout(
    store: UserStore,
    client: StripeClient | None,
    settings: "Settings",
    user: User,
    base_url: str | None,
) -> CheckoutSessionResponse:
    """Create a subscription checkout session for user. All preconditions are checked before any provider call."""
    client = _require_client(client)
    price_id = _require_price_id(settings)
    base_url = _require_base_url(base_url)

    if user.subscription_status in LIVE_SUBSCRIPTION_STATUSES:
        raise ValidationError("You already have an active subscription")

    try:
        customer_id = await ensure_customer(store, client, user)
        session = await client.create_checkout_session(
            {
                "mode": "subscription",
                "customer": customer_id,
                "line_items": [{"price": price_id, "quantity": 1}],
                "allow_promotion_codes": True,
                "client_reference_id": user.id,
                "subscription_data": {"metadata": {"user_id": user.id}},
                "success_url": f"{base_url}/dashboard?checkout=success&session_id={{CHECKOUT_SESSION_ID}}",
                "cancel_url": f"{base_url}/dashboard?checkout=cancelled",
            }
        )
    except BillingProviderError as e:
        logger.error(
            "Failed to create checkout session",
            extra={"user_id": user.id, "reason": e.message[:500]},
        )
        raise UpstreamError("Failed to start checkout session") from e

    logger.info("Checkout session created", extra={"user_id": user.id, "session_id": session.get("id")})
    return CheckoutSessionResponse(id=session["id"], url=session.get("url"))


async def open_billing_portal(
    client: StripeClient | None,
    user: User,
    base_url: str | None,
) -> PortalSessionResponse:
    client = _require_client(client)
    base_url = _require_base_url(base_url)
    if not user.stripe_customer_id:
        raise ValidationError("No billing information found for this user")
    try:
        session = await client.create_portal_session(
            user.stripe_customer_id, return_url=f"{base_url}/dashboard"
        )
    except BillingProviderError as e:
        logger.error(
            "Failed to create billing portal session",
            extra={"user_id": user.id, "reason": e.message[:500]},
        )
        raise UpstreamError("Failed to open billing portal") from e
    return PortalSessionResponse(url=session["url"])


def _plan_product(product: Any) -> PlanProduct:
    if isinstance(product, dict):
        return PlanProduct(
            id=product.get("id"),
            name=product.get("name"),
            description=product.get("description"),
        )
    return PlanProduct(id=product if isinstance(product, str) else None)


async def get_plan(client: StripeClient | None, settings: "Settings") -> PlanResponse:
    """Summary of the configured subscription price."""
    client = _require_client(client)
    price_id = _require_price_id(settings)
    try:
        price = await client.retrieve_price(price_id)
    except BillingProviderError as e:
        logger.error("Failed to load subscription plan", extra={"reason": e.message[:500]})
        raise UpstreamError("Failed to load subscription plan") from e
    return PlanResponse(
        id=price["id"],
        currency=price.get("currency"),
        unit_amount=price.get("unit_amount"),
        recurring=price.get("recurring"),
        nickname=price.get("nickname"),
        product=_plan_product(price.get("product")),
    )


def subscription_status(user: User) -> SubscriptionStatusResponse:
    return SubscriptionStatusResponse(
        stripe_customer_id=user.stripe_customer_id,
        stripe_subscription_id=user.stripe_subscription_id,
        subscription_status=user.subscription_status,
        subscription_current_period_end=user.subscription_current_period_end,
        subscription_cancel_at=user.subscription_cancel_at,
        subscription_cancel_at_period_end=bool(user.subscription_cancel_at_period_end),
        subscription_price_id=user.subscription_price_id,
    )
