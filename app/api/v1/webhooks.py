"""Stripe webhook endpoint: verify the signature on the raw body, then reconcile subscription state."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.api.deps import get_billing_client, get_user_store
from app.core.config import Settings, get_settings
from app.repositories.users import UserStore
from app.schemas.billing import WebhookAck
from app.services.stripe_client import (
    SIGNATURE_HEADER,
    BillingProviderError,
    StripeClient,
    WebhookSignatureError,
    construct_event,
)
from app.services.subscriptions import process_event

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    store: Annotated[UserStore, Depends(get_user_store)],
    client: Annotated[StripeClient | None, Depends(get_billing_client)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    """
    Receive a Stripe event.

    - 200 `{"received": false}` when no webhook secret is configured (nothing is processed).
    - 400 when the signature does not verify (no state is changed; Stripe should not retry).
    - 200 `{"received": true}` once processed, ignored or recognised as a redelivery.
    - 500 when processing fails downstream (Stripe retries the delivery).
    """
    if settings.STRIPE_WEBHOOK_SECRET is None:
        logger.warning("Stripe webhook received but webhook secret is not configured")
        return WebhookAck(received=False)

    payload = await request.body()
    try:
        event = construct_event(
            payload,
            request.headers.get(SIGNATURE_HEADER),
            settings.STRIPE_WEBHOOK_SECRET.get_secret_value(),
            tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SEC,
        )
    except WebhookSignatureError as e:
        logger.error("Stripe webhook signature verification failed: %s", e.message)
        return JSONResponse(status_code=400, content={"detail": f"Webhook Error: {e.message}"})

    try:
        outcome = await process_event(store, client, event)
    except (BillingProviderError, SQLAlchemyError):
        store.db.rollback()
        logger.exception(
            "Error handling Stripe webhook event",
            extra={"event_id": event.get("id"), "event_type": event.get("type")},
        )
        return JSONResponse(status_code=500, content={"detail": "Webhook handler failed"})

    logger.info(
        "Stripe webhook handled",
        extra={"event_id": event.get("id"), "event_type": event.get("type"), "outcome": outcome},
    )
    return WebhookAck(received=True)
