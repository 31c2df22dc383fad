"""
Subscription reconciliation from Stripe webhook events.

Every update overwrites the full subscription snapshot on the user with the
event's absolute values, so applying the same event twice converges to the
same state. Processed event ids are also recorded in a ledger and redeliveries
are acknowledged without reprocessing. Events are not reordered by timestamp:
a stale "updated" delivered after a newer one overwrites it.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.exc import IntegrityError

from app.models.user import SUBSCRIPTION_STATUS_CANCELED, User
from app.repositories.users import UserStore
from app.repositories.webhook_events import WebhookEventLedger
from app.services.stripe_client import StripeClient

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"

RELEVANT_EVENTS = frozenset(
    {CHECKOUT_COMPLETED, SUBSCRIPTION_CREATED, SUBSCRIPTION_UPDATED, SUBSCRIPTION_DELETED}
)

# Statuses after which the subscription id is no longer meaningful.
ENDED_STATUSES = frozenset({"canceled", "incomplete_expired"})

# Outcomes of process_event, used for logging and tests.
OUTCOME_PROCESSED = "processed"
OUTCOME_IGNORED = "ignored"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_UNMATCHED = "unmatched"

TERMINAL_SNAPSHOT: dict[str, Any] = {
    "stripe_subscription_id": None,
    "subscription_status": SUBSCRIPTION_STATUS_CANCELED,
    "subscription_price_id": None,
    "subscription_current_period_end": None,
    "subscription_cancel_at": None,
    "subscription_cancel_at_period_end": False,
}


def _to_datetime(timestamp: Any) -> datetime | None:
    if not timestamp:
        return None
    return datetime.fromtimestamp(int(timestamp), tz=UTC)


def _object_id(value: Any) -> str | None:
    """Stripe fields hold either an id string or an expanded object."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        return value.get("id")
    return None


def _first_item(subscription: dict[str, Any]) -> dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items and isinstance(items[0], dict) else {}


def snapshot_from_subscription(subscription: dict[str, Any]) -> dict[str, Any]:
    """Absolute subscription field values for a Stripe subscription object."""
    status = subscription.get("status") or SUBSCRIPTION_STATUS_CANCELED
    item = _first_item(subscription)
    # Newer API versions moved current_period_end onto the subscription items.
    period_end = subscription.get("current_period_end") or item.get("current_period_end")
    return {
        "stripe_subscription_id": None if status in ENDED_STATUSES else subscription.get("id"),
        "subscription_status": status,
        "subscription_price_id": _object_id(item.get("price")),
        "subscription_current_period_end": _to_datetime(period_end),
        "subscription_cancel_at": _to_datetime(subscription.get("cancel_at")),
        "subscription_cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
    }


def apply_snapshot(user: User, snapshot: dict[str, Any]) -> None:
    for field, value in snapshot.items():
        setattr(user, field, value)


async def _reconcile_checkout(
    store: UserStore,
    client: StripeClient | None,
    session: dict[str, Any],
) -> User | None:
    if session.get("mode") != "subscription":
        return None
    customer_id = _object_id(session.get("customer"))
    user = store.find_by_customer_id(customer_id) if customer_id else None
    if user is None:
        email = (session.get("customer_details") or {}).get("email") or session.get("customer_email")
        if email:
            user = store.find_by_email(email)
        if user is not None and customer_id and not user.stripe_customer_id:
            user.stripe_customer_id = customer_id
    if user is None:
        logger.warning(
            "Checkout completed for unknown customer",
            extra={"customer_id": customer_id, "session_id": session.get("id")},
        )
        return None

    subscription = session.get("subscription")
    subscription_id = _object_id(subscription)
    if not subscription_id:
        apply_snapshot(user, TERMINAL_SNAPSHOT)
    elif isinstance(subscription, dict) and subscription.get("status"):
        apply_snapshot(user, snapshot_from_subscription(subscription))
    elif client is not None:
        apply_snapshot(user, snapshot_from_subscription(await client.retrieve_subscription(subscription_id)))
    else:
        # Without API access only the link is known; the subscription events carry the rest.
        user.stripe_subscription_id = subscription_id
    return user


def _reconcile_subscription(
    store: UserStore,
    subscription: dict[str, Any],
    deleted: bool,
) -> User | None:
    customer_id = _object_id(subscription.get("customer"))
    if not customer_id:
        return None
    user = store.find_by_customer_id(customer_id)
    if user is None:
        logger.warning(
            "Subscription event for unknown customer",
            extra={"customer_id": customer_id, "subscription_id": subscription.get("id")},
        )
        return None
    apply_snapshot(user, TERMINAL_SNAPSHOT if deleted else snapshot_from_subscription(subscription))
    return user


async def process_event(
    store: UserStore,
    client: StripeClient | None,
    event: dict[str, Any],
) -> str:
    """
    Apply one verified Stripe event. Returns one of the OUTCOME_* constants.

    Never creates users. Provider and store errors propagate so the caller can
    answer 500 and have the provider retry.
    """
    event_type = event.get("type")
    event_id = event.get("id")
    if event_type not in RELEVANT_EVENTS:
        return OUTCOME_IGNORED

    ledger = WebhookEventLedger(store.db)
    if event_id and ledger.seen(event_id):
        logger.info("Webhook event already processed", extra={"event_id": event_id})
        return OUTCOME_DUPLICATE

    obj = (event.get("data") or {}).get("object") or {}
    if event_type == CHECKOUT_COMPLETED:
        user = await _reconcile_checkout(store, client, obj)
    else:
        user = _reconcile_subscription(store, obj, deleted=event_type == SUBSCRIPTION_DELETED)

    if event_id:
        ledger.record(event_id, event_type)
    try:
        store.db.commit()
    except IntegrityError:
        store.db.rollback()
        # Concurrent delivery of the same event recorded it first.
        if event_id and ledger.seen(event_id):
            return OUTCOME_DUPLICATE
        raise

    if user is None:
        return OUTCOME_UNMATCHED
    logger.info(
        "Subscription reconciled",
        extra={
            "event_id": event_id,
            "event_type": event_type,
            "user_id": user.id,
            "subscription_status": user.subscription_status,
        },
    )
    return OUTCOME_PROCESSED
