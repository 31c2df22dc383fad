"""Webhook ledger retention: delete processed event ids older than WEBHOOK_EVENT_RETENTION_HOURS."""

import logging
from datetime import datetime, timezone, timedelta
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from app.repositories.webhook_events import WebhookEventLedger

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)


def run_retention(session: Session, settings: "Settings", now: datetime | None = None) -> int:
    """
    Delete ledger entries older than the retention window and return how many were removed.

    Stripe stops redelivering an event after a few days, so ids older than the
    window can no longer be duplicates. Idempotent: safe to run repeatedly.
    """
    current = now or datetime.now(timezone.utc)
    cutoff = current - timedelta(hours=settings.WEBHOOK_EVENT_RETENTION_HOURS)
    deleted_count = WebhookEventLedger(session).prune(cutoff)
    session.commit()

    if deleted_count > 0:
        logger.info(
            "Retention run: cutoff=%s, webhook_events_deleted=%s",
            cutoff.isoformat(),
            deleted_count,
        )
    return deleted_count
