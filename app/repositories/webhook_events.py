"""Ledger of processed billing-provider webhook event ids."""

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.models.webhook_event import ProcessedWebhookEvent


class WebhookEventLedger:
    """Writes are added to the session; the caller commits them with the state change they guard."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def seen(self, event_id: str) -> bool:
        stmt = select(ProcessedWebhookEvent.event_id).where(
            ProcessedWebhookEvent.event_id == event_id
        )
        return self.db.execute(stmt).first() is not None

    def record(self, event_id: str, event_type: str) -> None:
        self.db.add(ProcessedWebhookEvent(event_id=event_id, event_type=event_type))

    def prune(self, before: datetime) -> int:
        """Delete entries processed before the cutoff; returns the number removed. Does not commit."""
        result = self.db.execute(
            delete(ProcessedWebhookEvent).where(ProcessedWebhookEvent.processed_at < before)
        )
        return result.rowcount or 0
