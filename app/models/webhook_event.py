"""ORM model for the processed webhook event ledger."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, String

from app.models.base import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ProcessedWebhookEvent(Base):
    """
    One row per billing-provider event that was processed successfully.

    Redelivered events with a recorded id are acknowledged without reprocessing.
    Old rows are pruned by the retention job.
    """

    __tablename__ = "processed_webhook_events"

    event_id = Column(String(255), primary_key=True)
    event_type = Column(String(128), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
