"""SQLAlchemy ORM models."""

from app.models.base import Base
from app.models.user import User
from app.models.webhook_event import ProcessedWebhookEvent

__all__ = ["Base", "ProcessedWebhookEvent", "User"]
