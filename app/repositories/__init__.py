"""Data access helpers backed by SQLAlchemy."""

from app.repositories.users import DuplicateUserError, LastAdminError, UserStore
from app.repositories.webhook_events import WebhookEventLedger

__all__ = ["DuplicateUserError", "LastAdminError", "UserStore", "WebhookEventLedger"]
