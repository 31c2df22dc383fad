"""Shared FastAPI dependencies: identity store, blob store, billing client, request base URL."""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.database import get_db
from app.repositories.users import UserStore
from app.services.blob_store import BlobStore, S3BlobStore
from app.services.checkout import resolve_app_url
from app.services.stripe_client import StripeClient


def get_user_store(db: Annotated[Session, Depends(get_db)]) -> UserStore:
    return UserStore(db)


@lru_cache
def get_blob_store() -> BlobStore | None:
    """Configured avatar store, or None (avatar uploads then answer 503). Built once per process."""
    settings = get_settings()
    if not settings.blob_store_configured:
        return None
    return S3BlobStore.from_settings(settings)


def get_billing_client() -> StripeClient | None:
    """Configured Stripe client, or None (billing endpoints then answer 503)."""
    return StripeClient.from_settings(get_settings())


def get_app_base_url(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> str | None:
    return resolve_app_url(
        settings.FRONTEND_URL,
        request.headers.get("origin"),
        request.url.scheme,
        request.headers.get("host"),
    )
