"""
Avatar uploads coordinated with identity-record commits.

Every flow writes the new blob first and links it second. When the link step
(the user commit) fails, the just-written blob is deleted before the original
error propagates. Deleting an old or orphaned blob is always best effort:
failures are logged, never raised, never retried.
"""

import logging
import time
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import ServiceUnavailableError, UpstreamError, ValidationError
from app.core.security import hash_password
from app.models.user import ROLE_ADMIN, ROLE_USER, User, new_user_id
from app.repositories.users import UserStore
from app.schemas.auth import RegisterRequest
from app.services.blob_store import BlobStore, BlobStoreError

logger = logging.getLogger(__name__)

AVATAR_KEY_PREFIX = "avatars"
ALLOWED_AVATAR_MIME_PREFIX = "image/"


@dataclass
class AvatarFile:
    """An uploaded avatar already read into memory."""

    data: bytes
    content_type: str


def validate_avatar(avatar: AvatarFile, max_bytes: int) -> None:
    """MIME prefix and size check only; the content itself is not inspected."""
    if not (avatar.content_type or "").lower().startswith(ALLOWED_AVATAR_MIME_PREFIX):
        raise ValidationError("Only image files are allowed")
    if not avatar.data:
        raise ValidationError("Avatar file is empty")
    if len(avatar.data) > max_bytes:
        raise ValidationError(f"Avatar must be {max_bytes // (1024 * 1024)}MB or smaller")


def avatar_key(user_id: str) -> str:
    """Object key for a new avatar: user id plus a millisecond timestamp."""
    return f"{AVATAR_KEY_PREFIX}/{user_id}-{int(time.time() * 1000)}"


def _upload(blob_store: BlobStore | None, user_id: str, avatar: AvatarFile) -> str:
    if blob_store is None:
        raise ServiceUnavailableError("Avatar storage is not configured")
    try:
        return blob_store.put(avatar_key(user_id), avatar.data, avatar.content_type)
    except BlobStoreError as e:
        logger.error("Avatar upload failed", extra={"user_id": user_id, "reason": e.message})
        raise UpstreamError("Failed to upload avatar") from e


def _discard_blob(blob_store: BlobStore | None, url: str, *, user_id: str, reason: str) -> None:
    """Best-effort blob delete. A failure leaves an orphaned blob behind and is only logged."""
    if not url:
        return
    if blob_store is None:
        logger.warning("Blob storage not configured; leaving %s in place", url)
        return
    try:
        blob_store.delete_by_url(url)
    except BlobStoreError as e:
        logger.error(
            "Failed to delete avatar blob",
            extra={"user_id": user_id, "url": url, "reason": reason, "error": e.message},
        )


def register_user(
    store: UserStore,
    blob_store: BlobStore | None,
    body: RegisterRequest,
    avatar: AvatarFile | None = None,
) -> User:
    """
    Create a user, uploading the avatar (if any) before the row is committed.

    The first user registered while no admin exists becomes admin. Raises
    DuplicateUserError (409) on an email/username collision, after deleting
    the uploaded avatar.
    """
    user = User(
        id=new_user_id(),
        email=body.email,
        username=body.username,
        password_hash=hash_password(body.password),
        first_name=body.first_name,
        last_name=body.last_name,
        role=ROLE_ADMIN if store.count_by_role(ROLE_ADMIN) == 0 else ROLE_USER,
    )

    uploaded_url = None
    if avatar is not None:
        uploaded_url = _upload(blob_store, user.id, avatar)
        user.avatar_url = uploaded_url

    try:
        store.create(user)
    except Exception:
        if uploaded_url:
            _discard_blob(blob_store, uploaded_url, user_id=user.id, reason="registration failed")
        raise

    logger.info("User registered", extra={"user_id": user.id, "role": user.role})
    return user


def replace_avatar(
    store: UserStore,
    blob_store: BlobStore | None,
    user: User,
    avatar: AvatarFile,
) -> User:
    """
    Upload a new avatar, link it, then delete the previous blob.

    The user always has a reachable avatar: the old blob is removed only after
    the new reference is committed.
    """
    new_url = _upload(blob_store, user.id, avatar)
    previous_url = user.avatar_url
    user.avatar_url = new_url
    try:
        store.save(user)
    except SQLAlchemyError:
        store.db.rollback()
        _discard_blob(blob_store, new_url, user_id=user.id, reason="avatar update failed")
        raise

    if previous_url and previous_url != new_url:
        _discard_blob(blob_store, previous_url, user_id=user.id, reason="replaced")
    return user


def delete_account(
    store: UserStore,
    blob_store: BlobStore | None,
    acting_user: User,
    target: User,
) -> None:
    """
    Delete target on behalf of an admin.

    The row is removed first under the admin-floor check; the avatar blob is
    deleted best effort once that transaction has committed, so no admin row
    locks are held during the storage call.
    """
    if target.id == acting_user.id:
        raise ValidationError("Admins cannot delete themselves")
    avatar_url = target.avatar_url
    store.delete(target)
    if avatar_url:
        _discard_blob(blob_store, avatar_url, user_id=target.id, reason="account deleted")
    logger.info("User deleted", extra={"user_id": target.id, "by": acting_user.id})
