"""User profile, avatar and admin user-management endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, File, UploadFile

from app.api.deps import get_blob_store, get_user_store
from app.api.v1.auth import get_current_user, read_avatar_upload, require_admin
from app.core.config import Settings, get_settings
from app.core.errors import NotFoundError, ValidationError
from app.models.user import User
from app.repositories.users import UserStore
from app.schemas.auth import (
    DeletedUserResponse,
    ProfileUpdateRequest,
    RoleUpdateRequest,
    UserPublic,
    UsersListResponse,
)
from app.services.avatars import delete_account, replace_avatar
from app.services.blob_store import BlobStore

router = APIRouter()


def _get_target(store: UserStore, user_id: str) -> User:
    user = store.get(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


@router.get("/me", response_model=UserPublic)
def get_me(
    current_user: Annotated[User, Depends(get_current_user)],
) -> UserPublic:
    return UserPublic.model_validate(current_user)


@router.patch("/me", response_model=UserPublic)
def update_me(
    body: ProfileUpdateRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    store: Annotated[UserStore, Depends(get_user_store)],
) -> UserPublic:
    """Update first and/or last name. Email and username cannot be changed."""
    updates = body.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise ValidationError("No updates provided")
    for field, value in updates.items():
        setattr(current_user, field, value.strip())
    store.save(current_user)
    return UserPublic.model_validate(current_user)


@router.post("/me/avatar", response_model=UserPublic)
def upload_avatar(
    current_user: Annotated[User, Depends(get_current_user)],
    store: Annotated[UserStore, Depends(get_user_store)],
    blob_store: Annotated[BlobStore | None, Depends(get_blob_store)],
    settings: Annotated[Settings, Depends(get_settings)],
    avatar: Annotated[UploadFile | None, File()] = None,
) -> UserPublic:
    """Replace the current user's avatar (multipart field `avatar`, image only)."""
    avatar_file = read_avatar_upload(avatar, settings.AVATAR_MAX_BYTES)
    if avatar_file is None:
        raise ValidationError("No file")
    user = replace_avatar(store, blob_store, current_user, avatar_file)
    return UserPublic.model_validate(user)


@router.get("", response_model=UsersListResponse)
def list_users(
    _admin: Annotated[User, Depends(require_admin)],
    store: Annotated[UserStore, Depends(get_user_store)],
) -> UsersListResponse:
    """List all users, newest first (admin only)."""
    return UsersListResponse(users=[UserPublic.model_validate(u) for u in store.list_users()])


@router.patch("/{user_id}/role", response_model=UserPublic)
def change_role(
    user_id: str,
    body: RoleUpdateRequest,
    _admin: Annotated[User, Depends(require_admin)],
    store: Annotated[UserStore, Depends(get_user_store)],
) -> UserPublic:
    """Set a user's role (admin only). The last admin cannot be demoted."""
    target = _get_target(store, user_id)
    store.change_role(target, body.role)
    return UserPublic.model_validate(target)


@router.delete("/{user_id}", response_model=DeletedUserResponse)
def delete_user(
    user_id: str,
    admin: Annotated[User, Depends(require_admin)],
    store: Annotated[UserStore, Depends(get_user_store)],
    blob_store: Annotated[BlobStore | None, Depends(get_blob_store)],
) -> DeletedUserResponse:
    """Delete a user and, best effort, their avatar (admin only). The last admin cannot be deleted."""
    target = _get_target(store, user_id)
    snapshot = UserPublic.model_validate(target)
    delete_account(store, blob_store, admin, target)
    return DeletedUserResponse(message="User deleted", user=snapshot)
