"""Registration, login/refresh/logout and the auth dependencies (get_current_user, require_admin)."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, Response, UploadFile, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError

from app.api.deps import get_blob_store, get_user_store
from app.core.config import Settings, get_settings
from app.core.errors import ValidationError
from app.core.security import TokenDomain, TokenError, decode_token
from app.models.user import ROLE_ADMIN, ROLE_USER, User
from app.repositories.users import UserStore
from app.schemas.auth import LoginRequest, MessageResponse, RegisterRequest, TokenResponse, UserPublic
from app.services import sessions
from app.services.avatars import AvatarFile, register_user, validate_avatar
from app.services.blob_store import BlobStore

logger = logging.getLogger(__name__)
router = APIRouter()
security = HTTPBearer(auto_error=False)


def _set_refresh_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        value=token,
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
        httponly=True,
        samesite="strict",
        secure=settings.cookie_secure,
    )


def _clear_refresh_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        httponly=True,
        samesite="strict",
        secure=settings.cookie_secure,
    )


def read_avatar_upload(upload: UploadFile | None, max_bytes: int) -> AvatarFile | None:
    """Read an optional multipart avatar into memory, reading at most one byte past the limit."""
    if upload is None or not upload.filename:
        return None
    avatar = AvatarFile(
        data=upload.file.read(max_bytes + 1),
        content_type=upload.content_type or "",
    )
    validate_avatar(avatar, max_bytes)
    return avatar


@router.post("/register", response_model=UserPublic, status_code=status.HTTP_201_CREATED)
def register(
    store: Annotated[UserStore, Depends(get_user_store)],
    blob_store: Annotated[BlobStore | None, Depends(get_blob_store)],
    settings: Annotated[Settings, Depends(get_settings)],
    email: Annotated[str, Form()],
    username: Annotated[str, Form()],
    password: Annotated[str, Form()],
    first_name: Annotated[str, Form()] = "",
    last_name: Annotated[str, Form()] = "",
    avatar: Annotated[UploadFile | None, File()] = None,
) -> UserPublic:
    """
    Create an account (multipart form). The first account created while no
    admin exists becomes admin. An optional `avatar` image is uploaded first
    and removed again if the account cannot be created.
    """
    try:
        body = RegisterRequest(
            email=email,
            username=username,
            password=password,
            first_name=first_name,
            last_name=last_name,
        )
    except PydanticValidationError as e:
        raise ValidationError("; ".join(err["msg"] for err in e.errors())) from e
    avatar_file = read_avatar_upload(avatar, settings.AVATAR_MAX_BYTES)
    user = register_user(store, blob_store, body, avatar_file)
    return UserPublic.model_validate(user)


@router.post("/login", response_model=TokenResponse)
def login(
    body: LoginRequest,
    response: Response,
    store: Annotated[UserStore, Depends(get_user_store)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> TokenResponse:
    """
    Authenticate with email or username and password; returns a JWT access token
    and sets the refresh token as an http-only cookie. Logging in ends any other session.
    Include the access token in the Authorization header as: Bearer <access_token>
    """
    issued = sessions.login(store, body.identifier, body.password)
    _set_refresh_cookie(response, issued.refresh_token, settings)
    return TokenResponse(access_token=issued.access_token, token_type="bearer")


@router.post("/refresh", response_model=TokenResponse)
def refresh(
    request: Request,
    response: Response,
    store: Annotated[UserStore, Depends(get_user_store)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> TokenResponse:
    """Exchange the refresh-token cookie for a new access token."""
    issued = sessions.refresh_access(store, request.cookies.get(settings.REFRESH_COOKIE_NAME))
    if issued.refresh_token:
        _set_refresh_cookie(response, issued.refresh_token, settings)
    return TokenResponse(access_token=issued.access_token, token_type="bearer")


@router.post("/logout", response_model=MessageResponse)
def logout(
    request: Request,
    response: Response,
    store: Annotated[UserStore, Depends(get_user_store)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> MessageResponse:
    """Revoke the current refresh token if it verifies; always clears the cookie."""
    sessions.logout(store, request.cookies.get(settings.REFRESH_COOKIE_NAME))
    _clear_refresh_cookie(response, settings)
    return MessageResponse(message="Logged out")


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    store: Annotated[UserStore, Depends(get_user_store)],
) -> User:
    """
    Dependency: require a valid Bearer access token and return the current user.

    401 when no token is sent or the user no longer exists, 403 when the token
    is invalid or expired, 500 on a store failure. Users without a role are
    backfilled to 'user' on first sight.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No token provided",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        claims = decode_token(credentials.credentials, TokenDomain.ACCESS)
    except TokenError as e:
        logger.info("Access token rejected: %s", e.reason)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid token",
        ) from e

    try:
        user = store.get(claims["sub"])
        if user is not None and not user.role:
            user.role = ROLE_USER
            store.save(user)
            logger.info("Backfilled missing role", extra={"user_id": user.id})
    except SQLAlchemyError as e:
        store.db.rollback()
        logger.exception("Failed to load user for access token")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server error",
        ) from e

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def require_admin(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    """Dependency: require authenticated user with role 'admin'. Raises 403 for non-admin."""
    if current_user.role != ROLE_ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user
