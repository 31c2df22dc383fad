"""Session lifecycle: login, access-token refresh and logout over the single refresh-token slot."""

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.errors import ForbiddenError, UnauthenticatedError
from app.core.security import (
    TokenDomain,
    TokenError,
    create_access_token,
    create_refresh_token,
    decode_token,
)
from app.models.user import ROLE_USER
from app.repositories.users import UserStore
from app.services.credentials import authenticate

logger = logging.getLogger(__name__)


@dataclass
class IssuedTokens:
    access_token: str
    # None when the refresh token was left unchanged (no cookie update needed)
    refresh_token: str | None


def login(store: UserStore, identifier: str, password: str) -> IssuedTokens:
    """
    Verify credentials and open a session.

    The new refresh token overwrites the stored one, revoking any other live session.
    """
    user = authenticate(store, identifier, password)
    access = create_access_token(user.id, user.role or ROLE_USER)
    refresh = create_refresh_token(user.id)
    user.refresh_token = refresh
    store.save(user)
    logger.info("User logged in", extra={"user_id": user.id})
    return IssuedTokens(access_token=access, refresh_token=refresh)


def refresh_access(store: UserStore, presented: str | None) -> IssuedTokens:
    """
    Exchange a refresh token for a new access token.

    The presented token must equal the stored one; a token replaced by a later
    login or cleared by logout is rejected with ForbiddenError.
    """
    if not presented:
        raise UnauthenticatedError("No refresh token")
    try:
        claims = decode_token(presented, TokenDomain.REFRESH)
    except TokenError as e:
        logger.info("Refresh rejected: %s", e.reason)
        raise ForbiddenError("Invalid refresh token") from e
    user = store.get(claims["sub"])
    if user is None or user.refresh_token != presented:
        logger.info("Refresh rejected: token not current", extra={"user_id": claims["sub"]})
        raise ForbiddenError("Invalid refresh token")

    access = create_access_token(user.id, user.role or ROLE_USER)
    rotated = None
    if settings.REFRESH_TOKEN_ROTATE_ON_USE:
        rotated = create_refresh_token(user.id)
        user.refresh_token = rotated
        store.save(user)
    return IssuedTokens(access_token=access, refresh_token=rotated)


def logout(store: UserStore, presented: str | None) -> None:
    """
    Clear the stored refresh token when the presented one verifies and is the current one.

    Never raises: a bad token or a store failure leaves the slot as is, and the
    caller clears the cookie regardless.
    """
    if not presented:
        return
    try:
        claims = decode_token(presented, TokenDomain.REFRESH)
    except TokenError as e:
        logger.info("Logout with unverifiable refresh token: %s", e.reason)
        return
    try:
        user = store.get(claims["sub"])
        if user is None or user.refresh_token != presented:
            return
        user.refresh_token = None
        store.save(user)
    except SQLAlchemyError:
        store.db.rollback()
        logger.exception("Failed to revoke refresh token on logout")
        return
    logger.info("User logged out", extra={"user_id": user.id})
