"""Credential verification: email-or-username plus password against the stored hash."""

import logging

from app.core.errors import UnauthenticatedError
from app.core.security import hash_password, verify_password
from app.models.user import User
from app.repositories.users import UserStore

logger = logging.getLogger(__name__)

# Compared against when no user matches so unknown identifiers cost the same bcrypt work.
_DUMMY_HASH = hash_password("passage-timing-equaliser")


class InvalidCredentialsError(UnauthenticatedError):
    """Unknown identifier or wrong password. The message never says which."""

    def __init__(self) -> None:
        super().__init__("Invalid credentials")


def authenticate(store: UserStore, identifier: str, password: str) -> User:
    """Return the user matching identifier (email if it contains '@', else username) and password."""
    ident = (identifier or "").strip().lower()
    if not ident or not password:
        raise InvalidCredentialsError()
    if "@" in ident:
        user = store.find_by_email(ident)
    else:
        user = store.find_by_username(ident)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        logger.info("Login rejected: unknown identifier")
        raise InvalidCredentialsError()
    if not verify_password(password, user.password_hash):
        logger.info("Login rejected: password mismatch", extra={"user_id": user.id})
        raise InvalidCredentialsError()
    return user
