"""Identity store: user lookups, persistence and the admin-floor guarded writes."""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, ValidationError
from app.models.user import ROLE_ADMIN, User


class DuplicateUserError(ConflictError):
    """Email or username already taken (unique constraint violation on commit)."""

    def __init__(self, message: str = "Email or username already in use") -> None:
        super().__init__(message)


class LastAdminError(ValidationError):
    """The write would leave zero admins."""

    def __init__(self, message: str = "At least one admin is required") -> None:
        super().__init__(message)


class UserStore:
    """User persistence on top of a request-scoped session. Each write commits."""

    def __init__(self, db: Session) -> None:
        self.db = db

    # -------------------------- lookups --------------------------
    def get(self, user_id: str) -> User | None:
        return self.db.get(User, user_id)

    def find_by_email(self, email: str) -> User | None:
        stmt = select(User).where(User.email == email.strip().lower())
        return self.db.execute(stmt).scalar_one_or_none()

    def find_by_username(self, username: str) -> User | None:
        stmt = select(User).where(User.username == username.strip().lower())
        return self.db.execute(stmt).scalar_one_or_none()

    def find_by_customer_id(self, customer_id: str) -> User | None:
        stmt = select(User).where(User.stripe_customer_id == customer_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def count_by_role(self, role: str) -> int:
        stmt = select(func.count()).select_from(User).where(User.role == role)
        return self.db.execute(stmt).scalar_one()

    def list_users(self) -> list[User]:
        stmt = select(User).order_by(User.created_at.desc(), User.id)
        return list(self.db.execute(stmt).scalars().all())

    # -------------------------- writes --------------------------
    def create(self, user: User) -> User:
        """Insert a new user. Raises DuplicateUserError on an email/username collision."""
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateUserError() from e
        return user

    def save(self, user: User) -> User:
        self.db.add(user)
        self.db.commit()
        return user

    def change_role(self, user: User, role: str) -> User:
        """Set user.role; demoting the last admin raises LastAdminError."""
        if role != ROLE_ADMIN:
            self.guard_admin_floor(user)
        user.role = role
        self.db.commit()
        return user

    def delete(self, user: User) -> None:
        """Delete user; deleting the last admin raises LastAdminError."""
        self.guard_admin_floor(user)
        self.db.delete(user)
        self.db.commit()

    def guard_admin_floor(self, user: User) -> None:
        """
        Lock every admin row for the rest of the transaction, then require that
        removing user still leaves an admin.

        A concurrent demotion/deletion of another admin blocks on the same rows,
        so two transactions can never both observe "more than one admin".
        The locks are held until the caller commits or rolls back.
        """
        stmt = select(User.id).where(User.role == ROLE_ADMIN).with_for_update()
        admin_ids = set(self.db.execute(stmt).scalars().all())
        if user.id in admin_ids and len(admin_ids) <= 1:
            self.db.rollback()
            raise LastAdminError()
