"""
Create a user without the registration endpoint (e.g. a first admin). Run from project root:
  python -m app.scripts.create_user EMAIL USERNAME PASSWORD [role]
Example:
  python -m app.scripts.create_user ops@example.com ops your-secure-password admin
"""
import argparse
import sys

from pydantic import ValidationError

from app.core.database import SessionLocal
from app.core.security import hash_password
from app.models.user import ROLES, User, new_user_id
from app.repositories.users import DuplicateUserError, UserStore
from app.schemas.auth import RegisterRequest


def main() -> int:
    parser = argparse.ArgumentParser(description="Create a Passage user.")
    parser.add_argument("email", help="Email address")
    parser.add_argument("username", help="Username (3-30 chars, a-z 0-9 _)")
    parser.add_argument("password", help="Password (8-128 chars)")
    parser.add_argument("role", nargs="?", default="user", choices=list(ROLES))
    args = parser.parse_args()

    try:
        body = RegisterRequest(email=args.email, username=args.username, password=args.password)
    except ValidationError as e:
        for err in e.errors():
            print(err["msg"], file=sys.stderr)
        return 1

    db = SessionLocal()
    try:
        store = UserStore(db)
        user = User(
            id=new_user_id(),
            email=body.email,
            username=body.username,
            password_hash=hash_password(body.password),
            role=args.role,
        )
        try:
            store.create(user)
        except DuplicateUserError:
            print(f"User '{body.username}' or '{body.email}' already exists.", file=sys.stderr)
            return 1
        print(f"Created user '{body.username}' with role '{args.role}'.")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
