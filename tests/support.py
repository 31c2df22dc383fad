"""Shared test fixtures: in-memory SQLite store, fake blob store and fake Stripe client, app client."""

from typing import Any

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.deps import get_billing_client, get_blob_store
from app.core.config import Settings, get_settings
from app.core.database import get_db
from app.core.security import hash_password
from app.main import app
from app.models import Base, User
from app.models.user import ROLE_USER, new_user_id
from app.services.blob_store import BlobStoreError

# One cheap hash shared by fixtures; hashing per test would dominate runtime.
PASSWORD = "correct-horse-battery"
PASSWORD_HASH = hash_password(PASSWORD)


def make_sessionmaker() -> sessionmaker:
    """Fresh in-memory SQLite database with all tables created."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def add_user(
    db: Session,
    username: str,
    role: str | None = ROLE_USER,
    **fields: Any,
) -> User:
    user = User(
        id=new_user_id(),
        email=fields.pop("email", f"{username}@example.com"),
        username=username,
        password_hash=PASSWORD_HASH,
        role=role,
        **fields,
    )
    db.add(user)
    db.commit()
    return user


class InMemoryBlobStore:
    """Blob store double keeping objects in a dict keyed by URL."""

    base_url = "https://blobs.test/avatars"

    def __init__(self, fail_put: bool = False, fail_delete: bool = False) -> None:
        self.objects: dict[str, bytes] = {}
        self.fail_put = fail_put
        self.fail_delete = fail_delete
        self.deleted: list[str] = []

    def put(self, key: str, data: bytes, content_type: str) -> str:
        if self.fail_put:
            raise BlobStoreError("put refused")
        url = f"{self.base_url}/{key}"
        self.objects[url] = data
        return url

    def delete_by_url(self, url: str) -> None:
        if self.fail_delete:
            raise BlobStoreError("delete refused")
        self.deleted.append(url)
        self.objects.pop(url, None)


class FakeStripeClient:
    """Records calls and returns canned Stripe objects."""

    def __init__(self, subscriptions: dict[str, dict[str, Any]] | None = None) -> None:
        self.subscriptions = subscriptions or {}
        self.calls: list[tuple[str, Any]] = []
        self.customer_counter = 0

    async def create_customer(self, email, name=None, metadata=None, idempotency_key=None):
        self.customer_counter += 1
        self.calls.append(("create_customer", {"email": email, "name": name, "metadata": metadata}))
        return {"id": f"cus_{self.customer_counter}"}

    async def create_checkout_session(self, params):
        self.calls.append(("create_checkout_session", params))
        return {"id": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}

    async def create_portal_session(self, customer_id, return_url):
        self.calls.append(("create_portal_session", {"customer": customer_id, "return_url": return_url}))
        return {"url": "https://billing.stripe.test/session"}

    async def retrieve_price(self, price_id, expand_product=True):
        self.calls.append(("retrieve_price", price_id))
        return {
            "id": price_id,
            "currency": "usd",
            "unit_amount": 900,
            "recurring": {"interval": "month"},
            "nickname": "Pro",
            "product": {"id": "prod_1", "name": "Pro plan", "description": "All features"},
        }

    async def retrieve_subscription(self, subscription_id):
        self.calls.append(("retrieve_subscription", subscription_id))
        return self.subscriptions[subscription_id]


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "STRIPE_SECRET_KEY": "sk_test_123",
        "STRIPE_PRICE_ID": "price_123",
        "STRIPE_WEBHOOK_SECRET": "whsec_test",
        "FRONTEND_URL": "https://app.example.com",
    }
    values.update(overrides)
    return Settings(**values)


class AppHarness:
    """TestClient over the real app with the database, blob store, billing client and settings overridden."""

    def __init__(
        self,
        blob_store: InMemoryBlobStore | None = None,
        billing: FakeStripeClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.Session = make_sessionmaker()
        self.blob_store = blob_store if blob_store is not None else InMemoryBlobStore()
        self.billing = billing
        self.settings = settings or make_settings()

        def _get_db():
            db = self.Session()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = _get_db
        app.dependency_overrides[get_blob_store] = lambda: self.blob_store
        app.dependency_overrides[get_billing_client] = lambda: self.billing
        app.dependency_overrides[get_settings] = lambda: self.settings
        self.client = TestClient(app)

    def close(self) -> None:
        self.client.close()
        app.dependency_overrides.clear()

    def db(self) -> Session:
        return self.Session()

    def register(self, username: str, email: str | None = None, avatar: bytes | None = None, **form: str):
        data = {
            "email": email or f"{username}@example.com",
            "username": username,
            "password": PASSWORD,
            **form,
        }
        files = {"avatar": ("avatar.png", avatar, "image/png")} if avatar is not None else None
        return self.client.post("/api/v1/auth/register", data=data, files=files)

    def login(self, identifier: str, password: str = PASSWORD):
        return self.client.post(
            "/api/v1/auth/login", json={"identifier": identifier, "password": password}
        )

    def auth_headers(self, identifier: str) -> dict[str, str]:
        resp = self.login(identifier)
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['access_token']}"}
