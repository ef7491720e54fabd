"""
Shared fixtures for the storefront test suite.

The application is pointed at a throwaway SQLite database before it is
imported; every test starts from freshly created tables.
"""
import json
import os
import tempfile
import time

_db_dir = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_db_dir, 'storefront.db')}"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_storefront"
os.environ["STRIPE_PUBLISHABLE_KEY"] = "pk_test_storefront"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_storefront"
os.environ["WEBHOOK_URLS"] = ""

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from storefront import auth, crud, models, payments  # noqa: E402
from storefront.database import Base, SessionLocal, engine  # noqa: E402
from storefront.main import app  # noqa: E402

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]


@pytest.fixture(autouse=True)
def fresh_tables():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def user_factory(db):
    def make_user(email: str, role: str = "user") -> models.User:
        # Password hashes are irrelevant here; tokens are minted directly
        return crud.create_user(db, email=email, password_hash="unused", role=role)
    return make_user


@pytest.fixture
def admin(user_factory):
    return user_factory("admin@storefront.test", role="admin")


@pytest.fixture
def customer(user_factory):
    return user_factory("customer@storefront.test")


@pytest.fixture
def other_customer(user_factory):
    return user_factory("someone-else@storefront.test")


@pytest.fixture
def service(db):
    svc = models.Service(
        name="Smart Contract Audit",
        description="Manual and automated review of Solidity contracts",
        base_price=29900,
        type="blockchain",
    )
    db.add(svc)
    db.commit()
    db.refresh(svc)
    return svc


@pytest.fixture
def auth_headers():
    def make_headers(user: models.User) -> dict:
        return {"Authorization": f"Bearer {auth.token_for_user(user)}"}
    return make_headers


@pytest.fixture
def notifications_for(db):
    """Fresh read of a user's notifications, bypassing the session's identity map."""
    def fetch(user_id: int):
        db.expire_all()
        return db.query(models.Notification).filter(models.Notification.user_id == user_id).all()
    return fetch


@pytest.fixture
def intent_event():
    def make_event(event_type: str, intent_id: str, order_id=None, amount: int = 29900) -> dict:
        metadata = {} if order_id is None else {"orderId": str(order_id)}
        return {
            "id": f"evt_{intent_id}_{event_type}",
            "type": event_type,
            "data": {"object": {"id": intent_id, "amount": amount, "metadata": metadata}},
        }
    return make_event


@pytest.fixture
def post_signed_event(client):
    def post(event: dict, secret: str = WEBHOOK_SECRET, timestamp: int = None):
        body = json.dumps(event).encode()
        timestamp = int(time.time()) if timestamp is None else timestamp
        signature = payments.compute_signature(body, secret, timestamp)
        return client.post(
            "/webhooks/stripe",
            content=body,
            headers={"stripe-signature": f"t={timestamp},v1={signature}", "content-type": "application/json"},
        )
    return post
