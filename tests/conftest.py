import hashlib
import hmac
import json
import time
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import SESSION_COOKIE_NAME
from app.db.init_db import init_db
from app.db.session import get_db
from app.main import app
from app.models.user import User
from app.services.session_store import create_session
from app.services.stripe_client import StripeClient, get_stripe_client
from app.utils.auth import hash_password
from app.utils.dates import utcnow

WEBHOOK_SECRET = "whsec_test_secret"
PRICE_DAY = "price_day_test"
PRICE_MONTHLY = "price_monthly_test"
PRICE_YEARLY = "price_yearly_test"


@pytest.fixture(autouse=True)
def stripe_env(monkeypatch):
    monkeypatch.setenv("ENV", "dev")
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_fake")
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("STRIPE_PRICE_DAY", PRICE_DAY)
    monkeypatch.setenv("STRIPE_PRICE_MONTHLY", PRICE_MONTHLY)
    monkeypatch.setenv("STRIPE_PRICE_YEARLY", PRICE_YEARLY)
    monkeypatch.setenv("USAGE_HASH_SALT", "test-salt")
    monkeypatch.delenv("RESEND_API_KEY", raising=False)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()


class FakeStripe(StripeClient):
    """Records calls instead of talking to Stripe. Webhook signature checks stay real."""

    def __init__(self):
        super().__init__(api_key="sk_test_fake")
        self.line_item_prices = {}
        self.checkout_history = []
        self.customers = []
        self.checkouts = []
        self.portals = []

    def create_customer(self, email, name, app_user_id):
        customer_id = f"cus_fake_{len(self.customers) + 1}"
        self.customers.append({"id": customer_id, "email": email, "name": name, "appUserId": app_user_id})
        return customer_id

    def create_checkout_session(self, customer_id, price_id, mode, success_url, cancel_url, metadata, client_reference_id):
        self.checkouts.append({
            "customer": customer_id,
            "price": price_id,
            "mode": mode,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "client_reference_id": client_reference_id,
        })
        return f"https://checkout.stripe.com/c/pay/cs_test_{len(self.checkouts)}"

    def create_portal_session(self, customer_id, return_url):
        self.portals.append({"customer": customer_id, "return_url": return_url})
        return "https://billing.stripe.com/p/session/test_portal"

    def list_checkout_sessions(self, customer_id, limit=10):
        return [c for c in self.checkout_history if c.customer == customer_id][:limit]

    def first_line_item_price_id(self, session_id):
        return self.line_item_prices.get(session_id)


@pytest.fixture
def fake_stripe():
    return FakeStripe()


@pytest.fixture
def client(db, fake_stripe):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_stripe_client] = lambda: fake_stripe
    # No context manager: startup would try to migrate a real database
    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(
        email="maya@acme.io",
        name="Maya",
        password="correct-horse",
        verified=True,
        plan="free",
        plan_status="active",
        plan_expires_at=None,
        stripe_customer_id=None,
        stripe_subscription_id=None,
    ) -> User:
        now = utcnow()
        user = User(
            name=name,
            email=email,
            email_lower=email.strip().lower(),
            hashed_password=hash_password(password),
            email_verified=verified,
            plan=plan,
            plan_status=plan_status,
            plan_expires_at=plan_expires_at,
            stripe_customer_id=stripe_customer_id,
            stripe_subscription_id=stripe_subscription_id,
            created_at=now,
            updated_at=now,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def login_as(db, client):
    """Put a valid session cookie for user on the test client."""
    def _login(user: User) -> str:
        session = create_session(db, user_id=user.id, email=user.email_lower, name=user.name)
        client.cookies.set(SESSION_COOKIE_NAME, session.token)
        return session.token

    return _login


def make_event(event_id: str, event_type: str, obj: dict, created: datetime | None = None) -> dict:
    created = created or datetime(2026, 10, 19, 12, 0, 0)
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int((created - datetime(1970, 1, 1)).total_seconds()),
        "data": {"object": obj},
    }


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Stripe-Signature header value for payload, computed the way Stripe does."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def signed_event_request(event: dict) -> tuple[str, dict]:
    payload = json.dumps(event)
    return payload, {"stripe-signature": sign_payload(payload), "content-type": "application/json"}
