from datetime import datetime
from urllib.parse import parse_qs, urlparse

from app.core.config import SESSION_COOKIE_NAME
from app.models.user import User
from app.models.user_session import UserSession
from app.services import billing_linkage
from app.services.entitlements import EntitlementUpdate

SIGNUP = {"name": "  Maya Lin  ", "email": "Maya@Acme.io", "password": "correct-horse"}


def login(client, email="maya@acme.io", password="correct-horse"):
    return client.post("/api/auth/login", json={"email": email, "password": password})


def test_signup_in_dev_returns_verification_link(client, db):
    response = client.post("/api/auth/signup", json=SIGNUP)

    assert response.status_code == 201
    body = response.json()
    assert "/api/auth/verify-email?token=" in body["devVerificationUrl"]

    user = db.query(User).filter(User.email_lower == "maya@acme.io").one()
    assert user.name == "Maya Lin"
    assert user.email_verified is False
    assert user.plan == "free"
    assert user.hashed_password != SIGNUP["password"]


def test_signup_rejects_duplicates_case_insensitively(client):
    client.post("/api/auth/signup", json=SIGNUP)
    response = client.post("/api/auth/signup", json={**SIGNUP, "email": "MAYA@acme.io"})
    assert response.status_code == 409


def test_signup_validation(client):
    assert client.post("/api/auth/signup", json={**SIGNUP, "password": "short"}).status_code == 400
    assert client.post("/api/auth/signup", json={**SIGNUP, "email": "not-an-email"}).status_code == 400
    assert client.post("/api/auth/signup", json={**SIGNUP, "name": "M"}).status_code == 400


def test_verify_then_login(client, db):
    verification_url = client.post("/api/auth/signup", json=SIGNUP).json()["devVerificationUrl"]
    token = parse_qs(urlparse(verification_url).query)["token"][0]

    assert login(client).status_code == 403

    response = client.get("/api/auth/verify-email", params={"token": token}, follow_redirects=False)
    assert response.status_code == 307
    assert response.headers["location"] == "/login?verified=1"

    response = login(client)
    assert response.status_code == 200
    assert response.json() == {"message": "Logged in successfully.", "claimed": False}
    assert SESSION_COOKIE_NAME in response.cookies

    me = client.get("/api/auth/me").json()
    assert me["authenticated"] is True
    assert me["user"]["email"] == "maya@acme.io"


def test_verify_with_bad_token(client):
    response = client.get("/api/auth/verify-email", params={"token": "nope"}, follow_redirects=False)
    assert response.status_code == 307
    assert response.headers["location"] == "/login?verify=invalid"


def test_login_with_wrong_password(client, make_user):
    make_user()
    assert login(client, password="wrong-password").status_code == 401
    assert login(client, email="ghost@acme.io").status_code == 401


def test_login_rotates_sessions(client, db, make_user):
    user = make_user()
    login(client)
    login(client)
    assert db.query(UserSession).filter(UserSession.user_id == user.id).count() == 1


def test_login_claims_pending_purchases(client, db, make_user):
    billing_linkage.apply_by_email_or_defer(
        db,
        "maya@acme.io",
        EntitlementUpdate(
            plan="day_pass",
            plan_status="active",
            plan_expires_at=datetime(2026, 10, 20, 12, 0),
            stripe_customer_id="cus_1",
        ),
    )
    user = make_user()

    response = login(client)

    assert response.json()["claimed"] is True
    db.expire_all()
    user = db.get(User, user.id)
    assert user.plan == "day_pass"
    assert user.stripe_customer_id == "cus_1"
    assert user.last_login_at is not None


def test_logout_clears_session(client, db, make_user):
    make_user()
    login(client)

    response = client.post("/api/auth/logout")
    assert response.status_code == 200
    assert db.query(UserSession).count() == 0

    me = client.get("/api/auth/me")
    assert me.status_code == 401
    assert me.json() == {"authenticated": False}


def test_unknown_session_cookie_is_a_guest(client):
    client.cookies.set(SESSION_COOKIE_NAME, "deadbeef")
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/me/entitlement").json()["authenticated"] is False


def test_claim_route(client, db, make_user, login_as):
    assert client.post("/api/billing/claim").status_code == 401

    staged = billing_linkage.apply_by_email_or_defer(
        db,
        "maya@acme.io",
        EntitlementUpdate(plan="pro_monthly", plan_status="active", plan_expires_at=None, stripe_customer_id="cus_1"),
    )
    assert staged.applied_to_user is False
    login_as(make_user())

    assert client.post("/api/billing/claim").json() == {"claimed": True}
    assert client.post("/api/billing/claim").json() == {"claimed": False}
    assert client.get("/api/me/entitlement").json()["plan"] == "pro_monthly"


def test_signup_without_mail_in_production_rolls_back(client, db, monkeypatch):
    monkeypatch.setenv("ENV", "production")

    response = client.post("/api/auth/signup", json=SIGNUP)

    assert response.status_code == 500
    assert response.json()["detail"] == "Signup failed because email delivery is not configured correctly."
    assert db.query(User).count() == 0
