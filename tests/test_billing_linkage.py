from datetime import datetime, timedelta

import pytest

from app.models.pending_purchase import PendingPurchase
from app.models.user import User
from app.services import billing_linkage
from app.services.entitlements import EntitlementUpdate

DAY_PASS = EntitlementUpdate(
    plan="day_pass",
    plan_status="active",
    plan_expires_at=datetime(2026, 10, 20, 12, 0),
    stripe_customer_id="cus_1",
)
MONTHLY = EntitlementUpdate(
    plan="pro_monthly",
    plan_status="active",
    plan_expires_at=None,
    stripe_customer_id="cus_1",
    stripe_subscription_id="sub_1",
)


def reload(db, user):
    db.expire_all()
    return db.get(User, user.id)


def test_apply_by_email_updates_existing_user(db, make_user):
    user = make_user(email="Maya@Acme.io")

    result = billing_linkage.apply_by_email_or_defer(db, " MAYA@acme.io ", MONTHLY)

    assert result.applied_to_user is True
    assert result.user_id == user.id
    user = reload(db, user)
    assert user.plan == "pro_monthly"
    assert user.stripe_subscription_id == "sub_1"
    assert db.query(PendingPurchase).count() == 0


def test_apply_by_email_defers_unknown_email(db):
    result = billing_linkage.apply_by_email_or_defer(db, "New.Buyer@acme.io", DAY_PASS)

    assert result.applied_to_user is False
    pending = db.get(PendingPurchase, result.pending_purchase_id)
    assert pending.email_lower == "new.buyer@acme.io"
    assert pending.plan == "day_pass"
    assert pending.plan_expires_at == DAY_PASS.plan_expires_at
    assert pending.stripe_customer_id == "cus_1"
    assert pending.claimed_by_user_id is None


def test_claim_is_idempotent(db, make_user):
    billing_linkage.apply_by_email_or_defer(db, "buyer@acme.io", DAY_PASS)
    user = make_user(email="buyer@acme.io")

    assert billing_linkage.claim_pending_for_user(db, user.id, "BUYER@acme.io") is True
    assert billing_linkage.claim_pending_for_user(db, user.id, "buyer@acme.io") is False

    user = reload(db, user)
    assert user.plan == "day_pass"
    assert user.stripe_customer_id == "cus_1"
    pending = db.query(PendingPurchase).one()
    assert pending.claimed_by_user_id == user.id
    assert pending.claimed_at is not None


def test_claim_applies_newest_purchase_last(db, make_user):
    billing_linkage.apply_by_email_or_defer(db, "buyer@acme.io", DAY_PASS)
    billing_linkage.apply_by_email_or_defer(db, "buyer@acme.io", MONTHLY)
    older, newer = db.query(PendingPurchase).order_by(PendingPurchase.id).all()
    older.created_at = datetime(2026, 10, 1)
    newer.created_at = datetime(2026, 10, 2)
    db.commit()
    user = make_user(email="buyer@acme.io")

    assert billing_linkage.claim_pending_for_user(db, user.id, "buyer@acme.io") is True

    user = reload(db, user)
    assert user.plan == "pro_monthly"
    assert user.plan_expires_at is None
    assert db.query(PendingPurchase).filter(PendingPurchase.claimed_by_user_id.is_(None)).count() == 0


def test_claim_without_pending_purchases(db, make_user):
    user = make_user()
    assert billing_linkage.claim_pending_for_user(db, user.id, user.email_lower) is False


def test_update_by_processor_refs_matches_either_ref(db, make_user):
    by_customer = make_user(email="a@acme.io", plan="pro_monthly", stripe_customer_id="cus_a")
    by_subscription = make_user(email="b@acme.io", plan="pro_yearly", stripe_subscription_id="sub_b")
    untouched = make_user(email="c@acme.io", plan="pro_monthly", stripe_customer_id="cus_c")

    assert billing_linkage.update_by_processor_refs(db, "cus_a", None, {"plan_status": "past_due"}) == 1
    assert billing_linkage.update_by_processor_refs(db, "cus_zzz", "sub_b", {"plan_status": "past_due"}) == 1

    assert reload(db, by_customer).plan_status == "past_due"
    assert reload(db, by_subscription).plan_status == "past_due"
    assert reload(db, untouched).plan_status == "active"


def test_update_by_processor_refs_without_refs_is_noop(db, make_user):
    make_user(stripe_customer_id="cus_a")
    assert billing_linkage.update_by_processor_refs(db, None, "  ", {"plan_status": "past_due"}) == 0


def test_update_by_processor_refs_rejects_non_entitlement_fields(db):
    with pytest.raises(ValueError):
        billing_linkage.update_by_processor_refs(db, "cus_a", None, {"email": "x@acme.io"})


def test_expire_day_pass_by_customer_leaves_subscriptions(db, make_user):
    day_pass = make_user(
        email="a@acme.io",
        plan="day_pass",
        plan_expires_at=datetime(2026, 10, 20),
        stripe_customer_id="cus_a",
    )
    pro = make_user(email="b@acme.io", plan="pro_monthly", stripe_customer_id="cus_a")

    assert billing_linkage.expire_day_pass_by_customer(db, "cus_a") == 1

    day_pass = reload(db, day_pass)
    assert day_pass.plan == "free"
    assert day_pass.plan_status == "expired"
    assert day_pass.plan_expires_at is None
    assert reload(db, pro).plan == "pro_monthly"


def test_ensure_customer_id_creates_once(db, make_user, fake_stripe):
    user = make_user()

    first = billing_linkage.ensure_customer_id(db, user, fake_stripe)
    second = billing_linkage.ensure_customer_id(db, user, fake_stripe)

    assert first == second == "cus_fake_1"
    assert len(fake_stripe.customers) == 1
    assert fake_stripe.customers[0]["appUserId"] == str(user.id)
    assert reload(db, user).stripe_customer_id == "cus_fake_1"


def test_get_user_by_id_tolerates_bad_ids(db, make_user):
    user = make_user()
    assert billing_linkage.get_user_by_id(db, str(user.id)).id == user.id
    assert billing_linkage.get_user_by_id(db, "not-a-number") is None
    assert billing_linkage.get_user_by_id(db, None) is None


def test_deferred_purchase_keeps_expiry_relative_to_purchase(db, make_user):
    purchased_at = datetime(2026, 10, 19, 9, 0)
    update = EntitlementUpdate(
        plan="day_pass",
        plan_status="active",
        plan_expires_at=purchased_at + timedelta(hours=24),
    )
    billing_linkage.apply_by_email_or_defer(db, "late@acme.io", update)
    user = make_user(email="late@acme.io")

    billing_linkage.claim_pending_for_user(db, user.id, "late@acme.io")

    assert reload(db, user).plan_expires_at == datetime(2026, 10, 20, 9, 0)


def test_claimed_rows_stay_claimed_after_owner_is_gone(db, make_user):
    billing_linkage.apply_by_email_or_defer(db, "buyer@acme.io", DAY_PASS)
    first = make_user(email="buyer@acme.io")
    billing_linkage.claim_pending_for_user(db, first.id, "buyer@acme.io")

    # What ON DELETE SET NULL leaves behind once the claiming account is deleted
    pending = db.query(PendingPurchase).one()
    pending.claimed_by_user_id = None
    db.commit()
    db.delete(first)
    db.commit()

    second = make_user(email="buyer@acme.io")
    assert billing_linkage.claim_pending_for_user(db, second.id, "buyer@acme.io") is False
    assert reload(db, second).plan == "free"
