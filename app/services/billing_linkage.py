"""
Links Stripe identities (customer / subscription ids, checkout email) to users.

Every write here is a last-write-wins overwrite of a coherent set of plan fields,
so replaying a webhook or racing a user-triggered claim converges on the same state.
"""
import logging
from dataclasses import dataclass
from typing import Optional
from sqlalchemy import or_, update
from sqlalchemy.orm import Session
from app.models.pending_purchase import PendingPurchase
from app.models.user import User
from app.services.entitlements import EntitlementUpdate
from app.utils.auth import normalize_email
from app.utils.dates import utcnow

logger = logging.getLogger(__name__)

# Fields webhooks may bulk-update when they only carry Stripe ids
ENTITLEMENT_FIELDS = frozenset({"plan", "plan_status", "plan_expires_at", "stripe_subscription_id"})


@dataclass(frozen=True)
class LinkageResult:
    applied_to_user: bool
    user_id: Optional[int] = None
    pending_purchase_id: Optional[int] = None


def trim_or_none(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    value = value.strip()
    return value or None


def _entitlement_values(entitlement: EntitlementUpdate) -> dict:
    return {
        "plan": entitlement.plan,
        "plan_status": entitlement.plan_status,
        "plan_expires_at": entitlement.plan_expires_at,
        "stripe_customer_id": trim_or_none(entitlement.stripe_customer_id),
        "stripe_subscription_id": trim_or_none(entitlement.stripe_subscription_id),
        "updated_at": utcnow(),
    }


def get_user_by_id(db: Session, user_id) -> Optional[User]:
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        return None
    return db.query(User).filter(User.id == user_id).first()


def ensure_customer_id(db: Session, user: User, processor) -> str:
    """
    Existing Stripe customer id for the user, or a freshly created one.
    Two concurrent first checkouts can each create an upstream customer; the
    last stored id wins and the other customer is left unused in Stripe.
    """
    existing = trim_or_none(user.stripe_customer_id)
    if existing:
        return existing

    customer_id = processor.create_customer(email=user.email_lower, name=user.name, app_user_id=str(user.id))
    db.execute(
        update(User)
        .where(User.id == user.id)
        .values(stripe_customer_id=customer_id, updated_at=utcnow())
    )
    db.commit()
    db.refresh(user)
    return customer_id


def apply_by_user_id(db: Session, user_id: int, entitlement: EntitlementUpdate, commit: bool = True) -> None:
    db.execute(update(User).where(User.id == user_id).values(**_entitlement_values(entitlement)))
    if commit:
        db.commit()
    logger.info(
        "[entitlements] applied %s/%s to user %s (customer=%s, subscription=%s)",
        entitlement.plan,
        entitlement.plan_status,
        user_id,
        entitlement.stripe_customer_id,
        entitlement.stripe_subscription_id,
    )


def apply_by_email_or_defer(db: Session, email: str, entitlement: EntitlementUpdate) -> LinkageResult:
    """Apply to the account owning email, or stage a pending purchase until one signs up."""
    email = email.strip()
    email_lower = normalize_email(email)
    user = db.query(User).filter(User.email_lower == email_lower).first()
    if user:
        apply_by_user_id(db, user.id, entitlement)
        return LinkageResult(applied_to_user=True, user_id=user.id)

    now = utcnow()
    pending = PendingPurchase(
        email=email,
        email_lower=email_lower,
        plan=entitlement.plan,
        plan_status=entitlement.plan_status,
        plan_expires_at=entitlement.plan_expires_at,
        stripe_customer_id=trim_or_none(entitlement.stripe_customer_id),
        stripe_subscription_id=trim_or_none(entitlement.stripe_subscription_id),
        created_at=now,
        updated_at=now,
    )
    db.add(pending)
    db.commit()
    logger.info("[entitlements] no account for %s yet, stored pending purchase %s (%s)", email_lower, pending.id, pending.plan)
    return LinkageResult(applied_to_user=False, pending_purchase_id=pending.id)


def claim_pending_for_user(db: Session, user_id: int, email: str) -> bool:
    """
    Apply every unclaimed pending purchase for email to the user, oldest first,
    so the newest purchase is the one left on the account. Returns whether any were claimed.
    Claimed rows drop out of the query, so calling this again is a no-op.
    """
    email_lower = normalize_email(email)
    pending_rows = (
        db.query(PendingPurchase)
        .filter(
            PendingPurchase.email_lower == email_lower,
            PendingPurchase.claimed_by_user_id.is_(None),
            PendingPurchase.claimed_at.is_(None),
        )
        .order_by(PendingPurchase.created_at.asc(), PendingPurchase.id.asc())
        .all()
    )
    if not pending_rows:
        return False

    for pending in pending_rows:
        apply_by_user_id(
            db,
            user_id,
            EntitlementUpdate(
                plan=pending.plan,
                plan_status=pending.plan_status,
                plan_expires_at=pending.plan_expires_at,
                stripe_customer_id=pending.stripe_customer_id,
                stripe_subscription_id=pending.stripe_subscription_id,
            ),
            commit=False,
        )
        now = utcnow()
        pending.claimed_by_user_id = user_id
        pending.claimed_at = now
        pending.updated_at = now
        db.commit()

    logger.info("[entitlements] user %s claimed %s pending purchase(s)", user_id, len(pending_rows))
    return True


def update_by_processor_refs(
    db: Session,
    customer_id: Optional[str],
    subscription_id: Optional[str],
    updates: dict,
) -> int:
    """Bulk-update users matching either Stripe ref. Returns affected rows; no refs means no-op."""
    customer_id = trim_or_none(customer_id)
    subscription_id = trim_or_none(subscription_id)
    if not customer_id and not subscription_id:
        return 0

    unknown = set(updates) - ENTITLEMENT_FIELDS
    if unknown:
        raise ValueError(f"Not an entitlement field: {', '.join(sorted(unknown))}")

    conditions = []
    if customer_id:
        conditions.append(User.stripe_customer_id == customer_id)
    if subscription_id:
        conditions.append(User.stripe_subscription_id == subscription_id)

    result = db.execute(
        update(User)
        .where(or_(*conditions))
        .values(**updates, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    db.commit()
    return result.rowcount


def expire_day_pass_by_customer(db: Session, customer_id: Optional[str]) -> int:
    """Revoke the day pass of users on this Stripe customer (refunds)."""
    customer_id = trim_or_none(customer_id)
    if not customer_id:
        return 0

    result = db.execute(
        update(User)
        .where(User.stripe_customer_id == customer_id, User.plan == "day_pass")
        .values(plan="free", plan_status="expired", plan_expires_at=None, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    db.commit()
    return result.rowcount
