"""
Entitlement resolution: what a user's stored plan fields mean right now.

Day passes expire lazily. Nothing rewrites plan_status when the 24h run out;
every read recomputes the state from plan_expires_at instead.
"""
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional
from app.core.config import ConfigurationError, get_price_ids
from app.core.plan_limits import DAY_PASS_HOURS, PAID_PLANS, PLANS, PLAN_STATUSES, SUBSCRIPTION_PLANS
from app.utils.dates import utcnow


@dataclass(frozen=True)
class EntitlementSnapshot:
    plan: str
    plan_status: str
    plan_expires_at: Optional[datetime]
    has_unlimited_access: bool


@dataclass(frozen=True)
class EntitlementUpdate:
    """Coherent set of plan fields written together (last write wins)."""
    plan: str
    plan_status: str
    plan_expires_at: Optional[datetime]
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None

    def with_refs(self, customer_id: Optional[str], subscription_id: Optional[str]) -> "EntitlementUpdate":
        return replace(self, stripe_customer_id=customer_id, stripe_subscription_id=subscription_id)


FREE_SNAPSHOT = EntitlementSnapshot(plan="free", plan_status="active", plan_expires_at=None, has_unlimited_access=False)


def normalize_plan(value: Optional[str]) -> str:
    return value if value in PLANS else "free"


def normalize_plan_status(value: Optional[str]) -> str:
    return value if value in PLAN_STATUSES else "active"


def resolve_entitlement(user, now: Optional[datetime] = None) -> EntitlementSnapshot:
    """Pure function of the already-loaded user row and the clock."""
    if user is None:
        return FREE_SNAPSHOT
    now = now or utcnow()

    plan = normalize_plan(user.plan)
    plan_status = normalize_plan_status(user.plan_status)
    expires_at = user.plan_expires_at

    subscription_active = plan in SUBSCRIPTION_PLANS and plan_status == "active"
    day_pass_current = (
        plan == "day_pass"
        and plan_status == "active"
        and expires_at is not None
        and expires_at > now
    )
    if plan == "day_pass" and plan_status == "active" and not day_pass_current:
        plan_status = "expired"

    return EntitlementSnapshot(
        plan=plan,
        plan_status=plan_status,
        plan_expires_at=expires_at,
        has_unlimited_access=subscription_active or day_pass_current,
    )


def plan_label(snapshot: EntitlementSnapshot) -> str:
    if snapshot.plan in SUBSCRIPTION_PLANS:
        if snapshot.plan_status == "active":
            return "Pro"
        if snapshot.plan_status == "past_due":
            return "Past due"
        return "Free"
    if snapshot.plan == "day_pass":
        return "Day Pass" if snapshot.has_unlimited_access else "Expired"
    return "Free"


def map_price_to_plan(price_id: Optional[str], purchased_at: datetime) -> Optional[EntitlementUpdate]:
    """Entitlement granted by a Stripe price id, or None for prices this app doesn't sell."""
    if not price_id:
        return None

    for plan, configured in get_price_ids().items():
        if configured and price_id == configured:
            expires_at = purchased_at + timedelta(hours=DAY_PASS_HOURS) if plan == "day_pass" else None
            return EntitlementUpdate(plan=plan, plan_status="active", plan_expires_at=expires_at)
    return None


def price_id_for_plan(plan: str) -> str:
    if plan not in PAID_PLANS:
        raise ValueError(f"Unknown paid plan: {plan}")
    price_id = get_price_ids().get(plan)
    if not price_id:
        raise ConfigurationError(f"Missing Stripe price id for plan: {plan}")
    if not price_id.startswith("price_"):
        raise ConfigurationError(
            f"Invalid Stripe price id for plan {plan}. Expected value starting with 'price_'."
        )
    return price_id
