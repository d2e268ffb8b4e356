"""
Stripe webhook reconciliation.

Each event id moves UNSEEN -> IN_FLIGHT -> PROCESSED. A PROCESSED event is a
no-op duplicate. Anything else proceeds: Stripe delivers at least once, and two
workers may race on the same id, so duplicate suppression here is best effort
and every handler below is an idempotent overwrite of the final state.

If a handler raises, the event stays IN_FLIGHT and the exception reaches the
webhook route, which answers 500 so Stripe redelivers.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from app.models.processed_stripe_event import EventState, ProcessedStripeEvent
from app.models.user import User
from app.services import billing_linkage
from app.services.entitlements import map_price_to_plan
from app.services.stripe_client import to_stripe_id
from app.utils.dates import from_unix, utcnow

logger = logging.getLogger(__name__)


class ProcessingOutcome(str, enum.Enum):
    DUPLICATE = "duplicate"  # already processed, nothing ran
    PROCESSED = "processed"  # a handler changed (or re-confirmed) entitlement state
    IGNORED = "ignored"      # accepted, nothing to do (unknown type, unknown price, no match)


@dataclass(frozen=True)
class ReconcileResult:
    updated: bool
    plan: Optional[str] = None
    reason: Optional[str] = None


def event_state(db: Session, stripe_event_id: str) -> EventState:
    row = db.query(ProcessedStripeEvent).filter(
        ProcessedStripeEvent.stripe_event_id == stripe_event_id
    ).first()
    if row is None:
        return EventState.UNSEEN
    return row.state


def begin_processing(db: Session, stripe_event_id: str) -> bool:
    """Admission control. False only when the event was already fully processed."""
    state = event_state(db, stripe_event_id)
    if state == EventState.PROCESSED:
        return False

    now = utcnow()
    if state == EventState.UNSEEN:
        try:
            db.add(ProcessedStripeEvent(stripe_event_id=stripe_event_id, created_at=now, updated_at=now))
            db.commit()
        except IntegrityError:
            # Another worker inserted the marker first; carry on, handlers are idempotent
            db.rollback()
            logger.info("[stripe webhook] in-flight marker for %s already created by another delivery", stripe_event_id)
    else:
        db.execute(
            update(ProcessedStripeEvent)
            .where(ProcessedStripeEvent.stripe_event_id == stripe_event_id)
            .values(updated_at=now)
        )
        db.commit()
    return True


def mark_processed(db: Session, stripe_event_id: str) -> None:
    now = utcnow()
    db.execute(
        update(ProcessedStripeEvent)
        .where(ProcessedStripeEvent.stripe_event_id == stripe_event_id)
        .values(processed_at=now, updated_at=now)
    )
    db.commit()


def get_invoice_subscription_id(invoice: dict) -> Optional[str]:
    """Older API versions put it on the invoice, newer ones under parent.subscription_details."""
    legacy = to_stripe_id(invoice.get("subscription"))
    if legacy:
        return legacy
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return to_stripe_id(details.get("subscription"))


def handle_checkout_completed(db: Session, event: dict, session: dict, processor) -> bool:
    customer_details = session.get("customer_details") or {}
    customer_email = customer_details.get("email") or session.get("customer_email")
    if not customer_email:
        logger.warning("[stripe webhook] checkout %s has no customer email, skipping", session.get("id"))
        return False

    price_id = processor.first_line_item_price_id(session["id"])
    purchased_at = from_unix(event["created"])
    entitlement = map_price_to_plan(price_id, purchased_at)
    if entitlement is None:
        logger.info("[stripe webhook] checkout %s price %s is not a known plan, skipping", session.get("id"), price_id)
        return False

    entitlement = entitlement.with_refs(
        to_stripe_id(session.get("customer")),
        to_stripe_id(session.get("subscription")),
    )

    # Checkout started from a logged-in session carries the app user id; trust it over the email
    metadata = session.get("metadata") or {}
    user = billing_linkage.get_user_by_id(db, metadata.get("appUserId"))
    if user:
        billing_linkage.apply_by_user_id(db, user.id, entitlement)
        return True

    billing_linkage.apply_by_email_or_defer(db, customer_email, entitlement)
    return True


def _set_subscription_status(db: Session, invoice: dict, plan_status: str) -> bool:
    subscription_id = get_invoice_subscription_id(invoice)
    updates = {"plan_status": plan_status}
    if subscription_id:
        updates["stripe_subscription_id"] = subscription_id
    matched = billing_linkage.update_by_processor_refs(
        db,
        customer_id=to_stripe_id(invoice.get("customer")),
        subscription_id=subscription_id,
        updates=updates,
    )
    return matched > 0


def handle_invoice_paid(db: Session, event: dict, invoice: dict, processor) -> bool:
    return _set_subscription_status(db, invoice, "active")


def handle_invoice_payment_failed(db: Session, event: dict, invoice: dict, processor) -> bool:
    return _set_subscription_status(db, invoice, "past_due")


def handle_subscription_deleted(db: Session, event: dict, subscription: dict, processor) -> bool:
    matched = billing_linkage.update_by_processor_refs(
        db,
        customer_id=to_stripe_id(subscription.get("customer")),
        subscription_id=subscription.get("id"),
        updates={
            "plan": "free",
            "plan_status": "canceled",
            "plan_expires_at": None,
            "stripe_subscription_id": None,
        },
    )
    return matched > 0


def handle_charge_refunded(db: Session, event: dict, charge: dict, processor) -> bool:
    return billing_linkage.expire_day_pass_by_customer(db, to_stripe_id(charge.get("customer"))) > 0


EVENT_HANDLERS: dict[str, Callable[[Session, dict, dict, object], bool]] = {
    "checkout.session.completed": handle_checkout_completed,
    "invoice.paid": handle_invoice_paid,
    "invoice.payment_failed": handle_invoice_payment_failed,
    "customer.subscription.deleted": handle_subscription_deleted,
    "charge.refunded": handle_charge_refunded,
}


def process_event(db: Session, event: dict, processor) -> ProcessingOutcome:
    event_id = event["id"]
    event_type = event.get("type")

    if not begin_processing(db, event_id):
        logger.info("[stripe webhook] duplicate delivery id=%s type=%s duplicate=True", event_id, event_type)
        return ProcessingOutcome.DUPLICATE

    logger.info("[stripe webhook] processing id=%s type=%s", event_id, event_type)

    handler = EVENT_HANDLERS.get(event_type)
    changed = False
    if handler is not None:
        obj = (event.get("data") or {}).get("object") or {}
        changed = handler(db, event, obj, processor)

    mark_processed(db, event_id)
    return ProcessingOutcome.PROCESSED if changed else ProcessingOutcome.IGNORED


def reconcile_from_checkout_history(db: Session, user: User, processor, now: Optional[datetime] = None) -> ReconcileResult:
    """
    Fallback for missed webhooks: re-scan the customer's recent checkouts and apply
    the first completed, paid one whose price maps to a plan.
    """
    customer_id = (user.stripe_customer_id or "").strip()
    if not customer_id:
        return ReconcileResult(updated=False, reason="No Stripe customer id on user.")

    now = now or utcnow()
    for checkout in processor.list_checkout_sessions(customer_id, limit=10):
        if checkout.status != "complete":
            continue
        if checkout.mode != "subscription" and checkout.payment_status != "paid":
            continue

        price_id = processor.first_line_item_price_id(checkout.id)
        purchased_at = from_unix(checkout.created) if checkout.created else now
        entitlement = map_price_to_plan(price_id, purchased_at)
        if entitlement is None:
            continue

        billing_linkage.apply_by_user_id(
            db,
            user.id,
            entitlement.with_refs(checkout.customer, checkout.subscription),
        )
        logger.info("[stripe reconcile] user %s restored %s from checkout %s", user.id, entitlement.plan, checkout.id)
        return ReconcileResult(updated=True, plan=entitlement.plan)

    return ReconcileResult(updated=False, reason="No completed paid checkout found yet.")
