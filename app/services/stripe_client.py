"""
Thin wrapper around the Stripe SDK: the only place this app talks to Stripe.
Routes receive it through the get_stripe_client dependency so tests can swap in a fake.
"""
import json
import logging
from dataclasses import dataclass
from typing import Optional
import stripe
from app.core.config import get_stripe_secret_key

logger = logging.getLogger(__name__)

WEBHOOK_TOLERANCE_SECONDS = 300


@dataclass(frozen=True)
class CheckoutSessionSummary:
    id: str
    status: Optional[str]
    mode: Optional[str]
    payment_status: Optional[str]
    created: Optional[int]
    customer: Optional[str]
    subscription: Optional[str]


def to_stripe_id(value) -> Optional[str]:
    """Stripe fields are either an id string or an expanded object with .id"""
    if not value:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("id")
    return getattr(value, "id", None)


class StripeClient:
    def __init__(self, api_key: Optional[str] = None):
        self._api_key = api_key

    @property
    def api_key(self) -> str:
        """Resolved on first API call; webhook signature checks never need it."""
        if not self._api_key:
            self._api_key = get_stripe_secret_key()
        return self._api_key

    def create_customer(self, email: str, name: str, app_user_id: str) -> str:
        customer = stripe.Customer.create(
            api_key=self.api_key,
            email=email,
            name=name,
            metadata={"appUserId": app_user_id},
        )
        logger.info("[stripe] created customer %s for user %s", customer.id, app_user_id)
        return customer.id

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        mode: str,
        success_url: str,
        cancel_url: str,
        metadata: dict,
        client_reference_id: str,
    ) -> Optional[str]:
        session = stripe.checkout.Session.create(
            api_key=self.api_key,
            mode=mode,
            customer=customer_id,
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            client_reference_id=client_reference_id,
        )
        logger.info("[stripe] created checkout session %s (%s) for customer %s", session.id, mode, customer_id)
        return session.url

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        session = stripe.billing_portal.Session.create(
            api_key=self.api_key,
            customer=customer_id,
            return_url=return_url,
        )
        return session.url

    def list_checkout_sessions(self, customer_id: str, limit: int = 10) -> list[CheckoutSessionSummary]:
        sessions = stripe.checkout.Session.list(api_key=self.api_key, customer=customer_id, limit=limit)
        return [
            CheckoutSessionSummary(
                id=s.id,
                status=getattr(s, "status", None),
                mode=getattr(s, "mode", None),
                payment_status=getattr(s, "payment_status", None),
                created=getattr(s, "created", None),
                customer=to_stripe_id(getattr(s, "customer", None)),
                subscription=to_stripe_id(getattr(s, "subscription", None)),
            )
            for s in sessions.data
        ]

    def first_line_item_price_id(self, session_id: str) -> Optional[str]:
        items = stripe.checkout.Session.list_line_items(session_id, api_key=self.api_key, limit=5)
        if not items.data:
            return None
        price = getattr(items.data[0], "price", None)
        return to_stripe_id(price)

    @staticmethod
    def construct_event(payload: bytes, signature: str, secret: str) -> dict:
        """
        Verify the Stripe-Signature header and decode the payload into a plain dict.
        Raises stripe.SignatureVerificationError on a bad signature.
        """
        text = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(text, signature, secret, WEBHOOK_TOLERANCE_SECONDS)
        return json.loads(text)


def get_stripe_client() -> StripeClient:
    """FastAPI dependency."""
    return StripeClient()
