from app.models.user import User
from app.models.user_session import UserSession
from app.models.usage_counter import UsageCounter
from app.models.processed_stripe_event import ProcessedStripeEvent, EventState
from app.models.pending_purchase import PendingPurchase

__all__ = [
    "User",
    "UserSession",
    "UsageCounter",
    "ProcessedStripeEvent",
    "EventState",
    "PendingPurchase",
]
