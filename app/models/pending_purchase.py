"""
Entitlement bought with an email that has no account yet.
Claimed (and then left as history) when a user with that email logs in.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from app.db.base import Base
from app.utils.dates import utcnow


class PendingPurchase(Base):
    __tablename__ = "pending_purchases"
    __table_args__ = (
        Index("pending_purchase_claim_lookup", "email_lower", "claimed_by_user_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, nullable=False)
    email_lower = Column(String, nullable=False)
    plan = Column(String, nullable=False)
    plan_status = Column(String, nullable=False)
    plan_expires_at = Column(DateTime, nullable=True)
    stripe_customer_id = Column(String, index=True, nullable=True)
    stripe_subscription_id = Column(String, index=True, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    claimed_at = Column(DateTime, nullable=True)
    claimed_by_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
