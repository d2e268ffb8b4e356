from sqlalchemy import Column, Integer, String, Boolean, DateTime
from app.db.base import Base
from app.utils.dates import utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    email_lower = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    email_verified = Column(Boolean, default=False, nullable=False)
    verification_token_hash = Column(String, index=True, nullable=True)
    verification_token_expires_at = Column(DateTime, nullable=True)

    # Entitlement fields: owned by the billing/entitlement services, never by auth
    plan = Column(String, default="free", nullable=False)  # free | day_pass | pro_monthly | pro_yearly
    plan_status = Column(String, default="active", nullable=False)  # active | past_due | canceled | expired
    plan_expires_at = Column(DateTime, nullable=True)  # Only day passes carry a hard expiry
    stripe_customer_id = Column(String, index=True, nullable=True)
    stripe_subscription_id = Column(String, index=True, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    last_login_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email_lower}, plan={self.plan}/{self.plan_status})>"
