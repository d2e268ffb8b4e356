import enum
from sqlalchemy import Column, Integer, String, DateTime
from app.db.base import Base
from app.utils.dates import utcnow


class EventState(str, enum.Enum):
    UNSEEN = "unseen"        # no row
    IN_FLIGHT = "in_flight"  # row exists, processed_at is NULL
    PROCESSED = "processed"  # processed_at set


class ProcessedStripeEvent(Base):
    __tablename__ = "processed_stripe_events"

    id = Column(Integer, primary_key=True)
    stripe_event_id = Column(String(255), unique=True, index=True, nullable=False)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    @property
    def state(self) -> EventState:
        return EventState.PROCESSED if self.processed_at is not None else EventState.IN_FLIGHT
