"""
Keyed usage counter for quota windows.
The stored count is only meaningful while now < reset_at; past that the window is treated as empty.
"""
from sqlalchemy import Column, Integer, String, DateTime
from app.db.base import Base
from app.utils.dates import utcnow


class UsageCounter(Base):
    __tablename__ = "usage_counters"

    id = Column(Integer, primary_key=True)
    key = Column(String(255), unique=True, index=True, nullable=False)  # subject + window, e.g. quota:user:42:2026-W42
    count = Column(Integer, default=0, nullable=False)
    reset_at = Column(DateTime, index=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<UsageCounter(key={self.key}, count={self.count}, reset_at={self.reset_at})>"
