from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from app.db.base import Base
from app.utils.dates import utcnow


class UserSession(Base):
    """Login session. Only the sha256 of the bearer token is persisted."""
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)
    token_hash = Column(String(64), unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    email = Column(String, nullable=False)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, index=True, nullable=False)
