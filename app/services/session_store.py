"""
Cookie sessions. The browser holds an opaque token; the database only sees its sha256.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy import delete
from sqlalchemy.orm import Session
from app.core.config import SESSION_MAX_AGE_SECONDS
from app.models.user_session import UserSession
from app.utils.auth import generate_token, hash_token
from app.utils.dates import utcnow


@dataclass(frozen=True)
class SessionUser:
    id: int
    email: str
    name: str


@dataclass(frozen=True)
class CreatedSession:
    token: str
    expires_at: datetime


def create_session(db: Session, user_id: int, email: str, name: str) -> CreatedSession:
    token = generate_token()
    now = utcnow()
    expires_at = now + timedelta(seconds=SESSION_MAX_AGE_SECONDS)
    db.add(UserSession(
        token_hash=hash_token(token),
        user_id=user_id,
        email=email,
        name=name,
        created_at=now,
        expires_at=expires_at,
    ))
    db.commit()
    return CreatedSession(token=token, expires_at=expires_at)


def get_session_user_by_token(db: Session, token: str) -> Optional[SessionUser]:
    session = db.query(UserSession).filter(
        UserSession.token_hash == hash_token(token),
        UserSession.expires_at > utcnow(),
    ).first()
    if not session:
        return None
    return SessionUser(id=session.user_id, email=session.email, name=session.name)


def delete_session_by_token(db: Session, token: str) -> None:
    db.execute(delete(UserSession).where(UserSession.token_hash == hash_token(token)))
    db.commit()


def delete_sessions_by_user_id(db: Session, user_id: int) -> int:
    result = db.execute(delete(UserSession).where(UserSession.user_id == user_id))
    db.commit()
    return result.rowcount


def purge_expired_sessions(db: Session) -> int:
    result = db.execute(delete(UserSession).where(UserSession.expires_at <= utcnow()))
    db.commit()
    return result.rowcount
