import logging
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.core.config import SESSION_COOKIE_NAME
from app.db.session import get_db
from app.services.session_store import SessionUser, get_session_user_by_token

logger = logging.getLogger(__name__)


def get_optional_session_user(request: Request, db: Session = Depends(get_db)) -> Optional[SessionUser]:
    """Caller's session user, or None for guests. Session lookup failures degrade to guest."""
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if not token:
        return None
    try:
        return get_session_user_by_token(db, token)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("[auth] session lookup failed; treating caller as guest")
        return None


def require_session_user(user: Optional[SessionUser] = Depends(get_optional_session_user)) -> SessionUser:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized."
        )
    return user
