from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.dependencies.auth import require_session_user
from app.services.billing_linkage import claim_pending_for_user, get_user_by_id
from app.services.session_store import SessionUser

router = APIRouter()


@router.post("/claim")
async def claim_pending_purchases(
    db: Session = Depends(get_db),
    session_user: SessionUser = Depends(require_session_user),
):
    """Attach purchases made with this account's email before the account existed."""
    user = get_user_by_id(db, session_user.id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found."
        )

    claimed = claim_pending_for_user(db, user.id, user.email_lower)
    return {"claimed": claimed}
