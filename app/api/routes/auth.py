"""
Account routes: signup, email verification, login, logout, me.
Login also claims any purchases that were made with the account's email before it existed.
"""
import logging
from datetime import timedelta
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from app.core.config import SESSION_COOKIE_NAME, SESSION_MAX_AGE_SECONDS, is_production
from app.db.session import get_db
from app.dependencies.auth import get_optional_session_user
from app.models.user import User
from app.schemas import parse_body
from app.schemas.auth import LoginRequest, SignupRequest
from app.services.billing_linkage import claim_pending_for_user
from app.services.mailer import send_verification_email
from app.services.session_store import (
    SessionUser,
    create_session,
    delete_session_by_token,
    delete_sessions_by_user_id,
)
from app.utils.auth import generate_token, hash_password, hash_token, normalize_email, verify_password
from app.utils.dates import utcnow
from app.utils.errors import is_db_connectivity_error, is_mail_delivery_error, summarize_error

logger = logging.getLogger(__name__)

router = APIRouter()

VERIFICATION_TOKEN_TTL = timedelta(hours=24)


@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(request: Request, db: Session = Depends(get_db)):
    body = await parse_body(request, SignupRequest)
    if body is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signup data."
        )

    email = body.email.strip()
    email_lower = normalize_email(email)
    if db.query(User).filter(User.email_lower == email_lower).first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email is already registered."
        )

    verification_token = generate_token()
    now = utcnow()
    user = User(
        name=body.name,
        email=email,
        email_lower=email_lower,
        hashed_password=hash_password(body.password),
        email_verified=False,
        verification_token_hash=hash_token(verification_token),
        verification_token_expires_at=now + VERIFICATION_TOKEN_TTL,
        created_at=now,
        updated_at=now,
    )
    try:
        db.add(user)
        db.commit()
        db.refresh(user)
    except IntegrityError:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email is already registered."
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("[auth signup] failed: %s", summarize_error(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Signup failed due to a database connection issue."
            if is_db_connectivity_error(e)
            else "Could not create account right now. Please try again."
        )

    try:
        mail_result = send_verification_email(to=email, name=body.name, token=verification_token)
    except Exception as e:
        # Don't leave an unverified account nobody can activate
        logger.error("[auth signup] verification email failed: %s", summarize_error(e))
        try:
            db.execute(delete(User).where(User.id == user.id))
            db.commit()
        except SQLAlchemyError as rollback_error:
            db.rollback()
            logger.error("[auth signup] rollback failed: %s", summarize_error(rollback_error))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Signup failed because email delivery is not configured correctly."
            if is_mail_delivery_error(e)
            else "Could not create account right now. Please try again."
        )

    if mail_result.delivered:
        return {"message": "Account created. Check your email to verify your account."}
    return {
        "message": "Account created in dev mode. Email delivery is not configured yet, so use the verification link below.",
        "devVerificationUrl": mail_result.verification_url,
    }


@router.get("/verify-email")
def verify_email(token: Optional[str] = None, db: Session = Depends(get_db)):
    if not token:
        return RedirectResponse("/login?verify=invalid", status_code=status.HTTP_307_TEMPORARY_REDIRECT)

    now = utcnow()
    user = db.query(User).filter(
        User.verification_token_hash == hash_token(token),
        User.verification_token_expires_at > now,
    ).first()
    if not user:
        return RedirectResponse("/login?verify=invalid", status_code=status.HTTP_307_TEMPORARY_REDIRECT)

    user.email_verified = True
    user.verification_token_hash = None
    user.verification_token_expires_at = None
    user.updated_at = now
    db.commit()
    return RedirectResponse("/login?verified=1", status_code=status.HTTP_307_TEMPORARY_REDIRECT)


@router.post("/login")
async def login(request: Request, db: Session = Depends(get_db)):
    existing_token = request.cookies.get(SESSION_COOKIE_NAME)
    if existing_token:
        try:
            delete_session_by_token(db, existing_token)
        except SQLAlchemyError:
            # Stale session cleanup is best effort
            db.rollback()
            logger.warning("[auth login] could not delete previous session")

    body = await parse_body(request, LoginRequest)
    if body is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid login data."
        )

    user = db.query(User).filter(User.email_lower == normalize_email(body.email)).first()
    if not user or not verify_password(body.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password."
        )

    if not user.email_verified:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Please verify your email before logging in."
        )

    # Rotate: one fresh session per login
    try:
        delete_sessions_by_user_id(db, user.id)
    except SQLAlchemyError:
        db.rollback()
        logger.warning("[auth login] could not rotate old sessions for user %s", user.id)

    session = create_session(db, user_id=user.id, email=user.email_lower, name=user.name)
    user.last_login_at = utcnow()
    db.commit()

    claimed = False
    try:
        claimed = claim_pending_for_user(db, user.id, user.email_lower)
    except SQLAlchemyError:
        # Claiming can be retried via /api/billing/claim; never block the login on it
        db.rollback()
        logger.exception("[auth login] claiming pending purchases failed for user %s", user.id)

    response = JSONResponse({"message": "Logged in successfully.", "claimed": claimed})
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=session.token,
        max_age=SESSION_MAX_AGE_SECONDS,
        httponly=True,
        samesite="lax",
        secure=is_production(),
        path="/",
    )
    return response


@router.post("/logout")
def logout(request: Request, db: Session = Depends(get_db)):
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if token:
        try:
            delete_session_by_token(db, token)
        except SQLAlchemyError:
            # Always clear the cookie even if the row can't be deleted
            db.rollback()
            logger.warning("[auth logout] could not delete session")

    response = JSONResponse({"message": "Logged out."})
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return response


@router.get("/me")
def me(session_user: Optional[SessionUser] = Depends(get_optional_session_user)):
    if not session_user:
        return JSONResponse(status_code=401, content={"authenticated": False})
    return {
        "authenticated": True,
        "user": {"id": session_user.id, "email": session_user.email, "name": session_user.name},
    }
