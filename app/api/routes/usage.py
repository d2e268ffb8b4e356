"""
Usage gate for the conversion tools.
Unlimited plans skip counting; signed-in free users get the weekly quota; everyone
else is a guest on the daily quota keyed by IP hash + anonymous cookie.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.core.config import is_production
from app.core.plan_limits import ANON_USAGE_COOKIE_NAME, ANON_COOKIE_MAX_AGE_SECONDS
from app.db.session import get_db
from app.dependencies.auth import get_optional_session_user
from app.schemas import parse_body
from app.schemas.usage import UsageConsumeRequest
from app.services.billing_linkage import get_user_by_id
from app.services.entitlements import FREE_SNAPSHOT, EntitlementSnapshot, plan_label, resolve_entitlement
from app.services.session_store import SessionUser
from app.services.usage_limits import (
    AnonUsageId,
    consume_free_user_quota,
    consume_guest_quota,
    get_or_create_anon_usage_id,
    preview_free_user_quota,
    preview_guest_quota,
)
from app.utils.dates import isoformat_utc

logger = logging.getLogger(__name__)

router = APIRouter()


def load_snapshot(db: Session, user_id: int) -> EntitlementSnapshot:
    """Entitlement for a signed-in user. A failed lookup means free tier, never unlimited."""
    try:
        user = get_user_by_id(db, user_id)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("[usage] entitlement lookup failed for user %s; falling back to free tier", user_id)
        return FREE_SNAPSHOT
    return resolve_entitlement(user)


def with_anon_cookie(response: JSONResponse, anon: AnonUsageId) -> JSONResponse:
    if anon.should_set_cookie:
        response.set_cookie(
            key=ANON_USAGE_COOKIE_NAME,
            value=anon.anon_id,
            max_age=ANON_COOKIE_MAX_AGE_SECONDS,
            httponly=True,
            samesite="lax",
            secure=is_production(),
            path="/",
        )
    return response


@router.get("/me/entitlement")
async def get_entitlement(
    request: Request,
    db: Session = Depends(get_db),
    session_user: Optional[SessionUser] = Depends(get_optional_session_user),
):
    """Current plan plus remaining quota (read-only, does not consume)."""
    if session_user:
        snapshot = load_snapshot(db, session_user.id)
        body = {
            "authenticated": True,
            "plan": snapshot.plan,
            "planStatus": snapshot.plan_status,
            "planLabel": plan_label(snapshot),
            "planExpiresAt": isoformat_utc(snapshot.plan_expires_at),
        }
        if snapshot.has_unlimited_access:
            body["usageRemaining"] = None
            body["resetAt"] = isoformat_utc(snapshot.plan_expires_at) if snapshot.plan == "day_pass" else None
            return body

        quota = preview_free_user_quota(db, session_user.id)
        body["usageRemaining"] = quota.remaining
        body["resetAt"] = isoformat_utc(quota.reset_at)
        return body

    anon = get_or_create_anon_usage_id(request.cookies.get(ANON_USAGE_COOKIE_NAME))
    quota = preview_guest_quota(db, request.headers, anon.anon_id)
    response = JSONResponse({
        "authenticated": False,
        "plan": "free",
        "planStatus": "active",
        "planLabel": "Free",
        "planExpiresAt": None,
        "usageRemaining": quota.remaining,
        "resetAt": isoformat_utc(quota.reset_at),
    })
    return with_anon_cookie(response, anon)


@router.post("/usage/consume")
async def consume_usage(
    request: Request,
    db: Session = Depends(get_db),
    session_user: Optional[SessionUser] = Depends(get_optional_session_user),
):
    """Spend one tool use. Denials are 200 with allowed=false so the UI can show the paywall."""
    payload = await parse_body(request, UsageConsumeRequest)
    if payload is None:
        return JSONResponse(
            status_code=400,
            content={"allowed": False, "reason": "Invalid usage request payload."},
        )

    if session_user:
        snapshot = load_snapshot(db, session_user.id)
        if snapshot.has_unlimited_access:
            return {
                "allowed": True,
                "plan": snapshot.plan,
                "planStatus": snapshot.plan_status,
                "planExpiresAt": isoformat_utc(snapshot.plan_expires_at),
                "remaining": None,
                "resetAt": None,
            }

        quota = consume_free_user_quota(db, session_user.id)
        body = {
            "allowed": quota.allowed,
            "remaining": quota.remaining,
            "resetAt": isoformat_utc(quota.reset_at),
            "plan": snapshot.plan,
        }
        if not quota.allowed:
            body["reason"] = "Free plan weekly limit reached. Upgrade to continue now."
        logger.info("[usage] user %s tool=%s allowed=%s remaining=%s", session_user.id, payload.tool, quota.allowed, quota.remaining)
        return body

    anon = get_or_create_anon_usage_id(request.cookies.get(ANON_USAGE_COOKIE_NAME))
    quota = consume_guest_quota(db, request.headers, anon.anon_id)
    body = {
        "allowed": quota.allowed,
        "remaining": quota.remaining,
        "resetAt": isoformat_utc(quota.reset_at),
        "plan": "free",
    }
    if not quota.allowed:
        body["reason"] = "Guest daily limit reached. Create a free account or upgrade."
    return with_anon_cookie(JSONResponse(body), anon)
