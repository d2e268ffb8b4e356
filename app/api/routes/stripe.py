"""
Stripe Checkout, Billing Portal and manual reconciliation routes.
"""
import logging
from typing import Optional
import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session
from app.core.config import ConfigurationError, get_app_url
from app.core.plan_limits import CHECKOUT_MODES
from app.db.session import get_db
from app.dependencies.auth import get_optional_session_user, require_session_user
from app.schemas import parse_body
from app.schemas.billing import CheckoutRequest
from app.services.billing_linkage import ensure_customer_id, get_user_by_id
from app.services.entitlements import price_id_for_plan
from app.services.session_store import SessionUser
from app.services.stripe_client import StripeClient, get_stripe_client
from app.services.stripe_events import reconcile_from_checkout_history

logger = logging.getLogger(__name__)

router = APIRouter()


def get_request_origin(request: Request) -> str:
    if request.url.netloc:
        return f"{request.url.scheme}://{request.url.netloc}"
    return get_app_url()


@router.post("/checkout")
async def create_checkout_session(
    request: Request,
    db: Session = Depends(get_db),
    session_user: Optional[SessionUser] = Depends(get_optional_session_user),
    processor: StripeClient = Depends(get_stripe_client),
):
    """
    Create a Stripe Checkout Session for the requested plan.
    Day passes are one-time payments; pro plans are subscriptions.
    """
    if not session_user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Please log in before starting checkout."
        )

    body = await parse_body(request, CheckoutRequest)
    if body is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid checkout request."
        )

    user = get_user_by_id(db, session_user.id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found."
        )

    try:
        customer_id = ensure_customer_id(db, user, processor)
        price_id = price_id_for_plan(body.plan)
        app_url = get_request_origin(request)

        checkout_url = processor.create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            mode=CHECKOUT_MODES[body.plan],
            success_url=f"{app_url}/pricing?checkout=success",
            cancel_url=f"{app_url}/pricing?checkout=canceled",
            metadata={
                "appUserId": str(user.id),
                "appUserEmail": user.email_lower,
                "requestedPlan": body.plan,
            },
            client_reference_id=str(user.id),
        )
    except (stripe.StripeError, ConfigurationError) as e:
        logger.error("[stripe checkout] failed for user %s plan=%s: %s", user.id, body.plan, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )

    if not checkout_url:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not create checkout session."
        )

    return {"url": checkout_url}


@router.post("/portal")
async def create_portal_session(
    db: Session = Depends(get_db),
    session_user: SessionUser = Depends(require_session_user),
    processor: StripeClient = Depends(get_stripe_client),
):
    user = get_user_by_id(db, session_user.id)
    if not user or not user.stripe_customer_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No billing profile found for this account."
        )

    try:
        portal_url = processor.create_portal_session(user.stripe_customer_id, f"{get_app_url()}/pricing")
    except stripe.StripeError as e:
        logger.error("[stripe portal] failed for user %s: %s", user.id, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not open the billing portal."
        )
    return RedirectResponse(portal_url, status_code=status.HTTP_303_SEE_OTHER)


@router.post("/reconcile")
async def reconcile_checkout(
    db: Session = Depends(get_db),
    session_user: SessionUser = Depends(require_session_user),
    processor: StripeClient = Depends(get_stripe_client),
):
    """Re-check recent Stripe checkouts in case the webhook hasn't arrived (or never will)."""
    user = get_user_by_id(db, session_user.id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found."
        )

    try:
        result = reconcile_from_checkout_history(db, user, processor)
    except stripe.StripeError as e:
        logger.error("[stripe reconcile] failed for user %s: %s", user.id, e)
        return JSONResponse(status_code=500, content={"message": str(e)})

    if result.updated:
        return {"updated": True, "plan": result.plan}
    return {"updated": False, "reason": result.reason}
