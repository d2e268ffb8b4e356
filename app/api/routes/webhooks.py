"""
Stripe webhook endpoint. Register https://<backend>/api/stripe/webhook in the Stripe dashboard.

400: missing or invalid signature (nothing is written).
200: processed, ignored, or a duplicate delivery.
500: processing failed; the event stays unprocessed and Stripe retries it.
"""
import logging
import stripe
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from app.core.config import get_stripe_webhook_secret
from app.db.session import get_db
from app.services.stripe_client import StripeClient, get_stripe_client
from app.services.stripe_events import ProcessingOutcome, process_event

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/stripe/webhook")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    processor: StripeClient = Depends(get_stripe_client),
):
    signature = request.headers.get("stripe-signature")
    if not signature:
        return JSONResponse(status_code=400, content={"message": "Missing Stripe signature."})

    webhook_secret = get_stripe_webhook_secret()
    payload = await request.body()
    try:
        event = processor.construct_event(payload, signature, webhook_secret)
    except (stripe.SignatureVerificationError, ValueError) as e:
        logger.warning("[stripe webhook] signature verification failed: %s", e)
        return JSONResponse(status_code=400, content={"message": "Invalid webhook signature."})

    try:
        outcome = process_event(db, event, processor)
    except Exception:
        db.rollback()
        logger.exception(
            "[stripe webhook] processing failed id=%s type=%s",
            event.get("id"),
            event.get("type"),
        )
        return JSONResponse(status_code=500, content={"message": "Webhook processing failed."})

    if outcome == ProcessingOutcome.DUPLICATE:
        return {"received": True, "duplicate": True}
    return {"received": True}
