"""Subscription API routes - premium status and the Stripe webhook"""
import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from reelcoin.core.security import require_auth
from reelcoin.db.session import get_db
from reelcoin.services.entitlement_service import is_premium
from reelcoin.services.stripe_service import process_stripe_webhook, WebhookSignatureError

router = APIRouter(prefix="/api/subscription", tags=["subscriptions"])
logger = logging.getLogger(__name__)


@router.get("/premium")
def get_premium_status(account_id: str = Depends(require_auth), db: Session = Depends(get_db)):
    """Is premium active for the caller"""
    return {"is_premium": is_premium(account_id, db)}


@router.post("/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """Handle Stripe webhook events

    Note: This route must be excluded from any global JSON parsing middleware
    to ensure the request body remains as raw bytes for signature verification.
    Transient failures raise UpstreamUnavailableError, answered with 503 so
    Stripe retries; everything else is acknowledged.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not sig_header:
        raise HTTPException(400, "Missing stripe-signature header")

    try:
        return process_stripe_webhook(payload, sig_header, db)
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        raise HTTPException(400, str(e))
    except WebhookSignatureError:
        raise HTTPException(400, "Invalid signature")
