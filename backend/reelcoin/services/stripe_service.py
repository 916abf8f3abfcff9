"""Stripe webhook processing - premium activation from completed checkouts"""
import stripe
from datetime import datetime, timezone
from typing import Any, Dict
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from reelcoin.core.config import settings
from reelcoin.core.exceptions import UpstreamUnavailableError
from reelcoin.core.logging import webhook_logger as logger
from reelcoin.core.metrics import webhook_events_counter
from reelcoin.db.session import TRANSIENT_DB_ERRORS
from reelcoin.models.stripe_event import StripeEvent
from reelcoin.services.ledger_service import activate_premium


# Configure Stripe
stripe.api_key = settings.STRIPE_SECRET_KEY

CHECKOUT_EVENTS = ("checkout.session.completed", "checkout.session.async_payment_succeeded")


class WebhookSignatureError(Exception):
    """The stripe-signature header did not match the payload"""


# ============================================================================
# WEBHOOK & EVENT LOGGING
# ============================================================================

def log_stripe_event(event_id: str, event_type: str, payload: dict, db: Session) -> StripeEvent:
    stripe_event = db.query(StripeEvent).filter(StripeEvent.stripe_event_id == event_id).first()
    if not stripe_event:
        stripe_event = StripeEvent(
            stripe_event_id=event_id,
            event_type=event_type,
            payload=payload,
            processed=False
        )
        db.add(stripe_event)
        try:
            db.commit()
        except IntegrityError:
            # Same event delivered twice at once
            db.rollback()
            return db.query(StripeEvent).filter(StripeEvent.stripe_event_id == event_id).one()
        db.refresh(stripe_event)
    return stripe_event


def mark_stripe_event_processed(event_id: str, db: Session, error_message: str = None):
    stripe_event = db.query(StripeEvent).filter(StripeEvent.stripe_event_id == event_id).first()
    if stripe_event:
        stripe_event.processed = True
        stripe_event.processed_at = datetime.now(timezone.utc)
        stripe_event.error_message = error_message
        db.commit()

# ============================================================================
# STRIPE OBJECT ACCESS HELPER
# ============================================================================

def _get_stripe_value(obj: Any, key: str, default=None):
    """Safely extract value from Stripe object (supports both dict and attribute access)."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    value = getattr(obj, key, None)
    return default if value is None else value

# ============================================================================
# EVENT HANDLERS
# ============================================================================

def handle_checkout_completed(session: Any, db: Session) -> str:
    """Activate premium for a paid checkout session.

    The account comes from ``client_reference_id``, set when the checkout was
    created for the signed-in user. Returns a short outcome label.
    """
    session_id = _get_stripe_value(session, 'id')
    if _get_stripe_value(session, 'payment_status') != 'paid':
        logger.info(f"Checkout {session_id} not paid yet, waiting for a later event")
        return "ignored_unpaid"

    account_id = _get_stripe_value(session, 'client_reference_id')
    if not account_id:
        logger.warning(f"Checkout {session_id} has no client_reference_id, cannot activate premium")
        return "ignored_missing_reference"

    payment_reference = _get_stripe_value(session, 'payment_intent') or session_id
    purchase = activate_premium(account_id, payment_reference, True, db)
    if purchase is None:
        return "ignored_unknown_account"
    return "premium_activated"


def process_stripe_webhook(
    payload: bytes,
    sig_header: str,
    db: Session
) -> Dict[str, Any]:
    """Process Stripe webhook event

    Validates webhook signature, handles idempotency, and processes checkout events.
    Returns success even when an event cannot be processed, so Stripe does not
    retry something that will never succeed. Only transient failures raise.

    Args:
        payload: Raw request body as bytes (must not be parsed by middleware)
        sig_header: Stripe signature header
        db: Database session

    Returns:
        Dict with status information

    Raises:
        ValueError: For invalid payload
        WebhookSignatureError: For invalid signature
        UpstreamUnavailableError: Not configured or database unreachable (retriable)
    """
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("Webhook secret not configured")
        raise UpstreamUnavailableError("Payment webhook is not configured")

    try:
        event = stripe.Webhook.construct_event(
            payload, sig_header, settings.STRIPE_WEBHOOK_SECRET
        )
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        raise ValueError("Invalid payload")
    except stripe.SignatureVerificationError as e:
        logger.error(f"Invalid webhook signature: {e}")
        raise WebhookSignatureError("Invalid signature") from e

    event_id = _get_stripe_value(event, 'id')
    event_type = _get_stripe_value(event, 'type')
    if not event_id or not event_type:
        raise ValueError("Invalid payload")

    # Log event for idempotency
    try:
        stripe_event = log_stripe_event(event_id, event_type, event, db)
    except TRANSIENT_DB_ERRORS as e:
        db.rollback()
        logger.error(f"Could not log webhook event {event_id}: {e}", exc_info=True)
        webhook_events_counter.labels(event_type=event_type, status="retry").inc()
        raise UpstreamUnavailableError("Ledger database unavailable") from e

    if stripe_event.processed:
        logger.info(f"Webhook event {event_id} already processed")
        webhook_events_counter.labels(event_type=event_type, status="already_processed").inc()
        return {"status": "already_processed"}

    data = _get_stripe_value(_get_stripe_value(event, 'data'), 'object') or {}

    try:
        if event_type in CHECKOUT_EVENTS:
            outcome = handle_checkout_completed(data, db)
        else:
            outcome = "ignored"

        mark_stripe_event_processed(event_id, db)
        logger.info(f"Successfully processed webhook event {event_id} of type {event_type}: {outcome}")
        webhook_events_counter.labels(event_type=event_type, status="success").inc()
        return {"status": "success", "outcome": outcome}
    except TRANSIENT_DB_ERRORS as e:
        # Leave unprocessed so Stripe's retry gets another chance
        db.rollback()
        logger.error(f"Database unavailable processing webhook {event_id}, asking Stripe to retry: {e}")
        webhook_events_counter.labels(event_type=event_type, status="retry").inc()
        raise UpstreamUnavailableError("Ledger database unavailable") from e
    except UpstreamUnavailableError:
        logger.error(f"Transient failure processing webhook {event_id}, asking Stripe to retry")
        webhook_events_counter.labels(event_type=event_type, status="retry").inc()
        raise
    except Exception as e:
        # Log error but return success to prevent Stripe retries
        db.rollback()
        logger.error(f"Error processing webhook {event_id}: {e}", exc_info=True)
        mark_stripe_event_processed(event_id, db, error_message=str(e))
        webhook_events_counter.labels(event_type=event_type, status="error").inc()
        return {"status": "error_logged"}
