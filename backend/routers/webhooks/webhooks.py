from fastapi import APIRouter, Depends, HTTPException, status, Request, BackgroundTasks
from sqlalchemy.ext.asyncio import AsyncSession
from config import get_db, STRIPE_WEBHOOK_SECRET
from routers.payments.helpers import PaymentStore
from routers.payments.payments import queue_payment_email
from utils.errors import InvalidTransition
import stripe
import json
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

INTENT_EVENT_STATUSES = {
    "payment_intent.succeeded": "paid",
    "payment_intent.payment_failed": "failed",
    "payment_intent.processing": "requires_action",
}


def _charge_details(intent) -> dict:
    """Card brand, last4 and receipt url from the intent's charge, when present"""
    charge = None
    charges = intent.get("charges") or {}
    if charges.get("data"):
        charge = charges["data"][0]
    elif isinstance(intent.get("latest_charge"), dict):
        charge = intent["latest_charge"]

    if not charge:
        return {}

    card = (charge.get("payment_method_details") or {}).get("card") or {}
    return {
        "card_brand": card.get("brand"),
        "card_last4": card.get("last4"),
        "receipt_url": charge.get("receipt_url"),
    }


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db)
):
    """
    Stripe webhook. The raw body must be verified against the signature
    header before anything is touched.
    """
    if not STRIPE_WEBHOOK_SECRET:
        logger.error("STRIPE_WEBHOOK_SECRET is not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook not configured"
        )

    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook Error: missing Stripe-Signature header"
        )

    try:
        stripe.WebhookSignature.verify_header(payload.decode("utf-8"), signature, STRIPE_WEBHOOK_SECRET)
        event = json.loads(payload)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.error(f"Webhook signature verification failed: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Webhook Error: {str(e)}"
        )

    try:
        event_type = event["type"]
        new_status = INTENT_EVENT_STATUSES.get(event_type)
        if new_status is None:
            return {"received": True}

        intent = event["data"]["object"]
        store = PaymentStore(db)
        payment = await store.find_by_intent(intent["id"])
        if not payment:
            logger.warning(f"No payment found for {event_type} on intent {intent['id']}")
            return {"received": True}

        previous_status = payment.payment_status
        changes = _charge_details(intent) if new_status == "paid" else {}
        try:
            payment = await store.transition_status(payment, new_status, **changes)
        except InvalidTransition as e:
            # Acknowledge so Stripe stops retrying an event we will never apply
            logger.warning(f"Ignoring {event_type} for payment {payment.id}: {e.message}")
            return {"received": True}

        queue_payment_email(background_tasks, payment, previous_status)
        logger.info(f"Webhook {event_type} applied to payment {payment.id}")
        return {"received": True}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Webhook handler error: {str(e)}")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook handler error"
        )
