from fastapi import APIRouter, Depends, HTTPException, status, Query, BackgroundTasks
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from config import get_db, get_stripe_client, DEFAULT_CURRENCY, ADMIN_NOTIFICATION_EMAIL
from models import Payment, AdminOrderItem, AdminOrder
from routers.auth.auth import get_current_user
from dependencies.rbac import (
    require_payment_read, require_payment_write, require_payment_sync,
    require_slip_write, require_stripe_checkout
)
from utils.errors import ServiceError, NotFound, UpstreamError
from utils.response_helpers import payment_to_dict
from utils.notifications import send_email, get_payment_received_email
from .helpers import PaymentStore, sync_paid_payments, to_uuid, payment_amount_major
from .schemas import (
    PaymentResponse, PaymentListResponse, PaymentUpdate, SlipPaymentCreate,
    StripeIntentCreate, StripeIntentResponse, StripeStatusUpdate,
    StripeStatusUpdateResponse, PaymentStatusSummary, SyncOrdersResponse
)
from typing import Optional
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])

# Stripe intent states that still accept an amount change
UPDATABLE_INTENT_STATES = {
    "requires_payment_method",
    "requires_confirmation",
    "requires_action",
    "processing",
}


def _payment_response(payment: Payment) -> PaymentResponse:
    return PaymentResponse.model_validate(payment_to_dict(payment))


def queue_payment_email(background_tasks: BackgroundTasks, payment: Payment, previous_status: Optional[str]):
    """Email finance when a payment moves into the paid state"""
    if not ADMIN_NOTIFICATION_EMAIL or payment.payment_status != "paid" or previous_status == "paid":
        return
    subject, body = get_payment_received_email({
        "id": str(payment.id),
        "payment_ref": payment.payment_ref,
        "order_id": str(payment.order_id) if payment.order_id else None,
        "amount": payment_amount_major(payment),
        "currency": payment.currency,
    })
    background_tasks.add_task(send_email, ADMIN_NOTIFICATION_EMAIL, subject, body)


@router.get("", response_model=PaymentListResponse)
async def get_all_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    method: Optional[str] = Query(None),
    payment_status: Optional[str] = Query(None, alias="status"),
    order_id: Optional[str] = Query(None, alias="orderId"),
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_payment_read)
):
    """
    List payments, newest first
    """
    try:
        query = select(Payment)
        count_query = select(func.count(Payment.id))

        filters = []
        if method:
            filters.append(Payment.method == method)
        if payment_status:
            filters.append(Payment.payment_status == payment_status)
        if order_id:
            order_uuid = to_uuid(order_id)
            if order_uuid is None:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Invalid order id"
                )
            filters.append(Payment.order_id == order_uuid)

        if filters:
            query = query.where(*filters)
            count_query = count_query.where(*filters)

        total = (await db.execute(count_query)).scalar()

        offset = (page - 1) * limit
        result = await db.execute(
            query.order_by(Payment.created_at.desc()).offset(offset).limit(limit)
        )
        payments = result.scalars().all()

        return PaymentListResponse(
            payments=[_payment_response(payment) for payment in payments],
            page=page,
            limit=limit,
            total=total
        )

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error fetching payments: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error fetching payments"
        )


@router.post("/slip", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
async def create_slip_payment(
    slip_data: SlipPaymentCreate,
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_slip_write)
):
    """
    Record a bank slip payment for a procurement order.
    The slip file itself is already stored; only its reference is kept here.
    """
    try:
        order_uuid = to_uuid(slip_data.order_id)
        order_exists = None
        if order_uuid is not None:
            order_exists = (await db.execute(
                select(AdminOrder.id).where(AdminOrder.id == order_uuid)
            )).scalar_one_or_none()
        if order_exists is None:
            raise NotFound("Order not found")

        supplier_id = to_uuid(current_user["user_id"])
        owned = (await db.execute(
            select(func.count(AdminOrderItem.id)).where(
                AdminOrderItem.order_id == order_uuid,
                AdminOrderItem.supplier_id == supplier_id
            )
        )).scalar()
        if not owned:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have any items on this order"
            )

        store = PaymentStore(db)
        payment = await store.create_attempt(
            order_uuid,
            "slip",
            slip_data.amount,
            slip_data.currency or DEFAULT_CURRENCY,
            meta={
                "payment_name": slip_data.payment_name or f"Slip for order {str(order_uuid)[:8]}",
                "user_id": current_user["user_id"],
                "supplier_id": supplier_id,
                "customer_email": current_user.get("email"),
                "slip_url": slip_data.slip_url,
                "slip_original_name": slip_data.slip_original_name,
            },
        )

        logger.info(f"Slip payment {payment.id} recorded for order {order_uuid} by supplier {supplier_id}")
        return _payment_response(payment)

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error recording slip payment: {str(e)}")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error recording slip payment"
        )


def _ensure_payment_intent(stripe, payment: Payment, amount: int, currency: str, order_id: str):
    """
    Create, update or reuse the Stripe PaymentIntent behind a payment row.
    Runs in a worker thread; returns (intent_id, client_secret).
    """
    def create_intent():
        return stripe.PaymentIntent.create(
            amount=amount,
            currency=currency,
            receipt_email=payment.customer_email,
            metadata={"paymentId": str(payment.id), "orderId": order_id},
            automatic_payment_methods={"enabled": True},
        )

    if not payment.stripe_payment_intent_id:
        intent = create_intent()
        return intent["id"], intent["client_secret"]

    intent = stripe.PaymentIntent.retrieve(payment.stripe_payment_intent_id)
    if intent["amount"] != amount and intent["status"] in UPDATABLE_INTENT_STATES:
        intent = stripe.PaymentIntent.modify(intent["id"], amount=amount)
        return intent["id"], intent["client_secret"]

    if intent["status"] in ("canceled", "succeeded"):
        intent = create_intent()
        return intent["id"], intent["client_secret"]

    return intent["id"], intent["client_secret"]


@router.post("/stripe/create-intent", response_model=StripeIntentResponse, status_code=status.HTTP_201_CREATED)
async def create_stripe_payment_intent(
    intent_data: StripeIntentCreate,
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_stripe_checkout)
):
    """
    Create (or reuse) the card payment for an order and its Stripe PaymentIntent
    """
    try:
        currency = (intent_data.currency or DEFAULT_CURRENCY).lower()
        order_uuid = to_uuid(intent_data.order_id)
        if order_uuid is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid order id"
            )

        store = PaymentStore(db)
        payment = await store.create_attempt(
            order_uuid,
            "stripe",
            intent_data.amount,
            currency,
            meta={
                "payment_name": intent_data.payment_name,
                "user_id": current_user["user_id"],
                "customer_email": current_user.get("email"),
            },
        )

        try:
            stripe = get_stripe_client()
            intent_id, client_secret = await run_in_threadpool(
                _ensure_payment_intent, stripe, payment, intent_data.amount, currency, str(order_uuid)
            )
        except ValueError as e:
            logger.error(f"Stripe is not configured: {str(e)}")
            raise UpstreamError("Card payments are not available")
        except Exception as e:
            logger.error(f"Stripe PaymentIntent call failed for payment {payment.id}: {str(e)}")
            raise UpstreamError("Error creating Stripe PaymentIntent")

        payment.stripe_payment_intent_id = intent_id
        payment.amount = intent_data.amount
        payment.currency = currency
        payment = await store.save(payment)

        return StripeIntentResponse(
            client_secret=client_secret,
            payment=_payment_response(payment)
        )

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error creating Stripe PaymentIntent: {str(e)}")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error creating Stripe PaymentIntent"
        )


@router.post("/stripe/update-status", response_model=StripeStatusUpdateResponse)
async def update_payment_status(
    status_data: StripeStatusUpdate,
    background_tasks: BackgroundTasks,
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_stripe_checkout)
):
    """
    Fallback for environments where Stripe webhooks cannot reach the API.
    Safe to call repeatedly with the same arguments.
    """
    try:
        store = PaymentStore(db)
        payment = await store.find_by_intent(status_data.payment_intent_id)
        if not payment:
            logger.info(f"Payment not found for paymentIntentId {status_data.payment_intent_id}")
            raise NotFound("Payment not found")

        previous_status = payment.payment_status
        payment = await store.transition_status(payment, status_data.status.value)
        queue_payment_email(background_tasks, payment, previous_status)

        return StripeStatusUpdateResponse(
            message="Payment status updated successfully",
            payment=PaymentStatusSummary(
                id=str(payment.id),
                order_id=str(payment.order_id) if payment.order_id else None,
                payment_ref=payment.payment_ref,
                status=payment.payment_status
            )
        )

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error updating payment status: {str(e)}")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error updating payment status"
        )


@router.post("/sync-orders", response_model=SyncOrdersResponse)
async def sync_orders(
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_payment_sync)
):
    """
    Repair customer orders whose status drifted from their paid payment
    """
    try:
        result = await sync_paid_payments(db)
        return SyncOrdersResponse(
            message="Paid payments synchronised with orders",
            scanned=result["scanned"],
            repaired=result["repaired"]
        )

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error syncing paid payments: {str(e)}")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error syncing paid payments"
        )


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment_by_id(
    payment_id: str,
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_payment_read)
):
    """
    Get a single payment
    """
    try:
        payment = await PaymentStore(db).get(payment_id)
        if not payment:
            raise NotFound("Payment not found")
        return _payment_response(payment)

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error fetching payment {payment_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error fetching payment"
        )


@router.put("/{payment_id}", response_model=PaymentResponse)
async def update_payment(
    payment_id: str,
    payment_data: PaymentUpdate,
    background_tasks: BackgroundTasks,
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_payment_write)
):
    """
    Admin edit of a payment. A status change goes through the same transition
    rules and order reconciliation as every other path.
    """
    try:
        store = PaymentStore(db)
        payment = await store.get(payment_id)
        if not payment:
            raise NotFound("Payment not found")

        previous_status = payment.payment_status
        changes = payment_data.model_dump(exclude_unset=True, exclude={"payment_status"})
        changes = {field: value for field, value in changes.items() if value is not None}

        if payment_data.payment_status is not None:
            payment = await store.transition_status(payment, payment_data.payment_status.value, **changes)
        else:
            for field, value in changes.items():
                setattr(payment, field, value)
            payment = await store.save(payment)

        queue_payment_email(background_tasks, payment, previous_status)
        logger.info(f"Payment {payment.id} updated by {current_user['user_id']}")
        return _payment_response(payment)

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error updating payment {payment_id}: {str(e)}")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error updating payment"
        )
