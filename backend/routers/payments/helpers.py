"""
Payment record store and the order-payment reconciler.

Every write to a payment goes through PaymentStore.save(). Once the payment is
committed, a payment in the `paid` state is handed to reconcile_payment(), which
confirms the owning customer order. Reconciliation is best effort: it logs and
returns False instead of raising, so it never undoes the payment write.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from models import Payment, CustomerOrder, as_utc, utcnow
from config import PAYMENT_STRICT_TRANSITIONS, DEFAULT_CURRENCY
from utils.errors import ValidationError, NotFound, InvalidTransition
from utils.currency import from_stripe_amount, round_currency
from utils.notifications import notify_roles
from utils.realtime import publish_sales_confirmed
from typing import Any, Dict, Iterable, List, Optional
from datetime import datetime, timezone
import json
import time
import uuid
import logging

logger = logging.getLogger(__name__)

PAYMENT_STATUSES = ("pending", "requires_action", "paid", "failed", "canceled")
PAYMENT_METHODS = ("stripe", "slip")

ALLOWED_TRANSITIONS = {
    "pending": {"requires_action", "paid", "failed", "canceled"},
    "requires_action": {"paid", "failed"},
}

STATUS_PRECEDENCE = {
    "paid": 3,
    "requires_action": 2,
    "pending": 1,
}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def generate_payment_ref() -> str:
    return f"PAY-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8].upper()}"


def to_uuid(value: Any) -> Optional[uuid.UUID]:
    if value is None or value == "":
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def _last_touched(payment: Any) -> datetime:
    stamp = getattr(payment, "updated_at", None) or getattr(payment, "created_at", None)
    return as_utc(stamp) or _EPOCH


def select_best_payment(candidates: Iterable[Any]) -> Optional[Any]:
    """
    Choose the single payment that represents an order.
    Status precedence is paid > requires_action > pending > anything else,
    then the most recently updated record.
    """
    best = None
    best_key = None
    for payment in candidates or []:
        if payment is None:
            continue
        status = str(getattr(payment, "payment_status", "") or "").lower()
        key = (STATUS_PRECEDENCE.get(status, 0), _last_touched(payment))
        if best_key is None or key > best_key:
            best = payment
            best_key = key
    return best


def parse_pending_order(metadata: Optional[dict]) -> Optional[dict]:
    """
    Read the checkout snapshot embedded in payment metadata.
    The snapshot may be stored as a dict or as a JSON string; anything
    malformed yields None.
    """
    if not isinstance(metadata, dict):
        return None
    raw = metadata.get("pending_order")
    if raw is None:
        return None
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed pending_order snapshot: {e}")
            return None
    return raw if isinstance(raw, dict) else None


def normalize_pending_items(raw_items: Any) -> List[Dict[str, Any]]:
    """Clean the item list of a pending_order snapshot, dropping unusable entries"""
    if not isinstance(raw_items, list):
        return []

    items = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        try:
            quantity = int(raw.get("quantity") or 0)
            price = float(raw.get("price") or 0)
        except (TypeError, ValueError):
            continue
        if quantity <= 0 or price < 0:
            continue
        product_id = raw.get("product_id") or raw.get("productId")
        items.append({
            "product_id": str(product_id) if product_id else None,
            "product_name": raw.get("product_name") or raw.get("productName") or raw.get("name") or "Item",
            "quantity": quantity,
            "price": price,
        })
    return items


def payment_amount_major(payment: Payment) -> float:
    """Payment amount in major units; stripe rows are stored in minor units"""
    if payment.amount is None:
        return 0.0
    if payment.method == "stripe":
        return from_stripe_amount(payment.amount, payment.currency)
    return float(payment.amount)


def is_customer_card_payment(payment: Payment) -> bool:
    return payment.method == "stripe" and payment.supplier_id is None


class PaymentStore:
    """Ledger of payment attempts. All status changes and saves go through here."""

    def __init__(self, db: AsyncSession, strict: bool = PAYMENT_STRICT_TRANSITIONS):
        self.db = db
        self.strict = strict

    async def get(self, payment_id) -> Optional[Payment]:
        payment_uuid = to_uuid(payment_id)
        if payment_uuid is None:
            return None
        result = await self.db.execute(select(Payment).where(Payment.id == payment_uuid))
        return result.scalar_one_or_none()

    async def find_by_intent(self, intent_id: str) -> Optional[Payment]:
        if not intent_id:
            return None
        result = await self.db.execute(
            select(Payment).where(Payment.stripe_payment_intent_id == intent_id)
        )
        return result.scalar_one_or_none()

    async def find_by_order(
        self,
        order_id,
        method: Optional[str] = None,
        supplier_id=None,
        user_id=None
    ) -> List[Payment]:
        order_uuid = to_uuid(order_id)
        if order_uuid is None:
            return []
        query = select(Payment).where(Payment.order_id == order_uuid)
        if method:
            query = query.where(Payment.method == method)
        if supplier_id is not None:
            query = query.where(Payment.supplier_id == to_uuid(supplier_id))
        if user_id is not None:
            query = query.where(Payment.user_id == to_uuid(user_id))
        result = await self.db.execute(query.order_by(Payment.created_at))
        return list(result.scalars().all())

    async def best_payment_for(
        self,
        order_id,
        method: Optional[str] = None,
        status: Optional[str] = None,
        customer_only: bool = False
    ) -> Optional[Payment]:
        candidates = await self.find_by_order(order_id, method=method)
        if status:
            candidates = [p for p in candidates if p.payment_status == status]
        if customer_only:
            candidates = [p for p in candidates if p.supplier_id is None]
        return select_best_payment(candidates)

    async def create_attempt(
        self,
        order_id,
        method: str,
        amount: Optional[float],
        currency: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None
    ) -> Payment:
        """
        Record a new pending payment attempt.
        A card attempt for an (order, user) pair that already has one reuses
        the existing row.
        """
        meta = dict(meta or {})
        order_uuid = to_uuid(order_id)
        user_uuid = to_uuid(meta.get("user_id"))

        if method == "stripe" and order_uuid is not None and user_uuid is not None:
            existing = await self.find_by_order(order_uuid, method="stripe", user_id=user_uuid)
            if existing:
                payment = select_best_payment(existing)
                logger.info(f"Reusing stripe payment {payment.id} for order {order_uuid}")
                return payment

        payment = self.build_attempt(order_uuid, method, amount, currency, meta)
        self.db.add(payment)
        return await self.save(payment)

    def build_attempt(
        self,
        order_id,
        method: str,
        amount: Optional[float],
        currency: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None
    ) -> Payment:
        """Build a pending payment row without adding or committing it"""
        meta = dict(meta or {})
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"Unsupported payment method '{method}'")
        order_uuid = to_uuid(order_id)
        return Payment(
            id=uuid.uuid4(),
            payment_ref=meta.get("payment_ref") or generate_payment_ref(),
            payment_name=meta.get("payment_name") or f"Order {order_uuid or 'checkout'}",
            order_id=order_uuid,
            user_id=to_uuid(meta.get("user_id")),
            supplier_id=to_uuid(meta.get("supplier_id")),
            method=method,
            payment_status="pending",
            amount=amount,
            currency=(currency or DEFAULT_CURRENCY).lower(),
            customer_email=meta.get("customer_email"),
            description=meta.get("description"),
            stripe_session_id=meta.get("stripe_session_id"),
            slip_url=meta.get("slip_url"),
            slip_original_name=meta.get("slip_original_name"),
            slip_uploaded_at=utcnow() if meta.get("slip_url") else None,
            payment_metadata=meta.get("payment_metadata"),
        )

    def check_transition(self, current: str, requested: str) -> None:
        if requested not in PAYMENT_STATUSES:
            raise ValidationError(f"Invalid payment status '{requested}'")
        if requested == current or not self.strict:
            return
        if requested not in ALLOWED_TRANSITIONS.get(current, set()):
            raise InvalidTransition(current, requested)

    async def transition_status(self, payment, new_status: str, **changes) -> Payment:
        """
        Move a payment to a new status. Re-applying the current status is a no-op
        success; anything outside the transition table raises InvalidTransition
        when strict transitions are enabled.
        """
        if not isinstance(payment, Payment):
            payment_id = payment
            payment = await self.get(payment_id)
            if payment is None:
                raise NotFound("Payment not found")

        requested = str(new_status or "").strip().lower()
        current = payment.payment_status
        self.check_transition(current, requested)

        payment.payment_status = requested
        for field, value in changes.items():
            if value is not None:
                setattr(payment, field, value)

        if current != requested:
            logger.info(f"Payment {payment.id} status {current} -> {requested}")
        return await self.save(payment)

    async def save(self, payment: Payment) -> Payment:
        """Commit the payment, then confirm its order if the payment is paid"""
        await self.db.commit()
        await self.db.refresh(payment)
        if payment.payment_status == "paid":
            await reconcile_payment(self.db, payment)
            await self.db.refresh(payment)
        return payment


async def _order_from_pending_snapshot(db: AsyncSession, payment: Payment) -> Optional[CustomerOrder]:
    pending = parse_pending_order(payment.payment_metadata)
    if not pending:
        return None

    session_id = payment.stripe_session_id or pending.get("stripe_session_id")
    if session_id:
        result = await db.execute(
            select(CustomerOrder).where(CustomerOrder.stripe_session_id == session_id)
        )
        existing = result.scalar_one_or_none()
        if existing:
            payment.order_id = existing.id
            logger.info(f"Linked payment {payment.id} to order {existing.id} by checkout session")
            return existing

    contact = str(pending.get("contact") or pending.get("customer") or "").strip()
    if not contact:
        logger.warning(f"Payment {payment.id} pending_order has no contact, not creating an order")
        return None

    items = normalize_pending_items(pending.get("items"))
    if not items:
        logger.warning(f"Payment {payment.id} pending_order has no usable items, not creating an order")
        return None

    order = CustomerOrder(
        id=uuid.uuid4(),
        user_id=payment.user_id,
        contact=contact,
        payment_method=pending.get("payment_method") or "Pay Online",
        items=items,
        total_amount=round_currency(sum(item["price"] * item["quantity"] for item in items)),
        status="Pending",
        stripe_session_id=session_id,
    )
    db.add(order)
    payment.order_id = order.id
    logger.info(f"Created order {order.id} from payment {payment.id} checkout snapshot")
    return order


async def reconcile_payment(db: AsyncSession, payment: Optional[Payment]) -> bool:
    """
    Confirm the customer order owned by a paid payment.
    Returns True when the order is Confirmed afterwards. Never raises.
    """
    if payment is None or payment.payment_status != "paid":
        return False

    payment_id = payment.id
    try:
        newly_confirmed = False
        if payment.order_id is None:
            order = await _order_from_pending_snapshot(db, payment)
            if order is None:
                logger.info(f"Paid payment {payment_id} has no order to reconcile")
                return False
        else:
            result = await db.execute(
                select(CustomerOrder).where(CustomerOrder.id == payment.order_id)
            )
            order = result.scalar_one_or_none()
            if order is None:
                if payment.supplier_id is not None:
                    logger.info(f"Payment {payment_id} belongs to procurement order {payment.order_id}, nothing to confirm")
                else:
                    logger.warning(f"Order {payment.order_id} for paid payment {payment_id} not found")
                return False

        if order.status != "Confirmed":
            order.status = "Confirmed"
            newly_confirmed = True

        await notify_roles(
            db,
            title="Customer payment received",
            message=f"Payment {payment.payment_ref} for order {order.id} has been marked as paid.",
            notification_type="payment-paid",
            dedupe_key=f"payment-paid:{payment_id}",
            metadata={
                "paymentId": str(payment_id),
                "orderId": str(order.id),
                "method": payment.method,
                "status": payment.payment_status,
            },
        )
        await db.commit()

        if newly_confirmed:
            logger.info(f"Order {order.id} marked Confirmed from payment {payment_id}")
            if is_customer_card_payment(payment):
                amount = order.total_amount if order.total_amount is not None else payment_amount_major(payment)
                publish_sales_confirmed(
                    order.id,
                    amount,
                    payment.currency,
                    paymentId=str(payment_id),
                    items=order.items or [],
                    method=payment.method,
                    status=payment.payment_status,
                    supplierId=None,
                )
        return True

    except Exception as e:
        logger.error(f"Failed to reconcile order for payment {payment_id}: {str(e)}")
        await db.rollback()
        return False


async def reconcile_supplier_payments(db: AsyncSession, order_id, supplier_id, action: str) -> List[Payment]:
    """
    Apply a supplier's accept/decline to its own slip payments on a procurement order.
    Only rows for this (order, supplier, slip) are touched.
    """
    target = "paid" if action == "accept" else "failed"
    store = PaymentStore(db)
    updated = []
    for payment in await store.find_by_order(order_id, method="slip", supplier_id=supplier_id):
        try:
            updated.append(await store.transition_status(payment, target))
        except InvalidTransition as e:
            logger.warning(f"Skipping slip payment {payment.id} for supplier {supplier_id}: {e.message}")
    return updated


async def sync_paid_payments(db: AsyncSession) -> Dict[str, int]:
    """Scan every paid payment and repair customer orders that drifted from it"""
    result = await db.execute(
        select(Payment).where(Payment.payment_status == "paid").order_by(Payment.created_at)
    )
    payment_ids = [payment.id for payment in result.scalars().all()]

    repaired = 0
    for payment_id in payment_ids:
        payment = await db.get(Payment, payment_id, populate_existing=True)
        if payment is None:
            continue
        if payment.order_id is not None:
            order_status = (await db.execute(
                select(CustomerOrder.status).where(CustomerOrder.id == payment.order_id)
            )).scalar_one_or_none()
            if order_status is None or order_status == "Confirmed":
                continue
        elif parse_pending_order(payment.payment_metadata) is None:
            continue

        if await reconcile_payment(db, payment):
            repaired += 1

    logger.info(f"Payment sync scanned {len(payment_ids)} paid payments, repaired {repaired} orders")
    return {"scanned": len(payment_ids), "repaired": repaired}
