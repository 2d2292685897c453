from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from sqlalchemy.orm import selectinload
from models import AdminOrder, AdminOrderItem, AdminCancelledOrder, utcnow
from config import DEFAULT_CURRENCY
from dependencies.rbac import get_role
from routers.discounts.helpers import resolve_discount, load_offers, canonical_id
from routers.payments.helpers import PaymentStore, reconcile_supplier_payments, to_uuid
from utils.errors import ValidationError, Forbidden, NotFound
from utils.currency import to_cents
from utils.notifications import notify_roles
from utils.realtime import publish_sales_confirmed
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
import uuid
import logging

logger = logging.getLogger(__name__)

SUPPLIER_ACTIONS = {"accept": "Accepted", "decline": "Declined"}
SLIP_PAYMENT_METHODS = {"bank transfer", "bank slip", "slip"}


@dataclass
class PricedOrder:
    items: List[Dict[str, Any]]
    discount_total: float
    net_total: float


@dataclass
class SupplierResponseResult:
    order: AdminOrder
    supplier_id: uuid.UUID
    action: str
    item_count: int
    supplier_total: float
    changed: bool
    payments: list = field(default_factory=list)


def _field(item: Any, *names, default=None):
    for name in names:
        value = item.get(name) if isinstance(item, dict) else getattr(item, name, None)
        if value is not None:
            return value
    return default


def price_order(items: Iterable[Any], offers_by_product: Optional[Dict[str, list]] = None) -> PricedOrder:
    """
    Price every line of a procurement order against the supplier offers.

    Each line value is rounded to cents (half-up) on its own; the order totals
    are exact sums of those rounded values.
    """
    items = list(items or [])
    if not items:
        raise ValidationError("No items provided")

    offers_by_product = offers_by_product or {}
    priced = []
    discount_total = Decimal("0")
    net_total = Decimal("0")

    for position, item in enumerate(items):
        product_id = _field(item, "product_id", "productId")
        supplier_id = _field(item, "supplier_id", "supplierId")
        quantity = _field(item, "quantity")
        unit_price = _field(item, "unit_price", "price")

        if not supplier_id:
            raise ValidationError(f"Item {position + 1} is missing a supplier")
        if not product_id:
            raise ValidationError(f"Item {position + 1} is missing a product")
        try:
            quantity = int(quantity)
        except (TypeError, ValueError):
            raise ValidationError(f"Item {position + 1} has an invalid quantity")
        if quantity <= 0:
            raise ValidationError(f"Item {position + 1} must have a positive quantity")
        try:
            price = Decimal(str(unit_price))
        except (ArithmeticError, TypeError, ValueError):
            raise ValidationError(f"Item {position + 1} has an invalid price")
        if not price.is_finite() or price < 0:
            raise ValidationError(f"Item {position + 1} has an invalid price")

        offer = resolve_discount(
            product_id, quantity, offers_by_product.get(canonical_id(product_id), []), supplier_id=supplier_id
        )
        percent = Decimal(str(_field(offer, "discount_percent", default=0))) if offer is not None else Decimal("0")

        line_subtotal = to_cents(price * quantity)
        discount_value = to_cents(line_subtotal * percent / 100)
        line_total = max(Decimal("0"), to_cents(line_subtotal - discount_value))

        discount_total += discount_value
        net_total += line_total

        priced.append({
            "position": position,
            "product_id": str(product_id),
            "supplier_id": str(supplier_id),
            "name": _field(item, "name", default="Item"),
            "unit_price": float(price),
            "quantity": quantity,
            "line_subtotal": float(line_subtotal),
            "discount_percent": float(percent),
            "discount_value": float(discount_value),
            "line_total": float(line_total),
            "applied_discount_id": str(_field(offer, "id")) if offer is not None and _field(offer, "id") else None,
        })

    return PricedOrder(items=priced, discount_total=float(discount_total), net_total=float(net_total))


async def price_order_items(db: AsyncSession, items: Iterable[Any]) -> PricedOrder:
    """Load the current offers for the ordered products and price the order"""
    items = list(items or [])
    product_ids = {_field(item, "product_id", "productId") for item in items}
    offers_by_product = await load_offers(db, [pid for pid in product_ids if pid])
    return price_order(items, offers_by_product)


def derive_order_status(statuses: Iterable[str]) -> str:
    """All lines Accepted -> Ordered, any Declined -> Declined, otherwise Pending"""
    statuses = list(statuses)
    if statuses and all(s == "Accepted" for s in statuses):
        return "Ordered"
    if any(s == "Declined" for s in statuses):
        return "Declined"
    return "Pending"


def supplier_label(supplier_ids: List[str]) -> str:
    if not supplier_ids:
        return "N/A"
    if len(supplier_ids) == 1:
        return supplier_ids[0]
    return f"Multiple suppliers ({len(supplier_ids)})"


def archive_order(order: AdminOrder, reason: str, actor: Optional[dict] = None) -> AdminCancelledOrder:
    """Snapshot a live procurement order into the cancelled-orders archive"""
    supplier_ids = []
    items = []
    for item in order.items:
        supplier = str(item.supplier_id)
        if supplier not in supplier_ids:
            supplier_ids.append(supplier)
        items.append({
            "product_id": str(item.product_id),
            "name": item.name,
            "quantity": item.quantity,
            "price": item.unit_price,
            "line_subtotal": item.line_subtotal,
            "discount_percent": item.discount_percent,
            "discount_value": item.discount_value,
            "line_total": item.line_total,
            "supplier_id": supplier,
            "supplier_status": item.supplier_status,
        })

    actor = actor or {}
    return AdminCancelledOrder(
        id=uuid.uuid4(),
        original_order_id=order.id,
        supplier_label=supplier_label(supplier_ids),
        supplier_ids=supplier_ids,
        items=items,
        total_cost=order.total_cost,
        discount_total=order.discount_total or 0.0,
        payment_method=order.payment_method or "Cash Payment",
        contact=order.contact or "N/A",
        notes=order.notes,
        status="Cancelled",
        reason=reason,
        cancelled_at=utcnow(),
        cancelled_by=to_uuid(actor.get("user_id")),
        cancelled_by_name=actor.get("name") or actor.get("email"),
    )


async def get_admin_order(db: AsyncSession, order_id) -> Optional[AdminOrder]:
    order_uuid = to_uuid(order_id)
    if order_uuid is None:
        return None
    result = await db.execute(
        select(AdminOrder)
        .options(selectinload(AdminOrder.items))
        .where(AdminOrder.id == order_uuid)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def wants_slip_payment(payment_method: Optional[str], slip_url: Optional[str]) -> bool:
    return bool(slip_url) or str(payment_method or "").strip().lower() in SLIP_PAYMENT_METHODS


async def create_admin_order(db: AsyncSession, order_data, actor: dict):
    """
    Price and persist a procurement order.
    Slip-paid orders get one pending slip payment per supplier, carrying that
    supplier's share of the net total.
    """
    priced = await price_order_items(db, order_data.items)

    order = AdminOrder(
        id=uuid.uuid4(),
        total_cost=priced.net_total,
        discount_total=priced.discount_total,
        contact=order_data.contact,
        payment_method=order_data.payment_method or "Cash Payment",
        slip_url=order_data.slip_url,
        notes=order_data.notes,
        status="Pending",
        created_by=to_uuid(actor.get("user_id")),
    )
    for line in priced.items:
        if to_uuid(line["product_id"]) is None or to_uuid(line["supplier_id"]) is None:
            raise ValidationError(f"Item {line['position'] + 1} has an invalid product or supplier id")

    order.items = [
        AdminOrderItem(
            id=uuid.uuid4(),
            position=line["position"],
            product_id=to_uuid(line["product_id"]),
            name=line["name"],
            supplier_id=to_uuid(line["supplier_id"]),
            unit_price=line["unit_price"],
            quantity=line["quantity"],
            line_subtotal=line["line_subtotal"],
            discount_percent=line["discount_percent"],
            discount_value=line["discount_value"],
            line_total=line["line_total"],
            applied_discount_id=to_uuid(line["applied_discount_id"]),
            supplier_status="Pending",
        )
        for line in priced.items
    ]
    db.add(order)

    payments = []
    if wants_slip_payment(order.payment_method, order.slip_url):
        shares: Dict[str, Decimal] = {}
        for line in priced.items:
            shares[line["supplier_id"]] = shares.get(line["supplier_id"], Decimal("0")) + to_cents(line["line_total"])

        store = PaymentStore(db)
        for supplier_id, share in shares.items():
            payments.append(store.build_attempt(
                order.id,
                "slip",
                float(share),
                DEFAULT_CURRENCY,
                meta={
                    "payment_name": f"Procurement order {str(order.id)[:8]}",
                    "user_id": actor.get("user_id"),
                    "supplier_id": supplier_id,
                    "slip_url": order.slip_url,
                    "description": order.notes,
                },
            ))
    db.add_all(payments)

    # Order and its slip payments land in one commit
    await db.commit()
    for payment in payments:
        await db.refresh(payment)
    logger.info(f"Admin order {order.id} placed with {len(priced.items)} items, net {priced.net_total}")

    return await get_admin_order(db, order.id), payments


async def apply_supplier_response(db: AsyncSession, order_id, actor: dict, action: str) -> SupplierResponseResult:
    """
    Record a supplier's accept/decline on its own lines of a procurement order.

    Only rows owned by the acting supplier are updated. A decline makes the
    whole order Declined; an accept re-derives the status from every line.
    """
    action = str(action or "").strip().lower()
    if action not in SUPPLIER_ACTIONS:
        raise ValidationError("Action must be 'accept' or 'decline'")

    if get_role(actor) != "supplier":
        raise Forbidden("Only suppliers can respond to procurement orders")
    supplier_id = to_uuid(actor.get("user_id") if isinstance(actor, dict) else None)
    if supplier_id is None:
        raise Forbidden("Only suppliers can respond to procurement orders")

    order_uuid = to_uuid(order_id)
    if order_uuid is None:
        raise NotFound("Order not found")
    order_exists = (await db.execute(
        select(AdminOrder.id).where(AdminOrder.id == order_uuid)
    )).scalar_one_or_none()
    if order_exists is None:
        raise NotFound("Order not found")

    owned_statuses = (await db.execute(
        select(AdminOrderItem.supplier_status).where(
            AdminOrderItem.order_id == order_uuid,
            AdminOrderItem.supplier_id == supplier_id
        )
    )).scalars().all()
    if not owned_statuses:
        logger.warning(f"Supplier {supplier_id} tried to respond to order {order_uuid} without owning items")
        raise Forbidden("You do not have any items on this order")

    item_status = SUPPLIER_ACTIONS[action]
    changed = any(status != item_status for status in owned_statuses)

    await db.execute(
        update(AdminOrderItem)
        .where(
            AdminOrderItem.order_id == order_uuid,
            AdminOrderItem.supplier_id == supplier_id
        )
        .values(supplier_status=item_status)
    )

    if action == "decline":
        order_status = "Declined"
    else:
        all_statuses = (await db.execute(
            select(AdminOrderItem.supplier_status)
            .where(AdminOrderItem.order_id == order_uuid)
            .order_by(AdminOrderItem.position)
        )).scalars().all()
        order_status = derive_order_status(all_statuses)

    await db.execute(
        update(AdminOrder)
        .where(AdminOrder.id == order_uuid)
        .values(status=order_status, updated_at=utcnow())
    )

    supplier_total = (await db.execute(
        select(func.coalesce(func.sum(AdminOrderItem.line_total), 0.0)).where(
            AdminOrderItem.order_id == order_uuid,
            AdminOrderItem.supplier_id == supplier_id
        )
    )).scalar() or 0.0

    verb = "accepted" if action == "accept" else "declined"
    await notify_roles(
        db,
        title=f"Supplier {verb} an order",
        message=f"Supplier {actor.get('name') or supplier_id} {verb} {len(owned_statuses)} item(s) on order {order_uuid}. Order status: {order_status}.",
        notification_type=f"supplier-order-{action}",
        dedupe_key=f"supplier-response:{order_uuid}:{supplier_id}:{action}",
        metadata={
            "orderId": str(order_uuid),
            "supplierId": str(supplier_id),
            "action": action,
            "status": order_status,
        },
    )
    await db.commit()
    logger.info(f"Supplier {supplier_id} {verb} order {order_uuid}; order status {order_status}")

    payments = await reconcile_supplier_payments(db, order_uuid, supplier_id, action)

    if action == "accept" and changed:
        publish_sales_confirmed(
            order_uuid,
            round(float(supplier_total), 2),
            DEFAULT_CURRENCY,
            supplierId=str(supplier_id),
            method="slip",
            status=order_status,
        )

    order = await get_admin_order(db, order_uuid)
    return SupplierResponseResult(
        order=order,
        supplier_id=supplier_id,
        action=action,
        item_count=len(owned_statuses),
        supplier_total=round(float(supplier_total), 2),
        changed=changed,
        payments=payments,
    )
