"""
Time-bucketed sales aggregation over confirmed customer orders.

Revenue comes from two channels: card payments (one best paid Stripe payment
per order, customer-facing only) and "pay later" orders, which use the
order's own totals. Amounts are accumulated as raw floats and rounded once
per bucket on output.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_
from models import CustomerOrder, Payment, as_utc, utcnow
from routers.payments.helpers import (
    select_best_payment, parse_pending_order, normalize_pending_items, payment_amount_major
)
from utils.currency import round_currency
from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime, timedelta
import math
import logging

logger = logging.getLogger(__name__)

DEFAULT_WEEKS = 10
DEFAULT_MONTHS = 5
DEFAULT_DAYS = 7
REALTIME_LIMIT = 200

PAY_LATER = "pay later"


def normalize(value: Any) -> str:
    return str(value or "").strip().lower()


def include_stripe(payment_filter: Optional[str]) -> bool:
    f = normalize(payment_filter)
    return not f or f in ("all", "online")


def include_pay_later(payment_filter: Optional[str]) -> bool:
    return normalize(payment_filter) in ("all", "pay_later")


def week_key(date: datetime) -> str:
    return f"{date.year}-{date.month:02d}-W{math.ceil(date.day / 7)}"


def month_key(date: datetime) -> str:
    return f"{date.year}-{date.month:02d}"


def start_of_day(date: datetime) -> datetime:
    return date.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_week(date: datetime) -> datetime:
    """Monday 00:00 of the week containing date"""
    return start_of_day(date) - timedelta(days=date.weekday())


def add_months(date: datetime, months: int) -> datetime:
    month_index = date.year * 12 + (date.month - 1) + months
    return date.replace(year=month_index // 12, month=month_index % 12 + 1, day=1)


def week_buckets(count: int, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """`count` consecutive Monday-start weeks, oldest first, ending with the current week"""
    now = as_utc(now) or utcnow()
    today = start_of_day(now)
    buckets = []
    for offset in range(count - 1, -1, -1):
        reference = today - timedelta(days=7 * offset)
        start = start_of_week(reference)
        buckets.append({
            "key": week_key(reference),
            "start": start,
            "end": start + timedelta(days=7),
        })
    return buckets


def month_buckets(count: int, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """`count` consecutive calendar months, oldest first, ending with the current month"""
    now = as_utc(now) or utcnow()
    current = start_of_day(now).replace(day=1)
    buckets = []
    for offset in range(count - 1, -1, -1):
        start = add_months(current, -offset)
        buckets.append({
            "key": month_key(start),
            "start": start,
            "end": add_months(start, 1),
        })
    return buckets


def find_bucket(buckets: List[Dict[str, Any]], when: Optional[datetime]) -> Optional[Dict[str, Any]]:
    when = as_utc(when)
    if when is None:
        return None
    for bucket in buckets:
        if bucket["start"] <= when < bucket["end"]:
            return bucket
    return None


def _item_amount_units(item: dict) -> Tuple[float, int]:
    try:
        price = float(item.get("price", item.get("unit_price", 0)) or 0)
    except (TypeError, ValueError):
        price = 0.0
    try:
        quantity = int(item.get("quantity", item.get("qty", 1)) or 1)
    except (TypeError, ValueError):
        quantity = 1
    return price * quantity, quantity


def _item_product_id(item: dict) -> Optional[str]:
    product_id = item.get("product_id") or item.get("productId")
    return str(product_id) if product_id else None


def order_items(order: CustomerOrder, payment: Optional[Payment] = None) -> List[dict]:
    """The order's own items, else the checkout snapshot carried by the payment"""
    items = order.items if isinstance(order.items, list) else []
    items = [item for item in items if isinstance(item, dict)]
    if items or payment is None:
        return items
    pending = parse_pending_order(payment.payment_metadata)
    return normalize_pending_items(pending.get("items")) if pending else []


def compute_order_metrics(
    order: CustomerOrder,
    payment: Optional[Payment] = None,
    product_id: Optional[str] = None
) -> Tuple[float, int]:
    """
    Revenue and units one order contributes.

    Without a product filter: the order total, then the sum of its items, then
    the normalized payment amount. With a product filter only matching items
    count.
    """
    items = order_items(order, payment)

    if product_id:
        amount = 0.0
        units = 0
        for item in items:
            if _item_product_id(item) != str(product_id):
                continue
            item_amount, item_units = _item_amount_units(item)
            amount += item_amount
            units += item_units
        return amount, units

    try:
        amount = float(order.total_amount or 0)
    except (TypeError, ValueError):
        amount = 0.0
    units = 0
    for item in items:
        try:
            units += int(item.get("quantity", item.get("qty", 0)) or 0)
        except (TypeError, ValueError):
            continue

    if amount <= 0 and items:
        amount = sum(_item_amount_units(item)[0] for item in items)

    if amount <= 0 and payment is not None:
        amount = payment_amount_major(payment)

    if units <= 0 and amount > 0:
        units = 1

    return amount, units


async def _confirmed_orders_since(db: AsyncSession, since: datetime) -> List[CustomerOrder]:
    result = await db.execute(
        select(CustomerOrder).where(
            CustomerOrder.status == "Confirmed",
            or_(CustomerOrder.created_at >= since, CustomerOrder.updated_at >= since)
        )
    )
    return list(result.scalars().all())


async def _best_card_payments(db: AsyncSession, order_ids: List[Any]) -> Dict[str, Payment]:
    if not order_ids:
        return {}
    result = await db.execute(
        select(Payment).where(
            Payment.order_id.in_(order_ids),
            Payment.payment_status == "paid",
            Payment.method == "stripe",
            Payment.supplier_id.is_(None)
        )
    )
    grouped: Dict[str, List[Payment]] = {}
    for payment in result.scalars().all():
        grouped.setdefault(str(payment.order_id), []).append(payment)
    return {order_id: select_best_payment(candidates) for order_id, candidates in grouped.items()}


async def aggregate_sales(
    db: AsyncSession,
    granularity: str,
    count: int,
    product_id: Optional[str] = None,
    payment_filter: Optional[str] = None,
    now: Optional[datetime] = None
) -> List[Dict[str, Any]]:
    """
    Sales and units per week or month. Every bucket is returned, zero-valued
    when nothing happened in it.
    """
    if granularity == "week":
        buckets = week_buckets(count, now)
    elif granularity == "month":
        buckets = month_buckets(count, now)
    else:
        raise ValueError(f"Unsupported granularity '{granularity}'")

    if not buckets:
        return []

    totals = {bucket["key"]: {"total_sales": 0.0, "units_sold": 0} for bucket in buckets}
    earliest = buckets[0]["start"]
    with_stripe = include_stripe(payment_filter)
    with_pay_later = include_pay_later(payment_filter)

    orders = await _confirmed_orders_since(db, earliest)
    payments = await _best_card_payments(db, [order.id for order in orders]) if with_stripe and orders else {}

    for order in orders:
        try:
            counted = False
            payment = payments.get(str(order.id))

            if with_stripe and payment is not None:
                amount, units = compute_order_metrics(order, payment, product_id)
                if amount > 0 and units > 0:
                    when = payment.updated_at or payment.created_at or order.updated_at or order.created_at
                    bucket = find_bucket(buckets, when)
                    if bucket is not None:
                        totals[bucket["key"]]["total_sales"] += amount
                        totals[bucket["key"]]["units_sold"] += units
                        counted = True

            if counted or not with_pay_later:
                continue

            if normalize(order.payment_method) == PAY_LATER:
                amount, units = compute_order_metrics(order, None, product_id)
                if amount <= 0 or units <= 0:
                    continue
                bucket = find_bucket(buckets, order.updated_at or order.created_at)
                if bucket is not None:
                    totals[bucket["key"]]["total_sales"] += amount
                    totals[bucket["key"]]["units_sold"] += units

        except Exception as e:
            logger.warning(f"Skipping order {order.id} in {granularity} report: {str(e)}")

    return [
        {
            "key": bucket["key"],
            "start": bucket["start"],
            "end": bucket["end"],
            "total_sales": round_currency(totals[bucket["key"]]["total_sales"]),
            "units_sold": int(totals[bucket["key"]]["units_sold"]),
        }
        for bucket in buckets
    ]


async def realtime_snapshot(db: AsyncSession, days: int = DEFAULT_DAYS, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Recent paid customer card payments with normalized amounts and unit counts"""
    now = as_utc(now) or utcnow()
    since = now - timedelta(days=days)

    result = await db.execute(
        select(Payment)
        .where(
            Payment.payment_status == "paid",
            Payment.method == "stripe",
            Payment.supplier_id.is_(None),
            or_(Payment.created_at >= since, Payment.updated_at >= since)
        )
        .order_by(Payment.updated_at.desc())
        .limit(REALTIME_LIMIT)
    )
    payments = list(result.scalars().all())

    order_ids = [payment.order_id for payment in payments if payment.order_id is not None]
    orders = {}
    if order_ids:
        order_result = await db.execute(select(CustomerOrder).where(CustomerOrder.id.in_(order_ids)))
        orders = {str(order.id): order for order in order_result.scalars().all()}

    total_sales = 0.0
    units_sold = 0
    recent = []
    for payment in payments:
        amount = payment_amount_major(payment)
        order = orders.get(str(payment.order_id)) if payment.order_id else None
        if order is not None:
            items = order.items if isinstance(order.items, list) else []
        else:
            pending = parse_pending_order(payment.payment_metadata)
            items = normalize_pending_items(pending.get("items")) if pending else []

        units = 0
        for item in items:
            try:
                units += int(item.get("quantity") or 0) if isinstance(item, dict) else 0
            except (TypeError, ValueError):
                continue

        total_sales += amount
        units_sold += units
        recent.append({
            "id": str(payment.id),
            "payment_ref": payment.payment_ref,
            "order_id": str(payment.order_id) if payment.order_id else None,
            "amount": amount,
            "raw_amount": payment.amount or 0,
            "currency": payment.currency,
            "method": payment.method,
            "units": units,
            "created_at": as_utc(payment.created_at),
            "updated_at": as_utc(payment.updated_at),
        })

    return {
        "since": since,
        "days": days,
        "total_sales": round_currency(total_sales),
        "units_sold": units_sold,
        "recent": recent,
    }
