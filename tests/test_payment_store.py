import json
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select

from models import CustomerOrder, Notification, Payment
from routers.payments.helpers import (
    PaymentStore, parse_pending_order, reconcile_payment,
    select_best_payment, sync_paid_payments
)
from utils.errors import InvalidTransition, ValidationError


async def place_order(db, status="Pending", payment_method="Pay Online", user_id=None):
    order = CustomerOrder(
        id=uuid.uuid4(),
        user_id=user_id or uuid.uuid4(),
        contact="0771234567",
        payment_method=payment_method,
        items=[{"product_id": str(uuid.uuid4()), "product_name": "Claw hammer", "quantity": 2, "price": 1250.0}],
        total_amount=2500.0,
        status=status,
    )
    db.add(order)
    await db.commit()
    return order


async def card_attempt(db, order, intent_id="pi_test_1", amount=250000):
    store = PaymentStore(db)
    payment = await store.create_attempt(
        order.id, "stripe", amount, "lkr",
        meta={"payment_name": "Checkout", "user_id": order.user_id},
    )
    payment.stripe_payment_intent_id = intent_id
    return await store.save(payment)


async def notification_count(db, dedupe_key):
    return (await db.execute(
        select(func.count(Notification.id)).where(Notification.dedupe_key == dedupe_key)
    )).scalar()


async def count_payments(db, order_id, method):
    return (await db.execute(
        select(func.count(Payment.id)).where(Payment.order_id == order_id, Payment.method == method)
    )).scalar()


def test_transition_table_in_strict_mode():
    store = PaymentStore(db=None, strict=True)

    store.check_transition("pending", "paid")
    store.check_transition("pending", "requires_action")
    store.check_transition("requires_action", "paid")
    store.check_transition("paid", "paid")

    for current, requested in [("paid", "pending"), ("failed", "paid"), ("canceled", "pending"), ("paid", "failed")]:
        with pytest.raises(InvalidTransition) as exc:
            store.check_transition(current, requested)
        assert exc.value.current == current
        assert exc.value.requested == requested

    with pytest.raises(ValidationError):
        store.check_transition("pending", "refunded")


def test_lenient_mode_allows_any_known_status():
    store = PaymentStore(db=None, strict=False)

    store.check_transition("paid", "pending")
    store.check_transition("failed", "paid")
    with pytest.raises(ValidationError):
        store.check_transition("paid", "refunded")


def test_best_payment_prefers_status_then_recency():
    now = datetime.now(timezone.utc)
    old_paid = SimpleNamespace(payment_status="paid", updated_at=now - timedelta(days=3), created_at=None)
    new_pending = SimpleNamespace(payment_status="pending", updated_at=now, created_at=None)
    new_failed = SimpleNamespace(payment_status="failed", updated_at=now + timedelta(minutes=1), created_at=None)
    older_pending = SimpleNamespace(payment_status="pending", updated_at=now - timedelta(hours=1), created_at=None)

    assert select_best_payment([new_pending, old_paid, new_failed]) is old_paid
    assert select_best_payment([older_pending, new_pending]) is new_pending
    assert select_best_payment([new_failed, None]) is new_failed
    assert select_best_payment([]) is None


def test_parse_pending_order_accepts_dict_and_json_string():
    snapshot = {"contact": "0771234567", "items": []}

    assert parse_pending_order({"pending_order": snapshot}) == snapshot
    assert parse_pending_order({"pending_order": json.dumps(snapshot)}) == snapshot
    assert parse_pending_order({"pending_order": "{not json"}) is None
    assert parse_pending_order({"pending_order": "[1, 2]"}) is None
    assert parse_pending_order(None) is None


async def test_card_attempt_for_same_order_and_user_is_reused(db):
    order = await place_order(db)
    store = PaymentStore(db)

    first = await store.create_attempt(order.id, "stripe", 250000, "lkr", meta={"user_id": order.user_id})
    second = await store.create_attempt(order.id, "stripe", 250000, "lkr", meta={"user_id": order.user_id})

    assert first.id == second.id
    assert await count_payments(db, order.id, "stripe") == 1


async def test_webhook_then_manual_confirmation_confirms_order_once(db, sales_queue):
    order = await place_order(db)
    payment = await card_attempt(db, order)
    store = PaymentStore(db)

    found = await store.find_by_intent("pi_test_1")
    await store.transition_status(found, "paid", card_brand="visa", card_last4="4242")
    again = await store.find_by_intent("pi_test_1")
    await store.transition_status(again, "paid")

    await db.refresh(order)
    assert order.status == "Confirmed"
    assert await count_payments(db, order.id, "stripe") == 1
    assert await notification_count(db, f"payment-paid:{payment.id}") == 2
    assert sales_queue.qsize() == 1
    event = sales_queue.get_nowait()
    assert event["event"] == "sales:confirmed"
    assert event["data"]["orderId"] == str(order.id)
    assert event["data"]["amount"] == 2500.0


async def test_disallowed_transition_leaves_payment_untouched(db):
    order = await place_order(db)
    payment = await card_attempt(db, order)
    store = PaymentStore(db)
    await store.transition_status(payment, "failed")

    with pytest.raises(InvalidTransition):
        await store.transition_status(payment, "paid")

    await db.refresh(order)
    assert order.status == "Pending"


async def test_reconcile_is_idempotent(db, sales_queue):
    order = await place_order(db)
    payment = await card_attempt(db, order)
    payment.payment_status = "paid"
    await db.commit()

    assert await reconcile_payment(db, payment) is True
    assert await reconcile_payment(db, payment) is True

    await db.refresh(order)
    assert order.status == "Confirmed"
    assert await notification_count(db, f"payment-paid:{payment.id}") == 2
    assert sales_queue.qsize() == 1


async def test_reconcile_ignores_unpaid_payments(db):
    order = await place_order(db)
    payment = await card_attempt(db, order)

    assert await reconcile_payment(db, payment) is False
    assert await reconcile_payment(db, None) is False
    await db.refresh(order)
    assert order.status == "Pending"


async def test_paid_checkout_snapshot_creates_confirmed_order(db):
    store = PaymentStore(db)
    user_id = uuid.uuid4()
    snapshot = {
        "contact": "0779876543",
        "payment_method": "Pay Online",
        "items": [
            {"productId": str(uuid.uuid4()), "productName": "Paint roller", "quantity": 3, "price": 450},
            {"productId": str(uuid.uuid4()), "productName": "Broken", "quantity": 0, "price": 10},
        ],
    }
    payment = await store.create_attempt(
        None, "stripe", 135000, "lkr",
        meta={"user_id": user_id, "payment_metadata": {"pending_order": json.dumps(snapshot)}},
    )

    payment = await store.transition_status(payment, "paid")

    assert payment.order_id is not None
    order = await db.get(CustomerOrder, payment.order_id)
    assert order.status == "Confirmed"
    assert order.user_id == user_id
    assert order.total_amount == 1350.0
    assert [item["product_name"] for item in order.items] == ["Paint roller"]


async def test_paid_checkout_links_and_confirms_existing_session_order(db, sales_queue):
    order = await place_order(db)
    order.stripe_session_id = "cs_checkout_7"
    await db.commit()
    store = PaymentStore(db)
    payment = await store.create_attempt(
        None, "stripe", 250000, "lkr",
        meta={
            "user_id": order.user_id,
            "stripe_session_id": "cs_checkout_7",
            "payment_metadata": {"pending_order": {"contact": "0771234567", "items": []}},
        },
    )

    payment = await store.transition_status(payment, "paid")

    assert payment.order_id == order.id
    await db.refresh(order)
    assert order.status == "Confirmed"
    assert (await db.execute(select(func.count(CustomerOrder.id)))).scalar() == 1
    assert sales_queue.qsize() == 1
    assert sales_queue.get_nowait()["data"]["orderId"] == str(order.id)

    assert await reconcile_payment(db, payment) is True
    assert sales_queue.qsize() == 0


async def test_malformed_snapshot_does_not_break_payment_write(db):
    store = PaymentStore(db)
    payment = await store.create_attempt(
        None, "stripe", 1000, "lkr",
        meta={"payment_metadata": {"pending_order": "{\"contact\": "}},
    )

    payment = await store.transition_status(payment, "paid")

    assert payment.payment_status == "paid"
    assert payment.order_id is None
    assert (await db.execute(select(func.count(CustomerOrder.id)))).scalar() == 0


async def test_sync_repairs_drifted_orders(db):
    drifted = await place_order(db)
    healthy = await place_order(db, status="Confirmed")
    for order in (drifted, healthy):
        db.add(Payment(
            payment_ref=f"PAY-{order.id}",
            payment_name="Imported",
            order_id=order.id,
            method="stripe",
            payment_status="paid",
            amount=250000,
            currency="lkr",
        ))
    await db.commit()

    result = await sync_paid_payments(db)

    assert result == {"scanned": 2, "repaired": 1}
    await db.refresh(drifted)
    assert drifted.status == "Confirmed"
    assert (await sync_paid_payments(db))["repaired"] == 0
