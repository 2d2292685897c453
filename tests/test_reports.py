import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import WebSocketDisconnect, status

from models import CustomerOrder, Payment
from routers.reports.helpers import (
    aggregate_sales, compute_order_metrics, month_buckets, realtime_snapshot, week_buckets
)
from routers.reports.reports import live_sales
from utils.realtime import publish_sales_confirmed

NOW = datetime(2026, 3, 18, 12, 0, tzinfo=timezone.utc)  # a Wednesday
HAMMER = str(uuid.uuid4())
PAINT = str(uuid.uuid4())


async def card_sale(db, when, total=2500.0, amount=250000, currency="lkr", status="Confirmed"):
    order = CustomerOrder(
        id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        contact="0771234567",
        payment_method="Pay Online",
        items=[
            {"product_id": HAMMER, "product_name": "Claw hammer", "quantity": 2, "price": 1000.0},
            {"product_id": PAINT, "product_name": "Wall paint", "quantity": 1, "price": 500.0},
        ],
        total_amount=total,
        status=status,
        created_at=when,
        updated_at=when,
    )
    payment = Payment(
        payment_ref=f"PAY-{order.id}",
        payment_name="Checkout",
        order_id=order.id,
        method="stripe",
        payment_status="paid",
        amount=amount,
        currency=currency,
        created_at=when,
        updated_at=when,
    )
    db.add_all([order, payment])
    await db.commit()
    return order, payment


async def pay_later_sale(db, when):
    order = CustomerOrder(
        id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        contact="0771234567",
        payment_method="Pay Later",
        items=[{"product_id": HAMMER, "product_name": "Claw hammer", "quantity": 4, "price": 200.0}],
        total_amount=800.0,
        status="Confirmed",
        created_at=when,
        updated_at=when,
    )
    db.add(order)
    await db.commit()
    return order


def test_week_buckets_are_monday_aligned_and_oldest_first():
    buckets = week_buckets(10, NOW)

    assert len(buckets) == 10
    assert buckets[-1]["key"] == "2026-03-W3"
    assert buckets[-2]["key"] == "2026-03-W2"
    assert buckets[0]["key"] == "2026-01-W2"
    assert buckets[-1]["start"] == datetime(2026, 3, 16, tzinfo=timezone.utc)
    assert buckets[-1]["end"] == datetime(2026, 3, 23, tzinfo=timezone.utc)
    for earlier, later in zip(buckets, buckets[1:]):
        assert earlier["end"] == later["start"]


def test_month_buckets_cross_year_boundary():
    buckets = month_buckets(5, NOW)

    assert [bucket["key"] for bucket in buckets] == ["2025-11", "2025-12", "2026-01", "2026-02", "2026-03"]
    assert buckets[1]["end"] == datetime(2026, 1, 1, tzinfo=timezone.utc)


async def test_empty_store_returns_every_bucket_zeroed(db):
    buckets = await aggregate_sales(db, "week", 10, now=NOW)

    assert len(buckets) == 10
    assert all(bucket["total_sales"] == 0 and bucket["units_sold"] == 0 for bucket in buckets)


@pytest.mark.parametrize("payment_filter, last_week, previous_week", [
    (None, (2500.0, 3), (0.0, 0)),
    ("online", (2500.0, 3), (0.0, 0)),
    ("pay_later", (0.0, 0), (800.0, 4)),
    ("all", (2500.0, 3), (800.0, 4)),
    ("bank", (0.0, 0), (0.0, 0)),
])
async def test_payment_channel_filter(db, payment_filter, last_week, previous_week):
    await card_sale(db, NOW - timedelta(days=1))
    await pay_later_sale(db, NOW - timedelta(days=8))

    buckets = await aggregate_sales(db, "week", 10, payment_filter=payment_filter, now=NOW)

    assert (buckets[-1]["total_sales"], buckets[-1]["units_sold"]) == last_week
    assert (buckets[-2]["total_sales"], buckets[-2]["units_sold"]) == previous_week


async def test_product_filter_counts_only_matching_lines(db):
    await card_sale(db, NOW - timedelta(days=1))
    await pay_later_sale(db, NOW - timedelta(days=8))

    buckets = await aggregate_sales(db, "week", 10, product_id=PAINT, payment_filter="all", now=NOW)

    assert (buckets[-1]["total_sales"], buckets[-1]["units_sold"]) == (500.0, 1)
    assert (buckets[-2]["total_sales"], buckets[-2]["units_sold"]) == (0.0, 0)


async def test_pending_orders_and_old_sales_are_excluded(db):
    await card_sale(db, NOW - timedelta(days=1), status="Pending")
    await card_sale(db, NOW - timedelta(days=400))

    buckets = await aggregate_sales(db, "month", 5, now=NOW)

    assert sum(bucket["total_sales"] for bucket in buckets) == 0


async def test_monthly_totals_land_in_calendar_months(db):
    await card_sale(db, datetime(2026, 2, 28, 23, 30, tzinfo=timezone.utc))
    await card_sale(db, datetime(2026, 3, 1, 0, 15, tzinfo=timezone.utc), total=1000.0)

    buckets = {bucket["key"]: bucket for bucket in await aggregate_sales(db, "month", 5, now=NOW)}

    assert buckets["2026-02"]["total_sales"] == 2500.0
    assert buckets["2026-03"]["total_sales"] == 1000.0


def test_card_amount_is_normalized_from_minor_units():
    order = CustomerOrder(total_amount=0, items=[], payment_method="Pay Online")

    jpy = Payment(method="stripe", amount=5000, currency="jpy")
    lkr = Payment(method="stripe", amount=5000, currency="lkr")

    assert compute_order_metrics(order, jpy) == (5000.0, 1)
    assert compute_order_metrics(order, lkr) == (50.0, 1)


def test_metrics_fall_back_to_snapshot_and_survive_bad_json():
    order = CustomerOrder(total_amount=0, items=[], payment_method="Pay Online")
    snapshot_payment = Payment(
        method="stripe", amount=90000, currency="lkr",
        payment_metadata={"pending_order": {"items": [{"productId": HAMMER, "quantity": 3, "price": 300}]}},
    )
    broken_payment = Payment(
        method="stripe", amount=None, currency="lkr",
        payment_metadata={"pending_order": "{oops"},
    )

    assert compute_order_metrics(order, snapshot_payment) == (900.0, 3)
    assert compute_order_metrics(order, snapshot_payment, product_id=HAMMER) == (900.0, 3)
    assert compute_order_metrics(order, broken_payment) == (0.0, 0)


async def test_realtime_snapshot_totals_recent_card_sales(db):
    now = datetime.now(timezone.utc)
    await card_sale(db, now - timedelta(days=1))
    await card_sale(db, now - timedelta(days=30))
    await pay_later_sale(db, now - timedelta(hours=2))

    snapshot = await realtime_snapshot(db, days=7)

    assert snapshot["total_sales"] == 2500.0
    assert snapshot["units_sold"] == 3
    assert len(snapshot["recent"]) == 1
    assert snapshot["recent"][0]["raw_amount"] == 250000


async def test_report_endpoints(client, actor):
    actor.as_role("finance manager")
    response = await client.get("/reports/weekly")
    assert response.status_code == 200
    assert len(response.json()["weeks"]) == 10

    response = await client.get("/reports/monthly", params={"months": 3, "productId": "not-a-uuid"})
    assert response.status_code == 200
    assert len(response.json()["months"]) == 3

    actor.as_role("supplier")
    response = await client.get("/reports/weekly")
    assert response.status_code == 403


class RecordingSession:
    def __init__(self):
        self.closed = False

    async def close(self):
        self.closed = True


class FakeSocket:
    def __init__(self, session):
        self.session = session
        self.sent = []
        self.closed_with = None
        self.session_closed_on_accept = None

    async def accept(self):
        self.session_closed_on_accept = self.session.closed
        asyncio.get_running_loop().call_soon(publish_sales_confirmed, "order-1", 10.0, "lkr")

    async def send_json(self, message):
        self.sent.append(message)
        raise WebSocketDisconnect()

    async def close(self, code):
        self.closed_with = code


def as_user(monkeypatch, role):
    async def authenticate(token, db):
        return {"user_id": str(uuid.uuid4()), "role": role}
    monkeypatch.setattr("routers.reports.reports.authenticate_token", authenticate)


async def test_live_stream_releases_session_before_streaming(monkeypatch):
    as_user(monkeypatch, "finance manager")
    session = RecordingSession()
    socket = FakeSocket(session)

    await live_sales(socket, token="token", db=session)

    assert socket.session_closed_on_accept is True
    assert [message["data"]["orderId"] for message in socket.sent] == ["order-1"]


async def test_live_stream_rejects_roles_without_report_access(monkeypatch):
    as_user(monkeypatch, "supplier")
    session = RecordingSession()
    socket = FakeSocket(session)

    await live_sales(socket, token="token", db=session)

    assert socket.closed_with == status.WS_1008_POLICY_VIOLATION
    assert session.closed is True
    assert socket.sent == []
