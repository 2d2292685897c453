import uuid

import pytest
from sqlalchemy import func, select

from models import AdminOrder, AdminOrderItem, Payment
from routers.payments.helpers import PaymentStore


@pytest.fixture
def suppliers():
    return str(uuid.uuid4()), str(uuid.uuid4())


def order_body(supplier_a, supplier_b, **extra):
    body = {
        "items": [
            {"productId": str(uuid.uuid4()), "supplierId": supplier_a, "name": "PVC pipe 2in", "quantity": 5, "price": 100},
            {"productId": str(uuid.uuid4()), "supplierId": supplier_b, "name": "Pipe glue", "quantity": 12, "price": 50},
            {"productId": str(uuid.uuid4()), "supplierId": supplier_b, "name": "Elbow joint", "quantity": 3, "price": 40},
        ],
        "contact": "stores@vintora.test",
    }
    body.update(extra)
    return body


async def place(client, actor, suppliers, **extra):
    actor.as_role("admin")
    response = await client.post("/admin-orders", json=order_body(*suppliers, **extra))
    assert response.status_code == 201
    return response.json()


async def test_admin_places_priced_order(client, actor, suppliers):
    created = await place(client, actor, suppliers)

    order = created["order"]
    assert order["status"] == "Pending"
    assert order["total_cost"] == 500 + 600 + 120
    assert order["discount_total"] == 0
    assert [item["supplier_status"] for item in order["items"]] == ["Pending"] * 3
    assert created["payment"] is None
    assert created["payments"] == []


async def test_supplier_discount_is_applied_at_order_time(client, actor, suppliers):
    supplier_a, supplier_b = suppliers
    body = order_body(supplier_a, supplier_b)
    glue = body["items"][1]["productId"]

    actor.as_role("supplier", user_id=supplier_b)
    response = await client.post("/supplier-discounts", json={"product_id": glue, "min_quantity": 10, "discount_percent": 10})
    assert response.status_code == 201
    discount_id = response.json()["id"]

    actor.as_role("admin")
    response = await client.post("/admin-orders", json=body)

    order = response.json()["order"]
    assert order["items"][1]["line_total"] == 540
    assert order["items"][1]["applied_discount_id"] == discount_id
    assert order["total_cost"] == 500 + 540 + 120
    assert order["discount_total"] == 60


async def test_slip_order_creates_one_payment_per_supplier(client, actor, suppliers):
    created = await place(client, actor, suppliers, paymentMethod="Bank Transfer", slipUrl="slips/po-42.pdf")

    shares = {payment["supplier_id"]: payment["amount"] for payment in created["payments"]}
    assert shares == {suppliers[0]: 500, suppliers[1]: 720}
    assert created["payment"]["payment_status"] == "pending"


async def test_failed_slip_payment_leaves_no_half_created_order(client, actor, suppliers, session_factory, monkeypatch):
    build_attempt = PaymentStore.build_attempt
    calls = []

    def fail_on_second_supplier(self, *args, **kwargs):
        calls.append(args)
        if len(calls) == 2:
            raise RuntimeError("payments table unavailable")
        return build_attempt(self, *args, **kwargs)

    monkeypatch.setattr(PaymentStore, "build_attempt", fail_on_second_supplier)
    actor.as_role("admin")

    response = await client.post("/admin-orders", json=order_body(*suppliers, paymentMethod="Bank Transfer"))

    assert response.status_code == 500
    assert len(calls) == 2
    async with session_factory() as db:
        for model in (AdminOrder, AdminOrderItem, Payment):
            assert (await db.execute(select(func.count(model.id)))).scalar() == 0


async def test_missing_supplier_is_a_validation_error(client, actor, suppliers):
    actor.as_role("admin")
    body = order_body(*suppliers)
    del body["items"][0]["supplierId"]

    response = await client.post("/admin-orders", json=body)

    assert response.status_code == 400
    assert response.json()["message"] == "Item 1 is missing a supplier"


async def test_suppliers_respond_to_their_own_items(client, actor, suppliers):
    order_id = (await place(client, actor, suppliers))["order"]["id"]
    supplier_a, supplier_b = suppliers

    actor.as_role("supplier", user_id=supplier_a)
    response = await client.put(f"/admin-orders/{order_id}/respond", json={"action": "accept"})
    assert response.status_code == 200
    assert response.json()["order"]["status"] == "Pending"

    actor.as_role("supplier", user_id=supplier_b)
    response = await client.put(f"/admin-orders/{order_id}/confirm", json={"action": "decline"})
    assert response.status_code == 200
    order = response.json()["order"]
    assert order["status"] == "Declined"
    assert [item["supplier_status"] for item in order["items"]] == ["Accepted", "Declined", "Declined"]


async def test_response_rejections(client, actor, suppliers):
    order_id = (await place(client, actor, suppliers))["order"]["id"]

    actor.as_role("supplier")
    response = await client.put(f"/admin-orders/{order_id}/respond", json={"action": "accept"})
    assert response.status_code == 403

    actor.as_role("supplier", user_id=suppliers[0])
    response = await client.put(f"/admin-orders/{order_id}/respond", json={"action": "ship"})
    assert response.status_code == 400
    assert "accept" in response.json()["message"]

    response = await client.put(f"/admin-orders/{uuid.uuid4()}/respond", json={"action": "accept"})
    assert response.status_code == 404

    actor.as_role("finance manager")
    response = await client.put(f"/admin-orders/{order_id}/respond", json={"action": "accept"})
    assert response.status_code == 403


async def test_supplier_only_lists_orders_with_their_items(client, actor, suppliers):
    await place(client, actor, suppliers)
    other = await place(client, actor, (str(uuid.uuid4()), str(uuid.uuid4())))

    actor.as_role("supplier", user_id=suppliers[0])
    response = await client.get("/admin-orders")
    assert response.json()["total"] == 1

    response = await client.get(f"/admin-orders/{other['order']['id']}")
    assert response.status_code == 403

    actor.as_role("finance manager")
    response = await client.get("/admin-orders")
    assert response.json()["total"] == 2


async def test_cancel_and_delete_archive_the_order(client, actor, suppliers):
    first = (await place(client, actor, suppliers))["order"]["id"]
    second = (await place(client, actor, (suppliers[0], suppliers[0])))["order"]["id"]

    response = await client.put(f"/admin-orders/{first}/cancel")
    assert response.status_code == 200
    archived = response.json()["cancelled_order"]
    assert archived["supplier_label"] == "Multiple suppliers (2)"
    assert archived["reason"] == "cancelled"
    assert archived["original_order_id"] == first
    assert len(archived["items"]) == 3

    response = await client.delete(f"/admin-orders/{second}")
    assert response.status_code == 200
    assert response.json()["cancelled_order"]["supplier_label"] == suppliers[0]
    assert response.json()["cancelled_order"]["reason"] == "deleted"

    assert (await client.get(f"/admin-orders/{first}")).status_code == 404
    assert (await client.delete(f"/admin-orders/{first}")).status_code == 404

    response = await client.get("/admin-orders/cancelled")
    assert response.json()["total"] == 2


async def test_finance_manager_cannot_place_orders(client, actor, suppliers):
    actor.as_role("finance manager")

    response = await client.post("/admin-orders", json=order_body(*suppliers))

    assert response.status_code == 403
