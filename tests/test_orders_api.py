import uuid

import pytest

import config


def order_body(payment_method="Pay Later", contact="0771234567"):
    hammer = str(uuid.uuid4())
    return {
        "contact": contact,
        "paymentMethod": payment_method,
        "items": [
            {"productId": hammer, "productName": "Claw hammer", "quantity": 1, "price": 1250},
            {"productId": str(uuid.uuid4()), "productName": "Nails 1kg", "quantity": 3, "price": 300},
            {"productId": hammer, "productName": "Claw hammer", "quantity": 1, "price": 1250},
        ],
    }


class FakePaymentIntents:
    def __init__(self):
        self.created = []
        self.modified = []

    def create(self, **kwargs):
        self.created.append(kwargs)
        return {"id": f"pi_fake_{len(self.created)}", "client_secret": "secret_1", "amount": kwargs["amount"], "status": "requires_payment_method"}

    def retrieve(self, intent_id):
        last = self.created[-1]
        return {"id": intent_id, "client_secret": "secret_1", "amount": last["amount"], "status": "requires_payment_method"}

    def modify(self, intent_id, **kwargs):
        self.modified.append(kwargs)
        return {"id": intent_id, "client_secret": "secret_1", "amount": kwargs["amount"], "status": "requires_payment_method"}


class FakeStripe:
    def __init__(self):
        self.PaymentIntent = FakePaymentIntents()


async def test_pay_later_order_is_confirmed_when_payment_is_marked_paid(client, actor):
    customer = actor.as_role("user")
    response = await client.post("/orders", json=order_body())
    assert response.status_code == 201
    created = response.json()
    order = created["order"]
    assert order["status"] == "Pending"
    assert order["total_amount"] == 3400
    assert len(order["items"]) == 2
    assert created["payment_id"] is not None

    actor.as_role("finance manager")
    response = await client.put(f"/payments/{created['payment_id']}", json={"paymentStatus": "paid"})
    assert response.status_code == 200
    assert response.json()["payment_status"] == "paid"

    actor.as_role("user", user_id=customer["user_id"])
    response = await client.get(f"/orders/{order['id']}")
    assert response.json()["status"] == "Confirmed"

    response = await client.put(f"/orders/{order['id']}/cancel", json={"reason": "changed my mind"})
    assert response.status_code == 409


async def test_invalid_status_change_is_a_conflict(client, actor):
    actor.as_role("user")
    payment_id = (await client.post("/orders", json=order_body())).json()["payment_id"]

    actor.as_role("admin")
    assert (await client.put(f"/payments/{payment_id}", json={"paymentStatus": "failed"})).status_code == 200
    response = await client.put(f"/payments/{payment_id}", json={"paymentStatus": "paid"})

    assert response.status_code == 409
    assert "failed" in response.json()["message"]


async def test_customer_sees_only_own_orders(client, actor):
    actor.as_role("user")
    order_id = (await client.post("/orders", json=order_body(payment_method="Cash"))).json()["order"]["id"]

    response = await client.get("/orders/my-orders")
    assert response.json()["total"] == 1

    actor.as_role("user")
    assert (await client.get(f"/orders/{order_id}")).status_code == 403
    assert (await client.get("/orders/my-orders")).json()["total"] == 0


async def test_cancel_pending_order_is_idempotent(client, actor):
    actor.as_role("user")
    created = (await client.post("/orders", json=order_body(payment_method="Cash"))).json()
    assert created["payment_id"] is None
    order_id = created["order"]["id"]

    first = await client.put(f"/orders/{order_id}/cancel", json={"reason": "  duplicate  "})
    second = await client.put(f"/orders/{order_id}/cancel", json={})

    assert first.status_code == 200
    assert first.json()["status"] == "Canceled"
    assert first.json()["cancel_reason"] == "duplicate"
    assert second.status_code == 200
    assert second.json()["cancel_reason"] == "duplicate"


@pytest.mark.parametrize("body", [
    order_body(contact="12345"),
    order_body(payment_method="Barter"),
    {**order_body(), "items": []},
])
async def test_invalid_order_requests_are_rejected(client, actor, body):
    actor.as_role("user")

    response = await client.post("/orders", json=body)

    assert response.status_code == 422
    assert response.json()["message"]


async def test_stripe_intent_is_created_then_reused(client, actor, monkeypatch):
    fake = FakeStripe()
    monkeypatch.setattr("routers.payments.payments.get_stripe_client", lambda: fake)
    actor.as_role("user")
    order_id = (await client.post("/orders", json=order_body(payment_method="Pay Online"))).json()["order"]["id"]
    body = {"amount": 340000, "currency": "LKR", "orderId": order_id, "paymentName": "Checkout"}

    first = await client.post("/payments/stripe/create-intent", json=body)
    second = await client.post("/payments/stripe/create-intent", json={**body, "amount": 350000})

    assert first.status_code == 201
    assert first.json()["client_secret"] == "secret_1"
    assert first.json()["payment"]["stripe_payment_intent_id"] == "pi_fake_1"
    assert first.json()["payment"]["currency"] == "lkr"
    assert second.json()["payment"]["id"] == first.json()["payment"]["id"]
    assert second.json()["payment"]["amount"] == 350000
    assert len(fake.PaymentIntent.created) == 1
    assert fake.PaymentIntent.modified == [{"amount": 350000}]


async def test_stripe_outage_is_an_upstream_error(client, actor, monkeypatch):
    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", "")
    monkeypatch.setattr(config, "_stripe_configured", False)
    actor.as_role("user")

    response = await client.post("/payments/stripe/create-intent", json={
        "amount": 1000, "orderId": str(uuid.uuid4()), "paymentName": "Checkout",
    })

    assert response.status_code == 502
    assert response.json()["message"] == "Card payments are not available"


async def test_fallback_status_update_for_unknown_intent(client, actor):
    actor.as_role("user")

    response = await client.post("/payments/stripe/update-status", json={"paymentIntentId": "pi_missing", "status": "paid"})

    assert response.status_code == 404
    assert response.json()["message"] == "Payment not found"


async def test_sync_orders_endpoint(client, actor):
    actor.as_role("finance manager")
    response = await client.post("/payments/sync-orders")
    assert response.status_code == 200
    assert response.json()["scanned"] == 0

    actor.as_role("user")
    assert (await client.post("/payments/sync-orders")).status_code == 403
