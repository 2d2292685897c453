import uuid

from routers.discounts.helpers import resolve_discount

PRODUCT = "prod-1"


def offer(min_quantity, percent, product_id=PRODUCT, active=True, offer_id=None):
    return {
        "id": offer_id or f"{product_id}-{min_quantity}-{percent}",
        "product_id": product_id,
        "min_quantity": min_quantity,
        "discount_percent": percent,
        "is_active": active,
    }


def test_highest_percent_among_reached_thresholds_wins():
    offers = [offer(10, 5), offer(50, 12), offer(100, 8)]

    assert resolve_discount(PRODUCT, 60, offers)["discount_percent"] == 12
    assert resolve_discount(PRODUCT, 150, offers)["discount_percent"] == 12
    assert resolve_discount(PRODUCT, 10, offers)["discount_percent"] == 5


def test_equal_percent_prefers_larger_min_quantity():
    offers = [offer(10, 10, offer_id="small"), offer(40, 10, offer_id="large")]

    assert resolve_discount(PRODUCT, 45, offers)["id"] == "large"
    assert resolve_discount(PRODUCT, 20, offers)["id"] == "small"


def test_no_offer_when_threshold_not_reached():
    assert resolve_discount(PRODUCT, 9, [offer(10, 5)]) is None
    assert resolve_discount(PRODUCT, 0, [offer(1, 5)]) is None
    assert resolve_discount(PRODUCT, 5, []) is None


def test_inactive_and_foreign_offers_are_ignored():
    offers = [
        offer(1, 50, active=False),
        offer(1, 40, product_id="prod-2"),
        offer(1, 3),
    ]

    assert resolve_discount(PRODUCT, 10, offers)["discount_percent"] == 3


def test_offers_are_scoped_to_the_line_supplier():
    ours, theirs = str(uuid.uuid4()), str(uuid.uuid4())
    offers = [{**offer(1, 30), "supplier_id": theirs}, {**offer(1, 5), "supplier_id": ours}]

    assert resolve_discount(PRODUCT, 10, offers, supplier_id=ours)["discount_percent"] == 5
    assert resolve_discount(PRODUCT, 10, offers, supplier_id=ours.upper())["discount_percent"] == 5
    assert resolve_discount(PRODUCT, 10, offers)["discount_percent"] == 30


async def test_supplier_manages_own_offers(client, actor):
    supplier = actor.as_role("supplier")
    product_id = str(uuid.uuid4())

    response = await client.post("/supplier-discounts", json={
        "product_id": product_id,
        "min_quantity": 10,
        "discount_percent": 7.5,
        "note": "  bulk cement  ",
    })
    assert response.status_code == 201
    created = response.json()
    assert created["supplier_id"] == supplier["user_id"]
    assert created["note"] == "bulk cement"

    response = await client.put(f"/supplier-discounts/{created['id']}", json={"discount_percent": 9})
    assert response.status_code == 200
    assert response.json()["discount_percent"] == 9

    actor.as_role("supplier")
    response = await client.put(f"/supplier-discounts/{created['id']}", json={"discount_percent": 50})
    assert response.status_code == 403

    response = await client.get("/supplier-discounts")
    assert response.json()["total"] == 0


async def test_preview_and_admin_cannot_create(client, actor):
    actor.as_role("supplier")
    product_id = str(uuid.uuid4())
    for min_quantity, percent in ((10, 5), (25, 10)):
        response = await client.post("/supplier-discounts", json={
            "product_id": product_id,
            "min_quantity": min_quantity,
            "discount_percent": percent,
        })
        assert response.status_code == 201

    actor.as_role("user")
    response = await client.get("/supplier-discounts/preview", params={"productId": product_id, "quantity": 30})
    assert response.status_code == 200
    assert response.json()["discount_percent"] == 10

    response = await client.get("/supplier-discounts/preview", params={"productId": product_id.upper(), "quantity": 30})
    assert response.json()["discount_percent"] == 10
    assert response.json()["product_id"] == product_id

    response = await client.get("/supplier-discounts/preview", params={"productId": product_id, "quantity": 3})
    assert response.json()["discount"] is None
    assert response.json()["discount_percent"] == 0

    actor.as_role("admin")
    response = await client.post("/supplier-discounts", json={
        "product_id": product_id,
        "min_quantity": 1,
        "discount_percent": 99,
    })
    assert response.status_code == 403
    assert "message" in response.json()
