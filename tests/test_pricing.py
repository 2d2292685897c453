import uuid

import pytest

from models import SupplierDiscount
from routers.admin_orders.helpers import price_order, price_order_items
from utils.errors import ValidationError

SUPPLIER = str(uuid.uuid4())
NAILS = str(uuid.uuid4())
SCREWS = str(uuid.uuid4())


def line(product_id, quantity, price, supplier_id=SUPPLIER):
    return {"product_id": product_id, "supplier_id": supplier_id, "quantity": quantity, "price": price}


def test_discount_applies_per_line_and_totals_add_up():
    offers = {SCREWS: [{"id": "offer-1", "product_id": SCREWS, "min_quantity": 10, "discount_percent": 10, "is_active": True}]}

    priced = price_order([line(NAILS, 5, 100), line(SCREWS, 12, 50)], offers)

    first, second = priced.items
    assert first["line_subtotal"] == 500
    assert first["discount_value"] == 0
    assert first["line_total"] == 500
    assert first["applied_discount_id"] is None
    assert second["line_subtotal"] == 600
    assert second["discount_percent"] == 10
    assert second["discount_value"] == 60
    assert second["line_total"] == 540
    assert second["applied_discount_id"] == "offer-1"
    assert priced.net_total == 1040
    assert priced.discount_total == 60


def test_line_values_round_half_up_and_totals_are_exact_sums():
    offers = {SCREWS: [{"product_id": SCREWS, "min_quantity": 1, "discount_percent": 12.5, "is_active": True}]}

    priced = price_order([line(SCREWS, 3, 0.35), line(SCREWS, 7, 1.19), line(NAILS, 1, 0.1)], offers)

    # 1.05 * 12.5% = 0.13125 -> 0.13
    assert priced.items[0]["discount_value"] == 0.13
    assert priced.items[0]["line_total"] == 0.92
    # 8.33 * 12.5% = 1.04125 -> 1.04
    assert priced.items[1]["discount_value"] == 1.04
    assert priced.items[1]["line_total"] == 7.29
    assert round(priced.net_total, 2) == 8.31
    assert round(priced.discount_total, 2) == 1.17


def test_positions_follow_request_order():
    priced = price_order([line(NAILS, 1, 10), line(SCREWS, 1, 10), line(NAILS, 2, 10)])

    assert [item["position"] for item in priced.items] == [0, 1, 2]
    assert [item["product_id"] for item in priced.items] == [NAILS, SCREWS, NAILS]


@pytest.mark.parametrize("items, message", [
    ([], "No items provided"),
    ([{"product_id": NAILS, "quantity": 1, "price": 1}], "missing a supplier"),
    ([{"supplier_id": SUPPLIER, "quantity": 1, "price": 1}], "missing a product"),
    ([line(NAILS, 0, 1)], "positive quantity"),
    ([line(NAILS, "lots", 1)], "invalid quantity"),
    ([line(NAILS, 1, -5)], "invalid price"),
    ([line(NAILS, 1, "free")], "invalid price"),
])
def test_invalid_lines_are_rejected(items, message):
    with pytest.raises(ValidationError) as exc:
        price_order(items)
    assert message in exc.value.message


async def test_price_order_items_uses_active_offers_only(db):
    db.add_all([
        SupplierDiscount(supplier_id=uuid.UUID(SUPPLIER), product_id=uuid.UUID(SCREWS), min_quantity=10, discount_percent=10, is_active=True),
        SupplierDiscount(supplier_id=uuid.UUID(SUPPLIER), product_id=uuid.UUID(SCREWS), min_quantity=5, discount_percent=40, is_active=False),
    ])
    await db.commit()

    priced = await price_order_items(db, [line(NAILS, 5, 100), line(SCREWS, 12, 50)])

    assert priced.net_total == 1040
    assert priced.discount_total == 60


@pytest.mark.parametrize("spelling", [str.upper, lambda value: value.replace("-", "")])
async def test_offers_match_product_ids_in_any_uuid_spelling(db, spelling):
    db.add(SupplierDiscount(supplier_id=uuid.UUID(SUPPLIER), product_id=uuid.UUID(SCREWS), min_quantity=10, discount_percent=10, is_active=True))
    await db.commit()

    priced = await price_order_items(db, [line(spelling(SCREWS), 12, 50)])

    assert priced.discount_total == 60
    assert priced.net_total == 540


async def test_another_suppliers_offer_does_not_discount_the_line(db):
    db.add(SupplierDiscount(supplier_id=uuid.uuid4(), product_id=uuid.UUID(SCREWS), min_quantity=1, discount_percent=25, is_active=True))
    await db.commit()

    priced = await price_order_items(db, [line(SCREWS, 12, 50)])

    assert priced.discount_total == 0
    assert priced.items[0]["applied_discount_id"] is None
