from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from models import SupplierDiscount
from typing import Any, Dict, Iterable, List, Optional
import uuid
import logging

logger = logging.getLogger(__name__)


def _offer_value(offer: Any, field: str, default=None):
    if isinstance(offer, dict):
        return offer.get(field, default)
    return getattr(offer, field, default)


def canonical_id(value) -> Optional[str]:
    """Canonical string form of an id, so UUIDs compare equal whatever their spelling"""
    if value is None:
        return None
    try:
        return str(value if isinstance(value, uuid.UUID) else uuid.UUID(str(value)))
    except (TypeError, ValueError):
        return str(value)


def resolve_discount(product_id, quantity: int, offers: Iterable[Any], supplier_id=None) -> Optional[Any]:
    """
    Pick the best discount offer for a product at the requested quantity.

    Only active offers for this product whose min_quantity has been reached are
    considered. The highest discount_percent wins; on equal percent the offer
    with the larger min_quantity wins. Returns None when no threshold is met.
    When supplier_id is given, only that supplier's offers apply.
    """
    if quantity is None or quantity <= 0:
        return None

    wanted_product = canonical_id(product_id)
    wanted_supplier = canonical_id(supplier_id)
    best = None
    best_key = None
    for offer in offers or []:
        if not _offer_value(offer, "is_active", True):
            continue
        offer_product = canonical_id(_offer_value(offer, "product_id"))
        if wanted_product is not None and offer_product is not None and offer_product != wanted_product:
            continue
        offer_supplier = canonical_id(_offer_value(offer, "supplier_id"))
        if wanted_supplier is not None and offer_supplier is not None and offer_supplier != wanted_supplier:
            continue

        try:
            min_quantity = int(_offer_value(offer, "min_quantity", 0) or 0)
            percent = float(_offer_value(offer, "discount_percent", 0) or 0)
        except (TypeError, ValueError):
            continue

        if quantity < min_quantity:
            continue

        key = (percent, min_quantity)
        if best_key is None or key > best_key:
            best = offer
            best_key = key

    return best


async def load_offers(db: AsyncSession, product_ids: Iterable[Any]) -> Dict[str, List[SupplierDiscount]]:
    """Fetch the active offers for the given products, grouped by product id string"""
    ids = []
    for product_id in product_ids:
        try:
            ids.append(product_id if isinstance(product_id, uuid.UUID) else uuid.UUID(str(product_id)))
        except (TypeError, ValueError):
            logger.warning(f"Skipping discount lookup for invalid product id {product_id}")

    grouped: Dict[str, List[SupplierDiscount]] = {}
    if not ids:
        return grouped

    result = await db.execute(
        select(SupplierDiscount).where(
            SupplierDiscount.product_id.in_(ids),
            SupplierDiscount.is_active == True
        )
    )
    for offer in result.scalars().all():
        grouped.setdefault(canonical_id(offer.product_id), []).append(offer)
    return grouped
