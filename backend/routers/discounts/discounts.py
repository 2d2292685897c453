from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from config import get_db
from models import SupplierDiscount
from routers.auth.auth import get_current_user
from dependencies.rbac import (
    get_role, require_discount_read, require_discount_write, require_discount_delete
)
from utils.response_helpers import safe_model_validate, safe_model_validate_list
from .helpers import resolve_discount, load_offers, canonical_id
from .schemas import (
    SupplierDiscountCreate, SupplierDiscountUpdate, SupplierDiscountResponse,
    SupplierDiscountListResponse, DiscountPreviewResponse
)
from typing import Optional
import uuid
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/supplier-discounts", tags=["Supplier Discounts"])


def _parse_uuid(value: str, label: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {label}"
        )


async def _get_owned_discount(db: AsyncSession, discount_id: str, current_user: dict) -> SupplierDiscount:
    result = await db.execute(
        select(SupplierDiscount).where(SupplierDiscount.id == _parse_uuid(discount_id, "discount id"))
    )
    discount = result.scalar_one_or_none()
    if not discount:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Discount offer not found"
        )

    if str(discount.supplier_id) != str(current_user["user_id"]):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden: you can only manage your own offers"
        )
    return discount


@router.get("", response_model=SupplierDiscountListResponse)
async def list_supplier_discounts(
    product_id: Optional[str] = Query(None, alias="productId"),
    supplier_id: Optional[str] = Query(None, alias="supplierId"),
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_discount_read)
):
    """
    List discount offers. Suppliers only ever see their own offers.
    """
    try:
        query = select(SupplierDiscount)

        if get_role(current_user) == "supplier":
            query = query.where(SupplierDiscount.supplier_id == _parse_uuid(current_user["user_id"], "supplier id"))
        elif supplier_id:
            query = query.where(SupplierDiscount.supplier_id == _parse_uuid(supplier_id, "supplier id"))

        if product_id:
            query = query.where(SupplierDiscount.product_id == _parse_uuid(product_id, "product id"))

        result = await db.execute(query.order_by(SupplierDiscount.created_at.desc()))
        discounts = result.scalars().all()

        return SupplierDiscountListResponse(
            discounts=safe_model_validate_list(SupplierDiscountResponse, discounts),
            total=len(discounts)
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching supplier discounts: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error fetching supplier discounts"
        )


@router.get("/preview", response_model=DiscountPreviewResponse)
async def preview_discount(
    product_id: str = Query(..., alias="productId"),
    quantity: int = Query(..., ge=1),
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_discount_read)
):
    """
    Show which offer would apply to a product at the given quantity
    """
    try:
        _parse_uuid(product_id, "product id")
        offers_by_product = await load_offers(db, [product_id])
        offer = resolve_discount(product_id, quantity, offers_by_product.get(canonical_id(product_id), []))

        return DiscountPreviewResponse(
            product_id=canonical_id(product_id),
            quantity=quantity,
            discount=safe_model_validate(SupplierDiscountResponse, offer) if offer else None,
            discount_percent=offer.discount_percent if offer else 0.0
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error previewing discount for product {product_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error previewing discount"
        )


@router.post("", response_model=SupplierDiscountResponse, status_code=status.HTTP_201_CREATED)
async def create_supplier_discount(
    discount_data: SupplierDiscountCreate,
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_discount_write)
):
    """
    Create a quantity-tiered discount offer on one of the supplier's products
    """
    try:
        discount = SupplierDiscount(
            supplier_id=_parse_uuid(current_user["user_id"], "supplier id"),
            product_id=_parse_uuid(discount_data.product_id, "product id"),
            min_quantity=discount_data.min_quantity,
            discount_percent=discount_data.discount_percent,
            note=(discount_data.note or "").strip() or None,
            is_active=True
        )

        db.add(discount)
        await db.commit()
        await db.refresh(discount)

        logger.info(f"Supplier {current_user['user_id']} created discount {discount.id} on product {discount.product_id}")
        return safe_model_validate(SupplierDiscountResponse, discount)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating supplier discount: {str(e)}")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error creating supplier discount"
        )


@router.put("/{discount_id}", response_model=SupplierDiscountResponse)
async def update_supplier_discount(
    discount_id: str,
    discount_data: SupplierDiscountUpdate,
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_discount_write)
):
    """
    Update an offer. Orders already placed keep the pricing they were created with.
    """
    try:
        discount = await _get_owned_discount(db, discount_id, current_user)

        update_data = discount_data.model_dump(exclude_unset=True)
        if "note" in update_data:
            update_data["note"] = (update_data["note"] or "").strip() or None
        for field, value in update_data.items():
            if value is None and field != "note":
                continue
            setattr(discount, field, value)

        await db.commit()
        await db.refresh(discount)

        return safe_model_validate(SupplierDiscountResponse, discount)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating supplier discount {discount_id}: {str(e)}")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error updating supplier discount"
        )


@router.delete("/{discount_id}")
async def delete_supplier_discount(
    discount_id: str,
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_discount_delete)
):
    """
    Remove an offer
    """
    try:
        discount = await _get_owned_discount(db, discount_id, current_user)

        await db.delete(discount)
        await db.commit()

        return {"message": "Discount offer removed"}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error removing supplier discount {discount_id}: {str(e)}")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error removing supplier discount"
        )
