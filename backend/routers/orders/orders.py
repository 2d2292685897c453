from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from config import get_db, DEFAULT_CURRENCY
from models import CustomerOrder
from routers.auth.auth import get_current_user
from dependencies.rbac import get_role, require_order_read, require_order_write
from routers.payments.helpers import PaymentStore, to_uuid
from utils.errors import ServiceError
from utils.currency import round_currency
from utils.response_helpers import safe_model_validate, safe_model_validate_list
from .schemas import OrderCreate, OrderCancel, OrderResponse, OrderCreateResponse, OrderListResponse
from typing import Optional
import uuid
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["Orders"])


async def _get_visible_order(db: AsyncSession, order_id: str, current_user: dict) -> CustomerOrder:
    order_uuid = to_uuid(order_id)
    if order_uuid is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid order id"
        )

    result = await db.execute(select(CustomerOrder).where(CustomerOrder.id == order_uuid))
    order = result.scalar_one_or_none()
    if not order:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found"
        )

    if get_role(current_user) == "user" and str(order.user_id) != str(current_user["user_id"]):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden: not your order"
        )
    return order


@router.post("", response_model=OrderCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    order_data: OrderCreate,
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_order_write)
):
    """
    Place a customer order. It stays Pending until a payment for it is paid.
    Pay Later orders get a pending bank payment that staff mark paid on receipt.
    """
    try:
        merged = {}
        for item in order_data.items:
            product_uuid = to_uuid(item.product_id)
            if product_uuid is None:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Invalid productId for item \"{item.product_name}\""
                )
            key = str(product_uuid)
            if key in merged:
                merged[key]["quantity"] += item.quantity
            else:
                merged[key] = {
                    "product_id": key,
                    "product_name": item.product_name,
                    "quantity": item.quantity,
                    "price": item.price,
                }

        items = list(merged.values())
        total_amount = round_currency(sum(item["price"] * item["quantity"] for item in items))
        if total_amount <= 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Computed total amount is invalid"
            )

        order = CustomerOrder(
            id=uuid.uuid4(),
            user_id=to_uuid(current_user["user_id"]),
            contact=order_data.contact,
            payment_method=order_data.payment_method.value,
            items=items,
            total_amount=total_amount,
            status="Pending",
        )
        db.add(order)

        payment = None
        if order.payment_method == "Pay Later":
            payment = PaymentStore(db).build_attempt(
                order.id,
                "slip",
                total_amount,
                DEFAULT_CURRENCY,
                meta={
                    "payment_name": f"Pay later order {str(order.id)[:8]}",
                    "user_id": current_user["user_id"],
                    "customer_email": current_user.get("email"),
                },
            )
            db.add(payment)

        await db.commit()
        await db.refresh(order)
        payment_id = str(payment.id) if payment is not None else None

        logger.info(f"Order {order.id} placed by {current_user['user_id']} ({len(items)} items, {order.payment_method})")
        return OrderCreateResponse(
            message="Order placed successfully",
            order=safe_model_validate(OrderResponse, order),
            payment_id=payment_id
        )

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error creating order: {str(e)}")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to add order"
        )


@router.get("/my-orders", response_model=OrderListResponse)
async def get_my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    order_status: Optional[str] = Query(None, alias="status"),
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_order_read)
):
    """
    Get current user's orders
    """
    try:
        user_uuid = to_uuid(current_user["user_id"])
        query = select(CustomerOrder).where(CustomerOrder.user_id == user_uuid)
        count_query = select(func.count(CustomerOrder.id)).where(CustomerOrder.user_id == user_uuid)

        if order_status:
            query = query.where(CustomerOrder.status == order_status)
            count_query = count_query.where(CustomerOrder.status == order_status)

        total = (await db.execute(count_query)).scalar()

        offset = (page - 1) * limit
        result = await db.execute(
            query.order_by(CustomerOrder.created_at.desc()).offset(offset).limit(limit)
        )
        orders = result.scalars().all()

        return OrderListResponse(
            orders=safe_model_validate_list(OrderResponse, orders),
            page=page,
            limit=limit,
            total=total
        )

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error getting orders: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve orders"
        )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order_by_id(
    order_id: str,
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_order_read)
):
    """
    Get a single order; customers only see their own
    """
    try:
        order = await _get_visible_order(db, order_id, current_user)
        return safe_model_validate(OrderResponse, order)

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error getting order {order_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve order"
        )


@router.put("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: str,
    cancel_data: OrderCancel,
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_order_write)
):
    """
    Cancel a Pending order. Confirmed orders have been paid and go through refunds instead.
    """
    try:
        order = await _get_visible_order(db, order_id, current_user)

        if order.status == "Canceled":
            return safe_model_validate(OrderResponse, order)
        if order.status != "Pending":
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Cannot cancel an order that is {order.status}"
            )

        order.status = "Canceled"
        order.cancel_reason = (cancel_data.reason or "").strip() or None
        await db.commit()
        await db.refresh(order)

        logger.info(f"Order {order.id} canceled by {current_user['user_id']}")
        return safe_model_validate(OrderResponse, order)

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error cancelling order {order_id}: {str(e)}")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to cancel order"
        )
