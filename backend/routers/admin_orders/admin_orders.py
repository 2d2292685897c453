from fastapi import APIRouter, Depends, HTTPException, status, Query, BackgroundTasks
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload
from config import get_db, ADMIN_NOTIFICATION_EMAIL
from models import AdminOrder, AdminOrderItem, AdminCancelledOrder
from routers.auth.auth import get_current_user
from dependencies.rbac import (
    get_role, require_admin_order_read, require_admin_order_write,
    require_admin_order_delete, require_cancelled_order_read, require_supplier_response
)
from routers.payments.helpers import to_uuid
from utils.errors import ServiceError
from utils.response_helpers import (
    admin_order_to_dict, payment_to_dict, safe_model_validate, safe_model_validate_list
)
from utils.notifications import (
    send_email, send_sms, looks_like_phone_number,
    get_supplier_response_email, get_supplier_response_sms
)
from .helpers import (
    create_admin_order, apply_supplier_response, archive_order, get_admin_order
)
from .schemas import (
    AdminOrderCreate, AdminOrderResponse, AdminOrderCreateResponse, AdminOrderListResponse,
    SupplierResponseRequest, SupplierResponseResponse, OrderPaymentSummary,
    CancelledOrderResponse, CancelledOrderListResponse, ArchiveOrderResponse
)
from typing import Optional
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin-orders", tags=["Admin Orders"])


def _order_response(order: AdminOrder) -> AdminOrderResponse:
    return AdminOrderResponse.model_validate(admin_order_to_dict(order))


def _payment_summary(payment) -> OrderPaymentSummary:
    return OrderPaymentSummary.model_validate(payment_to_dict(payment))


@router.post("", response_model=AdminOrderCreateResponse, status_code=status.HTTP_201_CREATED)
async def add_admin_order(
    order_data: AdminOrderCreate,
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_admin_order_write)
):
    """
    Place a procurement order. Lines are priced against supplier discounts
    before the order is stored.
    """
    try:
        order, payments = await create_admin_order(db, order_data, current_user)
        summaries = [_payment_summary(payment) for payment in payments]

        return AdminOrderCreateResponse(
            message="Order placed successfully",
            order=_order_response(order),
            payment=summaries[0] if summaries else None,
            payments=summaries
        )

    except (HTTPException, ServiceError):
        await db.rollback()
        raise
    except Exception as e:
        logger.error(f"Error placing admin order: {str(e)}")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to place order"
        )


@router.get("", response_model=AdminOrderListResponse)
async def get_all_admin_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    order_status: Optional[str] = Query(None, alias="status"),
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_admin_order_read)
):
    """
    List procurement orders, newest first. Suppliers only see orders that
    contain at least one of their items.
    """
    try:
        query = select(AdminOrder)
        count_query = select(func.count(AdminOrder.id))

        if get_role(current_user) == "supplier":
            owned = select(AdminOrderItem.order_id).where(
                AdminOrderItem.supplier_id == to_uuid(current_user["user_id"])
            )
            query = query.where(AdminOrder.id.in_(owned))
            count_query = count_query.where(AdminOrder.id.in_(owned))

        if order_status:
            query = query.where(AdminOrder.status == order_status)
            count_query = count_query.where(AdminOrder.status == order_status)

        total = (await db.execute(count_query)).scalar()

        offset = (page - 1) * limit
        result = await db.execute(
            query.options(selectinload(AdminOrder.items))
            .order_by(AdminOrder.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        orders = result.scalars().all()

        return AdminOrderListResponse(
            orders=[_order_response(order) for order in orders],
            page=page,
            limit=limit,
            total=total
        )

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error getting admin orders: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve orders"
        )


@router.get("/cancelled", response_model=CancelledOrderListResponse)
async def get_cancelled_orders(
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_cancelled_order_read)
):
    """
    Archived orders removed through cancel or delete
    """
    try:
        result = await db.execute(
            select(AdminCancelledOrder).order_by(AdminCancelledOrder.cancelled_at.desc())
        )
        archived = result.scalars().all()

        return CancelledOrderListResponse(
            orders=safe_model_validate_list(CancelledOrderResponse, archived),
            total=len(archived)
        )

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error getting cancelled orders: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve cancelled orders"
        )


@router.get("/{order_id}", response_model=AdminOrderResponse)
async def get_admin_order_by_id(
    order_id: str,
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_admin_order_read)
):
    """
    Get a single procurement order
    """
    try:
        order = await get_admin_order(db, order_id)
        if not order:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Order not found"
            )

        if get_role(current_user) == "supplier":
            supplier_id = str(current_user["user_id"])
            if not any(str(item.supplier_id) == supplier_id for item in order.items):
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail="You do not have any items on this order"
                )

        return _order_response(order)

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error getting admin order {order_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve order"
        )


async def _respond(order_id: str, response_data: SupplierResponseRequest, background_tasks: BackgroundTasks, current_user, db: AsyncSession):
    try:
        result = await apply_supplier_response(db, order_id, current_user, response_data.action)
        order = result.order

        if result.changed:
            order_data = {
                "id": str(order.id),
                "supplier_id": str(result.supplier_id),
                "item_count": result.item_count,
                "supplier_total": result.supplier_total,
                "status": order.status,
            }
            if ADMIN_NOTIFICATION_EMAIL:
                subject, body = get_supplier_response_email(order_data, result.action)
                background_tasks.add_task(send_email, ADMIN_NOTIFICATION_EMAIL, subject, body)
            if looks_like_phone_number(order.contact):
                background_tasks.add_task(
                    send_sms,
                    order.contact,
                    get_supplier_response_sms(str(order.id), result.action, order.status)
                )

        verb = "accepted" if result.action == "accept" else "declined"
        return SupplierResponseResponse(
            message=f"Order {verb}",
            order=_order_response(order),
            supplier_id=str(result.supplier_id),
            action=result.action,
            supplier_total=result.supplier_total,
            payments=[_payment_summary(payment) for payment in result.payments]
        )

    except (HTTPException, ServiceError):
        await db.rollback()
        raise
    except Exception as e:
        logger.error(f"Error applying supplier response to order {order_id}: {str(e)}")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update order"
        )


@router.put("/{order_id}/respond", response_model=SupplierResponseResponse)
async def respond_to_order(
    order_id: str,
    response_data: SupplierResponseRequest,
    background_tasks: BackgroundTasks,
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_supplier_response)
):
    """
    Supplier accepts or declines its own items on a procurement order
    """
    return await _respond(order_id, response_data, background_tasks, current_user, db)


@router.put("/{order_id}/confirm", response_model=SupplierResponseResponse)
async def confirm_order(
    order_id: str,
    response_data: SupplierResponseRequest,
    background_tasks: BackgroundTasks,
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_supplier_response)
):
    """
    Same as /respond
    """
    return await _respond(order_id, response_data, background_tasks, current_user, db)


async def _archive_and_remove(order_id: str, reason: str, current_user, db: AsyncSession) -> AdminCancelledOrder:
    order = await get_admin_order(db, order_id)
    if not order:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found"
        )

    archived = archive_order(order, reason, current_user)
    db.add(archived)
    await db.delete(order)
    await db.commit()
    await db.refresh(archived)

    logger.info(f"Admin order {order_id} archived as {archived.id} ({reason})")
    return archived


@router.put("/{order_id}/cancel", response_model=ArchiveOrderResponse)
async def cancel_admin_order(
    order_id: str,
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_admin_order_write)
):
    """
    Cancel an order: archive a snapshot and remove the live order
    """
    try:
        archived = await _archive_and_remove(order_id, "cancelled", current_user, db)
        return ArchiveOrderResponse(
            message="Order cancelled successfully",
            cancelled_order=safe_model_validate(CancelledOrderResponse, archived)
        )

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error cancelling admin order {order_id}: {str(e)}")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to cancel order"
        )


@router.delete("/{order_id}", response_model=ArchiveOrderResponse)
async def delete_admin_order(
    order_id: str,
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_admin_order_delete)
):
    """
    Delete an order. The snapshot is still archived.
    """
    try:
        archived = await _archive_and_remove(order_id, "deleted", current_user, db)
        return ArchiveOrderResponse(
            message="Order deleted successfully",
            cancelled_order=safe_model_validate(CancelledOrderResponse, archived)
        )

    except (HTTPException, ServiceError):
        raise
    except Exception as e:
        logger.error(f"Error deleting admin order {order_id}: {str(e)}")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete order"
        )
