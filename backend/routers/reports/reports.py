from fastapi import APIRouter, Depends, HTTPException, status, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession
from config import get_db
from routers.auth.auth import get_current_user, authenticate_token
from dependencies.rbac import has_permissions, require_reports
from routers.payments.helpers import to_uuid
from utils.realtime import sales_events
from .helpers import aggregate_sales, realtime_snapshot, DEFAULT_WEEKS, DEFAULT_MONTHS, DEFAULT_DAYS
from .schemas import WeeklyReportResponse, MonthlyReportResponse, RealtimeReportResponse, SalesBucket, RecentSale
from typing import Optional
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["Reports"])


def _product_filter(product_id: Optional[str]) -> Optional[str]:
    """Ignore product ids that are not valid UUIDs"""
    if not product_id:
        return None
    product_uuid = to_uuid(product_id)
    if product_uuid is None:
        logger.warning(f"Ignoring invalid productId filter {product_id}")
        return None
    return str(product_uuid)


@router.get("/weekly", response_model=WeeklyReportResponse)
async def weekly_report(
    weeks: int = Query(DEFAULT_WEEKS, ge=1, le=104),
    product_id: Optional[str] = Query(None, alias="productId"),
    payment_filter: Optional[str] = Query(None, alias="filter"),
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_reports)
):
    """
    Weekly sales and units for the last `weeks` weeks, current week last
    """
    try:
        buckets = await aggregate_sales(db, "week", weeks, _product_filter(product_id), payment_filter)
        return WeeklyReportResponse(weeks=[SalesBucket(**bucket) for bucket in buckets])

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Weekly report error: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to build weekly report"
        )


@router.get("/monthly", response_model=MonthlyReportResponse)
async def monthly_report(
    months: int = Query(DEFAULT_MONTHS, ge=1, le=60),
    product_id: Optional[str] = Query(None, alias="productId"),
    payment_filter: Optional[str] = Query(None, alias="filter"),
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_reports)
):
    """
    Monthly sales and units for the last `months` months, current month last
    """
    try:
        buckets = await aggregate_sales(db, "month", months, _product_filter(product_id), payment_filter)
        return MonthlyReportResponse(months=[SalesBucket(**bucket) for bucket in buckets])

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Monthly report error: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to build monthly report"
        )


@router.get("/realtime", response_model=RealtimeReportResponse)
async def realtime_report(
    days: int = Query(DEFAULT_DAYS, ge=1, le=365),
    current_user = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(require_reports)
):
    """
    Snapshot of recent paid customer card payments
    """
    try:
        snapshot = await realtime_snapshot(db, days)
        return RealtimeReportResponse(
            since=snapshot["since"],
            days=snapshot["days"],
            total_sales=snapshot["total_sales"],
            units_sold=snapshot["units_sold"],
            recent=[RecentSale(**entry) for entry in snapshot["recent"]]
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Realtime report error: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to build realtime report"
        )


@router.websocket("/live")
async def live_sales(
    websocket: WebSocket,
    token: str = Query(...),
    db: AsyncSession = Depends(get_db)
):
    """
    Stream sales:confirmed events. Browsers cannot set headers on websockets,
    so the bearer token comes in the query string.
    """
    try:
        current_user = await authenticate_token(token, db)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    finally:
        # Release the pooled connection before streaming
        await db.close()

    if not has_permissions(current_user, ["reports:read"]):
        logger.warning(f"Live sales stream denied for role {current_user.get('role')}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    queue = sales_events.subscribe()
    logger.info(f"Live sales subscriber connected ({sales_events.subscriber_count} total)")
    try:
        while True:
            message = await queue.get()
            await websocket.send_json(message)
    except WebSocketDisconnect:
        logger.info("Live sales subscriber disconnected")
    finally:
        sales_events.unsubscribe(queue)
