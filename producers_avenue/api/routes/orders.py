"""Order read and status-change endpoints."""
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from producers_avenue.api.dependencies import CurrentUser, get_current_user
from producers_avenue.api.schemas import OrderResponse, OrderStatusUpdateRequest
from producers_avenue.core.orders import order_service
from producers_avenue.database.connection import get_db

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get(
    "",
    summary="Get or list orders",
    description="One order by id, or the caller's purchases/sales",
)
async def get_orders(
    id: Optional[str] = None,
    type: Optional[str] = Query(default=None, description="purchases or sales"),
    status: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    if id:
        order = await order_service.get_order(db, id, user.id)
        return {"order": OrderResponse.model_validate(order).model_dump(mode="json")}

    orders = await order_service.list_orders(db, user.id, type=type, status=status, limit=limit)
    return {"orders": [OrderResponse.model_validate(o).model_dump(mode="json") for o in orders]}


@router.api_route(
    "",
    methods=["PATCH", "POST"],
    summary="Update order status",
    description="Buyer or seller sets a new order status",
)
async def update_order_status(
    request: OrderStatusUpdateRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    logger.info("api_update_order_status", order_id=request.order_id, status=request.status)
    order = await order_service.update_order_status(
        db,
        order_id=request.order_id,
        user_id=user.id,
        status=request.status,
        cancel_reason=request.cancel_reason,
    )
    return {
        "success": True,
        "order": OrderResponse.model_validate(order).model_dump(mode="json"),
        "message": "Order status updated successfully",
    }
