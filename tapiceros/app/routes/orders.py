"""Service order routes."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from ..identity import get_current_user
from ..schemas.common import ApiResponse, Pagination, ok
from ..schemas.orders import OrderCreate, OrderPriority, OrderStatus, OrderUpdate
from ..schemas.users import User

_DEFAULT_PAGE_SIZE = 10
_MAX_PAGE_SIZE = 100

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.get("", response_model=ApiResponse)
def list_orders(
    *,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=_DEFAULT_PAGE_SIZE, ge=1, le=_MAX_PAGE_SIZE),
    order_status: Optional[OrderStatus] = Query(default=None, alias="status"),
    priority: Optional[OrderPriority] = Query(default=None),
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    from ..services import orders as orders_service

    orders, total = orders_service.list_orders(
        current_user.id, page=page, limit=limit, status=order_status, priority=priority
    )
    return ok(orders, pagination=Pagination.build(page=page, limit=limit, total=total))


@router.get("/stats/overview", response_model=ApiResponse)
def get_order_stats(*, current_user: User = Depends(get_current_user)) -> ApiResponse:
    from ..services import orders as orders_service

    return ok(orders_service.order_stats(current_user.id))


@router.get("/{order_id}", response_model=ApiResponse)
def get_order(order_id: str, *, current_user: User = Depends(get_current_user)) -> ApiResponse:
    from ..services import orders as orders_service

    return ok(orders_service.get_order(order_id, current_user.id))


@router.post("", response_model=ApiResponse, status_code=status.HTTP_201_CREATED)
def create_order(payload: OrderCreate, *, current_user: User = Depends(get_current_user)) -> ApiResponse:
    from ..services import orders as orders_service

    order = orders_service.create_order(current_user.id, payload)
    return ok(order, message="Order created successfully")


@router.put("/{order_id}", response_model=ApiResponse)
def update_order(
    order_id: str,
    payload: OrderUpdate,
    background_tasks: BackgroundTasks,
    *,
    current_user: User = Depends(get_current_user),
) -> ApiResponse:
    """Update an owned order; a status change notifies the owner's device."""
    from ..services import notifications as notifications_service
    from ..services import orders as orders_service

    order, intent = orders_service.update_order(order_id, current_user.id, payload)
    if intent is not None:
        background_tasks.add_task(notifications_service.dispatch_intent, intent)
    return ok(order, message="Order updated successfully")


@router.delete("/{order_id}", response_model=ApiResponse)
def delete_order(order_id: str, *, current_user: User = Depends(get_current_user)) -> ApiResponse:
    from ..services import orders as orders_service

    orders_service.delete_order(order_id, current_user.id)
    return ok(message="Order deleted successfully")
