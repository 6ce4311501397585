"""
Owner endpoints: order queue by status, transitions, driver roster and
today's dashboard.
"""

from uuid import UUID

from fastapi import APIRouter, Query

from waterline.api.deps import Capabilities, DatabaseSession, OrderServiceDep, OwnerActor
from waterline.core.config import get_settings
from waterline.core.logging import get_logger
from waterline.schemas.dashboard import DashboardMetrics
from waterline.schemas.orders import (
    AssignDriverRequest,
    DriverSummary,
    OrderListResponse,
    OrderRecord,
)
from waterline.services.dashboard.service import load_today_metrics
from waterline.services.orders.enums import OrderStatus

logger = get_logger(__name__)

router = APIRouter(prefix="/owner", tags=["Owner"])


@router.get("/orders", response_model=OrderListResponse, summary="Orders by status")
async def list_orders(
    owner: OwnerActor,
    service: OrderServiceDep,
    status: OrderStatus = Query(OrderStatus.PENDING, description="Status to list"),
) -> OrderListResponse:
    orders = await service.list_by_status(status)
    return OrderListResponse(items=orders, total=len(orders))


@router.get(
    "/dashboard/today",
    response_model=DashboardMetrics,
    summary="Today's metrics",
)
async def today_dashboard(
    owner: OwnerActor, db: DatabaseSession, capabilities: Capabilities
) -> DashboardMetrics:
    """Metrics over the orders created since local midnight."""
    return await load_today_metrics(db, get_settings().business_tz, capabilities)


@router.get("/drivers", response_model=list[DriverSummary], summary="Active drivers")
async def list_drivers(owner: OwnerActor, service: OrderServiceDep) -> list[DriverSummary]:
    profiles = await service.list_active_drivers()
    return [DriverSummary.model_validate(profile) for profile in profiles]


@router.post("/orders/{order_id}/confirm", response_model=OrderRecord)
async def confirm_order(
    order_id: UUID, owner: OwnerActor, service: OrderServiceDep
) -> OrderRecord:
    return await service.confirm_order(order_id, owner)


@router.post("/orders/{order_id}/cancel", response_model=OrderRecord)
async def cancel_order(
    order_id: UUID, owner: OwnerActor, service: OrderServiceDep
) -> OrderRecord:
    return await service.cancel_order(order_id, owner)


@router.post("/orders/{order_id}/revert", response_model=OrderRecord)
async def revert_order(
    order_id: UUID, owner: OwnerActor, service: OrderServiceDep
) -> OrderRecord:
    """Move a confirmed order back to pending."""
    return await service.revert_to_pending(order_id, owner)


@router.post("/orders/{order_id}/assign", response_model=OrderRecord)
async def assign_driver(
    order_id: UUID,
    assignment: AssignDriverRequest,
    owner: OwnerActor,
    service: OrderServiceDep,
) -> OrderRecord:
    """Pre-assign an active driver; the order's status is unchanged."""
    return await service.assign_driver(order_id, assignment.driver_uid, owner)
