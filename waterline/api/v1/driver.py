"""Driver endpoints: own deliveries, the unassigned queue and transitions."""

from uuid import UUID

from fastapi import APIRouter, Query

from waterline.api.deps import DriverActor, OrderServiceDep
from waterline.schemas.orders import OrderListResponse, OrderRecord
from waterline.services.orders.enums import OrderStatus

router = APIRouter(prefix="/driver", tags=["Driver"])


@router.get("/orders", response_model=OrderListResponse, summary="My deliveries")
async def list_my_deliveries(
    driver: DriverActor,
    service: OrderServiceDep,
    status: OrderStatus = Query(OrderStatus.CONFIRMED, description="Status to list"),
) -> OrderListResponse:
    orders = await service.list_driver_orders(driver, status)
    return OrderListResponse(items=orders, total=len(orders))


@router.get(
    "/orders/unassigned",
    response_model=OrderListResponse,
    summary="Confirmed orders nobody has claimed",
)
async def list_unassigned(
    driver: DriverActor, service: OrderServiceDep
) -> OrderListResponse:
    orders = await service.list_unassigned()
    return OrderListResponse(items=orders, total=len(orders))


@router.post("/orders/{order_id}/start", response_model=OrderRecord)
async def start_delivery(
    order_id: UUID, driver: DriverActor, service: OrderServiceDep
) -> OrderRecord:
    """Start a delivery; an unassigned order is claimed in the same write."""
    return await service.start_delivery(order_id, driver)


@router.post("/orders/{order_id}/complete", response_model=OrderRecord)
async def complete_delivery(
    order_id: UUID, driver: DriverActor, service: OrderServiceDep
) -> OrderRecord:
    return await service.complete_delivery(order_id, driver)
