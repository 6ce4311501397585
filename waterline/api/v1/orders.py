"""
Customer order endpoints.

Customers order under any identity the provider issues them, anonymous
sign-ins included; no role profile is needed.
"""

from fastapi import APIRouter, HTTPException, Request, status

from waterline.api.deps import CurrentPrincipal, OrderServiceDep
from waterline.api.limiter import limiter
from waterline.core.config import get_settings
from waterline.core.logging import get_logger
from waterline.schemas.orders import OrderCreateRequest, OrderListResponse, OrderRecord
from waterline.services.orders.service import OrderValidationError

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post(
    "",
    response_model=OrderRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Place an order",
)
@limiter.limit(lambda: get_settings().order_create_rate_limit)
async def create_order(
    request: Request,
    order_request: OrderCreateRequest,
    principal: CurrentPrincipal,
    service: OrderServiceDep,
) -> OrderRecord:
    """
    Place a water order in PENDING.

    Raises:
        HTTPException: 400 with the form message if the order is incomplete
    """
    logger.info(
        "Creating order",
        customer_uid=principal.uid,
        anonymous=principal.is_anonymous,
        schedule_type=order_request.schedule_type.value,
    )
    try:
        return await service.create_order(principal, order_request)
    except OrderValidationError as e:
        logger.warning(
            "Order validation failed",
            customer_uid=principal.uid,
            error=str(e),
            context=e.context,
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e


@router.get(
    "/mine",
    response_model=OrderListResponse,
    summary="List my orders",
)
async def list_my_orders(
    principal: CurrentPrincipal, service: OrderServiceDep
) -> OrderListResponse:
    orders = await service.list_customer_orders(principal)
    return OrderListResponse(items=orders, total=len(orders))
