"""
Today's dashboard metrics.

Pure functions over an already fetched list of orders: nothing here caches
or stores a result, every snapshot of the day's orders is folded from
scratch. The business day runs from local midnight to the next local
midnight in the business timezone.
"""

from datetime import datetime, time, timedelta
from decimal import Decimal
from typing import Iterable, Optional, Tuple
from zoneinfo import ZoneInfo

from waterline.core.logging import get_logger
from waterline.schemas.dashboard import DashboardMetrics
from waterline.schemas.orders import OrderRecord
from waterline.schemas.settings import BusinessSettingsRecord
from waterline.services.orders.enums import OrderStatus

logger = get_logger(__name__)

LITERS_PER_PRICE_UNIT = Decimal("1000")


def day_bounds(now: datetime, tz: ZoneInfo) -> Tuple[datetime, datetime]:
    """
    Return ``[start, end)`` of the local day containing ``now``.

    Both bounds are local midnights, so a day spanning a DST change is 23 or
    25 hours long.

    Args:
        now: Timezone-aware current instant
        tz: Business timezone

    Returns:
        Tuple of aware datetimes in ``tz``
    """
    local_date = now.astimezone(tz).date()
    start = datetime.combine(local_date, time.min, tzinfo=tz)
    end = datetime.combine(local_date + timedelta(days=1), time.min, tzinfo=tz)
    return start, end


def goal_progress(delivered_orders: int, daily_goal: int) -> Optional[float]:
    """Fraction of the daily goal reached, capped at 1. None without a goal."""
    if daily_goal <= 0:
        return None
    return min(delivered_orders / daily_goal, 1.0)


def delivered_revenue(
    delivered_liters: Decimal,
    delivered_orders: int,
    price_per_1000_liters: Decimal,
    delivery_fee: Decimal,
) -> Optional[Decimal]:
    """Revenue of delivered orders, or None when no price is configured."""
    if price_per_1000_liters <= 0:
        return None
    return (
        delivered_liters / LITERS_PER_PRICE_UNIT * price_per_1000_liters
        + delivery_fee * delivered_orders
    )


def compute_today_metrics(
    orders: Iterable[OrderRecord],
    settings: BusinessSettingsRecord,
    day_start: datetime,
    day_end: datetime,
) -> DashboardMetrics:
    """
    Fold the day's orders into dashboard metrics.

    Args:
        orders: Orders created in ``[day_start, day_end)``
        settings: Current business settings (price, fee, goal)
        day_start: Start of the business day
        day_end: End of the business day

    Returns:
        DashboardMetrics with every status present in ``by_status``
    """
    by_status = {status: 0 for status in OrderStatus}
    total_orders = 0
    total_liters = Decimal("0")
    delivered_orders = 0
    delivered_liters = Decimal("0")

    for order in orders:
        total_orders += 1
        total_liters += order.liters
        by_status[order.status] += 1
        if order.status == OrderStatus.DELIVERED:
            delivered_orders += 1
            delivered_liters += order.liters

    revenue = delivered_revenue(
        delivered_liters,
        delivered_orders,
        settings.price_per_1000_liters,
        settings.delivery_fee,
    )
    progress = goal_progress(delivered_orders, settings.daily_delivery_goal_orders)

    return DashboardMetrics(
        day_start=day_start,
        day_end=day_end,
        total_orders=total_orders,
        total_liters=total_liters,
        by_status=by_status,
        delivered_orders=delivered_orders,
        delivered_liters=delivered_liters,
        revenue=revenue if revenue is not None else Decimal("0"),
        revenue_state="ok" if revenue is not None else "price_not_configured",
        daily_goal=settings.daily_delivery_goal_orders,
        goal_progress=progress,
        goal_state="ok" if progress is not None else "goal_not_configured",
    )
