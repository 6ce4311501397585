"""Dashboard metric schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel

from waterline.services.orders.enums import OrderStatus


class DashboardMetrics(BaseModel):
    """Today's rollup over the orders created in the business day."""

    day_start: datetime
    day_end: datetime
    total_orders: int
    total_liters: Decimal
    by_status: dict[OrderStatus, int]
    delivered_orders: int
    delivered_liters: Decimal
    revenue: Decimal
    revenue_state: Literal["ok", "price_not_configured"]
    daily_goal: int
    goal_progress: Optional[float]
    goal_state: Literal["ok", "goal_not_configured"]
