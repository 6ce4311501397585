"""Loads the data behind today's dashboard metrics."""

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from waterline.database.queries import QueryCapabilities
from waterline.schemas.dashboard import DashboardMetrics
from waterline.services.dashboard.metrics import compute_today_metrics, day_bounds
from waterline.services.orders.repository import OrderRepository
from waterline.services.settings.service import SettingsService


async def load_today_metrics(
    session: AsyncSession,
    tz: ZoneInfo,
    capabilities: Optional[QueryCapabilities] = None,
    now: Optional[datetime] = None,
) -> DashboardMetrics:
    """
    Read the current business day's orders and settings and fold them.

    Args:
        session: Database session
        tz: Business timezone defining the day
        capabilities: Known query indexes
        now: Current instant, defaults to the wall clock

    Raises:
        QueryIndexMissingError: If the created-at range index is missing
    """
    start, end = day_bounds(now or datetime.now(timezone.utc), tz)
    orders = await OrderRepository(session, capabilities).list_created_between(start, end)
    settings = await SettingsService(session).get_settings()
    return compute_today_metrics(orders, settings, start, end)
