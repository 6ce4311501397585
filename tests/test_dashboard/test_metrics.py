"""
Test suite for today's dashboard metrics.

Tests cover the business day bounds, revenue and goal rules, the per-status
counts and loading the day's orders through the repository.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

import pytest

from waterline.database.queries import (
    QueryCapabilities,
    QueryIndexMissingError,
    QueryName,
)
from waterline.schemas.settings import BusinessSettingsRecord
from waterline.services.dashboard.metrics import (
    compute_today_metrics,
    day_bounds,
    delivered_revenue,
    goal_progress,
)
from waterline.services.dashboard.service import load_today_metrics
from waterline.services.orders.enums import OrderStatus

JOHANNESBURG = ZoneInfo("Africa/Johannesburg")
NEW_YORK = ZoneInfo("America/New_York")


@pytest.fixture
def day():
    return day_bounds(datetime(2025, 3, 14, 8, 30, tzinfo=timezone.utc), JOHANNESBURG)


@pytest.fixture
def priced_settings():
    return BusinessSettingsRecord(
        tank_capacity_liters=Decimal("10000"),
        price_per_1000_liters=Decimal("100"),
        delivery_fee=Decimal("32.50"),
        daily_delivery_goal_orders=5,
    )


# ============================================================================
# Day Bounds Tests
# ============================================================================


class TestDayBounds:
    def test_local_midnight_to_midnight(self):
        start, end = day_bounds(
            datetime(2025, 3, 14, 23, 30, tzinfo=timezone.utc), JOHANNESBURG
        )

        # 23:30 UTC is already the next local day in Johannesburg (UTC+2)
        assert start == datetime(2025, 3, 15, tzinfo=JOHANNESBURG)
        assert end == datetime(2025, 3, 16, tzinfo=JOHANNESBURG)
        assert end - start == timedelta(hours=24)

    def test_spring_forward_day_is_23_hours(self):
        start, end = day_bounds(
            datetime(2025, 3, 9, 17, 0, tzinfo=timezone.utc), NEW_YORK
        )

        assert end.astimezone(timezone.utc) - start.astimezone(timezone.utc) == timedelta(
            hours=23
        )

    def test_fall_back_day_is_25_hours(self):
        start, end = day_bounds(
            datetime(2025, 11, 2, 17, 0, tzinfo=timezone.utc), NEW_YORK
        )

        assert end.astimezone(timezone.utc) - start.astimezone(timezone.utc) == timedelta(
            hours=25
        )


# ============================================================================
# Revenue and Goal Tests
# ============================================================================


class TestRevenueAndGoal:
    def test_revenue_from_liters_and_fee(self):
        revenue = delivered_revenue(
            Decimal("3500"), 2, Decimal("100"), Decimal("32.50")
        )

        assert revenue == Decimal("415")

    def test_no_revenue_without_price(self):
        assert delivered_revenue(Decimal("3500"), 2, Decimal("0"), Decimal("50")) is None

    @pytest.mark.parametrize(
        "delivered, goal, expected",
        [(2, 5, 0.4), (5, 5, 1.0), (9, 5, 1.0), (0, 3, 0.0)],
    )
    def test_goal_progress_capped(self, delivered, goal, expected):
        assert goal_progress(delivered, goal) == pytest.approx(expected)

    def test_no_goal(self):
        assert goal_progress(4, 0) is None


# ============================================================================
# Metrics Fold Tests
# ============================================================================


class TestComputeTodayMetrics:
    def test_counts_and_revenue(self, make_order, priced_settings, day):
        orders = [
            make_order(status=OrderStatus.DELIVERED, liters=Decimal("2000")),
            make_order(status=OrderStatus.DELIVERED, liters=Decimal("1500")),
            make_order(status=OrderStatus.PENDING, liters=Decimal("1000")),
            make_order(status=OrderStatus.CANCELLED, liters=Decimal("500")),
        ]

        metrics = compute_today_metrics(orders, priced_settings, *day)

        assert metrics.total_orders == 4
        assert metrics.total_liters == Decimal("5000")
        assert metrics.delivered_orders == 2
        assert metrics.delivered_liters == Decimal("3500")
        assert metrics.revenue == Decimal("415")
        assert metrics.revenue_state == "ok"
        assert metrics.goal_progress == pytest.approx(0.4)
        assert metrics.goal_state == "ok"
        assert metrics.by_status == {
            OrderStatus.PENDING: 1,
            OrderStatus.CONFIRMED: 0,
            OrderStatus.OUT_FOR_DELIVERY: 0,
            OrderStatus.DELIVERED: 2,
            OrderStatus.CANCELLED: 1,
        }

    def test_empty_day_lists_every_status(self, priced_settings, day):
        metrics = compute_today_metrics([], priced_settings, *day)

        assert metrics.total_orders == 0
        assert set(metrics.by_status) == set(OrderStatus)
        assert all(count == 0 for count in metrics.by_status.values())
        assert metrics.goal_progress == 0.0

    def test_unconfigured_price_and_goal(self, make_order, day):
        orders = [make_order(status=OrderStatus.DELIVERED)]

        metrics = compute_today_metrics(orders, BusinessSettingsRecord(), *day)

        assert metrics.revenue == Decimal("0")
        assert metrics.revenue_state == "price_not_configured"
        assert metrics.goal_progress is None
        assert metrics.goal_state == "goal_not_configured"


# ============================================================================
# Loading Tests
# ============================================================================


class TestLoadTodayMetrics:
    async def test_reads_day_orders_and_default_settings(self, mock_session, make_order):
        result = MagicMock()
        result.scalars.return_value.all.return_value = [
            make_order(status=OrderStatus.DELIVERED)
        ]
        mock_session.execute.return_value = result

        metrics = await load_today_metrics(
            mock_session,
            JOHANNESBURG,
            now=datetime(2025, 3, 14, 8, 30, tzinfo=timezone.utc),
        )

        assert metrics.day_start == datetime(2025, 3, 14, tzinfo=JOHANNESBURG)
        assert metrics.delivered_orders == 1
        assert metrics.revenue_state == "price_not_configured"
        mock_session.get.assert_awaited_once()

    async def test_missing_range_index(self, mock_session):
        with pytest.raises(QueryIndexMissingError) as exc_info:
            await load_today_metrics(
                mock_session, JOHANNESBURG, QueryCapabilities(available=[])
            )

        assert exc_info.value.query == QueryName.ORDERS_BY_CREATED_RANGE
