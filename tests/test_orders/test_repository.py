"""
Test suite for OrderRepository.

Tests cover the conditional transition update, store boundary parsing,
query capability checks and store error translation.
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError, OperationalError

from waterline.database.models.order import IX_ORDERS_STATUS_CREATED_AT
from waterline.database.queries import (
    QueryCapabilities,
    QueryIndexMissingError,
    QueryName,
    StoreUnavailableError,
)
from waterline.services.orders.enums import (
    OrderStatus,
    PaymentMethod,
    ScheduleType,
    WaterType,
)
from waterline.services.orders.repository import (
    OrderCreationError,
    OrderNotFoundError,
    OrderRepository,
    parse_orders,
)
from waterline.services.orders.state_machine import OrderAction, TransitionPlan

NOW = datetime(2025, 3, 14, 8, 30, tzinfo=timezone.utc)


# ============================================================================
# Helpers
# ============================================================================


def order_row(**overrides) -> SimpleNamespace:
    fields = {
        "id": uuid.uuid4(),
        "customer_uid": "customer-1",
        "customer_name": "Thandi",
        "customer_phone": "+27 82 555 0101",
        "address": "12 Loop Street",
        "landmark": "",
        "water_type": WaterType.REFILL,
        "liters": Decimal("1000"),
        "payment_method": PaymentMethod.CASH,
        "schedule_type": ScheduleType.ASAP,
        "scheduled_for": None,
        "status": OrderStatus.PENDING,
        "assigned_driver_uid": None,
        "assigned_driver_name": None,
        "created_at": NOW,
        "updated_at": NOW,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


def scalars_result(rows) -> MagicMock:
    result = MagicMock()
    result.scalars.return_value.all.return_value = rows
    result.scalar_one_or_none.return_value = rows[0] if rows else None
    return result


def compiled(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


def connection_lost() -> OperationalError:
    return OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))


@pytest.fixture
def repository(mock_session):
    return OrderRepository(mock_session)


# ============================================================================
# Conditional Update Tests
# ============================================================================


class TestApplyTransition:
    async def test_claim_requires_unassigned_row(self, repository, mock_session):
        mock_session.execute.return_value = MagicMock(rowcount=1)
        plan = TransitionPlan(
            order_id=uuid.uuid4(),
            action=OrderAction.START_DELIVERY,
            expected_status=OrderStatus.CONFIRMED,
            changes={
                "status": OrderStatus.OUT_FOR_DELIVERY,
                "assigned_driver_uid": "driver-1",
                "assigned_driver_name": "Sipho",
                "updated_at": NOW,
            },
            require_unassigned=True,
        )

        applied = await repository.apply_transition(plan)

        assert applied is True
        sql = compiled(mock_session.execute.call_args.args[0])
        assert sql.startswith("UPDATE orders SET")
        assert "orders.status = " in sql
        assert "orders.assigned_driver_uid IS NULL" in sql
        mock_session.commit.assert_awaited_once()

    async def test_assigned_driver_condition(self, repository, mock_session):
        mock_session.execute.return_value = MagicMock(rowcount=1)
        plan = TransitionPlan(
            order_id=uuid.uuid4(),
            action=OrderAction.COMPLETE_DELIVERY,
            expected_status=OrderStatus.OUT_FOR_DELIVERY,
            changes={"status": OrderStatus.DELIVERED, "updated_at": NOW},
            require_driver_uid="driver-1",
        )

        await repository.apply_transition(plan)

        sql = compiled(mock_session.execute.call_args.args[0])
        assert "orders.assigned_driver_uid = " in sql
        assert "IS NULL" not in sql

    async def test_no_matching_row_means_stale(self, repository, mock_session):
        mock_session.execute.return_value = MagicMock(rowcount=0)
        plan = TransitionPlan(
            order_id=uuid.uuid4(),
            action=OrderAction.CONFIRM,
            expected_status=OrderStatus.PENDING,
            changes={"status": OrderStatus.CONFIRMED, "updated_at": NOW},
        )

        assert await repository.apply_transition(plan) is False

    async def test_lost_connection_is_store_unavailable(self, repository, mock_session):
        mock_session.execute.side_effect = connection_lost()
        plan = TransitionPlan(
            order_id=uuid.uuid4(),
            action=OrderAction.CONFIRM,
            expected_status=OrderStatus.PENDING,
            changes={"status": OrderStatus.CONFIRMED, "updated_at": NOW},
        )

        with pytest.raises(StoreUnavailableError):
            await repository.apply_transition(plan)

        mock_session.rollback.assert_awaited_once()


# ============================================================================
# Read Tests
# ============================================================================


class TestGetOrder:
    async def test_returns_record(self, repository, mock_session):
        row = order_row()
        mock_session.execute.return_value = scalars_result([row])

        record = await repository.get_order(row.id)

        assert record.id == row.id
        assert record.status == OrderStatus.PENDING

    async def test_missing_order(self, repository, mock_session):
        mock_session.execute.return_value = scalars_result([])

        with pytest.raises(OrderNotFoundError):
            await repository.get_order(uuid.uuid4())

    async def test_scheduled_instant_round_trips(self, repository, mock_session):
        when = datetime(2025, 3, 15, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        row = order_row(schedule_type=ScheduleType.LATER, scheduled_for=when)
        mock_session.execute.return_value = scalars_result([row])

        record = await repository.get_order(row.id)

        assert record.scheduled_for == when
        assert record.scheduled_for.utcoffset() == timedelta(hours=2)


class TestListQueries:
    async def test_malformed_rows_are_skipped(self, repository, mock_session):
        good = order_row()
        no_liters = order_row(liters=Decimal("0"))
        half_assigned = order_row(assigned_driver_uid="driver-1")
        mock_session.execute.return_value = scalars_result([good, no_liters, half_assigned])

        records = await repository.list_by_status(OrderStatus.PENDING)

        assert [r.id for r in records] == [good.id]

    def test_unscheduled_later_row_is_skipped(self):
        assert parse_orders([order_row(schedule_type=ScheduleType.LATER)]) == []

    async def test_list_orders_newest_first(self, repository, mock_session):
        mock_session.execute.return_value = scalars_result([])

        await repository.list_by_customer("customer-1")

        sql = compiled(mock_session.execute.call_args.args[0])
        assert "orders.customer_uid = " in sql
        assert "ORDER BY orders.created_at DESC" in sql

    async def test_status_lists_are_limited(self, repository, mock_session):
        mock_session.execute.return_value = scalars_result([])

        await repository.list_by_status(OrderStatus.PENDING)

        assert "LIMIT" in compiled(mock_session.execute.call_args.args[0])

    async def test_created_range_returns_every_order(self, repository, mock_session):
        rows = [order_row() for _ in range(6000)]
        mock_session.execute.return_value = scalars_result(rows)

        records = await repository.list_created_between(NOW - timedelta(days=1), NOW)

        sql = compiled(mock_session.execute.call_args.args[0])
        assert "LIMIT" not in sql
        assert "orders.created_at >= " in sql
        assert len(records) == 6000

    async def test_unassigned_confirmed_query(self, repository, mock_session):
        mock_session.execute.return_value = scalars_result([])

        await repository.list_unassigned_confirmed()

        sql = compiled(mock_session.execute.call_args.args[0])
        assert "orders.assigned_driver_uid IS NULL" in sql
        assert "orders.status = " in sql

    async def test_missing_index_fails_distinctly(self, mock_session):
        repository = OrderRepository(mock_session, QueryCapabilities(available=[]))

        with pytest.raises(QueryIndexMissingError) as exc_info:
            await repository.list_by_status(OrderStatus.PENDING)

        assert exc_info.value.query == QueryName.ORDERS_BY_STATUS
        assert exc_info.value.index_name == IX_ORDERS_STATUS_CREATED_AT
        mock_session.execute.assert_not_awaited()

    async def test_lost_connection_on_list(self, repository, mock_session):
        mock_session.execute.side_effect = connection_lost()

        with pytest.raises(StoreUnavailableError):
            await repository.list_by_status(OrderStatus.CONFIRMED)


# ============================================================================
# Create Tests
# ============================================================================


class TestCreateOrder:
    async def test_new_order_is_pending_and_unassigned(self, repository, mock_session):
        record = await repository.create_order(
            customer_uid="customer-1",
            customer_name="Thandi",
            customer_phone="+27 82 555 0101",
            address="12 Loop Street",
            landmark="Blue gate",
            water_type=WaterType.BOTTLES,
            liters=Decimal("20"),
            payment_method=PaymentMethod.EFT,
            schedule_type=ScheduleType.ASAP,
            scheduled_for=None,
        )

        assert record.status == OrderStatus.PENDING
        assert record.assigned_driver_uid is None
        assert record.created_at == record.updated_at
        mock_session.add.assert_called_once()
        mock_session.commit.assert_awaited_once()

    async def test_integrity_error_rolls_back(self, repository, mock_session):
        mock_session.commit.side_effect = IntegrityError("INSERT", {}, Exception("check"))

        with pytest.raises(OrderCreationError):
            await repository.create_order(
                customer_uid="customer-1",
                customer_name="Thandi",
                customer_phone="1",
                address="a",
                landmark="",
                water_type=WaterType.REFILL,
                liters=Decimal("1000"),
                payment_method=PaymentMethod.CASH,
                schedule_type=ScheduleType.ASAP,
                scheduled_for=None,
            )

        mock_session.rollback.assert_awaited_once()
