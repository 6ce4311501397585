"""
Test suite for OrderService.

Tests cover order placement validation, transition orchestration against
the repository (including lost races), driver assignment and change
notifications.
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from waterline.core.identity import Principal
from waterline.realtime.broker import ORDERS, BrokerError, ChangeEvent
from waterline.schemas.auth import RoleProfileRecord
from waterline.schemas.orders import OrderCreateRequest
from waterline.services.orders.enums import OrderStatus, ScheduleType
from waterline.services.orders.service import (
    INVALID_LITERS_MESSAGE,
    MISSING_CONTACT_MESSAGE,
    MISSING_SCHEDULE_MESSAGE,
    UNKNOWN_DRIVER_MESSAGE,
    OrderService,
    OrderValidationError,
    validate_order_request,
)
from waterline.services.orders.state_machine import (
    OTHER_DRIVER_MESSAGE,
    OrderAction,
    OrderStateMachine,
    StaleStateError,
    StateTransitionError,
)

FIXED_NOW = datetime(2025, 3, 14, 8, 30, tzinfo=timezone.utc)


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def mock_broker():
    broker = AsyncMock()
    broker.publish = AsyncMock()
    return broker


@pytest.fixture
def service(mock_session, mock_broker, clock):
    svc = OrderService(
        mock_session,
        broker=mock_broker,
        state_machine=OrderStateMachine(clock=clock),
    )
    svc.repository = AsyncMock()
    svc.profiles = AsyncMock()
    return svc


@pytest.fixture
def customer():
    return Principal(uid="customer-1", display_name="Thandi", is_anonymous=True)


def order_form(**overrides) -> OrderCreateRequest:
    fields = {
        "customer_name": "Thandi",
        "customer_phone": "+27 82 555 0101",
        "address": "12 Loop Street",
        "liters": Decimal("1000"),
    }
    fields.update(overrides)
    return OrderCreateRequest(**fields)


# ============================================================================
# Order Request Validation Tests
# ============================================================================


class TestValidateOrderRequest:
    """Completeness checks applied before anything is written."""

    def test_complete_form_passes(self):
        validate_order_request(order_form())

    @pytest.mark.parametrize("field", ["customer_name", "customer_phone", "address"])
    def test_missing_contact_field(self, field):
        with pytest.raises(OrderValidationError) as exc_info:
            validate_order_request(order_form(**{field: "   "}))

        assert str(exc_info.value) == MISSING_CONTACT_MESSAGE

    @pytest.mark.parametrize("liters", [Decimal("0"), Decimal("-500")])
    def test_non_positive_liters(self, liters):
        with pytest.raises(OrderValidationError) as exc_info:
            validate_order_request(order_form(liters=liters))

        assert str(exc_info.value) == INVALID_LITERS_MESSAGE

    def test_later_without_instant(self):
        with pytest.raises(OrderValidationError) as exc_info:
            validate_order_request(order_form(schedule_type=ScheduleType.LATER))

        assert str(exc_info.value) == MISSING_SCHEDULE_MESSAGE

    def test_later_with_instant_passes(self):
        validate_order_request(
            order_form(
                schedule_type=ScheduleType.LATER,
                scheduled_for=FIXED_NOW + timedelta(days=1),
            )
        )


# ============================================================================
# Order Creation Tests
# ============================================================================


class TestCreateOrder:
    async def test_creates_order_for_principal(
        self, service, customer, make_order, mock_broker
    ):
        created = make_order()
        service.repository.create_order.return_value = created

        result = await service.create_order(customer, order_form())

        assert result is created
        kwargs = service.repository.create_order.call_args.kwargs
        assert kwargs["customer_uid"] == "customer-1"
        assert kwargs["liters"] == Decimal("1000")
        assert kwargs["scheduled_for"] is None
        mock_broker.publish.assert_awaited_once_with(
            ChangeEvent(ORDERS, str(created.id))
        )

    async def test_asap_order_drops_scheduled_instant(self, service, customer, make_order):
        service.repository.create_order.return_value = make_order()

        await service.create_order(
            customer, order_form(scheduled_for=FIXED_NOW + timedelta(days=1))
        )

        assert service.repository.create_order.call_args.kwargs["scheduled_for"] is None

    async def test_later_order_keeps_scheduled_instant(
        self, service, customer, make_order
    ):
        when = FIXED_NOW + timedelta(days=1)
        service.repository.create_order.return_value = make_order(
            schedule_type=ScheduleType.LATER, scheduled_for=when
        )

        await service.create_order(
            customer, order_form(schedule_type=ScheduleType.LATER, scheduled_for=when)
        )

        assert service.repository.create_order.call_args.kwargs["scheduled_for"] == when

    async def test_invalid_form_writes_nothing(self, service, customer, mock_broker):
        with pytest.raises(OrderValidationError):
            await service.create_order(customer, order_form(address=""))

        service.repository.create_order.assert_not_awaited()
        mock_broker.publish.assert_not_awaited()

    async def test_notification_failure_does_not_fail_creation(
        self, service, customer, make_order, mock_broker
    ):
        created = make_order()
        service.repository.create_order.return_value = created
        mock_broker.publish.side_effect = BrokerError("redis down")

        result = await service.create_order(customer, order_form())

        assert result is created


# ============================================================================
# Transition Tests
# ============================================================================


class TestOwnerTransitions:
    async def test_confirm_pending_order(self, service, owner, make_order, mock_broker):
        order = make_order(status=OrderStatus.PENDING)
        service.repository.get_order.return_value = order
        service.repository.apply_transition.return_value = True

        result = await service.confirm_order(order.id, owner)

        assert result.status == OrderStatus.CONFIRMED
        assert result.updated_at == FIXED_NOW
        plan = service.repository.apply_transition.call_args.args[0]
        assert plan.action == OrderAction.CONFIRM
        assert plan.expected_status == OrderStatus.PENDING
        mock_broker.publish.assert_awaited_once_with(ChangeEvent(ORDERS, str(order.id)))

    async def test_cancel_confirmed_order(self, service, owner, make_order):
        order = make_order(status=OrderStatus.CONFIRMED)
        service.repository.get_order.return_value = order
        service.repository.apply_transition.return_value = True

        result = await service.cancel_order(order.id, owner)

        assert result.status == OrderStatus.CANCELLED

    async def test_revert_on_pending_order_is_stale(self, service, owner, make_order):
        order = make_order(status=OrderStatus.PENDING)
        service.repository.get_order.return_value = order

        with pytest.raises(StaleStateError) as exc_info:
            await service.revert_to_pending(order.id, owner)

        assert str(exc_info.value) == "This order is no longer confirmed."
        service.repository.apply_transition.assert_not_awaited()

    async def test_lost_race_reports_stale_with_current_status(
        self, service, owner, make_order, mock_broker
    ):
        order = make_order(status=OrderStatus.PENDING)
        cancelled = order.model_copy(update={"status": OrderStatus.CANCELLED})
        service.repository.get_order.side_effect = [order, cancelled]
        service.repository.apply_transition.return_value = False

        with pytest.raises(StaleStateError) as exc_info:
            await service.confirm_order(order.id, owner)

        assert exc_info.value.current_state == OrderStatus.CANCELLED
        assert str(exc_info.value) == "This order is no longer pending."
        mock_broker.publish.assert_not_awaited()

    async def test_lost_race_with_unchanged_status_still_stale(
        self, service, owner, make_order
    ):
        order = make_order(status=OrderStatus.PENDING)
        service.repository.get_order.side_effect = [order, order]
        service.repository.apply_transition.return_value = False

        with pytest.raises(StaleStateError) as exc_info:
            await service.confirm_order(order.id, owner)

        assert exc_info.value.current_state == OrderStatus.PENDING


class TestDriverAssignment:
    async def test_assign_active_driver(self, service, owner, make_order):
        order = make_order(status=OrderStatus.CONFIRMED)
        service.repository.get_order.return_value = order
        service.repository.apply_transition.return_value = True
        service.profiles.get_profile.return_value = RoleProfileRecord(
            id="driver-1", role="DRIVER", is_active=True, name="Sipho"
        )

        result = await service.assign_driver(order.id, "driver-1", owner)

        assert result.assigned_driver_uid == "driver-1"
        assert result.assigned_driver_name == "Sipho"
        assert result.status == OrderStatus.CONFIRMED

    async def test_assign_same_driver_again(self, service, owner, make_order):
        order = make_order(
            status=OrderStatus.PENDING,
            assigned_driver_uid="driver-1",
            assigned_driver_name="Sipho",
        )
        service.repository.get_order.return_value = order
        service.repository.apply_transition.return_value = True
        service.profiles.get_profile.return_value = RoleProfileRecord(
            id="driver-1", role="DRIVER", is_active=True, name="Sipho"
        )

        result = await service.assign_driver(order.id, "driver-1", owner)

        assert result.model_dump(exclude={"updated_at"}) == order.model_dump(
            exclude={"updated_at"}
        )
        assert result.updated_at == FIXED_NOW

    @pytest.mark.parametrize(
        "profile",
        [
            None,
            RoleProfileRecord(id="driver-1", role="DRIVER", is_active=False),
            RoleProfileRecord(id="driver-1", role="OWNER", is_active=True),
        ],
    )
    async def test_assign_requires_active_driver(self, service, owner, profile):
        service.profiles.get_profile.return_value = profile

        with pytest.raises(OrderValidationError) as exc_info:
            await service.assign_driver(uuid.uuid4(), "driver-1", owner)

        assert str(exc_info.value) == UNKNOWN_DRIVER_MESSAGE
        service.repository.get_order.assert_not_awaited()


class TestDriverTransitions:
    async def test_claim_unassigned_order(self, service, driver, make_order):
        order = make_order(status=OrderStatus.CONFIRMED)
        service.repository.get_order.return_value = order
        service.repository.apply_transition.return_value = True

        result = await service.start_delivery(order.id, driver)

        assert result.status == OrderStatus.OUT_FOR_DELIVERY
        assert result.assigned_driver_uid == "driver-1"
        assert result.assigned_driver_name == "Sipho"
        plan = service.repository.apply_transition.call_args.args[0]
        assert plan.require_unassigned is True

    async def test_claim_lost_to_another_driver(self, service, driver, make_order):
        order = make_order(status=OrderStatus.CONFIRMED)
        claimed = order.model_copy(
            update={
                "status": OrderStatus.OUT_FOR_DELIVERY,
                "assigned_driver_uid": "driver-2",
                "assigned_driver_name": "Lerato",
            }
        )
        service.repository.get_order.side_effect = [order, claimed]
        service.repository.apply_transition.return_value = False

        with pytest.raises(StaleStateError):
            await service.start_delivery(order.id, driver)

    async def test_claim_lost_while_status_still_confirmed(
        self, service, driver, make_order
    ):
        order = make_order(status=OrderStatus.CONFIRMED)
        claimed = order.model_copy(
            update={"assigned_driver_uid": "driver-2", "assigned_driver_name": "Lerato"}
        )
        service.repository.get_order.side_effect = [order, claimed]
        service.repository.apply_transition.return_value = False

        with pytest.raises(StaleStateError) as exc_info:
            await service.start_delivery(order.id, driver)

        assert str(exc_info.value) == OTHER_DRIVER_MESSAGE

    async def test_start_on_cancelled_order_writes_nothing(
        self, service, driver, make_order, mock_broker
    ):
        order = make_order(status=OrderStatus.CANCELLED)
        service.repository.get_order.return_value = order

        with pytest.raises(StaleStateError):
            await service.start_delivery(order.id, driver)

        service.repository.apply_transition.assert_not_awaited()
        mock_broker.publish.assert_not_awaited()

    async def test_complete_own_delivery(self, service, driver, make_order):
        order = make_order(
            status=OrderStatus.OUT_FOR_DELIVERY,
            assigned_driver_uid="driver-1",
            assigned_driver_name="Sipho",
        )
        service.repository.get_order.return_value = order
        service.repository.apply_transition.return_value = True

        result = await service.complete_delivery(order.id, driver)

        assert result.status == OrderStatus.DELIVERED

    async def test_driver_cannot_confirm(self, service, driver, make_order):
        order = make_order()
        service.repository.get_order.return_value = order

        with pytest.raises(StateTransitionError) as exc_info:
            await service.confirm_order(order.id, driver)

        assert not isinstance(exc_info.value, StaleStateError)
        service.repository.apply_transition.assert_not_awaited()


# ============================================================================
# Read Tests
# ============================================================================


class TestReads:
    async def test_list_driver_orders_scoped_to_actor(self, service, driver):
        service.repository.list_by_driver_status.return_value = []

        await service.list_driver_orders(driver, OrderStatus.OUT_FOR_DELIVERY)

        service.repository.list_by_driver_status.assert_awaited_once_with(
            "driver-1", OrderStatus.OUT_FOR_DELIVERY
        )

    async def test_list_customer_orders_scoped_to_principal(self, service, customer):
        service.repository.list_by_customer.return_value = []

        await service.list_customer_orders(customer)

        service.repository.list_by_customer.assert_awaited_once_with("customer-1")

    async def test_service_without_broker_skips_notification(
        self, mock_session, owner, make_order
    ):
        svc = OrderService(mock_session)
        svc.repository = AsyncMock()
        order = make_order()
        svc.repository.get_order.return_value = order
        svc.repository.apply_transition.return_value = True

        result = await svc.confirm_order(order.id, owner)

        assert result.status == OrderStatus.CONFIRMED


# ============================================================================
# Create Then Read Tests
# ============================================================================


class TestCreateThenRead:
    """Orders go through the real repository over the mock session."""

    async def test_scheduled_order_reads_back_unchanged(
        self, mock_session, mock_broker, customer
    ):
        service = OrderService(mock_session, broker=mock_broker)
        when = datetime(2025, 3, 15, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        stored = []
        mock_session.add.side_effect = stored.append

        created = await service.create_order(
            customer, order_form(schedule_type=ScheduleType.LATER, scheduled_for=when)
        )

        result = MagicMock()
        result.scalars.return_value.all.return_value = stored
        mock_session.execute.return_value = result
        [read] = await service.list_customer_orders(customer)

        assert read.id == created.id
        assert read.schedule_type == ScheduleType.LATER
        assert read.scheduled_for == when
        assert read.scheduled_for.utcoffset() == timedelta(hours=2)
        assert read.schedule_label == created.schedule_label

    async def test_asap_order_reads_back_without_instant(
        self, mock_session, mock_broker, customer
    ):
        service = OrderService(mock_session, broker=mock_broker)
        stored = []
        mock_session.add.side_effect = stored.append

        await service.create_order(
            customer, order_form(scheduled_for=FIXED_NOW + timedelta(days=1))
        )

        result = MagicMock()
        result.scalars.return_value.all.return_value = stored
        mock_session.execute.return_value = result
        [read] = await service.list_customer_orders(customer)

        assert read.schedule_type == ScheduleType.ASAP
        assert read.scheduled_for is None
