"""
Order service orchestrating the order lifecycle.

This module implements OrderService: customer order placement, every owner
and driver transition, and the list reads behind the order screens. Each
transition re-reads the order, lets the state machine plan it against that
fresh state and applies the plan as one conditional write. A write that
matches no row means another actor moved the order first, which is reported
as a recoverable StaleStateError. Successful writes are announced on the
change feed so live queries refresh.
"""

import uuid
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from waterline.core.identity import Principal
from waterline.core.logging import get_logger
from waterline.database.models.user import UserRole
from waterline.database.queries import QueryCapabilities
from waterline.realtime.broker import ORDERS, BrokerError, ChangeBroker, ChangeEvent
from waterline.schemas.auth import RoleProfileRecord
from waterline.schemas.orders import OrderCreateRequest, OrderRecord
from waterline.services.auth.repository import RoleProfileRepository
from waterline.services.auth.role_resolver import role_from_profile
from waterline.services.orders.enums import OrderStatus, ScheduleType
from waterline.services.orders.repository import OrderRepository
from waterline.services.orders.state_machine import (
    STALE_MESSAGES,
    Actor,
    Assignee,
    OrderAction,
    OrderStateMachine,
    StaleStateError,
    get_order_state_machine,
)

logger = get_logger(__name__)

MISSING_CONTACT_MESSAGE = "Please complete your name, phone, and address."
INVALID_LITERS_MESSAGE = "Please choose a valid liters amount."
MISSING_SCHEDULE_MESSAGE = "Please select a delivery date and time."
UNKNOWN_DRIVER_MESSAGE = "Please choose an active driver."


class OrderServiceError(Exception):
    """Base exception for order service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderValidationError(OrderServiceError):
    """Raised when an order request is incomplete or invalid."""


def validate_order_request(request: OrderCreateRequest) -> None:
    """
    Check an order form before anything is written.

    Raises:
        OrderValidationError: With the message shown next to the form
    """
    if not (request.customer_name and request.customer_phone and request.address):
        raise OrderValidationError(MISSING_CONTACT_MESSAGE)
    if request.liters is None or request.liters <= 0:
        raise OrderValidationError(INVALID_LITERS_MESSAGE, liters=str(request.liters))
    if request.schedule_type == ScheduleType.LATER and request.scheduled_for is None:
        raise OrderValidationError(MISSING_SCHEDULE_MESSAGE)


class OrderService:
    """
    Order service for the water delivery lifecycle.

    Attributes:
        repository: Order repository for data access
        profiles: Role profile repository, used for driver lookups
        state_machine: Transition authority shared by every actor surface
        broker: Change feed notified after each successful write
    """

    def __init__(
        self,
        session: AsyncSession,
        broker: Optional[ChangeBroker] = None,
        capabilities: Optional[QueryCapabilities] = None,
        state_machine: Optional[OrderStateMachine] = None,
    ):
        self.repository = OrderRepository(session, capabilities)
        self.profiles = RoleProfileRepository(session, capabilities)
        self.state_machine = state_machine or get_order_state_machine()
        self.broker = broker

    async def create_order(
        self, principal: Principal, request: OrderCreateRequest
    ) -> OrderRecord:
        """
        Place a customer order in PENDING.

        Args:
            principal: Customer placing the order, possibly anonymous
            request: Order form

        Returns:
            The created order

        Raises:
            OrderValidationError: If the form is incomplete
        """
        validate_order_request(request)

        scheduled_for = (
            request.scheduled_for
            if request.schedule_type == ScheduleType.LATER
            else None
        )
        order = await self.repository.create_order(
            customer_uid=principal.uid,
            customer_name=request.customer_name,
            customer_phone=request.customer_phone,
            address=request.address,
            landmark=request.landmark,
            water_type=request.water_type,
            liters=request.liters,
            payment_method=request.payment_method,
            schedule_type=request.schedule_type,
            scheduled_for=scheduled_for,
        )
        await self._announce(order.id)
        return order

    # Owner transitions

    async def confirm_order(self, order_id: uuid.UUID, actor: Actor) -> OrderRecord:
        return await self._transition(order_id, actor, OrderAction.CONFIRM)

    async def cancel_order(self, order_id: uuid.UUID, actor: Actor) -> OrderRecord:
        return await self._transition(order_id, actor, OrderAction.CANCEL)

    async def revert_to_pending(self, order_id: uuid.UUID, actor: Actor) -> OrderRecord:
        return await self._transition(order_id, actor, OrderAction.REVERT_TO_PENDING)

    async def assign_driver(
        self, order_id: uuid.UUID, driver_uid: str, actor: Actor
    ) -> OrderRecord:
        """
        Pre-assign an active driver to a pending or confirmed order.

        The driver's name is copied onto the order. Assigning the driver the
        order already has only refreshes ``updated_at``.

        Raises:
            OrderValidationError: If ``driver_uid`` is not an active driver
            StaleStateError: If the order is no longer assignable
        """
        profile = await self.profiles.get_profile(driver_uid)
        if role_from_profile(profile) != UserRole.DRIVER:
            raise OrderValidationError(UNKNOWN_DRIVER_MESSAGE, driver_uid=driver_uid)

        assignee = Assignee(uid=driver_uid, name=profile.name or None)
        return await self._transition(
            order_id, actor, OrderAction.ASSIGN_DRIVER, assignee=assignee
        )

    # Driver transitions

    async def start_delivery(self, order_id: uuid.UUID, actor: Actor) -> OrderRecord:
        """Move a confirmed order out for delivery, claiming it if unassigned."""
        return await self._transition(order_id, actor, OrderAction.START_DELIVERY)

    async def complete_delivery(self, order_id: uuid.UUID, actor: Actor) -> OrderRecord:
        return await self._transition(order_id, actor, OrderAction.COMPLETE_DELIVERY)

    async def _transition(
        self,
        order_id: uuid.UUID,
        actor: Actor,
        action: OrderAction,
        assignee: Optional[Assignee] = None,
    ) -> OrderRecord:
        order = await self.repository.get_order(order_id)
        plan = self.state_machine.plan_transition(order, actor, action, assignee)

        if not await self.repository.apply_transition(plan):
            current = await self.repository.get_order(order_id)
            logger.info(
                "Transition lost a race",
                order_id=str(order_id),
                action=action.value,
                expected_status=plan.expected_status.value,
                current_status=current.status.value,
            )
            self.state_machine.validate_transition(current, actor, action)
            # the order went away and came back to an allowed state in between
            raise StaleStateError(
                STALE_MESSAGES[action],
                current_state=current.status,
                action=action,
                order_id=str(order_id),
            )

        logger.info(
            "Order transitioned",
            order_id=str(order_id),
            action=action.value,
            principal_id=actor.uid,
            from_status=plan.expected_status.value,
            to_status=plan.target_status.value,
        )
        await self._announce(order_id)
        return order.model_copy(update=plan.changes)

    # Reads

    async def list_by_status(self, status: OrderStatus) -> list[OrderRecord]:
        return await self.repository.list_by_status(status)

    async def list_customer_orders(self, principal: Principal) -> list[OrderRecord]:
        return await self.repository.list_by_customer(principal.uid)

    async def list_driver_orders(
        self, actor: Actor, status: OrderStatus
    ) -> list[OrderRecord]:
        return await self.repository.list_by_driver_status(actor.uid, status)

    async def list_unassigned(self) -> list[OrderRecord]:
        return await self.repository.list_unassigned_confirmed()

    async def list_active_drivers(self) -> list[RoleProfileRecord]:
        return await self.profiles.list_active(UserRole.DRIVER)

    async def _announce(self, order_id: uuid.UUID) -> None:
        if self.broker is None:
            return
        try:
            await self.broker.publish(ChangeEvent(ORDERS, str(order_id)))
        except BrokerError as e:
            # the write is committed; subscribers catch up on their next change
            logger.warning(
                "Order change notification failed",
                order_id=str(order_id),
                error=str(e),
            )
