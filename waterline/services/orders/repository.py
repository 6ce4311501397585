"""
Order data access repository.

This module implements OrderRepository: order creation, fresh single-order
reads, the conditional update that applies a TransitionPlan, and the
compound list queries behind every order screen. Rows are parsed into
OrderRecord at this boundary; rows that break an order invariant are
skipped with a warning instead of being passed inward.
"""

import uuid
from datetime import datetime
from typing import Any, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy import Select, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from waterline.core.logging import get_logger
from waterline.database.base import utcnow
from waterline.database.models.order import Order
from waterline.database.queries import (
    QueryCapabilities,
    QueryName,
    StoreUnavailableError,
    translate_store_error,
)
from waterline.schemas.orders import OrderRecord
from waterline.services.orders.enums import OrderStatus
from waterline.services.orders.state_machine import TransitionPlan

logger = get_logger(__name__)

DEFAULT_LIST_LIMIT = 200


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderNotFoundError(OrderRepositoryError):
    """Raised when order is not found."""


class OrderCreationError(OrderRepositoryError):
    """Raised when order creation fails."""


class OrderUpdateError(OrderRepositoryError):
    """Raised when an order update fails."""


def parse_order(row: Any) -> Optional[OrderRecord]:
    """Parse a stored row into an OrderRecord, or None if it is malformed."""
    try:
        return OrderRecord.model_validate(row)
    except ValidationError as e:
        logger.warning(
            "Skipping malformed order row",
            order_id=str(getattr(row, "id", None)),
            errors=e.errors(include_url=False, include_context=False),
        )
        return None


def parse_orders(rows: Sequence[Any]) -> list[OrderRecord]:
    """Parse rows, dropping malformed ones."""
    records = []
    for row in rows:
        record = parse_order(row)
        if record is not None:
            records.append(record)
    return records


class OrderRepository:
    """
    Repository for order data access operations.

    Every write commits immediately so change notifications published after
    it are observed by subscribers re-running their queries.
    """

    def __init__(
        self,
        session: AsyncSession,
        capabilities: Optional[QueryCapabilities] = None,
    ):
        self.session = session
        self.capabilities = capabilities or QueryCapabilities()

    def _store_error(
        self, error: SQLAlchemyError, operation: str, error_cls: type, **context: Any
    ) -> Exception:
        translated = translate_store_error(error, operation)
        if isinstance(translated, StoreUnavailableError):
            return translated
        return error_cls(
            f"Order {operation} failed due to database error",
            error=str(error),
            **context,
        )

    async def create_order(self, **fields: Any) -> OrderRecord:
        """
        Insert a new order in PENDING with no assigned driver.

        Args:
            **fields: Descriptive order fields (customer, address, liters, ...)

        Returns:
            The created order

        Raises:
            OrderCreationError: If the insert fails
            StoreUnavailableError: If the store is unreachable
        """
        now = utcnow()
        order = Order(
            id=uuid.uuid4(),
            status=OrderStatus.PENDING,
            assigned_driver_uid=None,
            assigned_driver_name=None,
            created_at=now,
            updated_at=now,
            **fields,
        )

        try:
            self.session.add(order)
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            logger.error("Order creation failed - integrity error", error=str(e))
            raise OrderCreationError(
                "Order creation failed due to data integrity violation",
                error=str(e),
            ) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Order creation failed - database error", error=str(e))
            raise self._store_error(e, "creation", OrderCreationError) from e

        logger.info(
            "Order created",
            order_id=str(order.id),
            customer_uid=order.customer_uid,
        )
        return OrderRecord.model_validate(order)

    async def get_order(self, order_id: uuid.UUID) -> OrderRecord:
        """
        Read the current state of one order, bypassing the identity map.

        Raises:
            OrderNotFoundError: If no such order exists
        """
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise self._store_error(
                e, "read", OrderRepositoryError, order_id=str(order_id)
            ) from e

        row = result.scalar_one_or_none()
        if row is None:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))
        return OrderRecord.model_validate(row)

    async def apply_transition(self, plan: TransitionPlan) -> bool:
        """
        Apply a transition plan as one conditional update.

        The update only matches while the order still has the plan's expected
        status (and, for claims, no driver; for assigned drivers, the same
        driver), so a concurrent transition by another actor makes it a no-op.

        Returns:
            True if the order was updated, False if its state changed underfoot
        """
        conditions = [
            Order.id == plan.order_id,
            Order.status == plan.expected_status,
        ]
        if plan.require_unassigned:
            conditions.append(Order.assigned_driver_uid.is_(None))
        if plan.require_driver_uid is not None:
            conditions.append(Order.assigned_driver_uid == plan.require_driver_uid)

        stmt = (
            update(Order)
            .where(*conditions)
            .values(**plan.changes)
            .execution_options(synchronize_session=False)
        )

        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Order transition write failed",
                order_id=str(plan.order_id),
                action=plan.action.value,
                error=str(e),
            )
            raise self._store_error(
                e, "update", OrderUpdateError, order_id=str(plan.order_id)
            ) from e

        applied = result.rowcount == 1
        logger.info(
            "Order transition write",
            order_id=str(plan.order_id),
            action=plan.action.value,
            expected_status=plan.expected_status.value,
            applied=applied,
        )
        return applied

    async def _list(
        self, query: QueryName, stmt: Select, limit: Optional[int]
    ) -> list[OrderRecord]:
        self.capabilities.require(query)
        stmt = stmt.order_by(Order.created_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise self._store_error(
                e, "query", OrderRepositoryError, query=query.value
            ) from e
        return parse_orders(result.scalars().all())

    async def list_by_status(
        self, status: OrderStatus, limit: int = DEFAULT_LIST_LIMIT
    ) -> list[OrderRecord]:
        """Orders in one status, newest first."""
        return await self._list(
            QueryName.ORDERS_BY_STATUS,
            select(Order).where(Order.status == status),
            limit,
        )

    async def list_created_between(
        self, start: datetime, end: datetime
    ) -> list[OrderRecord]:
        """All orders created in ``[start, end)``, newest first.

        Every matching order is returned, with no row limit.
        """
        return await self._list(
            QueryName.ORDERS_BY_CREATED_RANGE,
            select(Order).where(Order.created_at >= start, Order.created_at < end),
            None,
        )

    async def list_by_customer(
        self, customer_uid: str, limit: int = DEFAULT_LIST_LIMIT
    ) -> list[OrderRecord]:
        """A customer's orders, newest first."""
        return await self._list(
            QueryName.ORDERS_BY_CUSTOMER,
            select(Order).where(Order.customer_uid == customer_uid),
            limit,
        )

    async def list_by_driver_status(
        self, driver_uid: str, status: OrderStatus, limit: int = DEFAULT_LIST_LIMIT
    ) -> list[OrderRecord]:
        """A driver's assigned orders in one status, newest first."""
        return await self._list(
            QueryName.ORDERS_BY_DRIVER_STATUS,
            select(Order).where(
                Order.assigned_driver_uid == driver_uid,
                Order.status == status,
            ),
            limit,
        )

    async def list_unassigned_confirmed(
        self, limit: int = DEFAULT_LIST_LIMIT
    ) -> list[OrderRecord]:
        """Confirmed orders nobody has claimed yet, newest first."""
        return await self._list(
            QueryName.ORDERS_UNASSIGNED_CONFIRMED,
            select(Order).where(
                Order.assigned_driver_uid.is_(None),
                Order.status == OrderStatus.CONFIRMED,
            ),
            limit,
        )
