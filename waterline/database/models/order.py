"""
Order model for water delivery requests.

An order is created by a customer in PENDING with no assigned driver and is
afterwards mutated only through lifecycle transitions. Orders are never
deleted; delivered and cancelled orders remain as history.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    Index,
    Numeric,
    String,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from waterline.database.base import Base, TimestampMixin
from waterline.services.orders.enums import (
    OrderStatus,
    PaymentMethod,
    ScheduleType,
    WaterType,
)

IX_ORDERS_STATUS_CREATED_AT = "ix_orders_status_created_at"
IX_ORDERS_CREATED_AT = "ix_orders_created_at"
IX_ORDERS_CUSTOMER_CREATED_AT = "ix_orders_customer_uid_created_at"
IX_ORDERS_DRIVER_STATUS_CREATED_AT = "ix_orders_driver_status_created_at"
IX_ORDERS_UNASSIGNED_CONFIRMED = "ix_orders_unassigned_confirmed"


class Order(TimestampMixin, Base):
    """
    Water delivery order.

    Attributes:
        id: Generated order identifier, immutable
        customer_uid: Principal id of the ordering customer
        customer_name: Customer display name
        customer_phone: Customer contact number
        address: Delivery address
        landmark: Optional landmark near the address
        water_type: Refill or bottled water
        liters: Ordered quantity in liters (positive)
        payment_method: Recorded payment method, never processed
        schedule_type: ASAP or at a chosen instant
        scheduled_for: Target delivery instant, required for ``later``
        status: Lifecycle status
        assigned_driver_uid: Principal id of the assigned driver
        assigned_driver_name: Cached display name of the assigned driver
        created_at: Creation instant
        updated_at: Last transition instant
    """

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        comment="Unique order identifier",
    )

    customer_uid: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Identity provider uid of the customer",
    )

    customer_name: Mapped[str] = mapped_column(String(120), nullable=False)

    customer_phone: Mapped[str] = mapped_column(String(40), nullable=False)

    address: Mapped[str] = mapped_column(String(500), nullable=False)

    landmark: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="",
        server_default="",
    )

    water_type: Mapped[WaterType] = mapped_column(
        SQLEnum(WaterType, name="water_type", native_enum=False,
                values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=WaterType.REFILL,
    )

    liters: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        comment="Ordered quantity in liters",
    )

    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(PaymentMethod, name="payment_method", native_enum=False,
                values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=PaymentMethod.CASH,
    )

    schedule_type: Mapped[ScheduleType] = mapped_column(
        SQLEnum(ScheduleType, name="schedule_type", native_enum=False,
                values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ScheduleType.ASAP,
    )

    scheduled_for: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Target delivery instant for scheduled orders",
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name="order_status", native_enum=False,
                values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=OrderStatus.PENDING,
    )

    assigned_driver_uid: Mapped[Optional[str]] = mapped_column(
        String(128),
        nullable=True,
    )

    assigned_driver_name: Mapped[Optional[str]] = mapped_column(
        String(120),
        nullable=True,
    )

    __table_args__ = (
        Index(IX_ORDERS_STATUS_CREATED_AT, "status", text("created_at DESC")),
        Index(IX_ORDERS_CREATED_AT, text("created_at DESC")),
        Index(IX_ORDERS_CUSTOMER_CREATED_AT, "customer_uid", text("created_at DESC")),
        Index(
            IX_ORDERS_DRIVER_STATUS_CREATED_AT,
            "assigned_driver_uid",
            "status",
            text("created_at DESC"),
        ),
        Index(
            IX_ORDERS_UNASSIGNED_CONFIRMED,
            text("created_at DESC"),
            postgresql_where=text(
                "assigned_driver_uid IS NULL AND status = 'CONFIRMED'"
            ),
        ),
        CheckConstraint("liters > 0", name="ck_orders_liters_positive"),
        CheckConstraint(
            "schedule_type <> 'later' OR scheduled_for IS NOT NULL",
            name="ck_orders_scheduled_for_required",
        ),
        CheckConstraint(
            "(assigned_driver_uid IS NULL) = (assigned_driver_name IS NULL)",
            name="ck_orders_driver_pair",
        ),
        CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'OUT_FOR_DELIVERY', "
            "'DELIVERED', 'CANCELLED')",
            name="ck_orders_status_valid",
        ),
        {"comment": "Water delivery orders"},
    )
