"""
Order Pydantic schemas for request validation and boundary parsing.

``OrderCreateRequest`` validates the shape of a customer's order form.
``OrderRecord`` is the typed Order entity every other layer works with: rows
read from the store and rows pushed through live snapshots are parsed into it
at the boundary, and records violating an order invariant are rejected there.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import (
    AwareDatetime,
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    model_validator,
)

from waterline.core.config import get_settings
from waterline.services.orders.enums import (
    OrderStatus,
    PaymentMethod,
    ScheduleType,
    WaterType,
)


class OrderCreateRequest(BaseModel):
    """Customer order form.

    Completeness rules (name, phone, address, liters, schedule instant) are
    checked by the order service so the customer sees the same messages as
    on the order form.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    customer_name: str = Field("", max_length=120)
    customer_phone: str = Field("", max_length=40)
    address: str = Field("", max_length=500)
    landmark: str = Field("", max_length=255)
    water_type: WaterType = WaterType.REFILL
    liters: Decimal = Field(Decimal("1000"), max_digits=10, decimal_places=2)
    payment_method: PaymentMethod = PaymentMethod.CASH
    schedule_type: ScheduleType = ScheduleType.ASAP
    scheduled_for: Optional[AwareDatetime] = Field(
        None,
        description="Target delivery instant (timezone-aware), required for 'later'",
    )


class AssignDriverRequest(BaseModel):
    """Owner pre-assignment of a driver to an order."""

    driver_uid: str = Field(..., min_length=1, max_length=128)


class OrderRecord(BaseModel):
    """Typed Order entity parsed at the store boundary."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_uid: str
    customer_name: str
    customer_phone: str
    address: str
    landmark: str = ""
    water_type: WaterType
    liters: Decimal
    payment_method: PaymentMethod
    schedule_type: ScheduleType
    scheduled_for: Optional[datetime] = None
    status: OrderStatus
    assigned_driver_uid: Optional[str] = None
    assigned_driver_name: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def check_invariants(self) -> "OrderRecord":
        """Reject records that break an order invariant."""
        if self.liters <= 0:
            raise ValueError("liters must be positive")
        if self.schedule_type == ScheduleType.LATER and self.scheduled_for is None:
            raise ValueError("scheduled orders require scheduled_for")
        if (self.assigned_driver_uid is None) != (self.assigned_driver_name is None):
            raise ValueError(
                "assigned_driver_uid and assigned_driver_name must be set together"
            )
        return self

    @computed_field
    @property
    def status_label(self) -> str:
        return self.status.display_name

    @computed_field
    @property
    def schedule_label(self) -> str:
        if self.schedule_type == ScheduleType.LATER and self.scheduled_for is not None:
            local = self.scheduled_for.astimezone(get_settings().business_tz)
            return f"Scheduled for {local.strftime('%d %b %Y, %H:%M')}"
        return "ASAP delivery"


class OrderListResponse(BaseModel):
    """Ordered list of orders, newest first."""

    items: list[OrderRecord]
    total: int


class DriverSummary(BaseModel):
    """Active driver available for assignment."""

    model_config = ConfigDict(from_attributes=True)

    uid: str = Field(validation_alias="id")
    name: str
