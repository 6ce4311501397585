"""Order status and order attribute enums.

This module defines the order lifecycle status and the descriptive enums
recorded on an order (water type, payment method and schedule kind).
"""

from enum import Enum


class OrderStatus(str, Enum):
    """Order lifecycle status.

    Which actor may move an order between statuses is decided by
    ``TRANSITIONS`` in the state machine module.
    """

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

    @property
    def display_name(self) -> str:
        """Human-readable label, e.g. ``OUT FOR DELIVERY``."""
        return self.value.replace("_", " ")


class WaterType(str, Enum):
    """Kind of water delivered."""

    REFILL = "refill"
    BOTTLES = "bottles"


class PaymentMethod(str, Enum):
    """Payment method recorded on the order. Never settled in-app."""

    CASH = "cash"
    EFT = "eft"


class ScheduleType(str, Enum):
    """Whether the customer wants delivery now or at a chosen instant."""

    ASAP = "asap"
    LATER = "later"
