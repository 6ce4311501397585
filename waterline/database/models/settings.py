"""
Business settings model.

A singleton row (id ``app``) holding pricing, goals and the public contact
card. Only the owner writes it; every role reads it.
"""

from decimal import Decimal

from sqlalchemy import Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from waterline.database.base import Base, TimestampMixin

SETTINGS_ROW_ID = "app"


class BusinessSettings(TimestampMixin, Base):
    """Business-wide configuration edited by the owner."""

    __tablename__ = "settings"

    id: Mapped[str] = mapped_column(
        String(32),
        primary_key=True,
        default=SETTINGS_ROW_ID,
    )

    tank_capacity_liters: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0"), server_default="0"
    )
    price_per_1000_liters: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0"), server_default="0"
    )
    delivery_fee: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0"), server_default="0"
    )
    daily_delivery_goal_orders: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    business_name: Mapped[str] = mapped_column(String(120), nullable=False, default="", server_default="")
    business_phone: Mapped[str] = mapped_column(String(40), nullable=False, default="", server_default="")
    business_email: Mapped[str] = mapped_column(String(255), nullable=False, default="", server_default="")
    business_address: Mapped[str] = mapped_column(String(500), nullable=False, default="", server_default="")
    business_whatsapp: Mapped[str] = mapped_column(String(40), nullable=False, default="", server_default="")
    business_hours: Mapped[str] = mapped_column(String(255), nullable=False, default="", server_default="")
    business_note: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
