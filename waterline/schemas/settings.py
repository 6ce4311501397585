"""
Business settings schemas.

``BusinessSettingsUpdate`` is a partial update: only fields present in the
request are written, everything else keeps its stored value.
"""

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

_NON_DIGITS = re.compile(r"\D+")


def digits_only(value: Optional[str]) -> str:
    """Strip everything but digits, e.g. for a WhatsApp link."""
    if not value:
        return ""
    return _NON_DIGITS.sub("", value)


class BusinessSettingsRecord(BaseModel):
    """Typed business settings entity."""

    model_config = ConfigDict(from_attributes=True)

    tank_capacity_liters: Decimal = Decimal("0")
    price_per_1000_liters: Decimal = Decimal("0")
    delivery_fee: Decimal = Decimal("0")
    daily_delivery_goal_orders: int = 0
    business_name: str = ""
    business_phone: str = ""
    business_email: str = ""
    business_address: str = ""
    business_whatsapp: str = ""
    business_hours: str = ""
    business_note: str = ""
    updated_at: Optional[datetime] = None


class BusinessSettingsUpdate(BaseModel):
    """Owner's settings form; omitted fields are left untouched.

    Blank or non-numeric amounts are read as 0, like the settings form does.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    tank_capacity_liters: Optional[Decimal] = None
    price_per_1000_liters: Optional[Decimal] = Field(None, ge=0)
    delivery_fee: Optional[Decimal] = Field(None, ge=0)
    daily_delivery_goal_orders: Optional[int] = Field(None, ge=0)
    business_name: Optional[str] = Field(None, max_length=120)
    business_phone: Optional[str] = Field(None, max_length=40)
    business_email: Optional[str] = Field(None, max_length=255)
    business_address: Optional[str] = Field(None, max_length=500)
    business_whatsapp: Optional[str] = Field(None, max_length=40)
    business_hours: Optional[str] = Field(None, max_length=255)
    business_note: Optional[str] = None

    @field_validator(
        "tank_capacity_liters",
        "price_per_1000_liters",
        "delivery_fee",
        mode="before",
    )
    @classmethod
    def coerce_amount(cls, v):
        if isinstance(v, str):
            try:
                return Decimal(v.strip() or "0")
            except InvalidOperation:
                return Decimal("0")
        return v

    @field_validator("daily_delivery_goal_orders", mode="before")
    @classmethod
    def coerce_goal(cls, v):
        if isinstance(v, str):
            try:
                amount = Decimal(v.strip() or "0")
            except InvalidOperation:
                return 0
            return int(amount) if amount.is_finite() else 0
        return v


class ContactCard(BaseModel):
    """Public business card shown to customers."""

    business_name: str = ""
    business_phone: str = ""
    business_email: str = ""
    business_address: str = ""
    business_whatsapp: str = ""
    business_hours: str = ""
    business_note: str = ""

    @computed_field
    @property
    def whatsapp_digits(self) -> str:
        return digits_only(self.business_whatsapp or self.business_phone)

    @computed_field
    @property
    def whatsapp_link(self) -> Optional[str]:
        digits = self.whatsapp_digits
        return f"https://wa.me/{digits}" if digits else None
