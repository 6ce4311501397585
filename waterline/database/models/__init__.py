"""
Database models package initialization.

Models are imported here so they are registered with the Base metadata for
alembic and relationship resolution.
"""

from waterline.database.base import Base, TimestampMixin
from waterline.database.models.order import Order
from waterline.database.models.settings import BusinessSettings
from waterline.database.models.user import RoleProfile, UserRole

__all__ = [
    "Base",
    "TimestampMixin",
    "Order",
    "BusinessSettings",
    "RoleProfile",
    "UserRole",
]
