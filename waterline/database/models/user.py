"""
Role profile model.

One row per identity provider principal that holds a staff role. Customers
have no profile; they order under an anonymous or ordinary identity.
"""

import enum

from sqlalchemy import Boolean, Enum as SQLEnum, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from waterline.database.base import Base, TimestampMixin

IX_USERS_ROLE_IS_ACTIVE = "ix_users_role_is_active"


class UserRole(str, enum.Enum):
    """Staff role enumeration for role-based access control."""

    OWNER = "OWNER"
    DRIVER = "DRIVER"

    @property
    def sign_in_path(self) -> str:
        """Where a denied principal is sent to sign in again."""
        return f"/auth/{self.value.lower()}"


class RoleProfile(TimestampMixin, Base):
    """
    Role profile keyed by identity provider principal id.

    Attributes:
        id: Identity provider uid
        role: Stored role value; unrecognised values resolve to no role
        is_active: Inactive profiles resolve to no role
        name: Display name, cached on orders a driver is assigned to
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(128),
        primary_key=True,
        comment="Identity provider uid",
    )

    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="OWNER or DRIVER",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default="true",
    )

    name: Mapped[str] = mapped_column(
        String(120),
        nullable=False,
        default="",
        server_default="",
    )

    __table_args__ = (
        Index(IX_USERS_ROLE_IS_ACTIVE, "role", "is_active"),
        {"comment": "Staff role profiles"},
    )
