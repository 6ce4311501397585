"""
Role profile data access.

Reads from the ``users`` collection: single profile lookup by principal id
and the roster of active drivers the owner assigns orders to.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from waterline.core.logging import get_logger
from waterline.database.models.user import RoleProfile, UserRole
from waterline.database.queries import (
    QueryCapabilities,
    QueryName,
    StoreError,
    StoreUnavailableError,
    translate_store_error,
)
from waterline.schemas.auth import RoleProfileRecord

logger = get_logger(__name__)


class RoleProfileRepository:
    """Repository for role profiles keyed by principal id."""

    def __init__(
        self,
        session: AsyncSession,
        capabilities: Optional[QueryCapabilities] = None,
    ):
        self.session = session
        self.capabilities = capabilities or QueryCapabilities()

    async def get_profile(self, principal_id: str) -> Optional[RoleProfileRecord]:
        """Fetch the profile for ``principal_id``, or None if absent."""
        try:
            row = await self.session.get(
                RoleProfile, principal_id, populate_existing=True
            )
        except SQLAlchemyError as e:
            translated = translate_store_error(e, "profile_read")
            if isinstance(translated, StoreUnavailableError):
                raise translated from e
            raise StoreError(
                "Role profile lookup failed", principal_id=principal_id, error=str(e)
            ) from e
        if row is None:
            return None
        return RoleProfileRecord.model_validate(row)

    async def list_active(self, role: UserRole) -> list[RoleProfileRecord]:
        """Active profiles holding ``role``, ordered by name."""
        self.capabilities.require(QueryName.USERS_BY_ROLE_ACTIVE)
        stmt = (
            select(RoleProfile)
            .where(RoleProfile.role == role.value, RoleProfile.is_active.is_(True))
            .order_by(RoleProfile.name)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            translated = translate_store_error(e, "profile_query")
            if isinstance(translated, StoreUnavailableError):
                raise translated from e
            raise StoreError(
                "Role profile query failed", role=role.value, error=str(e)
            ) from e
        return [RoleProfileRecord.model_validate(row) for row in result.scalars().all()]
