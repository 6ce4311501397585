"""
Role resolution for authenticated principals.

The identity provider only proves who a principal is. Whether that
principal is the owner or a driver is looked up in its role profile on
every guarded access; a missing, inactive or unrecognised profile means
no role, and a guarded surface must deny access and have the client sign
out instead of rendering anything role-specific.
"""

from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from waterline.core.identity import Principal
from waterline.core.logging import get_logger
from waterline.database.models.user import UserRole
from waterline.schemas.auth import RoleProfileRecord
from waterline.services.auth.repository import RoleProfileRepository
from waterline.services.orders.state_machine import Actor

logger = get_logger(__name__)

ACCESS_DENIED_MESSAGE = "Access denied for this area."


class AccessDeniedError(Exception):
    """Raised when a principal lacks the role a surface requires.

    Carries the sign-in path the client is redirected to after signing out.
    """

    def __init__(
        self,
        required_role: UserRole,
        message: str = ACCESS_DENIED_MESSAGE,
        **context: Any,
    ):
        super().__init__(message)
        self.required_role = required_role
        self.redirect = required_role.sign_in_path
        self.context = context


def role_from_profile(profile: Optional[RoleProfileRecord]) -> Optional[UserRole]:
    """Map a stored profile to its effective role.

    Inactive profiles resolve to None whatever role they store.
    """
    if profile is None or not profile.is_active:
        return None
    try:
        return UserRole(profile.role)
    except ValueError:
        return None


async def resolve_role(session: AsyncSession, principal_id: str) -> Optional[UserRole]:
    """
    Resolve a principal's role from its role profile.

    Args:
        session: Database session
        principal_id: Identity provider uid

    Returns:
        OWNER or DRIVER, or None when the principal holds no active role
    """
    profile = await RoleProfileRepository(session).get_profile(principal_id)
    role = role_from_profile(profile)
    logger.debug(
        "Role resolved",
        principal_id=principal_id,
        role=role.value if role else None,
    )
    return role


async def authorize(
    session: AsyncSession, principal: Principal, required_role: UserRole
) -> Actor:
    """
    Resolve the principal's role and require it to equal ``required_role``.

    Returns:
        Actor for the lifecycle engine, named after the profile

    Raises:
        AccessDeniedError: If the resolved role differs from the required one
    """
    repository = RoleProfileRepository(session)
    profile = await repository.get_profile(principal.uid)
    role = role_from_profile(profile)

    if role != required_role:
        logger.warning(
            "Access denied: role mismatch",
            principal_id=principal.uid,
            resolved_role=role.value if role else None,
            required_role=required_role.value,
        )
        raise AccessDeniedError(required_role, principal_id=principal.uid)

    name = (profile.name if profile else "") or principal.display_name
    return Actor(uid=principal.uid, role=role, name=name)
