"""
FastAPI dependencies for identity, role checks and services.

Identity comes from the external provider's token; roles come from role
profiles and are re-resolved on every request, so a profile switched to
inactive loses access on its very next call.
"""

from typing import Annotated, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.requests import HTTPConnection

from waterline.core.identity import IdentityError, Principal, verify_identity_token
from waterline.core.logging import get_logger, set_principal_id
from waterline.database.connection import get_db, get_session_factory
from waterline.database.models.user import UserRole
from waterline.database.queries import QueryCapabilities
from waterline.realtime.broker import ChangeBroker
from waterline.services.auth.role_resolver import authorize
from waterline.services.orders.service import OrderService
from waterline.services.orders.state_machine import Actor
from waterline.services.settings.service import SettingsService

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)

DatabaseSession = Annotated[AsyncSession, Depends(get_db)]


async def get_principal(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Principal:
    """
    Verify the identity provider token from the Authorization header.

    Raises:
        IdentityError: If no token was sent or it does not verify
    """
    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise IdentityError("Sign-in required", code="MISSING_TOKEN")

    principal = verify_identity_token(credentials.credentials)
    set_principal_id(principal.uid)
    return principal


CurrentPrincipal = Annotated[Principal, Depends(get_principal)]


def require_role(required_role: UserRole):
    """
    Create a dependency that resolves the caller's role and requires it.

    Returns:
        Callable: Dependency returning the caller as an Actor

    Example:
        @router.post("/orders/{order_id}/confirm")
        async def confirm(owner: Annotated[Actor, Depends(require_role(UserRole.OWNER))]):
            ...
    """

    async def role_checker(principal: CurrentPrincipal, db: DatabaseSession) -> Actor:
        return await authorize(db, principal, required_role)

    return role_checker


OwnerActor = Annotated[Actor, Depends(require_role(UserRole.OWNER))]
DriverActor = Annotated[Actor, Depends(require_role(UserRole.DRIVER))]


def get_change_broker(connection: HTTPConnection) -> ChangeBroker:
    return connection.app.state.change_broker


def get_query_capabilities(connection: HTTPConnection) -> QueryCapabilities:
    """Index capabilities found at startup; unchecked if inspection was skipped."""
    return getattr(connection.app.state, "query_capabilities", None) or QueryCapabilities()


Broker = Annotated[ChangeBroker, Depends(get_change_broker)]
Capabilities = Annotated[QueryCapabilities, Depends(get_query_capabilities)]


def get_order_service(
    db: DatabaseSession, broker: Broker, capabilities: Capabilities
) -> OrderService:
    return OrderService(db, broker, capabilities)


def get_settings_service(db: DatabaseSession, broker: Broker) -> SettingsService:
    return SettingsService(db, broker)


OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
SettingsServiceDep = Annotated[SettingsService, Depends(get_settings_service)]


def get_live_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for live views, which open one session per refresh."""
    return get_session_factory()


SessionFactoryDep = Annotated[
    async_sessionmaker[AsyncSession], Depends(get_live_session_factory)
]
