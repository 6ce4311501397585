"""
Live views served to the owner, driver and customer screens.

Each factory returns an unstarted LiveQuery whose fetch opens a short-lived
session, runs one query and closes it again, so a long-lived subscription
never pins a database connection. RoleGuard keeps a stream's principal
authorised for as long as the stream is open.
"""

from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from waterline.core.identity import Principal, verify_identity_token
from waterline.core.logging import get_logger
from waterline.database.models.user import UserRole
from waterline.database.queries import QueryCapabilities
from waterline.realtime.broker import ORDERS, SETTINGS, ChangeBroker
from waterline.realtime.live_query import LiveQuery
from waterline.schemas.dashboard import DashboardMetrics
from waterline.schemas.orders import OrderRecord
from waterline.schemas.settings import BusinessSettingsRecord, ContactCard
from waterline.services.auth.role_resolver import authorize
from waterline.services.dashboard.service import load_today_metrics
from waterline.services.orders.enums import OrderStatus
from waterline.services.orders.repository import OrderRepository
from waterline.services.orders.state_machine import Actor
from waterline.services.settings.service import SettingsService

logger = get_logger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]


def orders_by_status_view(
    broker: ChangeBroker,
    session_factory: SessionFactory,
    status: OrderStatus,
    capabilities: Optional[QueryCapabilities] = None,
) -> LiveQuery[list[OrderRecord]]:
    """Orders in one status, newest first, replaced in full on every change."""

    async def fetch() -> list[OrderRecord]:
        async with session_factory() as session:
            return await OrderRepository(session, capabilities).list_by_status(status)

    return LiveQuery(f"orders_by_status:{status.value}", broker, [ORDERS], fetch)


def today_metrics_view(
    broker: ChangeBroker,
    session_factory: SessionFactory,
    tz: ZoneInfo,
    capabilities: Optional[QueryCapabilities] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> LiveQuery[DashboardMetrics]:
    """
    Today's dashboard metrics.

    The day bounds are recomputed on every refresh so a stream left open over
    midnight moves on to the new day with its next change. Settings changes
    refresh it too, since revenue and goal progress depend on them.
    """
    now = clock or (lambda: datetime.now(timezone.utc))

    async def fetch() -> DashboardMetrics:
        async with session_factory() as session:
            return await load_today_metrics(session, tz, capabilities, now())

    return LiveQuery("today_metrics", broker, [ORDERS, SETTINGS], fetch)


def customer_orders_view(
    broker: ChangeBroker,
    session_factory: SessionFactory,
    customer_uid: str,
    capabilities: Optional[QueryCapabilities] = None,
) -> LiveQuery[list[OrderRecord]]:
    async def fetch() -> list[OrderRecord]:
        async with session_factory() as session:
            return await OrderRepository(session, capabilities).list_by_customer(
                customer_uid
            )

    return LiveQuery(f"customer_orders:{customer_uid}", broker, [ORDERS], fetch)


def driver_orders_view(
    broker: ChangeBroker,
    session_factory: SessionFactory,
    driver_uid: str,
    status: OrderStatus,
    capabilities: Optional[QueryCapabilities] = None,
) -> LiveQuery[list[OrderRecord]]:
    async def fetch() -> list[OrderRecord]:
        async with session_factory() as session:
            return await OrderRepository(session, capabilities).list_by_driver_status(
                driver_uid, status
            )

    return LiveQuery(
        f"driver_orders:{driver_uid}:{status.value}", broker, [ORDERS], fetch
    )


def unassigned_orders_view(
    broker: ChangeBroker,
    session_factory: SessionFactory,
    capabilities: Optional[QueryCapabilities] = None,
) -> LiveQuery[list[OrderRecord]]:
    """Confirmed orders waiting for a driver to claim them."""

    async def fetch() -> list[OrderRecord]:
        async with session_factory() as session:
            return await OrderRepository(
                session, capabilities
            ).list_unassigned_confirmed()

    return LiveQuery("unassigned_orders", broker, [ORDERS], fetch)


def contact_card_view(
    broker: ChangeBroker, session_factory: SessionFactory
) -> LiveQuery[ContactCard]:
    async def fetch() -> ContactCard:
        async with session_factory() as session:
            return await SettingsService(session).get_contact_card()

    return LiveQuery("contact_card", broker, [SETTINGS], fetch)


def settings_view(
    broker: ChangeBroker, session_factory: SessionFactory
) -> LiveQuery[BusinessSettingsRecord]:
    """Business settings for any signed-in principal."""

    async def fetch() -> BusinessSettingsRecord:
        async with session_factory() as session:
            return await SettingsService(session).get_settings()

    return LiveQuery("settings", broker, [SETTINGS], fetch)


class RoleGuard:
    """
    Role check for one open stream.

    ``check`` resolves the principal's role from its profile and raises
    AccessDeniedError on mismatch. Streams call it before every snapshot they
    send and on a timer. A refreshed identity token goes through
    ``reauthenticate``.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        required_role: UserRole,
        principal: Principal,
    ):
        self.session_factory = session_factory
        self.required_role = required_role
        self.principal = principal

    async def check(self) -> Actor:
        async with self.session_factory() as session:
            return await authorize(session, self.principal, self.required_role)

    async def reauthenticate(self, token: str) -> Actor:
        """Switch to the principal of ``token`` and check it.

        Raises:
            IdentityError: If the token does not verify
            AccessDeniedError: If the new principal lacks the role
        """
        principal = verify_identity_token(token)
        if principal.uid != self.principal.uid:
            logger.info(
                "Stream identity changed",
                previous_principal_id=self.principal.uid,
                principal_id=principal.uid,
            )
        self.principal = principal
        return await self.check()
