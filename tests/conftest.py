"""
Pytest configuration and shared test fixtures.

Provides order/actor factories, identity tokens signed with the test key,
a fake session factory for live views and a TestClient with the database
and service dependencies overridden.
"""

import os

os.environ.setdefault("WATERLINE_ENVIRONMENT", "test")
os.environ.setdefault("WATERLINE_CHECK_QUERY_INDEXES", "false")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from waterline.core.config import get_settings
from waterline.database.models.user import UserRole
from waterline.realtime.broker import InMemoryChangeBroker
from waterline.schemas.orders import OrderRecord
from waterline.services.orders.enums import (
    OrderStatus,
    PaymentMethod,
    ScheduleType,
    WaterType,
)
from waterline.services.orders.state_machine import Actor

FIXED_NOW = datetime(2025, 3, 14, 8, 30, tzinfo=timezone.utc)


# ============================================================================
# Domain Fixtures
# ============================================================================


@pytest.fixture
def make_order() -> Callable[..., OrderRecord]:
    """
    Factory for OrderRecord instances.

    Example:
        order = make_order(status=OrderStatus.CONFIRMED, liters=Decimal("500"))
    """

    def _make(**overrides: Any) -> OrderRecord:
        fields: dict[str, Any] = {
            "id": uuid.uuid4(),
            "customer_uid": "customer-1",
            "customer_name": "Thandi",
            "customer_phone": "+27 82 555 0101",
            "address": "12 Loop Street",
            "landmark": "",
            "water_type": WaterType.REFILL,
            "liters": Decimal("1000"),
            "payment_method": PaymentMethod.CASH,
            "schedule_type": ScheduleType.ASAP,
            "scheduled_for": None,
            "status": OrderStatus.PENDING,
            "assigned_driver_uid": None,
            "assigned_driver_name": None,
            "created_at": FIXED_NOW - timedelta(hours=1),
            "updated_at": FIXED_NOW - timedelta(hours=1),
        }
        fields.update(overrides)
        return OrderRecord(**fields)

    return _make


@pytest.fixture
def owner() -> Actor:
    return Actor(uid="owner-1", role=UserRole.OWNER, name="Nomsa")


@pytest.fixture
def driver() -> Actor:
    return Actor(uid="driver-1", role=UserRole.DRIVER, name="Sipho")


@pytest.fixture
def other_driver() -> Actor:
    return Actor(uid="driver-2", role=UserRole.DRIVER, name="Lerato")


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


# ============================================================================
# Identity Fixtures
# ============================================================================


@pytest.fixture
def make_token() -> Callable[..., str]:
    """Sign identity tokens with the configured test key."""

    def _make(uid: str = "customer-1", expires_in: int = 3600, **claims: Any) -> str:
        settings = get_settings()
        payload: dict[str, Any] = {
            "sub": uid,
            "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            **claims,
        }
        return jwt.encode(
            payload,
            settings.identity_jwt_secret,
            algorithm=settings.identity_jwt_algorithm,
        )

    return _make


# ============================================================================
# Store Fixtures
# ============================================================================


@pytest.fixture
def mock_session() -> AsyncMock:
    """
    Create mock async database session.

    Returns:
        AsyncMock: Mock database session
    """
    session = AsyncMock(spec=AsyncSession)
    session.add = MagicMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.refresh = AsyncMock()
    session.get = AsyncMock(return_value=None)
    return session


class FakeSessionFactory:
    """Stands in for an async_sessionmaker, always yielding the same session."""

    def __init__(self, session: Any):
        self.session = session
        self.opened = 0

    def __call__(self) -> "FakeSessionFactory":
        self.opened += 1
        return self

    async def __aenter__(self) -> Any:
        return self.session

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        return False


@pytest.fixture
def session_factory(mock_session: AsyncMock) -> FakeSessionFactory:
    return FakeSessionFactory(mock_session)


@pytest.fixture
def broker() -> InMemoryChangeBroker:
    return InMemoryChangeBroker()


# ============================================================================
# Application Fixtures
# ============================================================================


@pytest.fixture
def app_client(
    mock_session: AsyncMock,
    broker: InMemoryChangeBroker,
    session_factory: FakeSessionFactory,
) -> Generator[TestClient, None, None]:
    """
    TestClient with the database, broker and session factory overridden.

    The lifespan is not run, so no engine is ever created.

    Example:
        def test_contact(app_client):
            response = app_client.get("/api/v1/contact")
    """
    from waterline.api.deps import (
        get_change_broker,
        get_live_session_factory,
        get_query_capabilities,
    )
    from waterline.api.limiter import limiter
    from waterline.database.connection import get_db
    from waterline.database.queries import QueryCapabilities
    from waterline.main import app

    async def _get_db():
        yield mock_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_change_broker] = lambda: broker
    app.dependency_overrides[get_query_capabilities] = lambda: QueryCapabilities()
    app.dependency_overrides[get_live_session_factory] = lambda: session_factory
    limiter.reset()

    yield TestClient(app)

    app.dependency_overrides.clear()
