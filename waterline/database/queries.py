"""
Query capability contract between the services and the order store.

Every compound query the services issue is named here together with the
index that serves it. ``QueryCapabilities`` records which of those indexes
exist so that a query whose index is missing fails with a distinguishable
"needs index" error instead of a generic failure or a slow scan. Store
errors caused by lost connectivity are translated into
``StoreUnavailableError`` so callers can report an offline/syncing state.
"""

from enum import Enum
from typing import Any, Dict, Iterable, Optional, Set, Tuple

from sqlalchemy import inspect
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine

from waterline.core.logging import get_logger
from waterline.database.models.order import (
    IX_ORDERS_CREATED_AT,
    IX_ORDERS_CUSTOMER_CREATED_AT,
    IX_ORDERS_DRIVER_STATUS_CREATED_AT,
    IX_ORDERS_STATUS_CREATED_AT,
    IX_ORDERS_UNASSIGNED_CONFIRMED,
)
from waterline.database.models.user import IX_USERS_ROLE_IS_ACTIVE

logger = get_logger(__name__)


class QueryName(str, Enum):
    """Compound queries the store must support."""

    ORDERS_BY_STATUS = "orders_by_status"
    ORDERS_BY_CREATED_RANGE = "orders_by_created_range"
    ORDERS_BY_CUSTOMER = "orders_by_customer"
    ORDERS_BY_DRIVER_STATUS = "orders_by_driver_status"
    ORDERS_UNASSIGNED_CONFIRMED = "orders_unassigned_confirmed"
    USERS_BY_ROLE_ACTIVE = "users_by_role_active"


REQUIRED_INDEXES: Dict[QueryName, Tuple[str, str]] = {
    QueryName.ORDERS_BY_STATUS: ("orders", IX_ORDERS_STATUS_CREATED_AT),
    QueryName.ORDERS_BY_CREATED_RANGE: ("orders", IX_ORDERS_CREATED_AT),
    QueryName.ORDERS_BY_CUSTOMER: ("orders", IX_ORDERS_CUSTOMER_CREATED_AT),
    QueryName.ORDERS_BY_DRIVER_STATUS: ("orders", IX_ORDERS_DRIVER_STATUS_CREATED_AT),
    QueryName.ORDERS_UNASSIGNED_CONFIRMED: ("orders", IX_ORDERS_UNASSIGNED_CONFIRMED),
    QueryName.USERS_BY_ROLE_ACTIVE: ("users", IX_USERS_ROLE_IS_ACTIVE),
}


class StoreError(Exception):
    """Base exception for order store failures."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class QueryIndexMissingError(StoreError):
    """Raised when a query needs an index the store does not have.

    Remediation is operator-side (run migrations or create the index), so
    this is reported separately from transient connectivity failures.
    """

    def __init__(self, query: QueryName, index_name: str):
        super().__init__(
            f"This query needs a database index. Run the migrations or create "
            f"index {index_name} for {query.value}.",
            query=query.value,
            index=index_name,
        )
        self.query = query
        self.index_name = index_name


class StoreUnavailableError(StoreError):
    """Raised when the store cannot be reached."""


class QueryCapabilities:
    """Set of indexes known to exist in the store.

    ``available=None`` means the store was not inspected and every query is
    allowed.
    """

    def __init__(self, available: Optional[Iterable[str]] = None):
        self._available: Optional[Set[str]] = (
            set(available) if available is not None else None
        )

    @classmethod
    async def inspect_engine(cls, engine: AsyncEngine) -> "QueryCapabilities":
        """Read index names for every table used by a required query."""
        tables = {table for table, _ in REQUIRED_INDEXES.values()}

        def _collect(sync_conn) -> Set[str]:
            inspector = inspect(sync_conn)
            names: Set[str] = set()
            for table in tables:
                if not inspector.has_table(table):
                    continue
                names.update(ix["name"] for ix in inspector.get_indexes(table))
            return names

        async with engine.connect() as conn:
            available = await conn.run_sync(_collect)

        capabilities = cls(available)
        if capabilities.missing:
            logger.warning(
                "Required query indexes are missing",
                missing=sorted(capabilities.missing),
            )
        else:
            logger.info("All required query indexes present")
        return capabilities

    @property
    def missing(self) -> Set[str]:
        if self._available is None:
            return set()
        return {
            index for _, index in REQUIRED_INDEXES.values()
            if index not in self._available
        }

    def require(self, query: QueryName) -> None:
        """Ensure ``query`` can be served.

        Raises:
            QueryIndexMissingError: If the query's index is known to be missing
        """
        if self._available is None:
            return
        _, index_name = REQUIRED_INDEXES[query]
        if index_name not in self._available:
            raise QueryIndexMissingError(query, index_name)


def translate_store_error(error: Exception, operation: str) -> Exception:
    """Map a low-level store exception onto the store error taxonomy."""
    if isinstance(error, (OperationalError, InterfaceError, ConnectionError, OSError)):
        return StoreUnavailableError(
            "The order store is unreachable; changes will sync when it is back.",
            operation=operation,
            error=str(error),
        )
    if isinstance(error, DBAPIError) and error.connection_invalidated:
        return StoreUnavailableError(
            "The order store connection was lost.",
            operation=operation,
            error=str(error),
        )
    return error
