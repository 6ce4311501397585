"""
Business settings service.

The settings live in one row that the owner edits with merge semantics:
only the fields present in an update are written. Every role reads it, and
every successful write is announced on the ``settings`` change feed so
dashboards and contact cards refresh.
"""

from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from waterline.core.logging import get_logger
from waterline.database.base import utcnow
from waterline.database.models.settings import SETTINGS_ROW_ID, BusinessSettings
from waterline.database.queries import (
    StoreError,
    StoreUnavailableError,
    translate_store_error,
)
from waterline.realtime.broker import SETTINGS, BrokerError, ChangeBroker, ChangeEvent
from waterline.schemas.settings import (
    BusinessSettingsRecord,
    BusinessSettingsUpdate,
    ContactCard,
)
from waterline.services.orders.state_machine import Actor
from waterline.services.settings.contact import build_contact_card

logger = get_logger(__name__)

TANK_CAPACITY_MESSAGE = "Please enter a valid tank capacity."


class SettingsServiceError(Exception):
    """Base exception for settings service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class SettingsValidationError(SettingsServiceError):
    """Raised when a settings update would store invalid values."""


class SettingsService:
    """Read and merge-write the business settings row."""

    def __init__(self, session: AsyncSession, broker: Optional[ChangeBroker] = None):
        self.session = session
        self.broker = broker

    async def _load(self) -> Optional[BusinessSettings]:
        try:
            return await self.session.get(
                BusinessSettings, SETTINGS_ROW_ID, populate_existing=True
            )
        except SQLAlchemyError as e:
            translated = translate_store_error(e, "settings_read")
            if isinstance(translated, StoreUnavailableError):
                raise translated from e
            raise StoreError("Settings lookup failed", error=str(e)) from e

    async def get_settings(self) -> BusinessSettingsRecord:
        """Current settings, or defaults when the owner never saved any."""
        row = await self._load()
        if row is None:
            return BusinessSettingsRecord()
        return BusinessSettingsRecord.model_validate(row)

    async def get_contact_card(self) -> ContactCard:
        return build_contact_card(await self.get_settings())

    async def update_settings(
        self, update: BusinessSettingsUpdate, actor: Actor
    ) -> BusinessSettingsRecord:
        """
        Merge ``update`` into the stored settings.

        Args:
            update: Fields to change; unset fields keep their stored value
            actor: Owner performing the update

        Returns:
            The settings after the write

        Raises:
            SettingsValidationError: If the resulting tank capacity is not positive
            StoreUnavailableError: If the store is unreachable
        """
        changes = update.model_dump(exclude_unset=True)
        # explicit nulls mean "leave as is"
        changes = {key: value for key, value in changes.items() if value is not None}

        row = await self._load()
        current = (
            BusinessSettingsRecord.model_validate(row)
            if row is not None
            else BusinessSettingsRecord()
        )
        tank_capacity = changes.get("tank_capacity_liters", current.tank_capacity_liters)
        if tank_capacity is None or tank_capacity <= 0:
            raise SettingsValidationError(
                TANK_CAPACITY_MESSAGE, tank_capacity_liters=str(tank_capacity)
            )

        if row is None:
            row = BusinessSettings(
                id=SETTINGS_ROW_ID, **current.model_dump(exclude={"updated_at"})
            )
            self.session.add(row)
        for key, value in changes.items():
            setattr(row, key, value)
        row.updated_at = utcnow()

        try:
            await self.session.commit()
            await self.session.refresh(row)
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Settings update failed", error=str(e))
            translated = translate_store_error(e, "settings_update")
            if isinstance(translated, StoreUnavailableError):
                raise translated from e
            raise SettingsServiceError("Settings update failed", error=str(e)) from e

        logger.info(
            "Business settings updated",
            principal_id=actor.uid,
            fields=sorted(changes),
        )
        await self._announce()
        return BusinessSettingsRecord.model_validate(row)

    async def _announce(self) -> None:
        if self.broker is None:
            return
        try:
            await self.broker.publish(ChangeEvent(SETTINGS, SETTINGS_ROW_ID))
        except BrokerError as e:
            logger.warning("Settings change notification failed", error=str(e))
