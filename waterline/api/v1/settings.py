"""Business settings and the public contact card.

Any signed-in principal may read the settings; only the owner may change
them.
"""

from fastapi import APIRouter

from waterline.api.deps import CurrentPrincipal, OwnerActor, SettingsServiceDep
from waterline.schemas.settings import (
    BusinessSettingsRecord,
    BusinessSettingsUpdate,
    ContactCard,
)

router = APIRouter(tags=["Settings"])


@router.get("/settings", response_model=BusinessSettingsRecord)
async def read_settings(
    principal: CurrentPrincipal, service: SettingsServiceDep
) -> BusinessSettingsRecord:
    return await service.get_settings()


@router.patch("/settings", response_model=BusinessSettingsRecord)
async def update_settings(
    update: BusinessSettingsUpdate, owner: OwnerActor, service: SettingsServiceDep
) -> BusinessSettingsRecord:
    """Merge the submitted fields into the stored settings."""
    return await service.update_settings(update, owner)


@router.get("/contact", response_model=ContactCard, summary="Business contact card")
async def read_contact(service: SettingsServiceDep) -> ContactCard:
    return await service.get_contact_card()
