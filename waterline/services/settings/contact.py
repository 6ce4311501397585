"""Public contact card projection."""

from waterline.schemas.settings import BusinessSettingsRecord, ContactCard

PUBLIC_FIELDS = (
    "business_name",
    "business_phone",
    "business_email",
    "business_address",
    "business_whatsapp",
    "business_hours",
    "business_note",
)


def build_contact_card(settings: BusinessSettingsRecord) -> ContactCard:
    """Project the public fields of the business settings."""
    return ContactCard(**{name: getattr(settings, name) for name in PUBLIC_FIELDS})
