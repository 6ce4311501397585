"""Role profile schemas."""

from pydantic import BaseModel, ConfigDict


class RoleProfileRecord(BaseModel):
    """Stored role profile as read from the ``users`` collection."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    role: str
    is_active: bool
    name: str = ""
