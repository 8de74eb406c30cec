"""Pydantic schemas for provider privileges."""

from pydantic import Field

from prestrack.schemas.common import ApiModel


class PrivilegeUpdate(ApiModel):
    user_id: str = Field(min_length=1)
    can_update_escalations: bool | None = None
    can_close_escalations: bool | None = None


class ProviderProfileResponse(ApiModel):
    user_id: str
    display_name: str | None = None
    phone_e164: str | None = None
    can_update_escalations: bool
    can_close_escalations: bool
