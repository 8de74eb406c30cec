"""Pydantic schemas for the escalation API."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from prestrack.models import EscalationStatus, SubjectType
from prestrack.schemas.common import ApiModel


class EscalationNoteResponse(ApiModel):
    seq: int
    author: str
    body: str
    created_at: datetime


class EscalationResponse(ApiModel):
    """Escalation as listed to staff."""

    id: UUID
    patient_id: UUID | None = None
    title: str | None = None
    status: EscalationStatus = EscalationStatus.OPEN
    summary: str | None = None
    media: dict[str, Any] | None = None
    subject_type: SubjectType | None = None
    subject_id: UUID | None = None
    phone_e164: str | None = None
    note_count: int = 0
    created_at: datetime
    updated_at: datetime


class EscalationDetailResponse(EscalationResponse):
    notes: list[EscalationNoteResponse] = Field(default_factory=list)
    can_update: bool
    can_close: bool


class EscalationListResponse(ApiModel):
    """Escalations plus what the caller may do with them."""

    items: list[EscalationResponse]
    can_update: bool
    can_close: bool


class EscalationCreate(ApiModel):
    phone_e164: str
    summary: str = Field(min_length=1, max_length=4000)
    media: dict[str, Any] | None = None
    note: str | None = Field(default=None, max_length=4000)


class EscalationUpdate(ApiModel):
    id: UUID
    status: EscalationStatus | None = None
    note: str | None = Field(default=None, max_length=4000)


class EscalationMessage(ApiModel):
    id: UUID
    text: str = Field(min_length=1, max_length=4000)
