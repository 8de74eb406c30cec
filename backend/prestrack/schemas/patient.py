"""Pydantic schemas for patient records, audit and deletion."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from prestrack.schemas.common import ApiModel
from prestrack.schemas.conversation import MessageResponse
from prestrack.schemas.escalation import EscalationResponse


class DocumentResponse(ApiModel):
    """Common shape of every document kind."""

    id: UUID
    type_code: str
    title: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict, serialization_alias="metadata")
    created_at: datetime
    updated_at: datetime


class AuditResponse(ApiModel):
    conversation_id: UUID | None = None
    messages: list[MessageResponse]
    escalations: list[EscalationResponse]


class DeleteSubjectRequest(ApiModel):
    id: UUID


class AccessNoticeResponse(ApiModel):
    ok: bool = True
    document_id: UUID
