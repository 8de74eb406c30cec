"""Pydantic schemas for conversation views."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from prestrack.models import MessageDirection, SenderType, SubjectType
from prestrack.schemas.common import ApiModel


class MessageResponse(ApiModel):
    id: UUID
    direction: MessageDirection
    via: str
    sender_type: SenderType
    sender_id: str | None = None
    body: str
    meta: dict[str, Any] | None = None
    created_at: datetime


class ConversationItem(ApiModel):
    id: UUID
    subject_type: SubjectType
    subject_id: UUID | None = None
    name: str | None = None
    status: str
    updated_at: datetime
    last_message_at: datetime | None = None
    last_body: str | None = None
    last_at: datetime | None = None


class ConversationListResponse(ApiModel):
    items: list[ConversationItem]


class ConversationMessagesResponse(ApiModel):
    conversation_id: UUID | None = None
    messages: list[MessageResponse] = Field(default_factory=list)
