"""Conversation ledger views for the staff dashboard."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from prestrack.auth import Caller, verify_bearer_token
from prestrack.database import get_db
from prestrack.models import SubjectType
from prestrack.schemas import (
    ConversationItem,
    ConversationListResponse,
    ConversationMessagesResponse,
    MessageResponse,
)
from prestrack.services.identity import Identity
from prestrack.services.ledger import (
    DEFAULT_MESSAGE_LIMIT,
    MAX_MESSAGE_LIMIT,
    list_conversations,
    list_messages,
)

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.get("", response_model=ConversationListResponse)
async def conversations(
    db: AsyncSession = Depends(get_db),
    _caller: Caller = Depends(verify_bearer_token),
    subject_type: SubjectType | None = Query(None, alias="subjectType"),
    limit: int = Query(MAX_MESSAGE_LIMIT, ge=1, le=MAX_MESSAGE_LIMIT),
) -> ConversationListResponse:
    """Recently active conversations with the subject's name and last message."""
    items = await list_conversations(db, subject_type, limit)
    return ConversationListResponse(items=[ConversationItem.model_validate(item) for item in items])


@router.get("/by-subject", response_model=ConversationMessagesResponse)
async def conversation_by_subject(
    subject_type: SubjectType = Query(alias="subjectType"),
    subject_id: uuid.UUID = Query(alias="subjectId"),
    limit: int = Query(DEFAULT_MESSAGE_LIMIT, ge=1, le=MAX_MESSAGE_LIMIT),
    db: AsyncSession = Depends(get_db),
    _caller: Caller = Depends(verify_bearer_token),
) -> ConversationMessagesResponse:
    """Newest messages of the subject's current conversation."""
    convo, messages = await list_messages(db, Identity(subject_type, subject_id), limit)
    return ConversationMessagesResponse(
        conversation_id=convo.id if convo else None,
        messages=[MessageResponse.model_validate(m) for m in messages],
    )
