"""Conversation ledger: append-only per-subject message log.

The ledger is the audit trail for everything said to or by a subject, and the
context source for answers. Appends go to the subject's current conversation
(the most recently updated one), creating it on first use.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from prestrack.database import as_utc, utcnow
from prestrack.models import (
    CommMessage,
    Conversation,
    MessageDirection,
    Patient,
    SenderType,
    SubjectType,
    Visitor,
)
from prestrack.services.identity import Identity

logger = logging.getLogger(__name__)

# Bodies beyond this are truncated on append
MAX_BODY_LENGTH = 4000

DEFAULT_MESSAGE_LIMIT = 50
MAX_MESSAGE_LIMIT = 200


def _subject_filter(identity: Identity):
    if identity.is_patient:
        return (
            Conversation.subject_type == SubjectType.PATIENT,
            Conversation.patient_id == identity.id,
        )
    return (
        Conversation.subject_type == SubjectType.VISITOR,
        Conversation.visitor_id == identity.id,
    )


async def current_conversation(db: AsyncSession, identity: Identity) -> Conversation | None:
    """The subject's most recently updated conversation, if any."""
    result = await db.execute(
        select(Conversation)
        .where(*_subject_filter(identity))
        .order_by(Conversation.updated_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def ensure_conversation(db: AsyncSession, identity: Identity) -> Conversation:
    """Current conversation, created if the subject has none."""
    convo = await current_conversation(db, identity)
    if convo is not None:
        return convo

    convo = Conversation(
        subject_type=identity.type,
        patient_id=identity.id if identity.is_patient else None,
        visitor_id=None if identity.is_patient else identity.id,
    )
    db.add(convo)
    await db.flush()
    return convo


async def append_message(
    db: AsyncSession,
    identity: Identity,
    *,
    direction: MessageDirection,
    sender_type: SenderType,
    body: str,
    sender_id: str | None = None,
    meta: dict[str, Any] | None = None,
    via: str = "whatsapp",
) -> CommMessage:
    """Append one message to the subject's current conversation.

    Timestamps never go backwards within a conversation: a message is stamped
    no earlier than the conversation's last message.
    """
    convo = await ensure_conversation(db, identity)

    now = utcnow()
    last = as_utc(convo.last_message_at)
    stamp = max(now, last) if last is not None else now

    message = CommMessage(
        conversation_id=convo.id,
        direction=direction,
        via=via,
        sender_type=sender_type,
        sender_id=sender_id,
        body=str(body or "")[:MAX_BODY_LENGTH],
        meta=meta,
        created_at=stamp,
    )
    db.add(message)
    convo.last_message_at = stamp
    convo.updated_at = now
    await db.flush()
    return message


async def list_messages(
    db: AsyncSession,
    identity: Identity,
    limit: int = DEFAULT_MESSAGE_LIMIT,
) -> tuple[Conversation | None, list[CommMessage]]:
    """Newest-first messages of the subject's current conversation."""
    limit = max(1, min(limit, MAX_MESSAGE_LIMIT))
    convo = await current_conversation(db, identity)
    if convo is None:
        return None, []

    result = await db.execute(
        select(CommMessage)
        .where(CommMessage.conversation_id == convo.id)
        .order_by(CommMessage.created_at.desc())
        .limit(limit)
    )
    return convo, list(result.scalars().all())


@dataclass
class ConversationSummary:
    """Row of the conversation list view."""

    id: uuid.UUID
    subject_type: SubjectType
    subject_id: uuid.UUID | None
    name: str | None
    status: str
    updated_at: datetime
    last_message_at: datetime | None
    last_body: str | None
    last_at: datetime | None


async def list_conversations(
    db: AsyncSession,
    subject_type: SubjectType | None = None,
    limit: int = MAX_MESSAGE_LIMIT,
) -> list[ConversationSummary]:
    """Recently active conversations with subject name and last message."""
    query = select(Conversation)
    if subject_type is not None:
        query = query.where(Conversation.subject_type == subject_type)
    query = query.order_by(Conversation.updated_at.desc()).limit(limit)
    convos = (await db.execute(query)).scalars().all()

    items: list[ConversationSummary] = []
    for convo in convos:
        last = (
            await db.execute(
                select(CommMessage)
                .where(CommMessage.conversation_id == convo.id)
                .order_by(CommMessage.created_at.desc())
                .limit(1)
            )
        ).scalar_one_or_none()

        if convo.subject_type == SubjectType.PATIENT and convo.patient_id:
            patient = await db.get(Patient, convo.patient_id)
            name = (patient.display_name if patient else None) or "Patient"
            subject_id = convo.patient_id
        else:
            visitor = await db.get(Visitor, convo.visitor_id) if convo.visitor_id else None
            name = (visitor.display_name if visitor else None) or "Visitor"
            subject_id = convo.visitor_id

        items.append(
            ConversationSummary(
                id=convo.id,
                subject_type=convo.subject_type,
                subject_id=subject_id,
                name=name,
                status=convo.status,
                updated_at=convo.updated_at,
                last_message_at=convo.last_message_at,
                last_body=last.body if last else None,
                last_at=last.created_at if last else None,
            )
        )
    return items
