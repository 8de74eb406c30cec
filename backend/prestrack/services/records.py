"""Patient and visitor record operations: audit view, access notices, hard delete."""

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from prestrack.auth import Caller
from prestrack.database import utcnow
from prestrack.errors import ConflictError, NotFoundError, UpstreamError, ValidationError
from prestrack.models import (
    AccessLogDocument,
    CommMessage,
    ContactChannel,
    Conversation,
    Document,
    EscalationDocument,
    EscalationNote,
    Patient,
    Pregnancy,
    ProviderProfile,
    StaffUser,
    SubjectType,
    Visitor,
)
from prestrack.services.gateway import WhatsAppGateway
from prestrack.services.identity import Identity, preferred_phone
from prestrack.services.ledger import list_messages

logger = logging.getLogger(__name__)

ACCESS_LOG_TITLE = "Access Log"


async def require_patient(db: AsyncSession, patient_id: uuid.UUID) -> Patient:
    patient = await db.get(Patient, patient_id)
    if patient is None:
        raise NotFoundError("Patient not found")
    return patient


async def list_documents(
    db: AsyncSession,
    patient_id: uuid.UUID,
    type_code: str | None = None,
    limit: int = 50,
) -> list[Document]:
    """Patient documents of every kind, newest first."""
    await require_patient(db, patient_id)
    query = select(Document).where(Document.patient_id == patient_id)
    if type_code:
        query = query.where(Document.type_code == type_code)
    query = query.order_by(Document.created_at.desc()).limit(limit)
    return list((await db.execute(query)).scalars().all())


@dataclass
class PatientAudit:
    conversation_id: uuid.UUID | None
    messages: list[CommMessage]
    escalations: list[EscalationDocument]


async def patient_audit(db: AsyncSession, patient_id: uuid.UUID, limit: int = 50) -> PatientAudit:
    """Recent messages of the current conversation and the patient's escalations."""
    await require_patient(db, patient_id)
    limit = max(1, min(limit, 200))
    convo, messages = await list_messages(db, Identity(SubjectType.PATIENT, patient_id), limit)
    escalations = (
        await db.execute(
            select(EscalationDocument)
            .where(EscalationDocument.patient_id == patient_id)
            .order_by(EscalationDocument.created_at.desc())
            .limit(limit)
        )
    ).scalars().all()
    return PatientAudit(
        conversation_id=convo.id if convo else None,
        messages=messages,
        escalations=list(escalations),
    )


@dataclass
class AccessNotice:
    document: AccessLogDocument
    send_error: str | None = None


async def notify_access(
    db: AsyncSession,
    gateway: WhatsAppGateway,
    caller: Caller,
    patient_id: uuid.UUID,
) -> AccessNotice:
    """Log that ``caller`` viewed the patient's record and tell the patient.

    The access log is kept even when the WhatsApp notice cannot be delivered.
    """
    await require_patient(db, patient_id)
    to_phone = await preferred_phone(db, Identity(SubjectType.PATIENT, patient_id))
    if not to_phone:
        raise ValidationError("patient has no WhatsApp contact")

    row = (
        await db.execute(
            select(ProviderProfile.phone_e164, StaffUser.name, StaffUser.email)
            .select_from(StaffUser)
            .outerjoin(ProviderProfile, ProviderProfile.user_id == StaffUser.id)
            .where(StaffUser.id == caller.user_id)
        )
    ).first()
    provider_phone = (row.phone_e164 if row else None) or "unknown"
    provider_name = ((row.name or row.email) if row else None) or caller.email or "A care provider"

    timestamp = utcnow().isoformat()
    document = AccessLogDocument(
        patient_id=patient_id,
        title=ACCESS_LOG_TITLE,
        meta={"at": timestamp, "providerName": provider_name, "providerPhone": provider_phone},
    )
    db.add(document)
    await db.flush()

    body = (
        "Prestrack notice:\n"
        f"{provider_name} ({provider_phone}) viewed your medical record on {timestamp}.\n"
        "If this wasn't you, reply STOP."
    )
    notice = AccessNotice(document=document)
    try:
        await gateway.send(to_phone, body)
    except UpstreamError as exc:
        logger.warning("Access notice for patient %s not delivered: %s", patient_id, exc.message)
        notice.send_error = exc.message
    return notice


async def _delete_conversations(db: AsyncSession, owner_filter) -> None:
    convo_ids = select(Conversation.id).where(owner_filter)
    await db.execute(delete(CommMessage).where(CommMessage.conversation_id.in_(convo_ids)))
    await db.execute(delete(Conversation).where(owner_filter))


async def _delete_escalations(db: AsyncSession, escalation_filter) -> None:
    escalation_ids = select(EscalationDocument.id).where(escalation_filter)
    await db.execute(delete(EscalationNote).where(EscalationNote.escalation_id.in_(escalation_ids)))


async def delete_patient(db: AsyncSession, patient_id: uuid.UUID) -> None:
    """Remove a patient and everything that hangs off it in one transaction.

    Raises:
        NotFoundError: Unknown patient.
        ConflictError: The cascade failed; nothing was deleted.
    """
    await require_patient(db, patient_id)
    try:
        await _delete_conversations(db, Conversation.patient_id == patient_id)
        await db.execute(delete(ContactChannel).where(ContactChannel.patient_id == patient_id))
        await db.execute(delete(Pregnancy).where(Pregnancy.patient_id == patient_id))
        await _delete_escalations(db, EscalationDocument.patient_id == patient_id)
        await db.execute(delete(Document).where(Document.patient_id == patient_id))
        await db.execute(delete(Patient).where(Patient.id == patient_id))
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Deleting patient %s failed: %s", patient_id, exc)
        raise ConflictError("Failed to delete patient") from exc
    logger.info("Deleted patient %s", patient_id)


async def delete_visitor(db: AsyncSession, visitor_id: uuid.UUID) -> None:
    """Remove a visitor with its conversations, contacts and escalations.

    Raises:
        NotFoundError: Unknown visitor.
        ConflictError: The cascade failed; nothing was deleted.
    """
    if await db.get(Visitor, visitor_id) is None:
        raise NotFoundError("Visitor not found")
    visitor_escalations = (
        (EscalationDocument.subject_type == SubjectType.VISITOR)
        & (EscalationDocument.subject_id == visitor_id)
    )
    try:
        await _delete_conversations(db, Conversation.visitor_id == visitor_id)
        await db.execute(delete(ContactChannel).where(ContactChannel.visitor_id == visitor_id))
        await _delete_escalations(db, visitor_escalations)
        await db.execute(delete(EscalationDocument).where(visitor_escalations))
        await db.execute(delete(Visitor).where(Visitor.id == visitor_id))
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Deleting visitor %s failed: %s", visitor_id, exc)
        raise ConflictError("Failed to delete visitor") from exc
    logger.info("Deleted visitor %s", visitor_id)
