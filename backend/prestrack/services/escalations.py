"""Escalation state machine.

Escalations move ``open -> in_progress -> closed`` (``open -> closed`` is also
allowed, as is ``in_progress -> open``); nothing leaves ``closed``. Who may do
what is decided by ``permissions_for``:

============  ===========  ====================  ==========
role          append note  open / in_progress    closed
============  ===========  ====================  ==========
admin         yes          yes                   yes
provider      can_update   can_update            can_close
other         no           no                    no
============  ===========  ====================  ==========

An accepted update is committed first. The audit line in the subject's
conversation and the provider broadcast run afterwards; either may fail
without undoing the state change.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from prestrack.auth import Caller
from prestrack.config import settings
from prestrack.errors import AuthzError, ConflictError, NotFoundError, UpstreamError, ValidationError
from prestrack.models import (
    EscalationDocument,
    EscalationNote,
    EscalationStatus,
    MessageDirection,
    ProviderProfile,
    SenderType,
    SubjectType,
)
from prestrack.services.gateway import WhatsAppGateway
from prestrack.services.identity import (
    Identity,
    find_patient_id_by_phone,
    resolve_identity,
)
from prestrack.services.ledger import append_message, current_conversation
from prestrack.services.phone import mask_phone, validate_e164

logger = logging.getLogger(__name__)

NOTE_PREVIEW_LENGTH = 180
DEFAULT_TITLE = "Medical escalation"

ALLOWED_TRANSITIONS: dict[EscalationStatus, frozenset[EscalationStatus]] = {
    EscalationStatus.OPEN: frozenset({EscalationStatus.IN_PROGRESS, EscalationStatus.CLOSED}),
    EscalationStatus.IN_PROGRESS: frozenset({EscalationStatus.OPEN, EscalationStatus.CLOSED}),
    EscalationStatus.CLOSED: frozenset(),
}


@dataclass(frozen=True)
class EscalationPermissions:
    can_update: bool
    can_close: bool


@dataclass
class BroadcastResult:
    attempted: int = 0
    delivered: int = 0


async def permissions_for(db: AsyncSession, caller: Caller) -> EscalationPermissions:
    """Escalation permissions of ``caller``. Providers without a profile get none."""
    if caller.is_admin:
        return EscalationPermissions(can_update=True, can_close=True)
    if caller.is_provider:
        profile = (
            await db.execute(select(ProviderProfile).where(ProviderProfile.user_id == caller.user_id))
        ).scalar_one_or_none()
        if profile is None:
            return EscalationPermissions(can_update=False, can_close=False)
        return EscalationPermissions(
            can_update=bool(profile.can_update_escalations),
            can_close=bool(profile.can_close_escalations),
        )
    return EscalationPermissions(can_update=False, can_close=False)


def subject_identity(escalation: EscalationDocument) -> Identity | None:
    """Conversation subject the escalation is about, if known."""
    if escalation.subject_type is not None and escalation.subject_id is not None:
        return Identity(escalation.subject_type, escalation.subject_id)
    if escalation.patient_id is not None:
        return Identity(SubjectType.PATIENT, escalation.patient_id)
    return None


def change_summary(
    escalation_id: uuid.UUID,
    status: EscalationStatus | None,
    note: str | None,
    updater: str | None = None,
) -> str:
    """One-message description of an accepted update."""
    text = f"Escalation {escalation_id} updated"
    if updater:
        text += f" by {updater}"
    if status is not None:
        text += f" - status: {status.value}"
    if note:
        text += f"\nNote: {note[:NOTE_PREVIEW_LENGTH]}"
    return text


# =============================================================================
# Reads
# =============================================================================


async def list_escalations(
    db: AsyncSession,
    status: EscalationStatus | None = None,
) -> list[EscalationDocument]:
    query = select(EscalationDocument)
    if status is not None:
        query = query.where(EscalationDocument.status == status)
    query = query.order_by(EscalationDocument.updated_at.desc())
    return list((await db.execute(query)).scalars().all())


async def get_escalation(db: AsyncSession, escalation_id: uuid.UUID) -> EscalationDocument:
    escalation = await db.get(EscalationDocument, escalation_id)
    if escalation is None:
        raise NotFoundError("escalation not found")
    return escalation


async def list_notes(db: AsyncSession, escalation_id: uuid.UUID) -> list[EscalationNote]:
    """Notes newest first."""
    result = await db.execute(
        select(EscalationNote)
        .where(EscalationNote.escalation_id == escalation_id)
        .order_by(EscalationNote.seq.desc())
    )
    return list(result.scalars().all())


# =============================================================================
# Writes
# =============================================================================


async def create_escalation(
    db: AsyncSession,
    gateway: WhatsAppGateway,
    caller: Caller,
    *,
    phone_e164: str,
    summary: str,
    media: dict | None = None,
    note: str | None = None,
) -> EscalationDocument:
    """Open an escalation for whoever owns ``phone_e164``.

    Raises:
        ValidationError: Bad phone or empty summary.
    """
    phone = validate_e164(phone_e164)
    if phone is None:
        raise ValidationError("invalid phoneE164")
    summary = str(summary or "").strip()
    if not summary:
        raise ValidationError("summary required")

    patient_id = await find_patient_id_by_phone(db, phone)
    identity = (
        Identity(SubjectType.PATIENT, patient_id)
        if patient_id is not None
        else await resolve_identity(db, phone)
    )

    escalation = EscalationDocument(
        patient_id=identity.id if identity.is_patient else None,
        title=DEFAULT_TITLE,
        status=EscalationStatus.OPEN,
        summary=summary,
        media=media,
        subject_type=identity.type,
        subject_id=identity.id,
        phone_e164=phone,
        note_count=0,
        meta={},
    )
    db.add(escalation)
    await db.flush()

    if note:
        _add_note(db, escalation, caller.label, note)
        await db.flush()

    await db.commit()
    logger.info("Escalation %s opened for %s", escalation.id, mask_phone(phone))

    await broadcast_to_providers(
        db,
        gateway,
        f"New escalation {escalation.id} for {mask_phone(phone)}: {summary[:NOTE_PREVIEW_LENGTH]}",
    )
    await db.refresh(escalation)
    return escalation


def _add_note(db: AsyncSession, escalation: EscalationDocument, author: str, body: str) -> EscalationNote:
    seq = (escalation.note_count or 0) + 1
    note = EscalationNote(escalation_id=escalation.id, seq=seq, author=author, body=body)
    db.add(note)
    # Bumping the counter also bumps the row version, so concurrent note
    # appends conflict instead of sharing a seq.
    escalation.note_count = seq
    return note


async def update_escalation(
    db: AsyncSession,
    gateway: WhatsAppGateway,
    caller: Caller,
    escalation_id: uuid.UUID,
    *,
    status: EscalationStatus | None = None,
    note: str | None = None,
) -> EscalationDocument:
    """Apply a note and/or status change.

    Raises:
        ValidationError: Neither a note nor a status change was given (a status
            equal to the current one is no change).
        AuthzError: ``forbidden`` or ``forbidden_close``.
        NotFoundError: Unknown escalation.
        ConflictError: ``escalation_closed`` for any change to a closed
            escalation, ``invalid_transition`` for a disallowed move, or
            ``conflict`` when another writer got there first.
    """
    note = str(note).strip() if note else None
    if status is None and not note:
        raise ValidationError("note or status required")

    permissions = await permissions_for(db, caller)
    if not permissions.can_update:
        raise AuthzError("forbidden", code="forbidden")
    if status == EscalationStatus.CLOSED and not permissions.can_close:
        raise AuthzError("closing escalations is not permitted", code="forbidden_close")

    escalation = await get_escalation(db, escalation_id)
    current = escalation.status or EscalationStatus.OPEN
    if current == EscalationStatus.CLOSED:
        raise ConflictError("escalation is closed", code="escalation_closed")
    if status == current:
        status = None
    if status is None and not note:
        raise ValidationError("note or status change required")
    if status is not None and status not in ALLOWED_TRANSITIONS[current]:
        raise ConflictError(
            f"cannot move escalation from {current.value} to {status.value}",
            code="invalid_transition",
        )

    if status is not None:
        escalation.status = status
    if note:
        _add_note(db, escalation, caller.label, note)

    try:
        await db.flush()
        await db.commit()
    except (StaleDataError, IntegrityError) as exc:
        await db.rollback()
        logger.warning("Concurrent update on escalation %s: %s", escalation_id, exc)
        raise ConflictError("escalation was modified concurrently, retry") from exc

    logger.info(
        "Escalation %s updated by %s (status=%s, note=%s)",
        escalation_id,
        caller.label,
        status.value if status else "-",
        bool(note),
    )

    await record_audit(db, escalation, change_summary(escalation_id, status, note))
    await broadcast_to_providers(db, gateway, change_summary(escalation_id, status, note, caller.label))
    await db.refresh(escalation)
    return escalation


async def send_escalation_message(
    db: AsyncSession,
    gateway: WhatsAppGateway,
    caller: Caller,
    escalation_id: uuid.UUID,
    text: str,
) -> None:
    """Message the escalation's subject directly and log it if they have a conversation.

    Raises:
        AuthzError: Caller is neither admin nor provider.
        ValidationError: Empty text or escalation without a phone.
        NotFoundError: Unknown escalation.
        UpstreamError: The gateway send failed.
    """
    if not (caller.is_admin or caller.is_provider):
        raise AuthzError("forbidden", code="forbidden")
    body = str(text or "").strip()
    if not body:
        raise ValidationError("text required")

    escalation = await get_escalation(db, escalation_id)
    if not escalation.phone_e164:
        raise ValidationError("escalation missing phoneE164")

    await gateway.send(escalation.phone_e164, body)

    identity = subject_identity(escalation)
    if identity is None:
        return
    try:
        if await current_conversation(db, identity) is not None:
            await append_message(
                db,
                identity,
                direction=MessageDirection.OUTBOUND,
                sender_type=SenderType.USER,
                sender_id=caller.user_id,
                body=body,
            )
            await db.commit()
    except Exception as exc:
        await db.rollback()
        logger.warning("Could not log escalation message for %s: %s", escalation_id, exc)


# =============================================================================
# Side channels
# =============================================================================


async def record_audit(db: AsyncSession, escalation: EscalationDocument, text: str) -> bool:
    """Append a system line to the subject's conversation. Never raises."""
    identity = subject_identity(escalation)
    if identity is None:
        return False
    try:
        await append_message(
            db,
            identity,
            direction=MessageDirection.OUTBOUND,
            sender_type=SenderType.SYSTEM,
            body=text,
        )
        await db.commit()
    except Exception as exc:
        await db.rollback()
        logger.warning("Audit append for escalation %s failed: %s", escalation.id, exc)
        return False
    return True


async def broadcast_to_providers(
    db: AsyncSession,
    gateway: WhatsAppGateway,
    text: str,
) -> BroadcastResult:
    """Send ``text`` to every provider with a phone, bounded and independently failing."""
    try:
        phones = (
            await db.execute(
                select(ProviderProfile.phone_e164).where(ProviderProfile.phone_e164.is_not(None))
            )
        ).scalars().all()
    except Exception as exc:
        logger.warning("Provider broadcast skipped, lookup failed: %s", exc)
        return BroadcastResult()

    targets = sorted({p for p in phones if validate_e164(p)})
    semaphore = asyncio.Semaphore(max(1, settings.notify_concurrency))

    async def _send(phone: str) -> None:
        async with semaphore:
            await gateway.send(phone, text)

    outcomes = await asyncio.gather(*(_send(p) for p in targets), return_exceptions=True)
    result = BroadcastResult(attempted=len(targets))
    for phone, outcome in zip(targets, outcomes):
        if isinstance(outcome, BaseException):
            reason = outcome.message if isinstance(outcome, UpstreamError) else repr(outcome)
            logger.warning("Broadcast to %s failed: %s", mask_phone(phone), reason)
        else:
            result.delivered += 1
    return result
