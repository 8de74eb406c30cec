"""Identity resolution by phone.

Maps an E.164 phone to the patient or visitor that owns it. Patients take
precedence; a phone nobody owns gets a fresh visitor. The resolver is the
authorization boundary for the messaging channel: a caller resolved as a
visitor never sees patient-scoped answers, and there is no fallback across
subject types.
"""

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from prestrack.errors import ValidationError
from prestrack.models import ContactChannel, Patient, SubjectType, Visitor
from prestrack.services.phone import mask_phone, validate_e164

logger = logging.getLogger(__name__)

CHANNEL_WHATSAPP = "whatsapp"


@dataclass(frozen=True)
class Identity:
    """A resolved conversation subject."""

    type: SubjectType
    id: uuid.UUID

    @property
    def is_patient(self) -> bool:
        return self.type == SubjectType.PATIENT


def _require_e164(phone_e164: str) -> str:
    phone = validate_e164(phone_e164)
    if phone is None:
        raise ValidationError("invalid E.164 phone")
    return phone


async def find_patient_id_by_phone(db: AsyncSession, phone_e164: str) -> uuid.UUID | None:
    """Patient owning a WhatsApp channel with exactly this value."""
    phone = _require_e164(phone_e164)
    result = await db.execute(
        select(ContactChannel.patient_id)
        .where(
            ContactChannel.owner_type == SubjectType.PATIENT,
            ContactChannel.type == CHANNEL_WHATSAPP,
            ContactChannel.value == phone,
            ContactChannel.patient_id.is_not(None),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def find_visitor_id_by_phone(db: AsyncSession, phone_e164: str) -> uuid.UUID | None:
    """Visitor owning a WhatsApp channel with exactly this value."""
    phone = _require_e164(phone_e164)
    result = await db.execute(
        select(ContactChannel.visitor_id)
        .where(
            ContactChannel.owner_type == SubjectType.VISITOR,
            ContactChannel.type == CHANNEL_WHATSAPP,
            ContactChannel.value == phone,
            ContactChannel.visitor_id.is_not(None),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def resolve_identity(
    db: AsyncSession,
    phone_e164: str,
    display_name: str | None = None,
) -> Identity:
    """Resolve a phone to a patient or visitor, creating a visitor if needed.

    Safe under concurrent duplicate requests: the contact channel is unique per
    (owner type, type, value), so a losing racer hits an IntegrityError, rolls
    back its half-built visitor and returns the winner's row instead.

    The rollback discards anything else pending on ``db``, so call this before
    doing other writes in the same session.

    Args:
        db: Database session.
        phone_e164: Validated E.164 phone.
        display_name: Optional name to record on a new (or unnamed) visitor.

    Returns:
        The resolved identity.

    Raises:
        ValidationError: If the phone is not E.164.
    """
    phone = _require_e164(phone_e164)

    patient_id = await find_patient_id_by_phone(db, phone)
    if patient_id is not None:
        return Identity(SubjectType.PATIENT, patient_id)

    visitor_id = await find_visitor_id_by_phone(db, phone)
    if visitor_id is not None:
        if display_name:
            visitor = await db.get(Visitor, visitor_id)
            if visitor is not None and not visitor.display_name:
                visitor.display_name = display_name
                await db.flush()
        return Identity(SubjectType.VISITOR, visitor_id)

    visitor = Visitor(id=uuid.uuid4(), display_name=display_name or None)
    db.add(visitor)
    db.add(
        ContactChannel(
            owner_type=SubjectType.VISITOR,
            type=CHANNEL_WHATSAPP,
            value=phone,
            verified=True,
            preferred=True,
            visitor_id=visitor.id,
        )
    )
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        visitor_id = await find_visitor_id_by_phone(db, phone)
        if visitor_id is None:
            raise
        logger.info("Visitor for %s created concurrently, reusing %s", mask_phone(phone), visitor_id)
        return Identity(SubjectType.VISITOR, visitor_id)

    logger.info("Created visitor %s for %s", visitor.id, mask_phone(phone))
    return Identity(SubjectType.VISITOR, visitor.id)


async def get_patient(db: AsyncSession, patient_id: uuid.UUID) -> Patient | None:
    return await db.get(Patient, patient_id)


async def preferred_phone(db: AsyncSession, identity: Identity) -> str | None:
    """The subject's WhatsApp phone, preferred channel first."""
    owner_column = (
        ContactChannel.patient_id if identity.is_patient else ContactChannel.visitor_id
    )
    result = await db.execute(
        select(ContactChannel.value)
        .where(
            ContactChannel.owner_type == identity.type,
            ContactChannel.type == CHANNEL_WHATSAPP,
            owner_column == identity.id,
        )
        .order_by(ContactChannel.preferred.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()
