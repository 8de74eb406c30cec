"""Consent ledger for provider access to a patient's record.

A provider asks for access; the patient receives a single-use approval link
carrying an unguessable token. Redeeming the link flips the consent document's
``granted`` flag to True in place. Redemption is repeatable and the flag is
never reverted. Grants do not expire.
"""

import logging
import secrets
import uuid
from dataclasses import dataclass
from urllib.parse import quote

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from prestrack.config import settings
from prestrack.database import utcnow
from prestrack.errors import NotFoundError, UpstreamError, ValidationError
from prestrack.models import ConsentDocument, ProviderProfile
from prestrack.services.gateway import WhatsAppGateway
from prestrack.services.identity import find_patient_id_by_phone, get_patient
from prestrack.services.phone import mask_phone, validate_e164

logger = logging.getLogger(__name__)

# 32 bytes of randomness, well above 128 bits
TOKEN_BYTES = 32

PENDING_TITLE = "Provider Consent Pending"
GRANTED_TITLE = "Provider Consent Granted"


@dataclass
class ConsentIssue:
    """Outcome of a consent request.

    ``send_error`` is set when the document was stored but the approval link
    could not be delivered.
    """

    document: ConsentDocument
    token: str
    link: str
    send_error: str | None = None


def consent_link(token: str) -> str:
    base = settings.public_base_url.rstrip("/")
    return f"{base}/api/consent/allow?token={quote(token, safe='')}"


async def issue_consent(
    db: AsyncSession,
    gateway: WhatsAppGateway,
    patient_phone: str,
    provider_user_id: str | None = None,
) -> ConsentIssue:
    """Store a pending consent for the patient on ``patient_phone`` and send the link.

    Raises:
        ValidationError: Phone is not E.164.
        NotFoundError: No patient owns the phone.
    """
    phone = validate_e164(patient_phone)
    if phone is None:
        raise ValidationError("Valid patientPhoneE164 required")

    patient_id = await find_patient_id_by_phone(db, phone)
    patient = await get_patient(db, patient_id) if patient_id else None
    if patient is None:
        raise NotFoundError("Patient not found for phone")

    provider_phone = None
    if provider_user_id:
        provider_phone = (
            await db.execute(
                select(ProviderProfile.phone_e164).where(ProviderProfile.user_id == provider_user_id)
            )
        ).scalar_one_or_none()

    token = secrets.token_urlsafe(TOKEN_BYTES)
    document = ConsentDocument(
        patient_id=patient.id,
        title=PENDING_TITLE,
        consent_token=token,
        granted=False,
        provider_phone=provider_phone,
        patient_phone=phone,
        meta={},
    )
    db.add(document)
    await db.flush()

    link = consent_link(token)
    name = patient.display_name or "there"
    body = (
        f"Hi {name},\n"
        "A care provider is requesting access to view your medical info.\n"
        f"Approve here: {link}"
    )

    issue = ConsentIssue(document=document, token=token, link=link)
    try:
        await gateway.send(phone, body)
    except UpstreamError as exc:
        logger.warning("Consent link for %s not delivered: %s", mask_phone(phone), exc.message)
        issue.send_error = exc.message
    else:
        logger.info("Consent requested for patient %s", patient.id)
    return issue


async def redeem_consent(db: AsyncSession, token: str) -> ConsentDocument:
    """Mark the consent behind ``token`` as granted. Idempotent.

    Raises:
        ValidationError: Token missing.
        NotFoundError: No consent document carries the token.
    """
    token = (token or "").strip()
    if not token:
        raise ValidationError("Invalid link")

    document = (
        await db.execute(select(ConsentDocument).where(ConsentDocument.consent_token == token))
    ).scalar_one_or_none()
    if document is None:
        raise NotFoundError("Consent request not found or expired.")

    if not document.granted:
        document.granted = True
        document.granted_at = utcnow()
        document.title = GRANTED_TITLE
        await db.flush()
        logger.info("Consent %s granted for patient %s", document.id, document.patient_id)
    return document


async def has_granted_consent(db: AsyncSession, patient_id: uuid.UUID) -> bool:
    """Grant flag of the patient's most recently updated consent document."""
    result = await db.execute(
        select(ConsentDocument.granted)
        .where(ConsentDocument.patient_id == patient_id)
        .order_by(ConsentDocument.updated_at.desc(), ConsentDocument.created_at.desc())
        .limit(1)
    )
    return bool(result.scalar_one_or_none())
