"""Typed patient documents.

One ``documents`` table holds every per-patient record kind. Each kind is a
single-table-inheritance variant discriminated by ``type_code`` with its own
typed columns, while the base class keeps the shared list/audit query path
(patient, title, free-form ``meta``, timestamps).

Rows are mutated in place. ``version`` is a mapper-level version counter, so a
concurrent read-modify-write on the same row fails with ``StaleDataError``
instead of silently losing the first writer's change. Escalation notes are not
stored on the row at all: they live in the append-only ``escalation_notes``
table with a per-escalation monotonic ``seq``.
"""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from prestrack.database import Base, JSONType, utcnow
from prestrack.models.subjects import SubjectType, enum_values


class DocumentKind(str, enum.Enum):
    """Discriminator values for ``Document.type_code``."""

    ALLERGIES = "allergies"
    VITALS = "vitals"
    MEDICAL_HISTORY = "medical_history"
    CONSENT = "consent_access"
    ESCALATION = "medical_escalation"
    ACCESS_LOG = "access_log"


class EscalationStatus(str, enum.Enum):
    """Escalation lifecycle states."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"


class Document(Base):
    """Shared shape of every patient document kind."""

    __tablename__ = "documents"

    # === Identity ===
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    type_code: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    patient_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    # === Content ===
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)

    # === Timing ===
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {
        "polymorphic_on": "type_code",
        "polymorphic_identity": "document",
        "version_id_col": version,
    }

    __table_args__ = (
        Index("idx_documents_patient_type", "patient_id", "type_code"),
    )

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(id={self.id}, patient_id={self.patient_id})>"


class AllergyDocument(Document):
    """Allergy list snapshot; entries live in ``meta``."""

    __mapper_args__ = {"polymorphic_identity": DocumentKind.ALLERGIES.value}


class VitalsDocument(Document):
    """Vitals reading; values live in ``meta``."""

    __mapper_args__ = {"polymorphic_identity": DocumentKind.VITALS.value}


class MedicalHistoryDocument(Document):
    """Medical history note; content lives in ``meta``."""

    __mapper_args__ = {"polymorphic_identity": DocumentKind.MEDICAL_HISTORY.value}


class ConsentDocument(Document):
    """Provider access consent keyed by a single-use token.

    ``granted`` only ever moves from False to True.
    """

    consent_token: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    granted: Mapped[bool | None] = mapped_column(Boolean, nullable=True, default=False)
    granted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    provider_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    patient_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    __mapper_args__ = {"polymorphic_identity": DocumentKind.CONSENT.value}


class EscalationDocument(Document):
    """Flagged medical event awaiting provider attention."""

    status: Mapped[EscalationStatus | None] = mapped_column(
        "escalation_status",
        Enum(EscalationStatus, name="escalation_status", create_constraint=True, values_callable=enum_values),
        nullable=True,
    )
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    media: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    subject_type: Mapped[SubjectType | None] = mapped_column(
        Enum(SubjectType, name="subject_type", create_constraint=True, values_callable=enum_values),
        nullable=True,
    )
    subject_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    phone_e164: Mapped[str | None] = mapped_column(String(20), nullable=True)
    note_count: Mapped[int | None] = mapped_column(Integer, nullable=True, default=0)

    __mapper_args__ = {"polymorphic_identity": DocumentKind.ESCALATION.value}


class AccessLogDocument(Document):
    """Record of a provider viewing a patient's chart; details live in ``meta``."""

    __mapper_args__ = {"polymorphic_identity": DocumentKind.ACCESS_LOG.value}


class EscalationNote(Base):
    """Append-only note on an escalation."""

    __tablename__ = "escalation_notes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    escalation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    author: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("escalation_id", "seq", name="uq_escalation_note_seq"),
    )
