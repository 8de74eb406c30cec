"""Conversation subjects: patients, visitors and their contact channels.

A subject is whoever sits on the other end of a phone number. Patients are
durable records created at registration; visitors are created lazily on first
contact and stay anonymous until they give a name. Both own typed contact
channels, and a channel value is unique per (owner type, channel type) so the
lazy visitor create cannot produce two visitors for one number.
"""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from prestrack.database import Base, utcnow


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Persist enum values rather than member names."""
    return [member.value for member in enum_cls]


class SubjectType(str, enum.Enum):
    """Who a conversation, contact or escalation belongs to."""

    PATIENT = "patient"
    VISITOR = "visitor"


class Patient(Base):
    """Registered patient."""

    __tablename__ = "patients"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    first_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def display_name(self) -> str | None:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or None

    def __repr__(self) -> str:
        return f"<Patient(id={self.id})>"


class Visitor(Base):
    """Anonymous-until-named counterpart created on first contact."""

    __tablename__ = "visitors"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Visitor(id={self.id})>"


class ContactChannel(Base):
    """A phone (or other address) owned by exactly one patient or visitor."""

    __tablename__ = "contact_channels"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_type: Mapped[SubjectType] = mapped_column(
        Enum(SubjectType, name="subject_type", create_constraint=True, values_callable=enum_values),
        nullable=False,
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="whatsapp")
    value: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    preferred: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    patient_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    visitor_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("visitors.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("owner_type", "type", "value", name="uq_contact_owner_type_value"),
    )


class Pregnancy(Base):
    """Antenatal record; at most one active per patient."""

    __tablename__ = "pregnancies"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    lmp: Mapped[date | None] = mapped_column(Date, nullable=True)
    edd: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class ProviderProfile(Base):
    """Per-provider escalation permissions and broadcast phone."""

    __tablename__ = "provider_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(
        Text,
        ForeignKey("staff_users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone_e164: Mapped[str | None] = mapped_column(String(20), nullable=True)
    can_update_escalations: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    can_close_escalations: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
