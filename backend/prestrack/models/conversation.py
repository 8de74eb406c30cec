"""Conversation ledger models.

Conversations are keyed by subject (patient or visitor). New messages always go
to the subject's most recently updated conversation. Messages are immutable
once written and their timestamps never decrease within a conversation.
"""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Enum, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from prestrack.database import Base, JSONType, utcnow
from prestrack.models.subjects import SubjectType, enum_values


class MessageDirection(str, enum.Enum):
    """Direction relative to the subject."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


class SenderType(str, enum.Enum):
    """Class of sender recorded on a message."""

    PATIENT = "patient"
    VISITOR = "visitor"
    AGENT = "agent"
    USER = "user"
    SYSTEM = "system"


class Conversation(Base):
    """Message container for one subject."""

    __tablename__ = "conversations"

    # === Identity ===
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # === Subject ===
    subject_type: Mapped[SubjectType] = mapped_column(
        Enum(SubjectType, name="subject_type", create_constraint=True, values_callable=enum_values),
        nullable=False,
        index=True,
    )
    patient_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=True,
    )
    visitor_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("visitors.id", ondelete="CASCADE"),
        nullable=True,
    )

    # === State ===
    channel: Mapped[str] = mapped_column(String(32), nullable=False, default="whatsapp")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="open")

    # === Timing ===
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        index=True,
    )

    __table_args__ = (
        Index("idx_conversation_patient", "subject_type", "patient_id"),
        Index("idx_conversation_visitor", "subject_type", "visitor_id"),
    )

    def __repr__(self) -> str:
        return f"<Conversation(id={self.id}, subject_type={self.subject_type})>"


class CommMessage(Base):
    """One immutable message in a conversation."""

    __tablename__ = "comm_messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    direction: Mapped[MessageDirection] = mapped_column(
        Enum(MessageDirection, name="message_direction", create_constraint=True, values_callable=enum_values),
        nullable=False,
    )
    via: Mapped[str] = mapped_column(String(32), nullable=False, default="whatsapp")
    sender_type: Mapped[SenderType] = mapped_column(
        Enum(SenderType, name="sender_type", create_constraint=True, values_callable=enum_values),
        nullable=False,
    )
    sender_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    meta: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
