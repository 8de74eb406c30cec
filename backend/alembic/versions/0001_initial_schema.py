"""initial schema: staff, subjects, contacts, documents, conversations

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence
from typing import Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

subject_type = postgresql.ENUM("patient", "visitor", name="subject_type", create_type=False)
escalation_status = postgresql.ENUM("open", "in_progress", "closed", name="escalation_status", create_type=False)
message_direction = postgresql.ENUM("inbound", "outbound", name="message_direction", create_type=False)
sender_type = postgresql.ENUM("patient", "visitor", "agent", "user", "system", name="sender_type", create_type=False)


def _timestamps(*names: str) -> list[sa.Column]:
    return [
        sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)
        for name in names
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in (subject_type, escalation_status, message_direction, sender_type):
        enum_type.create(bind, checkfirst=True)

    # === Staff (read-only here, written by the login flow) ===
    op.create_table(
        "staff_users",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("role", sa.String(length=32), server_default="provider", nullable=False),
        *_timestamps("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_table(
        "auth_sessions",
        sa.Column("id", sa.Text(), nullable=False),
        sa.Column("token", sa.Text(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps("created_at"),
        sa.ForeignKeyConstraint(["user_id"], ["staff_users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_auth_sessions_token", "auth_sessions", ["token"], unique=True)
    op.create_index("ix_auth_sessions_user_id", "auth_sessions", ["user_id"])

    # === Subjects ===
    op.create_table(
        "patients",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("first_name", sa.Text(), nullable=True),
        sa.Column("last_name", sa.Text(), nullable=True),
        *_timestamps("created_at", "updated_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "visitors",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=True),
        *_timestamps("created_at", "updated_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "contact_channels",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("owner_type", subject_type, nullable=False),
        sa.Column("type", sa.String(length=32), server_default="whatsapp", nullable=False),
        sa.Column("value", sa.String(length=64), nullable=False),
        sa.Column("verified", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("preferred", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("patient_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("visitor_id", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps("created_at"),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["visitor_id"], ["visitors.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("owner_type", "type", "value", name="uq_contact_owner_type_value"),
    )
    op.create_index("ix_contact_channels_value", "contact_channels", ["value"])
    op.create_index("ix_contact_channels_patient_id", "contact_channels", ["patient_id"])
    op.create_index("ix_contact_channels_visitor_id", "contact_channels", ["visitor_id"])

    op.create_table(
        "pregnancies",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("patient_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("lmp", sa.Date(), nullable=True),
        sa.Column("edd", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False),
        *_timestamps("created_at"),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pregnancies_patient_id", "pregnancies", ["patient_id"])

    op.create_table(
        "provider_profiles",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column("phone_e164", sa.String(length=20), nullable=True),
        sa.Column("can_update_escalations", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("can_close_escalations", sa.Boolean(), server_default=sa.false(), nullable=False),
        *_timestamps("updated_at"),
        sa.ForeignKeyConstraint(["user_id"], ["staff_users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )

    # === Typed documents (single table, discriminated by type_code) ===
    op.create_table(
        "documents",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("type_code", sa.String(length=40), nullable=False),
        sa.Column("patient_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), server_default="{}", nullable=False),
        *_timestamps("created_at", "updated_at"),
        sa.Column("version", sa.Integer(), nullable=False),
        # consent_access
        sa.Column("consent_token", sa.String(length=64), nullable=True),
        sa.Column("granted", sa.Boolean(), nullable=True),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("provider_phone", sa.String(length=20), nullable=True),
        sa.Column("patient_phone", sa.String(length=20), nullable=True),
        # medical_escalation
        sa.Column("escalation_status", escalation_status, nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("media", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("subject_type", subject_type, nullable=True),
        sa.Column("subject_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("phone_e164", sa.String(length=20), nullable=True),
        sa.Column("note_count", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("consent_token"),
    )
    op.create_index("ix_documents_type_code", "documents", ["type_code"])
    op.create_index("ix_documents_patient_id", "documents", ["patient_id"])
    op.create_index("idx_documents_patient_type", "documents", ["patient_id", "type_code"])

    op.create_table(
        "escalation_notes",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("escalation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("author", sa.Text(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        *_timestamps("created_at"),
        sa.ForeignKeyConstraint(["escalation_id"], ["documents.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("escalation_id", "seq", name="uq_escalation_note_seq"),
    )
    op.create_index("ix_escalation_notes_escalation_id", "escalation_notes", ["escalation_id"])

    # === Conversation ledger ===
    op.create_table(
        "conversations",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("subject_type", subject_type, nullable=False),
        sa.Column("patient_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("visitor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("channel", sa.String(length=32), server_default="whatsapp", nullable=False),
        sa.Column("status", sa.String(length=32), server_default="open", nullable=False),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps("created_at", "updated_at"),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["visitor_id"], ["visitors.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_conversations_subject_type", "conversations", ["subject_type"])
    op.create_index("ix_conversations_updated_at", "conversations", ["updated_at"])
    op.create_index("idx_conversation_patient", "conversations", ["subject_type", "patient_id"])
    op.create_index("idx_conversation_visitor", "conversations", ["subject_type", "visitor_id"])

    op.create_table(
        "comm_messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("conversation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("direction", message_direction, nullable=False),
        sa.Column("via", sa.String(length=32), server_default="whatsapp", nullable=False),
        sa.Column("sender_type", sender_type, nullable=False),
        sa.Column("sender_id", sa.Text(), nullable=True),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        *_timestamps("created_at"),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_comm_messages_conversation_id", "comm_messages", ["conversation_id"])
    op.create_index("ix_comm_messages_created_at", "comm_messages", ["created_at"])


def downgrade() -> None:
    op.drop_table("comm_messages")
    op.drop_table("conversations")
    op.drop_table("escalation_notes")
    op.drop_table("documents")
    op.drop_table("provider_profiles")
    op.drop_table("pregnancies")
    op.drop_table("contact_channels")
    op.drop_table("visitors")
    op.drop_table("patients")
    op.drop_index("ix_auth_sessions_user_id", table_name="auth_sessions")
    op.drop_index("ix_auth_sessions_token", table_name="auth_sessions")
    op.drop_table("auth_sessions")
    op.drop_table("staff_users")

    bind = op.get_bind()
    for enum_type in (sender_type, message_direction, escalation_status, subject_type):
        enum_type.drop(bind, checkfirst=True)
