"""SQLAlchemy models."""

from prestrack.models.auth import AuthSession, StaffUser
from prestrack.models.conversation import CommMessage, Conversation, MessageDirection, SenderType
from prestrack.models.documents import (
    AccessLogDocument,
    AllergyDocument,
    ConsentDocument,
    Document,
    DocumentKind,
    EscalationDocument,
    EscalationNote,
    EscalationStatus,
    MedicalHistoryDocument,
    VitalsDocument,
)
from prestrack.models.subjects import (
    ContactChannel,
    Patient,
    Pregnancy,
    ProviderProfile,
    SubjectType,
    Visitor,
)

__all__ = [
    "AccessLogDocument",
    "AllergyDocument",
    "AuthSession",
    "CommMessage",
    "ConsentDocument",
    "ContactChannel",
    "Conversation",
    "Document",
    "DocumentKind",
    "EscalationDocument",
    "EscalationNote",
    "EscalationStatus",
    "MedicalHistoryDocument",
    "MessageDirection",
    "Patient",
    "Pregnancy",
    "ProviderProfile",
    "SenderType",
    "StaffUser",
    "SubjectType",
    "Visitor",
    "VitalsDocument",
]
