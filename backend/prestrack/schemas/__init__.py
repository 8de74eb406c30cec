"""Pydantic schemas."""

from prestrack.schemas.agent import (
    AskRequest,
    AskResponse,
    ConsentRequest,
    ConsentResponse,
    MatchResponse,
)
from prestrack.schemas.common import ApiModel, ErrorResponse, OkResponse, PartialSuccess
from prestrack.schemas.conversation import (
    ConversationItem,
    ConversationListResponse,
    ConversationMessagesResponse,
    MessageResponse,
)
from prestrack.schemas.escalation import (
    EscalationCreate,
    EscalationDetailResponse,
    EscalationListResponse,
    EscalationMessage,
    EscalationNoteResponse,
    EscalationResponse,
    EscalationUpdate,
)
from prestrack.schemas.ingestion import (
    DeleteFileRequest,
    DeleteFileResponse,
    IngestFile,
    IngestJob,
    IngestRequest,
    IngestResponse,
    JobStatus,
)
from prestrack.schemas.patient import (
    AccessNoticeResponse,
    AuditResponse,
    DeleteSubjectRequest,
    DocumentResponse,
)
from prestrack.schemas.provider import PrivilegeUpdate, ProviderProfileResponse

__all__ = [
    "AccessNoticeResponse",
    "ApiModel",
    "AskRequest",
    "AskResponse",
    "AuditResponse",
    "ConsentRequest",
    "ConsentResponse",
    "ConversationItem",
    "ConversationListResponse",
    "ConversationMessagesResponse",
    "DeleteFileRequest",
    "DeleteFileResponse",
    "DeleteSubjectRequest",
    "DocumentResponse",
    "ErrorResponse",
    "EscalationCreate",
    "EscalationDetailResponse",
    "EscalationListResponse",
    "EscalationMessage",
    "EscalationNoteResponse",
    "EscalationResponse",
    "EscalationUpdate",
    "IngestFile",
    "IngestJob",
    "IngestRequest",
    "IngestResponse",
    "JobStatus",
    "MatchResponse",
    "MessageResponse",
    "OkResponse",
    "PartialSuccess",
    "PrivilegeUpdate",
    "ProviderProfileResponse",
]
