"""Patient record routes: audit trail, documents, access notices, deletion."""

import uuid

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from prestrack.auth import Caller, verify_bearer_token
from prestrack.database import get_db
from prestrack.errors import AuthzError
from prestrack.schemas import (
    AccessNoticeResponse,
    AuditResponse,
    DeleteSubjectRequest,
    DocumentResponse,
    EscalationResponse,
    MessageResponse,
    OkResponse,
    PartialSuccess,
)
from prestrack.services import records
from prestrack.services.gateway import WhatsAppGateway, get_gateway

router = APIRouter(prefix="/patients", tags=["patients"])


@router.get("/{patient_id}/audit", response_model=AuditResponse)
async def patient_audit(
    patient_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    _caller: Caller = Depends(verify_bearer_token),
) -> AuditResponse:
    """Recent conversation messages and escalations for one patient."""
    audit = await records.patient_audit(db, patient_id, limit)
    return AuditResponse(
        conversation_id=audit.conversation_id,
        messages=[MessageResponse.model_validate(m) for m in audit.messages],
        escalations=[EscalationResponse.model_validate(e) for e in audit.escalations],
    )


@router.get("/{patient_id}/documents", response_model=list[DocumentResponse])
async def patient_documents(
    patient_id: uuid.UUID,
    type_code: str | None = Query(None, alias="type"),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    _caller: Caller = Depends(verify_bearer_token),
) -> list[DocumentResponse]:
    documents = await records.list_documents(db, patient_id, type_code, limit)
    return [DocumentResponse.model_validate(d) for d in documents]


@router.post(
    "/{patient_id}/notify-access",
    response_model=AccessNoticeResponse,
    responses={207: {"model": PartialSuccess}},
)
async def notify_access(
    patient_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(verify_bearer_token),
    gateway: WhatsAppGateway = Depends(get_gateway),
):
    """Record that the caller viewed this patient's chart and tell the patient."""
    notice = await records.notify_access(db, gateway, caller, patient_id)
    body = AccessNoticeResponse(document_id=notice.document.id)
    if notice.send_error:
        partial = PartialSuccess(resource=body.model_dump(mode="json", by_alias=True), error=notice.send_error)
        return JSONResponse(
            status_code=status.HTTP_207_MULTI_STATUS,
            content=partial.model_dump(mode="json", by_alias=True),
        )
    return body


@router.post("/delete", response_model=OkResponse)
async def delete_patient(
    request: DeleteSubjectRequest,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(verify_bearer_token),
) -> OkResponse:
    """Hard-delete a patient and all dependent records. Admin only."""
    if not caller.is_admin:
        raise AuthzError("forbidden", code="forbidden")
    await records.delete_patient(db, request.id)
    return OkResponse()
