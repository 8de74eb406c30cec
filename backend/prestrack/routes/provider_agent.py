"""Provider-facing question answering and consent requests."""

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from prestrack.auth import Caller, verify_bearer_token
from prestrack.database import get_db
from prestrack.schemas import (
    AskRequest,
    AskResponse,
    ConsentRequest,
    ConsentResponse,
    MatchResponse,
    PartialSuccess,
)
from prestrack.services.consent import issue_consent
from prestrack.services.gateway import WhatsAppGateway, get_gateway
from prestrack.services.orchestrator import (
    QueryOrchestrator,
    authorize_patient_scope,
    get_orchestrator,
)

router = APIRouter(prefix="/provider-agent", tags=["provider-agent"])


@router.post(
    "/request-consent",
    response_model=ConsentResponse,
    responses={207: {"model": PartialSuccess}},
)
async def request_consent(
    request: ConsentRequest,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(verify_bearer_token),
    gateway: WhatsAppGateway = Depends(get_gateway),
):
    """Ask a patient to let providers see their record.

    Returns 207 with the stored consent and the delivery error when the
    WhatsApp link could not be sent.
    """
    issue = await issue_consent(db, gateway, request.patient_phone_e164, caller.user_id)
    body = ConsentResponse(token=issue.token)
    if issue.send_error:
        partial = PartialSuccess(resource=body.model_dump(by_alias=True), error=issue.send_error)
        return JSONResponse(
            status_code=status.HTTP_207_MULTI_STATUS,
            content=partial.model_dump(mode="json", by_alias=True),
        )
    return body


@router.post("/ask", response_model=AskResponse)
async def ask(
    request: AskRequest,
    db: AsyncSession = Depends(get_db),
    _caller: Caller = Depends(verify_bearer_token),
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
) -> AskResponse:
    """Answer a question, about one patient when ``patientPhoneE164`` is given.

    Patient-scoped questions require that patient's granted consent.
    """
    scope = None
    if request.patient_phone_e164:
        scope = await authorize_patient_scope(db, request.patient_phone_e164)

    result = await orchestrator.answer(request.question, scope)
    return AskResponse(
        answer=result.answer,
        matches=[
            MatchResponse(title=m.title, text=m.text, score=m.score, source_url=m.source_url)
            for m in result.matches
        ],
        billable=result.billable,
    )
