"""Escalation API routes.

Every read carries the caller's computed ``canUpdate``/``canClose`` so the
dashboard never re-implements the permission matrix.
"""

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from prestrack.auth import Caller, verify_bearer_token
from prestrack.database import get_db
from prestrack.models import EscalationStatus
from prestrack.schemas import (
    EscalationCreate,
    EscalationDetailResponse,
    EscalationListResponse,
    EscalationMessage,
    EscalationNoteResponse,
    EscalationResponse,
    EscalationUpdate,
    OkResponse,
)
from prestrack.services import escalations as escalation_service
from prestrack.services.gateway import WhatsAppGateway, get_gateway

router = APIRouter(prefix="/escalations", tags=["escalations"])


async def _detail(db: AsyncSession, caller: Caller, escalation_id: uuid.UUID) -> EscalationDetailResponse:
    escalation = await escalation_service.get_escalation(db, escalation_id)
    notes = await escalation_service.list_notes(db, escalation_id)
    permissions = await escalation_service.permissions_for(db, caller)
    base = EscalationResponse.model_validate(escalation)
    return EscalationDetailResponse(
        **base.model_dump(),
        notes=[EscalationNoteResponse.model_validate(n) for n in notes],
        can_update=permissions.can_update,
        can_close=permissions.can_close,
    )


@router.get("", response_model=EscalationListResponse)
async def list_escalations(
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(verify_bearer_token),
    status_filter: EscalationStatus | None = Query(None, alias="status"),
) -> EscalationListResponse:
    """List escalations, most recently updated first."""
    items = await escalation_service.list_escalations(db, status_filter)
    permissions = await escalation_service.permissions_for(db, caller)
    return EscalationListResponse(
        items=[EscalationResponse.model_validate(item) for item in items],
        can_update=permissions.can_update,
        can_close=permissions.can_close,
    )


@router.get("/{escalation_id}", response_model=EscalationDetailResponse)
async def get_escalation(
    escalation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(verify_bearer_token),
) -> EscalationDetailResponse:
    """One escalation with its notes, newest first."""
    return await _detail(db, caller, escalation_id)


@router.post("", response_model=EscalationDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_escalation(
    request: EscalationCreate,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(verify_bearer_token),
    gateway: WhatsAppGateway = Depends(get_gateway),
) -> EscalationDetailResponse:
    escalation = await escalation_service.create_escalation(
        db,
        gateway,
        caller,
        phone_e164=request.phone_e164,
        summary=request.summary,
        media=request.media,
        note=request.note,
    )
    return await _detail(db, caller, escalation.id)


@router.post("/update", response_model=EscalationDetailResponse)
async def update_escalation(
    request: EscalationUpdate,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(verify_bearer_token),
    gateway: WhatsAppGateway = Depends(get_gateway),
) -> EscalationDetailResponse:
    """Add a note and/or change status.

    Errors:
        400 ``invalid_request``: neither note nor status.
        403 ``forbidden`` / ``forbidden_close``: permission matrix.
        404: unknown escalation.
        409 ``escalation_closed`` / ``invalid_transition`` / ``conflict``.
    """
    await escalation_service.update_escalation(
        db,
        gateway,
        caller,
        request.id,
        status=request.status,
        note=request.note,
    )
    return await _detail(db, caller, request.id)


@router.post("/message", response_model=OkResponse)
async def message_escalation_subject(
    request: EscalationMessage,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(verify_bearer_token),
    gateway: WhatsAppGateway = Depends(get_gateway),
) -> OkResponse:
    """Send a WhatsApp message to the person the escalation is about."""
    await escalation_service.send_escalation_message(db, gateway, caller, request.id, request.text)
    return OkResponse()
