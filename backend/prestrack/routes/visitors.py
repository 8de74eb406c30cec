"""Visitor record routes."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from prestrack.auth import Caller, verify_bearer_token
from prestrack.database import get_db
from prestrack.errors import AuthzError
from prestrack.schemas import DeleteSubjectRequest, OkResponse
from prestrack.services import records

router = APIRouter(prefix="/visitors", tags=["visitors"])


@router.post("/delete", response_model=OkResponse)
async def delete_visitor(
    request: DeleteSubjectRequest,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(verify_bearer_token),
) -> OkResponse:
    """Hard-delete a visitor with its conversations and contacts. Admin only."""
    if not caller.is_admin:
        raise AuthzError("forbidden", code="forbidden")
    await records.delete_visitor(db, request.id)
    return OkResponse()
