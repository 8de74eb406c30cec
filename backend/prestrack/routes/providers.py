"""Provider privilege routes."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from prestrack.auth import Caller, verify_bearer_token
from prestrack.database import get_db
from prestrack.schemas import PrivilegeUpdate, ProviderProfileResponse
from prestrack.services.providers import update_privileges

router = APIRouter(prefix="/providers", tags=["providers"])


@router.post("/update-privileges", response_model=ProviderProfileResponse)
async def update_provider_privileges(
    request: PrivilegeUpdate,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(verify_bearer_token),
) -> ProviderProfileResponse:
    """Set ``canUpdateEscalations`` / ``canCloseEscalations`` for a provider."""
    profile = await update_privileges(
        db,
        caller,
        request.user_id,
        can_update_escalations=request.can_update_escalations,
        can_close_escalations=request.can_close_escalations,
    )
    return ProviderProfileResponse.model_validate(profile)
