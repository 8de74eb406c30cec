"""Consent redemption page opened from the patient's WhatsApp link."""

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from prestrack.database import get_db
from prestrack.errors import NotFoundError, ValidationError
from prestrack.services.consent import redeem_consent

router = APIRouter(prefix="/consent", tags=["consent"])

INVALID_PAGE = "<html><body><h3>Invalid link</h3></body></html>"
NOT_FOUND_PAGE = "<html><body><h3>Consent request not found or expired.</h3></body></html>"
GRANTED_PAGE = (
    '<html><body style="font-family:sans-serif"><h2>Consent Granted</h2>'
    "<p>Thank you. Your care provider can now access your information for this session.</p>"
    "</body></html>"
)


@router.get("/allow", response_class=HTMLResponse)
async def allow_consent(token: str = "", db: AsyncSession = Depends(get_db)) -> HTMLResponse:
    """Grant the consent behind ``token``. Safe to open more than once."""
    try:
        await redeem_consent(db, token)
    except ValidationError:
        return HTMLResponse(INVALID_PAGE, status_code=400)
    except NotFoundError:
        return HTMLResponse(NOT_FOUND_PAGE, status_code=404)
    return HTMLResponse(GRANTED_PAGE)
