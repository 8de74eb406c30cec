"""Messaging gateway webhook.

Public endpoint: the gateway authenticates by network placement, not bearer
token. Invalid chat ids and status events are acknowledged with 200 so the
gateway never retries them.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from prestrack.database import get_db
from prestrack.services.gateway import WhatsAppGateway, get_gateway
from prestrack.services.inbound import handle_inbound
from prestrack.services.orchestrator import QueryOrchestrator, get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/whatsapp")
async def whatsapp_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: WhatsAppGateway = Depends(get_gateway),
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Handle one inbound message or gateway status event."""
    try:
        body = await request.json()
    except ValueError:
        logger.warning("Webhook body is not JSON, ignoring")
        return {"status": "ignored"}
    return await handle_inbound(db, gateway, orchestrator, body)
