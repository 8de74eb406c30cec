"""Inbound WhatsApp message handling.

The gateway posts envelopes whose shape depends on the sender library. We
pull ``chatId``/``text``/``messageId`` out of whichever fields are present,
normalize the chat id to E.164, resolve the sender, log the message, answer
it and send the reply. Unroutable chat ids are acknowledged and dropped.
"""

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from prestrack.errors import UpstreamError
from prestrack.models import MessageDirection, SenderType, SubjectType
from prestrack.services.gateway import WhatsAppGateway
from prestrack.services.identity import resolve_identity
from prestrack.services.ledger import append_message
from prestrack.services.orchestrator import QueryOrchestrator, QueryScope
from prestrack.services.phone import mask_phone, normalize_chat_id, validate_e164

logger = logging.getLogger(__name__)

STATUS_EVENTS = frozenset({"connected", "disconnected"})
DEFAULT_REPLY = "How can I help you today?"
RETRY_REPLY = "Please try again in a moment."


@dataclass
class InboundMessage:
    phone_e164: str | None
    text: str
    message_id: str | None = None
    display_name: str | None = None


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _first(*values: Any) -> Any:
    for value in values:
        if value:
            return value
    return None


def extract_inbound(body: dict[str, Any]) -> InboundMessage:
    """Pull sender, text and id out of any of the known envelope shapes."""
    body = _as_dict(body)
    payload = _as_dict(body.get("payload"))
    media = _as_dict(payload.get("media") or body.get("media"))
    message = body.get("message")
    message_obj = _as_dict(message)

    chat_id = _first(
        body.get("chatId"),
        body.get("from"),
        message_obj.get("from"),
        body.get("contact"),
        payload.get("from"),
        payload.get("chatId"),
        media.get("from"),
    )
    text = _first(
        body.get("text"),
        message if isinstance(message, str) else None,
        message_obj.get("text"),
        message_obj.get("body"),
        body.get("body"),
        payload.get("text"),
        payload.get("body"),
        media.get("body"),
    )
    message_id = _first(payload.get("id"), body.get("id"), media.get("id"))
    display_name = _first(body.get("displayName"), body.get("pushName"), payload.get("pushName"))

    phone = validate_e164(body.get("phoneE164")) or normalize_chat_id(chat_id)
    return InboundMessage(
        phone_e164=phone,
        text=str(text or "").strip(),
        message_id=str(message_id) if message_id else None,
        display_name=str(display_name).strip() if display_name else None,
    )


async def handle_inbound(
    db: AsyncSession,
    gateway: WhatsAppGateway,
    orchestrator: QueryOrchestrator,
    body: dict[str, Any],
) -> dict[str, Any]:
    """Process one webhook call and return the acknowledgement body.

    Raises:
        UpstreamError: The reply could not be sent.
    """
    event = str(_as_dict(body).get("event") or "").strip().lower()
    if event in STATUS_EVENTS:
        logger.info("Gateway %s", event)
        return {"status": "ok"}

    inbound = extract_inbound(body)
    if inbound.phone_e164 is None:
        return {"status": "ignored_invalid_chatId"}
    if not inbound.text:
        return {"status": "ignored_empty"}

    phone = inbound.phone_e164
    identity = await resolve_identity(db, phone, display_name=inbound.display_name)
    inbound_message = await append_message(
        db,
        identity,
        direction=MessageDirection.INBOUND,
        sender_type=SenderType.PATIENT if identity.is_patient else SenderType.VISITOR,
        body=inbound.text,
        meta={"messageId": inbound.message_id} if inbound.message_id else None,
    )
    await db.commit()

    # Patients get answers scoped to their own record; visitors only general ones.
    scope = QueryScope.for_self(identity.id, phone) if identity.type == SubjectType.PATIENT else None
    billable = False
    try:
        result = await orchestrator.answer(inbound.text, scope, whatsapp_style=True)
        answer = result.answer or DEFAULT_REPLY
        billable = result.billable
    except UpstreamError as exc:
        logger.warning("Answering %s failed: %s", mask_phone(phone), exc.message)
        answer = RETRY_REPLY

    await gateway.send(phone, answer)

    await append_message(
        db,
        identity,
        direction=MessageDirection.OUTBOUND,
        sender_type=SenderType.AGENT,
        body=answer,
        meta={"billable": billable},
    )
    await db.commit()

    logger.info("Answered %s %s (billable=%s)", identity.type.value, identity.id, billable)
    return {
        "status": "ok",
        "answer": answer,
        "conversationId": str(inbound_message.conversation_id),
    }
