"""Tests for the inbound WhatsApp webhook."""

import pytest
from sqlalchemy import select

from prestrack.errors import UpstreamError
from prestrack.models import CommMessage, MessageDirection, SenderType, Visitor
from prestrack.services.inbound import DEFAULT_REPLY, RETRY_REPLY, extract_inbound

from conftest import make_patient

PATIENT_PHONE = "+23276400001"
VISITOR_PHONE = "+23276400002"
WEBHOOK = "/api/webhooks/whatsapp"


def _match(title, score=0.9):
    return {"id": title, "score": score, "metadata": {"title": title, "text": "passage"}}


async def _messages(db) -> list[CommMessage]:
    result = await db.execute(select(CommMessage).order_by(CommMessage.created_at, CommMessage.direction))
    return list(result.scalars().all())


class TestExtractInbound:
    def test_flat_shape(self):
        inbound = extract_inbound(
            {"chatId": "23276400001@c.us", "text": " hi ", "id": "m1", "pushName": "Fatu"}
        )

        assert inbound.phone_e164 == PATIENT_PHONE
        assert inbound.text == "hi"
        assert inbound.message_id == "m1"
        assert inbound.display_name == "Fatu"

    def test_nested_payload_shape(self):
        inbound = extract_inbound(
            {"event": "message", "payload": {"from": "23276400002@s.whatsapp.net", "body": "hello", "id": "x"}}
        )

        assert inbound.phone_e164 == VISITOR_PHONE
        assert inbound.text == "hello"
        assert inbound.message_id == "x"

    def test_message_object_shape(self):
        inbound = extract_inbound({"message": {"from": "+232 76 400 001", "text": "when is my visit"}})

        assert inbound.phone_e164 == PATIENT_PHONE
        assert inbound.text == "when is my visit"

    def test_explicit_phone_wins(self):
        inbound = extract_inbound({"phoneE164": VISITOR_PHONE, "chatId": "23276400001@c.us", "text": "x"})

        assert inbound.phone_e164 == VISITOR_PHONE

    @pytest.mark.parametrize("chat_id", [None, "", "status@broadcast", "12345@c.us", "1" * 16])
    def test_unroutable_chat_id(self, chat_id):
        assert extract_inbound({"chatId": chat_id, "text": "hi"}).phone_e164 is None


class TestWebhookRoute:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("event", ["connected", "Disconnected"])
    async def test_status_events_are_acknowledged(self, client, fake_gateway, event):
        response = await client.post(WEBHOOK, json={"event": event})

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        assert fake_gateway.sent == []

    @pytest.mark.asyncio
    async def test_invalid_chat_id_is_ignored(self, client, db_session, fake_gateway, fake_retrieval):
        response = await client.post(WEBHOOK, json={"chatId": "status@broadcast", "text": "hello"})

        assert response.status_code == 200
        assert response.json() == {"status": "ignored_invalid_chatId"}
        assert fake_gateway.sent == []
        assert fake_retrieval.requests == []
        assert await _messages(db_session) == []

    @pytest.mark.asyncio
    async def test_empty_text_is_ignored(self, client, fake_gateway):
        response = await client.post(WEBHOOK, json={"chatId": "23276400001@c.us", "text": "   "})

        assert response.json() == {"status": "ignored_empty"}
        assert fake_gateway.sent == []

    @pytest.mark.asyncio
    async def test_non_json_body(self, client):
        response = await client.post(
            WEBHOOK, content=b"not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 200
        assert response.json() == {"status": "ignored"}

    @pytest.mark.asyncio
    async def test_patient_question_is_scoped_and_logged(
        self, client, db_session, fake_gateway, fake_retrieval
    ):
        await make_patient(db_session, PATIENT_PHONE)
        fake_retrieval.matches = [_match("My ANC card")]

        response = await client.post(
            WEBHOOK, json={"chatId": "23276400001@c.us", "text": "When is my next visit?", "id": "wa-1"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["answer"] == "I found 1 relevant source:\n1. My ANC card"
        [search] = fake_retrieval.search_bodies()
        assert search["filter"] == {"patientPhoneE164": PATIENT_PHONE}
        assert fake_gateway.to(PATIENT_PHONE) == [body["answer"]]

        inbound, outbound = await _messages(db_session)
        assert (inbound.direction, inbound.sender_type) == (MessageDirection.INBOUND, SenderType.PATIENT)
        assert inbound.body == "When is my next visit?"
        assert inbound.meta == {"messageId": "wa-1"}
        assert (outbound.direction, outbound.sender_type) == (MessageDirection.OUTBOUND, SenderType.AGENT)
        assert outbound.meta == {"billable": True}
        assert str(inbound.conversation_id) == body["conversationId"] == str(outbound.conversation_id)

    @pytest.mark.asyncio
    async def test_visitor_question_is_unscoped(self, client, db_session, fake_retrieval):
        fake_retrieval.matches = [_match("Danger signs")]

        response = await client.post(
            WEBHOOK, json={"chatId": "23276400002@c.us", "text": "What are danger signs?", "pushName": "Isata"}
        )

        assert response.status_code == 200
        [search] = fake_retrieval.search_bodies()
        assert "filter" not in search
        [visitor] = (await db_session.execute(select(Visitor))).scalars().all()
        assert visitor.display_name == "Isata"
        inbound, _ = await _messages(db_session)
        assert inbound.sender_type == SenderType.VISITOR

    @pytest.mark.asyncio
    async def test_repeat_sender_reuses_conversation(self, client, db_session):
        first = await client.post(WEBHOOK, json={"chatId": "23276400002@c.us", "text": "hi"})
        second = await client.post(WEBHOOK, json={"chatId": "23276400002@c.us", "text": "again"})

        assert first.json()["conversationId"] == second.json()["conversationId"]
        assert len((await db_session.execute(select(Visitor))).scalars().all()) == 1
        assert len(await _messages(db_session)) == 4

    @pytest.mark.asyncio
    async def test_no_sources_gets_default_reply(self, client, db_session, fake_gateway):
        response = await client.post(WEBHOOK, json={"chatId": "23276400002@c.us", "text": "hi"})

        assert response.json()["answer"] == DEFAULT_REPLY
        assert fake_gateway.to(VISITOR_PHONE) == [DEFAULT_REPLY]
        _, outbound = await _messages(db_session)
        assert outbound.meta == {"billable": False}

    @pytest.mark.asyncio
    async def test_chatbot_failure_gets_retry_reply(self, client, fake_gateway, orchestrator, monkeypatch):
        monkeypatch.setattr(orchestrator, "_chatbot_id", "bot-1")

        async def failing_chatbot(*args, **kwargs):
            raise UpstreamError("Message request failed: 502 bad gateway", upstream_status=502)

        monkeypatch.setattr(orchestrator._retrieval, "send_chatbot_message", failing_chatbot)

        response = await client.post(WEBHOOK, json={"chatId": "23276400002@c.us", "text": "hi"})

        assert response.json()["answer"] == RETRY_REPLY
        assert fake_gateway.to(VISITOR_PHONE) == [RETRY_REPLY]

    @pytest.mark.asyncio
    async def test_send_failure_is_500_but_inbound_is_kept(self, client, db_session, fake_gateway):
        fake_gateway.failing.add(VISITOR_PHONE)

        response = await client.post(WEBHOOK, json={"chatId": "23276400002@c.us", "text": "hi"})

        assert response.status_code == 500
        assert response.json()["error"] == "upstream_error"
        [inbound] = await _messages(db_session)
        assert inbound.direction == MessageDirection.INBOUND
