"""Tests for conversation ledger routes."""

import uuid

import pytest

from prestrack.models import MessageDirection, SenderType, SubjectType
from prestrack.services.identity import Identity, resolve_identity
from prestrack.services.ledger import append_message

from conftest import make_patient


async def _say(db, identity, body, direction=MessageDirection.INBOUND):
    sender = SenderType.AGENT if direction == MessageDirection.OUTBOUND else (
        SenderType.PATIENT if identity.is_patient else SenderType.VISITOR
    )
    await append_message(db, identity, direction=direction, sender_type=sender, body=body)
    await db.commit()


class TestConversationRoutes:
    @pytest.mark.asyncio
    async def test_list_names_and_last_message(self, client, db_session, auth_headers):
        patient = await make_patient(db_session, "+23276700001")
        visitor = await resolve_identity(db_session, "+23276700002", display_name="Isata")
        await _say(db_session, Identity(SubjectType.PATIENT, patient.id), "hello")
        await _say(db_session, visitor, "hi there")
        await _say(db_session, visitor, "How can I help?", MessageDirection.OUTBOUND)

        response = await client.get("/api/conversations", headers=auth_headers)

        assert response.status_code == 200
        items = response.json()["items"]
        assert [i["name"] for i in items] == ["Isata", "Aminata Kamara"]
        assert items[0]["lastBody"] == "How can I help?"
        assert items[0]["subjectType"] == "visitor"

    @pytest.mark.asyncio
    async def test_list_filters_by_subject_type(self, client, db_session, auth_headers):
        patient = await make_patient(db_session, "+23276700001")
        visitor = await resolve_identity(db_session, "+23276700002")
        await _say(db_session, Identity(SubjectType.PATIENT, patient.id), "hello")
        await _say(db_session, visitor, "hi")

        response = await client.get(
            "/api/conversations", params={"subjectType": "patient"}, headers=auth_headers
        )

        [item] = response.json()["items"]
        assert item["subjectId"] == str(patient.id)

    @pytest.mark.asyncio
    async def test_by_subject_newest_first(self, client, db_session, auth_headers):
        patient = await make_patient(db_session, "+23276700001")
        identity = Identity(SubjectType.PATIENT, patient.id)
        for body in ("one", "two", "three"):
            await _say(db_session, identity, body)

        response = await client.get(
            "/api/conversations/by-subject",
            params={"subjectType": "patient", "subjectId": str(patient.id), "limit": 2},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert [m["body"] for m in response.json()["messages"]] == ["three", "two"]
        assert response.json()["conversationId"] is not None

    @pytest.mark.asyncio
    async def test_by_subject_without_conversation(self, client, auth_headers):
        response = await client.get(
            "/api/conversations/by-subject",
            params={"subjectType": "visitor", "subjectId": str(uuid.uuid4())},
            headers=auth_headers,
        )

        assert response.json() == {"conversationId": None, "messages": []}

    @pytest.mark.asyncio
    async def test_by_subject_bad_type(self, client, auth_headers):
        response = await client.get(
            "/api/conversations/by-subject",
            params={"subjectType": "robot", "subjectId": str(uuid.uuid4())},
            headers=auth_headers,
        )

        assert response.status_code == 400
