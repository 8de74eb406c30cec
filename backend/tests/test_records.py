"""Tests for patient and visitor record operations."""

import uuid

import pytest
from sqlalchemy import func, select

from prestrack.errors import NotFoundError, ValidationError
from prestrack.models import (
    AccessLogDocument,
    AllergyDocument,
    CommMessage,
    ContactChannel,
    Conversation,
    Document,
    EscalationDocument,
    EscalationNote,
    EscalationStatus,
    MessageDirection,
    Patient,
    Pregnancy,
    SenderType,
    SubjectType,
    Visitor,
)
from prestrack.services import records
from prestrack.services.identity import Identity, resolve_identity
from prestrack.services.ledger import append_message

from conftest import ADMIN, PROVIDER, make_patient, make_staff

PATIENT_PHONE = "+23276500001"
VISITOR_PHONE = "+23276500002"


async def _count(db, model) -> int:
    return await db.scalar(select(func.count()).select_from(model))


async def _patient_with_history(db) -> Patient:
    patient = await make_patient(db, PATIENT_PHONE)
    identity = Identity(SubjectType.PATIENT, patient.id)
    await append_message(
        db, identity, direction=MessageDirection.INBOUND, sender_type=SenderType.PATIENT, body="hello"
    )
    escalation = EscalationDocument(
        patient_id=patient.id,
        title="Medical escalation",
        status=EscalationStatus.OPEN,
        summary="Swelling",
        subject_type=SubjectType.PATIENT,
        subject_id=patient.id,
        phone_e164=PATIENT_PHONE,
        note_count=1,
        meta={},
    )
    db.add(escalation)
    await db.flush()
    db.add(EscalationNote(escalation_id=escalation.id, seq=1, author="admin@example.org", body="Seen"))
    db.add(AllergyDocument(patient_id=patient.id, title="Allergies", meta={"items": ["penicillin"]}))
    db.add(Pregnancy(patient_id=patient.id))
    await db.commit()
    return patient


class TestDocumentsAndAudit:
    @pytest.mark.asyncio
    async def test_documents_filtered_by_type(self, db_session):
        patient = await _patient_with_history(db_session)

        everything = await records.list_documents(db_session, patient.id)
        allergies = await records.list_documents(db_session, patient.id, "allergies")

        assert {d.type_code for d in everything} == {"allergies", "medical_escalation"}
        assert [d.title for d in allergies] == ["Allergies"]

    @pytest.mark.asyncio
    async def test_unknown_patient(self, db_session):
        with pytest.raises(NotFoundError):
            await records.list_documents(db_session, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_audit_collects_messages_and_escalations(self, db_session):
        patient = await _patient_with_history(db_session)

        audit = await records.patient_audit(db_session, patient.id)

        assert audit.conversation_id is not None
        assert [m.body for m in audit.messages] == ["hello"]
        assert [e.summary for e in audit.escalations] == ["Swelling"]

    @pytest.mark.asyncio
    async def test_routes(self, client, db_session, auth_headers):
        patient = await _patient_with_history(db_session)

        audit = await client.get(f"/api/patients/{patient.id}/audit", headers=auth_headers)
        documents = await client.get(
            f"/api/patients/{patient.id}/documents", params={"type": "allergies"}, headers=auth_headers
        )

        assert audit.status_code == 200
        assert audit.json()["messages"][0]["body"] == "hello"
        assert audit.json()["escalations"][0]["status"] == "open"
        [document] = documents.json()
        assert document["typeCode"] == "allergies"
        assert document["metadata"] == {"items": ["penicillin"]}


class TestNotifyAccess:
    @pytest.mark.asyncio
    async def test_logs_access_and_tells_patient(self, db_session, gateway, fake_gateway):
        patient = await make_patient(db_session, PATIENT_PHONE)
        await make_staff(db_session, PROVIDER, name="Nurse Kadiatu", phone="+23277000009")

        notice = await records.notify_access(db_session, gateway, PROVIDER, patient.id)

        assert notice.send_error is None
        assert notice.document.meta["providerName"] == "Nurse Kadiatu"
        assert notice.document.meta["providerPhone"] == "+23277000009"
        [body] = fake_gateway.to(PATIENT_PHONE)
        assert body.startswith("Prestrack notice:\nNurse Kadiatu (+23277000009) viewed your medical record on ")
        assert body.endswith("If this wasn't you, reply STOP.")

    @pytest.mark.asyncio
    async def test_unknown_staff_falls_back_to_caller_email(self, db_session, gateway, fake_gateway):
        patient = await make_patient(db_session, PATIENT_PHONE)

        notice = await records.notify_access(db_session, gateway, ADMIN, patient.id)

        assert notice.document.meta["providerName"] == ADMIN.email
        assert notice.document.meta["providerPhone"] == "unknown"

    @pytest.mark.asyncio
    async def test_patient_without_contact(self, db_session, gateway):
        patient = Patient(first_name="No", last_name="Phone")
        db_session.add(patient)
        await db_session.commit()

        with pytest.raises(ValidationError):
            await records.notify_access(db_session, gateway, ADMIN, patient.id)

    @pytest.mark.asyncio
    async def test_route_ok(self, client, db_session, auth_headers):
        patient = await make_patient(db_session, PATIENT_PHONE)

        response = await client.post(f"/api/patients/{patient.id}/notify-access", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["ok"] is True
        assert await _count(db_session, AccessLogDocument) == 1

    @pytest.mark.asyncio
    async def test_route_partial_success_keeps_log(self, client, db_session, auth_headers, fake_gateway):
        patient = await make_patient(db_session, PATIENT_PHONE)
        fake_gateway.failing.add(PATIENT_PHONE)

        response = await client.post(f"/api/patients/{patient.id}/notify-access", headers=auth_headers)

        assert response.status_code == 207
        body = response.json()
        assert "gateway down" in body["error"]
        assert uuid.UUID(body["resource"]["documentId"])
        assert await _count(db_session, AccessLogDocument) == 1


class TestDelete:
    @pytest.mark.asyncio
    async def test_patient_delete_cascades(self, db_session):
        patient = await _patient_with_history(db_session)

        await records.delete_patient(db_session, patient.id)

        for model in (Patient, ContactChannel, Conversation, CommMessage, Document, EscalationNote, Pregnancy):
            assert await _count(db_session, model) == 0, model.__name__

    @pytest.mark.asyncio
    async def test_patient_delete_leaves_others(self, db_session):
        patient = await _patient_with_history(db_session)
        other = await make_patient(db_session, "+23276500009", first_name="Mariama")

        await records.delete_patient(db_session, patient.id)

        assert await db_session.get(Patient, other.id) is not None
        assert await _count(db_session, ContactChannel) == 1

    @pytest.mark.asyncio
    async def test_visitor_delete_cascades(self, db_session):
        identity = await resolve_identity(db_session, VISITOR_PHONE)
        await append_message(
            db_session, identity, direction=MessageDirection.INBOUND, sender_type=SenderType.VISITOR, body="hi"
        )
        db_session.add(
            EscalationDocument(
                title="Medical escalation",
                status=EscalationStatus.OPEN,
                summary="Fever",
                subject_type=SubjectType.VISITOR,
                subject_id=identity.id,
                phone_e164=VISITOR_PHONE,
                note_count=0,
                meta={},
            )
        )
        await db_session.commit()

        await records.delete_visitor(db_session, identity.id)

        for model in (Visitor, ContactChannel, Conversation, CommMessage, EscalationDocument):
            assert await _count(db_session, model) == 0, model.__name__

    @pytest.mark.asyncio
    async def test_unknown_subjects(self, db_session):
        with pytest.raises(NotFoundError):
            await records.delete_patient(db_session, uuid.uuid4())
        with pytest.raises(NotFoundError):
            await records.delete_visitor(db_session, uuid.uuid4())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/api/patients/delete", "/api/visitors/delete"])
    async def test_delete_is_admin_only(self, client, auth, auth_headers, path):
        auth.caller = PROVIDER

        response = await client.post(path, json={"id": str(uuid.uuid4())}, headers=auth_headers)

        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    @pytest.mark.asyncio
    async def test_delete_route(self, client, db_session, auth_headers):
        patient = await _patient_with_history(db_session)

        response = await client.post("/api/patients/delete", json={"id": str(patient.id)}, headers=auth_headers)
        missing = await client.post("/api/patients/delete", json={"id": str(patient.id)}, headers=auth_headers)

        assert response.json() == {"ok": True}
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_requires_uuid(self, client, auth_headers):
        response = await client.post("/api/visitors/delete", json={"id": "not-a-uuid"}, headers=auth_headers)

        assert response.status_code == 400
