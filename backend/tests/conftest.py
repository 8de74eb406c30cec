"""Pytest configuration and shared fixtures.

This module provides centralized test fixtures for:
- Test database engine and sessions (SQLite file per test, or DATABASE_TEST_URL)
- HTTP client for API testing with auth, gateway and retrieval overrides
- In-memory fakes for the WhatsApp gateway and retrieval backend
- Seed helpers for patients, visitors and staff
"""

import json
import os
import uuid
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from prestrack.auth import ROLE_ADMIN, ROLE_PROVIDER, Caller, verify_bearer_token
from prestrack.database import Base, get_db
from prestrack.main import app
from prestrack.models import (
    AuthSession,
    ContactChannel,
    Patient,
    ProviderProfile,
    StaffUser,
    SubjectType,
)
from prestrack.services.gateway import WhatsAppGateway, get_gateway
from prestrack.services.orchestrator import QueryOrchestrator, SearchCache, get_orchestrator
from prestrack.services.retrieval import RetrievalClient, get_retrieval_client

ADMIN = Caller(user_id="admin-1", role=ROLE_ADMIN, email="admin@example.org")
PROVIDER = Caller(user_id="provider-1", role=ROLE_PROVIDER, email="provider@example.org")
OTHER = Caller(user_id="clerk-1", role="clerk", email="clerk@example.org")

GATEWAY_URL = "http://gateway.test"
RETRIEVAL_URL = "http://retrieval.test"


# =============================================================================
# Fakes for outbound services
# =============================================================================


class FakeGateway:
    """Records gateway sends; phones in ``failing`` get a 502."""

    def __init__(self):
        self.sent: list[dict] = []
        self.failing: set[str] = set()

    def handler(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        if payload["phoneE164"] in self.failing:
            return httpx.Response(502, text="gateway down")
        self.sent.append(payload)
        return httpx.Response(200, json={"ok": True})

    def to(self, phone: str) -> list[str]:
        return [m["message"] for m in self.sent if m["phoneE164"] == phone]


class FakeRetrievalBackend:
    """Minimal stand-in for the retrieval backend's HTTP API."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.jobs: dict[str, dict] = {}
        self.matches: list[dict] = []
        self.search_fails = False
        self.drop_last_job = False
        self.chatbot_reply = "chatbot says hi"
        self._next_job = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        body = json.loads(request.content) if request.content else {}

        if path == "/api/v1/files/ingest-urls":
            jobs = []
            for f in body["files"]:
                self._next_job += 1
                job_id = f"job-{self._next_job}"
                self.jobs[job_id] = {
                    "jobId": job_id,
                    "stage": "queued",
                    "progress": 0,
                    "message": "Queued",
                    "updated": "2026-10-19T10:00:00Z",
                }
                jobs.append({"jobId": job_id, "url": f["url"]})
            if self.drop_last_job:
                jobs = jobs[:-1]
            return httpx.Response(200, json={"jobs": jobs})

        if path.startswith("/api/v1/jobs/"):
            job_id = path.rsplit("/", 1)[-1]
            if job_id not in self.jobs:
                return httpx.Response(404, text="job not found")
            return httpx.Response(200, json=self.jobs[job_id])

        if path == "/api/v1/embeddings/search":
            if self.search_fails:
                return httpx.Response(503, text="index unavailable")
            return httpx.Response(200, json={"matches": self.matches})

        if path == "/api/v1/message":
            return httpx.Response(200, text=self.chatbot_reply)

        if path.startswith("/api/v1/files/") or path == "/api/v1/files/purge":
            return httpx.Response(200, json={"deleted": True})

        return httpx.Response(404, text="no route")

    def search_bodies(self) -> list[dict]:
        return [
            json.loads(r.content)
            for r in self.requests
            if r.url.path == "/api/v1/embeddings/search"
        ]


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def fake_retrieval() -> FakeRetrievalBackend:
    return FakeRetrievalBackend()


@pytest_asyncio.fixture
async def gateway(fake_gateway):
    """WhatsAppGateway wired to the fake gateway."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_gateway.handler))
    yield WhatsAppGateway(client=client, base_url=GATEWAY_URL, lid="")
    await client.aclose()


@pytest_asyncio.fixture
async def retrieval(fake_retrieval):
    """RetrievalClient wired to the fake retrieval backend."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_retrieval.handler))
    yield RetrievalClient(client=client, base_url=RETRIEVAL_URL, api_key="test-key")
    await client.aclose()


@pytest.fixture
def orchestrator(retrieval) -> QueryOrchestrator:
    """Search-and-summarize orchestrator with a private cache and no LLM."""
    return QueryOrchestrator(retrieval, composer=None, cache=SearchCache(), chatbot_id="")


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create test database engine with automatic schema management.

    Creates all tables before tests, drops them after.
    Uses DATABASE_TEST_URL env var if set, otherwise a SQLite file per test.
    """
    db_url = os.environ.get("DATABASE_TEST_URL") or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"

    engine = create_async_engine(db_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncSession:
    """Test database session.

    Seed data must be committed to be visible to API requests, which use
    their own sessions.
    """
    async with session_maker() as session:
        yield session
        await session.rollback()


# =============================================================================
# HTTP Client Fixtures
# =============================================================================


class CallerSwitch:
    """Auth override whose caller a test can swap mid-test."""

    def __init__(self, caller: Caller = ADMIN):
        self.caller = caller

    async def __call__(self) -> Caller:
        return self.caller


@pytest.fixture
def auth() -> CallerSwitch:
    return CallerSwitch()


@pytest_asyncio.fixture
async def client(session_maker, auth, gateway, retrieval, orchestrator):
    """Async test client for the FastAPI app.

    Overrides the database, auth, gateway, retrieval and orchestrator
    dependencies so no request leaves the process.
    """

    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[verify_bearer_token] = auth
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_retrieval_client] = lambda: retrieval
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    """Authentication headers for API requests."""
    return {"Authorization": "Bearer test-token"}


# =============================================================================
# Seed helpers
# =============================================================================


async def make_patient(
    db: AsyncSession,
    phone: str,
    first_name: str = "Aminata",
    last_name: str = "Kamara",
) -> Patient:
    patient = Patient(id=uuid.uuid4(), first_name=first_name, last_name=last_name)
    db.add(patient)
    db.add(
        ContactChannel(
            owner_type=SubjectType.PATIENT,
            type="whatsapp",
            value=phone,
            verified=True,
            preferred=True,
            patient_id=patient.id,
        )
    )
    await db.commit()
    return patient


async def make_staff(
    db: AsyncSession,
    caller: Caller,
    *,
    name: str | None = None,
    phone: str | None = None,
    can_update: bool | None = None,
    can_close: bool | None = None,
    token: str | None = None,
) -> StaffUser:
    """Staff user for ``caller``; a provider profile is added when any profile field is given."""
    user = StaffUser(id=caller.user_id, email=caller.email, name=name, role=caller.role)
    db.add(user)
    if phone is not None or can_update is not None or can_close is not None:
        db.add(
            ProviderProfile(
                user_id=caller.user_id,
                phone_e164=phone,
                can_update_escalations=bool(can_update),
                can_close_escalations=bool(can_close),
            )
        )
    if token is not None:
        db.add(
            AuthSession(
                id=f"session-{caller.user_id}",
                token=token,
                user_id=caller.user_id,
                expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
            )
        )
    await db.commit()
    return user
