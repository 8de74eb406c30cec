"""Tests for ingestion job tracking."""

import json

import pytest

from prestrack.errors import UpstreamError, ValidationError
from prestrack.schemas import IngestFile
from prestrack.services import ingestion as ingestion_service

FILES = [
    {"url": "https://files.example.org/anc-guide.pdf", "filename": "anc-guide.pdf", "mime": "application/pdf"},
    {"url": "https://files.example.org/nutrition.pdf", "filename": "nutrition.pdf"},
]


class TestEnqueue:
    @pytest.mark.asyncio
    async def test_one_distinct_job_per_file(self, retrieval, fake_retrieval):
        jobs = await ingestion_service.enqueue_files(
            retrieval, [IngestFile(**f) for f in FILES], namespace="clinic"
        )

        assert [j.url for j in jobs] == [f["url"] for f in FILES]
        assert len({j.job_id for j in jobs}) == 2
        [request] = fake_retrieval.requests
        body = json.loads(request.content)
        assert body["namespace"] == "clinic"
        assert body["files"][0] == FILES[0]
        assert "mime" not in body["files"][1]

    @pytest.mark.asyncio
    async def test_empty_batch_is_rejected(self, retrieval, fake_retrieval):
        with pytest.raises(ValidationError):
            await ingestion_service.enqueue_files(retrieval, [])

        assert fake_retrieval.requests == []

    @pytest.mark.asyncio
    async def test_missing_job_for_a_file_is_upstream_error(self, retrieval, fake_retrieval):
        fake_retrieval.drop_last_job = True

        with pytest.raises(UpstreamError) as exc_info:
            await ingestion_service.enqueue_files(retrieval, [IngestFile(**f) for f in FILES])

        assert exc_info.value.message == "Ingestion returned 1 job(s) for 2 file(s)"


class TestPoll:
    @pytest.mark.asyncio
    async def test_poll_known_job(self, retrieval, fake_retrieval):
        [job, _] = await ingestion_service.enqueue_files(retrieval, [IngestFile(**f) for f in FILES])
        fake_retrieval.jobs[job.job_id].update(stage="embedding", progress=40, total=12)

        status = await ingestion_service.poll_job(retrieval, job.job_id)

        assert status.job_id == job.job_id
        assert status.stage == "embedding"
        assert status.progress == 40
        assert status.total == 12

    @pytest.mark.asyncio
    async def test_poll_unknown_job_surfaces_backend_status(self, retrieval):
        with pytest.raises(UpstreamError) as exc_info:
            await ingestion_service.poll_job(retrieval, "job-404")

        assert exc_info.value.upstream_status == 404
        assert exc_info.value.message.startswith("Job fetch failed: 404")

    @pytest.mark.asyncio
    async def test_poll_requires_id(self, retrieval):
        with pytest.raises(ValidationError):
            await ingestion_service.poll_job(retrieval, "  ")

    @pytest.mark.asyncio
    async def test_epoch_updated_is_accepted(self, retrieval, fake_retrieval):
        [job, _] = await ingestion_service.enqueue_files(retrieval, [IngestFile(**f) for f in FILES])
        fake_retrieval.jobs[job.job_id]["updated"] = 1760868000000

        status = await ingestion_service.poll_job(retrieval, job.job_id)

        assert status.updated == 1760868000000

    @pytest.mark.asyncio
    async def test_malformed_job_is_upstream_error(self, retrieval, fake_retrieval):
        [job, _] = await ingestion_service.enqueue_files(retrieval, [IngestFile(**f) for f in FILES])
        fake_retrieval.jobs[job.job_id]["jobId"] = 123

        with pytest.raises(UpstreamError) as exc_info:
            await ingestion_service.poll_job(retrieval, job.job_id)

        assert exc_info.value.message == "Job fetch returned an unexpected shape"


class TestIngestionRoutes:
    @pytest.mark.asyncio
    async def test_ingest_then_poll(self, client, auth_headers):
        response = await client.post("/api/rag/ingest", json={"files": FILES}, headers=auth_headers)

        assert response.status_code == 200
        jobs = response.json()["jobs"]
        assert len(jobs) == 2
        assert jobs[0]["jobId"] != jobs[1]["jobId"]

        polled = await client.get("/api/rag/job", params={"id": jobs[1]["jobId"]}, headers=auth_headers)
        assert polled.status_code == 200
        assert polled.json()["jobId"] == jobs[1]["jobId"]
        assert polled.json()["stage"] == "queued"

    @pytest.mark.asyncio
    async def test_poll_unknown_job_is_500(self, client, auth_headers):
        response = await client.get("/api/rag/job", params={"id": "nope"}, headers=auth_headers)

        assert response.status_code == 500
        assert response.json()["error"] == "upstream_error"
        assert response.json()["detail"].startswith("Job fetch failed: 404")

    @pytest.mark.asyncio
    async def test_poll_without_id_is_400(self, client, auth_headers):
        response = await client.get("/api/rag/job", headers=auth_headers)

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_empty_files_is_400(self, client, auth_headers):
        response = await client.post("/api/rag/ingest", json={"files": []}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["detail"] == "files required"

    @pytest.mark.asyncio
    async def test_delete_by_id_and_by_url(self, client, auth_headers, fake_retrieval):
        by_id = await client.post("/api/rag/delete", json={"fileId": "file-9"}, headers=auth_headers)
        by_url = await client.post(
            "/api/rag/delete", json={"url": FILES[0]["url"]}, headers=auth_headers
        )

        assert by_id.status_code == 200
        assert by_url.json() == {"ok": True, "result": {"deleted": True}}
        assert [(r.method, r.url.path) for r in fake_retrieval.requests] == [
            ("DELETE", "/api/v1/files/file-9"),
            ("POST", "/api/v1/files/purge"),
        ]

    @pytest.mark.asyncio
    async def test_delete_needs_target(self, client, auth_headers):
        response = await client.post("/api/rag/delete", json={}, headers=auth_headers)

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_malformed_job_is_500(self, client, auth_headers, fake_retrieval):
        response = await client.post("/api/rag/ingest", json={"files": FILES[:1]}, headers=auth_headers)
        [job] = response.json()["jobs"]
        fake_retrieval.jobs[job["jobId"]]["progress"] = "halfway"

        polled = await client.get("/api/rag/job", params={"id": job["jobId"]}, headers=auth_headers)

        assert polled.status_code == 500
        assert polled.json() == {"error": "upstream_error", "detail": "Job fetch returned an unexpected shape"}

    @pytest.mark.asyncio
    async def test_short_job_list_is_500(self, client, auth_headers, fake_retrieval):
        fake_retrieval.drop_last_job = True

        response = await client.post("/api/rag/ingest", json={"files": FILES}, headers=auth_headers)

        assert response.status_code == 500
        assert response.json()["error"] == "upstream_error"
