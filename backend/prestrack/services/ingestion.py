"""Ingestion job tracking.

A stateless proxy over the retrieval backend's job queue: enqueue returns one
job id per file, polling returns the backend's view of a job. No job state is
kept here and there is no server-side poll loop.
"""

import logging
from typing import Any

from pydantic import ValidationError as SchemaError

from prestrack.config import settings
from prestrack.errors import UpstreamError, ValidationError
from prestrack.schemas.ingestion import IngestFile, IngestJob, JobStatus
from prestrack.services.retrieval import RetrievalClient

logger = logging.getLogger(__name__)


async def enqueue_files(
    retrieval: RetrievalClient,
    files: list[IngestFile],
    namespace: str | None = None,
) -> list[IngestJob]:
    """Submit files for ingestion.

    Raises:
        ValidationError: No files given.
        UpstreamError: The backend rejected the batch or did not return one job per file.
    """
    if not files:
        raise ValidationError("files required")
    ns = namespace or settings.retrieval_namespace

    payload: list[dict[str, Any]] = [f.model_dump(exclude_none=True) for f in files]
    response = await retrieval.enqueue_ingestion(payload, namespace=ns)

    raw_jobs = response.get("jobs")
    if not isinstance(raw_jobs, list):
        raise UpstreamError("Ingestion response missing jobs")

    jobs = [
        IngestJob(job_id=str(job["jobId"]), url=str(job.get("url") or ""))
        for job in raw_jobs
        if isinstance(job, dict) and job.get("jobId")
    ]
    if len(jobs) != len(files):
        raise UpstreamError(f"Ingestion returned {len(jobs)} job(s) for {len(files)} file(s)")
    logger.info("Enqueued %d file(s) into namespace %s, %d job(s)", len(files), ns, len(jobs))
    return jobs


async def poll_job(retrieval: RetrievalClient, job_id: str) -> JobStatus:
    """Current stage and progress of one job.

    Raises:
        ValidationError: Empty id.
        UpstreamError: The backend does not know the job, failed, or sent a malformed reply.
    """
    job_id = (job_id or "").strip()
    if not job_id:
        raise ValidationError("id required")
    data = await retrieval.get_job(job_id)
    data.setdefault("jobId", job_id)
    try:
        return JobStatus.model_validate(data)
    except SchemaError as exc:
        logger.warning("Job %s returned an unexpected shape: %s", job_id, exc)
        raise UpstreamError("Job fetch returned an unexpected shape") from exc


async def delete_file(
    retrieval: RetrievalClient,
    file_id: str | None = None,
    url: str | None = None,
    namespace: str | None = None,
) -> dict[str, Any]:
    """Remove an ingested file by id or by source URL."""
    if not (file_id or url):
        raise ValidationError("fileId or url required")
    result = await retrieval.delete_file(
        file_id=file_id,
        url=url,
        namespace=namespace or settings.retrieval_namespace,
    )
    logger.info("Deleted ingested file %s", file_id or url)
    return result
