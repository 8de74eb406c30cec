"""Document ingestion routes (enqueue, poll, delete).

Stateless: the dashboard keeps the job ids and owns the poll loop.
"""

from fastapi import APIRouter, Depends, Query

from prestrack.auth import Caller, verify_bearer_token
from prestrack.schemas import (
    DeleteFileRequest,
    DeleteFileResponse,
    IngestRequest,
    IngestResponse,
    JobStatus,
)
from prestrack.services import ingestion as ingestion_service
from prestrack.services.retrieval import RetrievalClient, get_retrieval_client

router = APIRouter(prefix="/rag", tags=["rag"])


@router.post("/ingest", response_model=IngestResponse)
async def ingest(
    request: IngestRequest,
    _caller: Caller = Depends(verify_bearer_token),
    retrieval: RetrievalClient = Depends(get_retrieval_client),
) -> IngestResponse:
    """Enqueue files; one job id per file."""
    jobs = await ingestion_service.enqueue_files(retrieval, request.files, request.namespace)
    return IngestResponse(jobs=jobs)


@router.get("/job", response_model=JobStatus)
async def job_status(
    job_id: str = Query("", alias="id"),
    _caller: Caller = Depends(verify_bearer_token),
    retrieval: RetrievalClient = Depends(get_retrieval_client),
) -> JobStatus:
    return await ingestion_service.poll_job(retrieval, job_id)


@router.post("/delete", response_model=DeleteFileResponse)
async def delete_file(
    request: DeleteFileRequest,
    _caller: Caller = Depends(verify_bearer_token),
    retrieval: RetrievalClient = Depends(get_retrieval_client),
) -> DeleteFileResponse:
    result = await ingestion_service.delete_file(
        retrieval,
        file_id=request.file_id,
        url=request.url,
        namespace=request.namespace,
    )
    return DeleteFileResponse(result=result)
