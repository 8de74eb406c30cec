"""Pydantic schemas for document ingestion."""

from typing import Any

from pydantic import ConfigDict, Field

from prestrack.schemas.common import ApiModel


class IngestFile(ApiModel):
    """A document to ingest, fetched by the backend from ``url``."""

    url: str = Field(min_length=1, max_length=2048)
    filename: str = Field(min_length=1, max_length=512)
    mime: str | None = None
    metadata: dict[str, Any] | None = None


class IngestRequest(ApiModel):
    files: list[IngestFile]
    namespace: str | None = None


class IngestJob(ApiModel):
    job_id: str
    url: str


class IngestResponse(ApiModel):
    jobs: list[IngestJob]


class JobStatus(ApiModel):
    """Backend view of one ingestion job. Unknown fields pass through."""

    model_config = ConfigDict(extra="allow")

    job_id: str
    stage: str | None = None
    progress: float | None = None
    message: str | None = None
    total: int | None = None
    updated: str | int | float | None = None


class DeleteFileRequest(ApiModel):
    file_id: str | None = None
    url: str | None = None
    namespace: str | None = None


class DeleteFileResponse(ApiModel):
    ok: bool = True
    result: dict[str, Any] = Field(default_factory=dict)
