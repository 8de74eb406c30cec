"""Retrieval backend client.

The retrieval backend owns document ingestion, the embeddings index and an
optional hosted chatbot. This module is the only place that speaks its HTTP
API. Every request carries the API key, an explicit timeout, and translates
failures into ``UpstreamError`` (``UpstreamTimeoutError`` for timeouts) with
the backend's status and body in the message.
"""

import logging
from typing import Any
from urllib.parse import quote

import httpx

from prestrack.config import settings
from prestrack.errors import UpstreamError, UpstreamTimeoutError, ValidationError

logger = logging.getLogger(__name__)

INGEST_PATH = "/api/v1/files/ingest-urls"
JOB_PATH = "/api/v1/jobs/{job_id}"
SEARCH_PATH = "/api/v1/embeddings/search"
FILE_PATH = "/api/v1/files/{file_id}"
PURGE_PATH = "/api/v1/files/purge"
MESSAGE_PATH = "/api/v1/message"


class RetrievalClient:
    """Async client for ingestion, job status, similarity search and chatbot calls.

    Example:
        async with RetrievalClient() as retrieval:
            found = await retrieval.search("iron supplements", namespace="default")
            for match in found["matches"]:
                print(match["score"])
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float | None = None,
    ):
        """
        Args:
            client: Optional pre-configured httpx client (for testing).
            base_url: Backend base URL. Defaults to settings.
            api_key: Backend API key. Defaults to settings.
            timeout_seconds: Per-call timeout. Defaults to settings.
        """
        self._base_url = (base_url or settings.retrieval_base_url).rstrip("/")
        self._api_key = api_key or settings.retrieval_api_key
        timeout = timeout_seconds or settings.retrieval_timeout_seconds
        self._timeout = httpx.Timeout(timeout, connect=min(timeout, 10.0))
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self._timeout)

    async def __aenter__(self) -> "RetrievalClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        return {
            "X-API-Key": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
        }

    async def _request(
        self,
        method: str,
        path: str,
        failure: str,
        *,
        json: dict[str, Any] | None = None,
        accept: str = "application/json",
    ) -> httpx.Response:
        headers = self._headers()
        headers["Accept"] = accept
        try:
            response = await self._client.request(
                method,
                f"{self._base_url}{path}",
                json=json,
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise UpstreamTimeoutError(f"{failure}: timed out") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"{failure}: {exc}") from exc

        if response.is_error:
            raise UpstreamError(
                f"{failure}: {response.status_code} {response.text}",
                upstream_status=response.status_code,
            )
        return response

    @staticmethod
    def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    async def enqueue_ingestion(
        self,
        files: list[dict[str, Any]],
        namespace: str,
    ) -> dict[str, Any]:
        """Submit file URLs for ingestion; returns ``{"jobs": [{jobId, url}]}``."""
        response = await self._request(
            "POST",
            INGEST_PATH,
            "Ingestion request failed",
            json={"files": files, "namespace": namespace},
        )
        return self._json_or_empty(response)

    async def get_job(self, job_id: str) -> dict[str, Any]:
        """Fetch ``{jobId, stage, progress, message, total?, updated}`` for a job."""
        response = await self._request(
            "GET",
            JOB_PATH.format(job_id=quote(job_id, safe="")),
            "Job fetch failed",
        )
        return self._json_or_empty(response)

    async def search(
        self,
        query: str,
        namespace: str,
        top_k: int = 5,
        index_name: str | None = None,
        filter: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Similarity search; returns ``{"matches": [{id, score, metadata}]}``."""
        body: dict[str, Any] = {"query": query, "namespace": namespace, "topK": top_k}
        if index_name:
            body["indexName"] = index_name
        if filter:
            body["filter"] = filter
        response = await self._request("POST", SEARCH_PATH, "Embeddings search failed", json=body)
        return self._json_or_empty(response)

    async def delete_file(
        self,
        file_id: str | None = None,
        url: str | None = None,
        namespace: str | None = None,
    ) -> dict[str, Any]:
        """Delete an ingested file by id, or purge it by source URL."""
        if file_id:
            response = await self._request(
                "DELETE",
                FILE_PATH.format(file_id=quote(file_id, safe="")),
                "Delete file by id failed",
                json={"namespace": namespace} if namespace else None,
            )
            return self._json_or_empty(response)

        if url:
            body: dict[str, Any] = {"url": url}
            if namespace:
                body["namespace"] = namespace
            response = await self._request("POST", PURGE_PATH, "Purge by URL failed", json=body)
            return self._json_or_empty(response)

        raise ValidationError("delete requires url or fileId")

    async def send_chatbot_message(
        self,
        message: str,
        chatbot_id: str,
        session_hint: str | None = None,
    ) -> str:
        """Ask the hosted chatbot; returns its plain-text reply."""
        text = str(message or "").strip()
        if not text:
            raise ValidationError("message is required")
        body: dict[str, Any] = {"chatbotId": chatbot_id, "message": text}
        if session_hint:
            body["email"] = session_hint
        response = await self._request(
            "POST",
            MESSAGE_PATH,
            "Message request failed",
            json=body,
            accept="text/plain",
        )
        return response.text.strip()


async def get_retrieval_client():
    """FastAPI dependency yielding a request-scoped retrieval client."""
    client = RetrievalClient()
    try:
        yield client
    finally:
        await client.close()
