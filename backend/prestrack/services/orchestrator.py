"""Retrieval-augmented query orchestration.

``QueryOrchestrator.answer`` turns a question plus an optional ``QueryScope``
into ``{answer, matches, billable}``. The scope is always an explicit argument:
nothing about the caller's identity is held in module or process state, so
concurrent requests cannot see each other's scope.

Two answer paths:

1. Hosted chatbot (``RETRIEVAL_CHATBOT_ID`` set): the question is forwarded
   with a per-subject session hint and the reply returned verbatim, with no
   matches.
2. Search and compose: similarity search filtered to the scope's phone, then
   an LLM summary of the passages, or a plain source list when no LLM is
   configured or the call fails.

A patient-scoped query for someone other than the patient themself is only
possible through ``authorize_patient_scope``, which requires granted consent.
"""

import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from fastapi import Depends
from openai import AsyncOpenAI
from sqlalchemy.ext.asyncio import AsyncSession

from prestrack.config import settings
from prestrack.errors import AuthzError, NotFoundError, UpstreamError, ValidationError
from prestrack.services.consent import has_granted_consent
from prestrack.services.identity import find_patient_id_by_phone
from prestrack.services.phone import mask_phone, validate_e164
from prestrack.services.retrieval import RetrievalClient, get_retrieval_client

logger = logging.getLogger(__name__)

MAX_PASSAGE_LENGTH = 4000
MAX_QUERY_KEY_LENGTH = 500
FALLBACK_SOURCE_COUNT = 3
DEFAULT_MAX_OUTPUT_TOKENS = 800

ANSWER_INSTRUCTIONS = (
    "You are a maternal and antenatal care assistant. Answer the user's question "
    "using only the numbered sources provided. If the sources do not contain the "
    "answer, say so briefly and suggest contacting a care provider. Never invent "
    "dosages, diagnoses or appointment details."
)
WHATSAPP_INSTRUCTIONS = " Reply in plain text suitable for WhatsApp, in at most a few short paragraphs."


# =============================================================================
# Scope
# =============================================================================


@dataclass(frozen=True)
class QueryScope:
    """Verified subject a query may be restricted to.

    Build one with ``QueryScope.for_self`` (a patient asking about their own
    record) or ``authorize_patient_scope`` (a provider asking about a patient
    who has granted consent).
    """

    patient_id: uuid.UUID
    phone_e164: str
    consented: bool = False

    @classmethod
    def for_self(cls, patient_id: uuid.UUID, phone_e164: str) -> "QueryScope":
        return cls(patient_id=patient_id, phone_e164=phone_e164)

    @property
    def session_key(self) -> str:
        return self.phone_e164

    def search_filter(self) -> dict[str, Any]:
        return {"patientPhoneE164": self.phone_e164}

    def chatbot_session_hint(self) -> str:
        digits = self.phone_e164.lstrip("+")
        return f"whatsapp_{digits}@{settings.chatbot_session_domain}"


async def authorize_patient_scope(db: AsyncSession, patient_phone: str) -> QueryScope:
    """Scope for a provider question about the patient on ``patient_phone``.

    Raises:
        ValidationError: Phone is not E.164.
        NotFoundError: No patient owns the phone.
        AuthzError: ``consent_required`` when the patient has not granted consent.
    """
    phone = validate_e164(patient_phone)
    if phone is None:
        raise ValidationError("invalid patientPhoneE164")

    patient_id = await find_patient_id_by_phone(db, phone)
    if patient_id is None:
        raise NotFoundError("patient not found for phone")

    if not await has_granted_consent(db, patient_id):
        logger.info("Patient-scoped query for %s denied: no consent", mask_phone(phone))
        raise AuthzError("patient has not granted consent", code="consent_required")

    return QueryScope(patient_id=patient_id, phone_e164=phone, consented=True)


# =============================================================================
# Results and cache
# =============================================================================


@dataclass
class RagMatch:
    """One evidence passage."""

    title: str
    text: str
    score: float
    source_url: str | None = None


@dataclass
class QueryResult:
    answer: str
    matches: list[RagMatch] = field(default_factory=list)
    billable: bool = False


def normalize_query_key(query: str) -> str:
    return " ".join(str(query or "").lower().split())[:MAX_QUERY_KEY_LENGTH]


class SearchCache:
    """Per-process TTL cache of shaped search results.

    Keys include the scope's session key, so one subject's cached matches are
    never returned for another subject's query. Expired entries are swept on
    every write and the oldest entries are evicted past ``max_entries``.
    """

    def __init__(self, ttl_seconds: float | None = None, max_entries: int | None = None):
        self._ttl = settings.rag_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._max_entries = max(1, settings.rag_cache_max_entries if max_entries is None else max_entries)
        # Insertion order is write order, oldest first
        self._entries: dict[str, tuple[float, list[RagMatch]]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def key(namespace: str, query: str, top_k: int, scope: QueryScope | None) -> str:
        session = f"sess={scope.session_key}" if scope else "sess=none"
        return f"{session}|ns={namespace}|k={top_k}|q={normalize_query_key(query)}"

    def get(self, key: str) -> list[RagMatch] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, matches = entry
        if time.monotonic() - stored_at >= self._ttl:
            self._entries.pop(key, None)
            return None
        return matches

    def set(self, key: str, matches: list[RagMatch]) -> None:
        now = time.monotonic()
        self._sweep(now)
        self._entries.pop(key, None)
        self._entries[key] = (now, matches)
        while len(self._entries) > self._max_entries:
            del self._entries[next(iter(self._entries))]

    def _sweep(self, now: float) -> None:
        for key, (stored_at, _) in list(self._entries.items()):
            if now - stored_at < self._ttl:
                break
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()


search_cache = SearchCache()


def shape_matches(raw_matches: list[dict[str, Any]], top_k: int) -> list[RagMatch]:
    """Sort backend matches by score, keep ``top_k`` and pull display fields from metadata."""
    ordered = sorted(raw_matches, key=lambda m: float(m.get("score") or 0), reverse=True)[:top_k]
    shaped: list[RagMatch] = []
    for i, match in enumerate(ordered):
        meta = match.get("metadata") or {}
        title = meta.get("title") or meta.get("filename") or meta.get("name") or f"Match {i + 1}"
        text = str(meta.get("text") or meta.get("content") or meta.get("chunk") or "")
        if len(text) > MAX_PASSAGE_LENGTH:
            text = text[:MAX_PASSAGE_LENGTH] + "…"
        source_url = meta.get("sourceUrl") or meta.get("url") or meta.get("source") or None
        shaped.append(
            RagMatch(
                title=str(title),
                text=text,
                score=float(match.get("score") or 0),
                source_url=source_url,
            )
        )
    return shaped


# =============================================================================
# Formatting
# =============================================================================

_TRAILING_WS = re.compile(r"\s+$")
_EXTRA_BLANK_LINES = re.compile(r"\n{3,}")
_HEADINGS = re.compile(r"^#+\s*", re.MULTILINE)
_BOLD = re.compile(r"\*{2,}")


def format_whatsapp(text: str) -> str:
    """Flatten markdown the WhatsApp client does not render."""
    text = _TRAILING_WS.sub("", str(text or ""))
    text = _EXTRA_BLANK_LINES.sub("\n\n", text)
    text = _HEADINGS.sub("", text)
    text = _BOLD.sub("*", text)
    return text.strip()


def summarize_sources(matches: list[RagMatch]) -> str:
    """Plain source list used when no composed answer is available."""
    if not matches:
        return ""
    top = matches[:FALLBACK_SOURCE_COUNT]
    header = "I found 1 relevant source:" if len(top) == 1 else f"I found {len(top)} relevant sources:"
    lines = [header]
    for i, match in enumerate(top, start=1):
        suffix = f" - {match.source_url}" if match.source_url else ""
        lines.append(f"{i}. {match.title}{suffix}")
    return "\n".join(lines)


# =============================================================================
# Answer composition
# =============================================================================


class AnswerComposer:
    """Composes an answer from passages with the OpenAI Responses API."""

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str | None = None,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
    ):
        """
        Args:
            client: Optional pre-configured AsyncOpenAI client (for testing).
            model: Model name. Defaults to settings.
            max_output_tokens: Output cap per answer.

        Raises:
            ValueError: If no client provided and OPENAI_API_KEY is not configured.
        """
        if client is not None:
            self._client = client
        else:
            if not settings.openai_api_key:
                raise ValueError("OPENAI_API_KEY is required to compose answers.")
            self._client = AsyncOpenAI(
                api_key=settings.openai_api_key,
                timeout=settings.openai_timeout_seconds,
                max_retries=0,
            )
        self._model = model or settings.openai_model
        self._max_output_tokens = max_output_tokens

    async def close(self) -> None:
        await self._client.close()

    async def compose(self, question: str, matches: list[RagMatch], whatsapp_style: bool = False) -> str:
        sources = "\n\n".join(
            f"[{i}] {m.title}\n{m.text}" for i, m in enumerate(matches, start=1)
        )
        instructions = ANSWER_INSTRUCTIONS + (WHATSAPP_INSTRUCTIONS if whatsapp_style else "")
        response = await self._client.responses.create(
            model=self._model,
            instructions=instructions,
            input=f"Sources:\n{sources}\n\nQuestion: {question}",
            max_output_tokens=self._max_output_tokens,
        )
        return (getattr(response, "output_text", None) or "").strip()


# =============================================================================
# Orchestrator
# =============================================================================


class QueryOrchestrator:
    """Answers questions against the retrieval backend.

    Example:
        orchestrator = QueryOrchestrator(retrieval)
        result = await orchestrator.answer("Is it safe to take iron daily?", scope)
        print(result.answer, len(result.matches))
    """

    def __init__(
        self,
        retrieval: RetrievalClient,
        composer: AnswerComposer | None = None,
        cache: SearchCache | None = None,
        chatbot_id: str | None = None,
        namespace: str | None = None,
        index_name: str | None = None,
        top_k: int | None = None,
    ):
        self._retrieval = retrieval
        self._composer = composer
        self._cache = cache if cache is not None else search_cache
        self._chatbot_id = settings.retrieval_chatbot_id if chatbot_id is None else chatbot_id
        self._namespace = namespace or settings.retrieval_namespace
        self._index_name = settings.retrieval_index_name if index_name is None else index_name
        self._top_k = top_k or settings.rag_default_top_k

    async def answer(
        self,
        question: str,
        scope: QueryScope | None = None,
        *,
        top_k: int | None = None,
        whatsapp_style: bool = False,
    ) -> QueryResult:
        """Answer ``question``, restricted to ``scope`` when given.

        Raises:
            ValidationError: Empty question.
            UpstreamError: The hosted chatbot failed. Search failures do not
                raise; they yield an empty answer.
        """
        text = str(question or "").strip()
        if not text:
            raise ValidationError("question required")

        if self._chatbot_id:
            reply = await self._retrieval.send_chatbot_message(
                text,
                chatbot_id=self._chatbot_id,
                session_hint=scope.chatbot_session_hint() if scope else None,
            )
            return QueryResult(answer=reply, matches=[], billable=bool(reply))

        matches = await self.search(text, scope, top_k=top_k)

        answer = ""
        if matches and self._composer is not None:
            try:
                answer = await self._composer.compose(text, matches, whatsapp_style=whatsapp_style)
            except Exception as exc:
                logger.warning("Answer composition failed, using source list: %s", exc)
                answer = ""
        if not answer:
            answer = summarize_sources(matches)

        answer = format_whatsapp(answer) if whatsapp_style else answer.strip()
        return QueryResult(answer=answer, matches=matches, billable=bool(answer))

    async def search(
        self,
        query: str,
        scope: QueryScope | None = None,
        *,
        top_k: int | None = None,
    ) -> list[RagMatch]:
        """Cached similarity search; an unreachable backend yields no matches."""
        k = top_k or self._top_k
        key = self._cache.key(self._namespace, query, k, scope)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        try:
            found = await self._retrieval.search(
                query,
                namespace=self._namespace,
                top_k=k,
                index_name=self._index_name or None,
                filter=scope.search_filter() if scope else None,
            )
        except UpstreamError as exc:
            logger.warning("Embeddings search failed: %s", exc.message)
            return []

        matches = shape_matches(found.get("matches") or [], k)
        self._cache.set(key, matches)
        return matches


async def get_orchestrator(retrieval: RetrievalClient = Depends(get_retrieval_client)):
    """FastAPI dependency yielding an orchestrator bound to the request's retrieval client."""
    composer = AnswerComposer() if settings.openai_api_key else None
    try:
        yield QueryOrchestrator(retrieval, composer=composer)
    finally:
        if composer is not None:
            await composer.close()
