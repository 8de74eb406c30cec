"""Pydantic schemas for provider-facing question answering and consent requests."""

from pydantic import Field

from prestrack.schemas.common import ApiModel


class AskRequest(ApiModel):
    question: str = Field(min_length=1, max_length=4000)
    patient_phone_e164: str | None = None


class MatchResponse(ApiModel):
    title: str
    text: str
    score: float
    source_url: str | None = None


class AskResponse(ApiModel):
    answer: str
    matches: list[MatchResponse]
    billable: bool


class ConsentRequest(ApiModel):
    patient_phone_e164: str


class ConsentResponse(ApiModel):
    ok: bool = True
    token: str
