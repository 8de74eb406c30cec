"""Shared schema base and error envelope.

The public API speaks camelCase JSON (``jobId``, ``patientPhoneE164``) while
Python code uses snake_case; ``ApiModel`` accepts and emits both.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base for request/response schemas."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ErrorResponse(BaseModel):
    """Error body: machine-readable code plus message."""

    error: str
    detail: str


class OkResponse(ApiModel):
    ok: bool = True


class PartialSuccess(ApiModel):
    """Multi-status body: the primary write succeeded, a side effect did not."""

    resource: dict[str, Any]
    error: str
