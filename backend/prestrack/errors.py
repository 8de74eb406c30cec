"""Domain error taxonomy.

Every error carries a short machine-readable ``code`` and an HTTP status so the
application can render it uniformly as ``{"error": code, "detail": message}``.
Services raise these; routes never build error responses by hand.
"""


class PrestrackError(Exception):
    """Base class for domain errors."""

    status_code = 500
    code = "error"

    def __init__(self, message: str = "", *, code: str | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        if code is not None:
            self.code = code


class ValidationError(PrestrackError):
    """Malformed input (bad phone, missing field)."""

    status_code = 400
    code = "invalid_request"


class AuthzError(PrestrackError):
    """Caller lacks a permission or the patient has not granted consent.

    ``code`` distinguishes the reason: ``forbidden``, ``forbidden_close`` or
    ``consent_required``.
    """

    status_code = 403
    code = "forbidden"


class NotFoundError(PrestrackError):
    """Unknown id or token."""

    status_code = 404
    code = "not_found"


class ConflictError(PrestrackError):
    """State conflict: illegal transition, concurrent update, failed cascade."""

    status_code = 409
    code = "conflict"


class UpstreamError(PrestrackError):
    """A gateway, retrieval or generative backend call failed."""

    status_code = 500
    code = "upstream_error"

    def __init__(self, message: str = "", *, upstream_status: int | None = None, code: str | None = None):
        super().__init__(message, code=code)
        self.upstream_status = upstream_status


class UpstreamTimeoutError(UpstreamError):
    """An outbound call exceeded its timeout."""

    code = "upstream_timeout"
