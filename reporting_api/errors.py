"""Reporting API error taxonomy.

Every user-visible failure is a ``ReportingError`` rendered as
``{"ok": false, "error": {"code": ..., "message": ...}}``. Store adapters
translate raw backend failures into ``StoreTransientError`` so nothing from
the storage layer leaks through unmodified.
"""
from typing import Any, Dict, Optional


class ReportingError(Exception):
    """Base class for structured API errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "Internal server error"
    # Whether an idempotent replay may return this outcome instead of re-executing
    replayable: bool = True

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.headers = dict(headers or {})
        self.details = details
        super().__init__(self.message)

    def to_body(self, request_id: Optional[str] = None) -> Dict[str, Any]:
        error_body: Dict[str, Any] = {
            "code": self.code,
            "message": self.message
        }
        if self.details:
            error_body["details"] = self.details
        if request_id:
            error_body["request_id"] = request_id
        return {"ok": False, "error": error_body}


# --- Auth ---

class InvalidApiKey(ReportingError):
    # Missing and unknown keys share one answer so callers learn nothing extra
    code = "INVALID_API_KEY"
    status_code = 401
    message = "Missing or invalid API key"


class InvalidAdminSecret(ReportingError):
    code = "FORBIDDEN"
    status_code = 403
    message = "Forbidden"


# --- Not Found ---

class AgencyNotFound(ReportingError):
    code = "AGENCY_NOT_FOUND"
    status_code = 404
    message = "Agency not found"


class ClientNotFound(ReportingError):
    code = "CLIENT_NOT_FOUND"
    status_code = 404
    message = "Client not found"


class ArtifactNotFound(ReportingError):
    code = "PDF_NOT_FOUND"
    status_code = 404
    message = "Report not found"


# --- Rate Limit ---

class RateLimitExceeded(ReportingError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429
    message = "Rate limit exceeded. Please try again later."


# --- Idempotency ---

class IdempotencyCheckFailed(ReportingError):
    """The replay check itself could not complete; the action may not have run."""
    code = "IDEMPOTENCY_CHECK_FAILED"
    status_code = 503
    message = "Idempotency check failed. Retry the request with the same idempotency key."
    replayable = False

    def __init__(self, message: Optional[str] = None, **kwargs):
        kwargs.setdefault("headers", {"Retry-After": "1"})
        super().__init__(message, **kwargs)


class IdempotencyKeyReuseMismatch(ReportingError):
    code = "IDEMPOTENCY_KEY_REUSE_MISMATCH"
    status_code = 409
    message = "Idempotency key was already used with a different request payload"
    replayable = False


# --- Token Validation ---

class TokenRequired(ReportingError):
    code = "PDF_TOKEN_REQUIRED"
    status_code = 401
    message = "PDF download requires a signed token. Please request a new signed URL."


class TokenValidationError(ReportingError):
    status_code = 403
    code = "PDF_TOKEN_INVALID"

    MESSAGES = {
        "PDF_TOKEN_INVALID": "Invalid PDF download token. Please request a new signed URL.",
        "PDF_TOKEN_EXPIRED": "PDF download token has expired. Please request a new signed URL.",
        "PDF_TOKEN_MISMATCH": "Token does not match requested PDF",
    }

    def __init__(self, reason: str):
        super().__init__(self.MESSAGES.get(reason, self.MESSAGES["PDF_TOKEN_INVALID"]), code=reason)
        self.reason = reason


# --- Store ---

class StoreTransientError(ReportingError):
    """Backing store unavailable or timed out. Callers retry with backoff."""
    code = "STORE_UNAVAILABLE"
    status_code = 503
    message = "Storage temporarily unavailable. Please retry."
    replayable = False

    def __init__(self, message: Optional[str] = None, **kwargs):
        kwargs.setdefault("headers", {"Retry-After": "1"})
        super().__init__(message, **kwargs)


# --- Request Validation ---

class InvalidRequest(ReportingError):
    code = "INVALID_REQUEST"
    status_code = 400
    message = "Invalid request"


class PayloadTooLarge(ReportingError):
    code = "PAYLOAD_TOO_LARGE"
    status_code = 413
    message = "Payload too large"


class ConfigurationError(ReportingError):
    code = "INTERNAL_ERROR"
    status_code = 500
    message = "Service misconfigured"
    replayable = False
