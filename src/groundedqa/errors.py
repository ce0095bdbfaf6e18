"""Error hierarchy shared by the groundedqa services."""

from __future__ import annotations


class AppError(Exception):
    """Base class for errors that carry an HTTP-style status and a stable code."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    """Caller supplied invalid input."""

    status_code = 400
    code = "VALIDATION_ERROR"


class UnauthorizedError(AppError):
    status_code = 401
    code = "UNAUTHORIZED"


class NotFoundError(AppError):
    """Referenced entity does not exist."""

    status_code = 404
    code = "NOT_FOUND"


class ConflictError(AppError):
    """Resource already exists or is in an incompatible state."""

    status_code = 409
    code = "CONFLICT"


class ExtractionError(AppError):
    """Text could not be extracted from a document payload."""

    status_code = 422
    code = "EXTRACTION_FAILED"


class QuotaExceededError(AppError):
    status_code = 429
    code = "QUOTA_EXCEEDED"


class RequestCancelledError(AppError):
    """The enclosing request was cancelled while work was pending."""

    status_code = 499
    code = "CANCELLED"


class DatabaseError(AppError):
    code = "DATABASE_ERROR"


class VectorStoreError(AppError):
    code = "VECTOR_STORE_ERROR"


class LanguageModelError(AppError):
    code = "LLM_ERROR"


class EmbeddingError(AppError):
    code = "EMBEDDING_ERROR"


class ServiceUnavailableError(AppError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"


class CircuitOpenError(ServiceUnavailableError):
    """Raised without calling the dependency while its circuit is open."""

    def __init__(self, dependency: str) -> None:
        super().__init__(f"Circuit breaker for {dependency} is OPEN - service unavailable")
        self.dependency = dependency


class RequestTimeoutError(AppError):
    status_code = 504
    code = "TIMEOUT"


class ConfigurationError(RuntimeError):
    """Raised at startup when settings cannot produce a working service."""


def classify_provider_error(exc: Exception, fallback: type[AppError], action: str) -> AppError:
    """Translate a raw provider exception into an application error.

    Errors that are already ``AppError`` instances pass through untouched.
    """

    if isinstance(exc, AppError):
        return exc
    message = str(exc) or exc.__class__.__name__
    lowered = message.lower()
    if "quota" in lowered or "rate limit" in lowered or "429" in lowered:
        return QuotaExceededError(f"{action}: quota exceeded")
    if isinstance(exc, TimeoutError) or "timeout" in lowered or "timed out" in lowered:
        return RequestTimeoutError(f"{action}: request timed out")
    return fallback(f"{action}: {message}")


__all__ = [
    "AppError",
    "CircuitOpenError",
    "ConfigurationError",
    "ConflictError",
    "DatabaseError",
    "EmbeddingError",
    "ExtractionError",
    "LanguageModelError",
    "NotFoundError",
    "QuotaExceededError",
    "RequestCancelledError",
    "RequestTimeoutError",
    "ServiceUnavailableError",
    "UnauthorizedError",
    "ValidationError",
    "VectorStoreError",
    "classify_provider_error",
]
