"""
Generation error taxonomy.

Every failure the orchestrator can surface derives from GenerationError and
carries an HTTP status plus a stable machine-readable code, so the route
layer never has to guess how to present it.
"""

from typing import Any, Dict, List, Optional


class GenerationError(Exception):
    """Base class for all generation failures."""

    status_code: int = 500
    code: str = "GENERATION_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "code": self.code, **self.details}


class ValidationError(GenerationError):
    """Request payload failed domain validation. Lists every violation."""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, violations: List[str]):
        super().__init__(
            f"Invalid generation request: {'; '.join(violations)}",
            {"violations": list(violations)},
        )
        self.violations = list(violations)


class RateLimitExceeded(GenerationError):
    """Too many requests for this operation class; retry after a delay."""

    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, operation_class: str, retry_after: float):
        super().__init__(
            f"Rate limit exceeded for {operation_class}. Retry in {retry_after:.1f}s",
            {"operation_class": operation_class, "retry_after": round(retry_after, 3)},
        )
        self.operation_class = operation_class
        self.retry_after = retry_after


class QuotaExceeded(GenerationError):
    """Usage quota for the current billing period is exhausted."""

    status_code = 403
    code = "QUOTA_EXCEEDED"

    def __init__(self, metric_type: str, used: int, limit: int):
        super().__init__(
            f"You have reached your {metric_type} limit for this period ({used}/{limit})",
            {"metric_type": metric_type, "used": used, "limit": limit},
        )
        self.metric_type = metric_type
        self.used = used
        self.limit = limit


class ProviderError(GenerationError):
    """Base for provider failures. Absorbed by the fallback loop."""

    status_code = 502
    code = "PROVIDER_ERROR"

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}", {"provider": provider})
        self.provider = provider


class ProviderUnavailable(ProviderError):
    """Provider rejected the call, is misconfigured, or is circuit-broken."""

    code = "PROVIDER_UNAVAILABLE"

    def __init__(self, provider: str, message: str, retryable: bool = False):
        super().__init__(provider, message)
        self.retryable = retryable


class ProviderTimeout(ProviderError):
    """Provider did not answer within the bounded timeout."""

    status_code = 504
    code = "PROVIDER_TIMEOUT"

    def __init__(self, provider: str, timeout: float):
        super().__init__(provider, f"timed out after {timeout:.1f}s")
        self.timeout = timeout


class PersistenceError(GenerationError):
    """Writing history, cache or usage state failed."""

    status_code = 500
    code = "PERSISTENCE_ERROR"


class InvalidStatusTransition(PersistenceError):
    """A generation record was asked to leave a terminal state or skip a step."""

    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, record_id: str, current: str, requested: str):
        super().__init__(
            f"Generation {record_id} cannot move from {current} to {requested}",
            {"record_id": record_id, "current": current, "requested": requested},
        )


class GenerationFailed(GenerationError):
    """Every provider and the local fallback failed."""

    status_code = 500
    code = "GENERATION_FAILED"


class GenerationCancelled(GenerationError):
    """The caller went away before the generation finished."""

    status_code = 499
    code = "GENERATION_CANCELLED"


class GenerationNotFound(GenerationError):
    """History lookup for an id the user does not own or that does not exist."""

    status_code = 404
    code = "NOT_FOUND"
