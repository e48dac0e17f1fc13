"""
Typed error taxonomy shared by every layer.

  DocIntelError
    ├── ValidationError          bad caller input (400, never retried)
    ├── ProviderError            AI backend failure, classified by kind
    ├── DimensionMismatchError   vector length disagrees with the provider
    ├── InvalidTransitionError   illegal processing-state change
    └── DocumentNotFoundError

Request-scoped code raises these to the HTTP boundary (see docintel.main for
the status-code mapping). The document pipeline catches them at its top
level and persists them as `ai_error` instead.
"""

from __future__ import annotations

from enum import Enum


class DocIntelError(Exception):
    """Base class for all domain errors."""

    error_code: str = "INTERNAL_ERROR"


class ValidationError(DocIntelError):
    error_code = "VALIDATION_ERROR"


class DocumentNotFoundError(DocIntelError):
    error_code = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: object) -> None:
        super().__init__(f"Document {document_id} not found")
        self.document_id = document_id


class InvalidTransitionError(DocIntelError):
    error_code = "INVALID_STATE_TRANSITION"

    def __init__(self, current: object, target: object) -> None:
        super().__init__(f"Invalid processing transition: {current} -> {target}")
        self.current = current
        self.target  = target


class DimensionMismatchError(DocIntelError):
    error_code = "DIMENSION_MISMATCH"

    def __init__(self, expected: int, actual: int, model: str = "") -> None:
        suffix = f" (model={model})" if model else ""
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}{suffix}"
        )
        self.expected = expected
        self.actual   = actual


# ---------------------------------------------------------------------------
# Provider errors
# ---------------------------------------------------------------------------

class ProviderErrorKind(str, Enum):
    AUTH              = "auth"
    RATE_LIMIT        = "rate-limit"
    QUOTA             = "quota"
    PAYLOAD_TOO_LARGE = "payload-too-large"
    UNAVAILABLE       = "unavailable"


_RETRYABLE_KINDS = frozenset({ProviderErrorKind.RATE_LIMIT, ProviderErrorKind.UNAVAILABLE})


class ProviderError(DocIntelError):
    """
    Failure reported by (or while reaching) an AI backend.

    `retryable` tells the caller whether backing off and trying again can
    succeed: true for rate-limit / unavailable, false for auth / quota /
    payload-too-large, which need operator or caller action. A backend that
    answers but breaks its contract (e.g. a short embedding batch) is
    raised as `unavailable` with retryable=False.
    """

    error_code = "PROVIDER_ERROR"

    def __init__(
        self,
        kind:      ProviderErrorKind,
        message:   str,
        provider:  str = "",
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.kind       = kind
        self.provider   = provider
        self._retryable = retryable

    @property
    def retryable(self) -> bool:
        if self._retryable is not None:
            return self._retryable
        return self.kind in _RETRYABLE_KINDS

    def __repr__(self) -> str:
        return f"ProviderError(kind={self.kind.value!r}, provider={self.provider!r}, message={str(self)!r})"
