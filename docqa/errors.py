"""Error taxonomy for the document Q&A pipeline.

Every error carries a machine-readable ``kind``, an HTTP-equivalent
``status_code`` and a human-readable message. The orchestrator attaches the
pipeline ``stage`` an error escaped from before re-raising it.
"""
from typing import Any, Dict, Optional


class DocQAError(Exception):
    """Base class for all pipeline errors."""

    kind = "internal_error"
    status_code = 500

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage

    def with_stage(self, stage: str) -> "DocQAError":
        """Record the pipeline stage, keeping the innermost one if already set."""
        if self.stage is None:
            self.stage = stage
        return self

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.stage:
            payload["stage"] = self.stage
        return payload


class PipelineError(DocQAError):
    """Unexpected failure inside a pipeline stage."""

    kind = "pipeline_error"


# Validation (never retried)


class ValidationError(DocQAError):
    kind = "validation_error"
    status_code = 400


class EmptyQueryError(ValidationError):
    kind = "empty_query"


class EmptyBatchError(ValidationError):
    kind = "empty_batch"


class EmptyContentError(ValidationError):
    kind = "empty_content"


class ConfigurationError(ValidationError):
    kind = "configuration_error"


class DimensionMismatchError(ValidationError):
    kind = "dimension_mismatch"


class InvalidUploadError(ValidationError):
    kind = "invalid_upload"


class InvalidTransitionError(ValidationError):
    kind = "invalid_transition"
    status_code = 409


# Lookup and lifecycle


class NotFoundError(DocQAError):
    kind = "not_found"
    status_code = 404


class AlreadyProcessedError(DocQAError):
    kind = "already_processed"
    status_code = 409


class DocumentBusyError(DocQAError):
    kind = "document_busy"
    status_code = 409


# Text extraction


class ExtractionError(DocQAError):
    kind = "extraction_error"
    status_code = 422


class UnsupportedFormatError(ExtractionError):
    kind = "unsupported_format"
    status_code = 415


# External providers (embedding API, answer generator)


class ProviderError(DocQAError):
    kind = "provider_error"
    status_code = 502


class AuthError(ProviderError):
    kind = "auth_error"


class RateLimitError(ProviderError):
    kind = "rate_limited"
    status_code = 429

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, stage=stage)
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.retry_after is not None:
            payload["retry_after"] = self.retry_after
        return payload


class TransientUnavailableError(ProviderError):
    kind = "provider_unavailable"
    status_code = 503


class EmbeddingProviderError(ProviderError):
    kind = "embedding_provider_error"


class EmbeddingAuthError(EmbeddingProviderError, AuthError):
    kind = "embedding_auth_error"


class EmbeddingRateLimitError(EmbeddingProviderError, RateLimitError):
    kind = "embedding_rate_limited"


class EmbeddingUnavailableError(EmbeddingProviderError, TransientUnavailableError):
    kind = "embedding_unavailable"


class AnswerGeneratorError(ProviderError):
    kind = "answer_generator_error"


class AnswerAuthError(AnswerGeneratorError, AuthError):
    kind = "answer_auth_error"


class AnswerRateLimitError(AnswerGeneratorError, RateLimitError):
    kind = "answer_rate_limited"


class AnswerUnavailableError(AnswerGeneratorError, TransientUnavailableError):
    kind = "answer_unavailable"


_PROVIDER_FAMILIES = {
    "embedding": (
        EmbeddingProviderError,
        EmbeddingAuthError,
        EmbeddingRateLimitError,
        EmbeddingUnavailableError,
    ),
    "answer": (
        AnswerGeneratorError,
        AnswerAuthError,
        AnswerRateLimitError,
        AnswerUnavailableError,
    ),
}


def provider_error_from_status(
    status_code: Optional[int],
    family: str,
    provider: str,
    retry_after: Optional[float] = None,
) -> ProviderError:
    """Map an upstream HTTP status (None for connection failures) to an error.

    Args:
        status_code: HTTP status returned by the provider, or None when the
            request never completed (connect error, timeout)
        family: "embedding" or "answer"
        provider: Provider name used in the message
        retry_after: Seconds from a Retry-After header, if any

    Returns:
        The matching ProviderError subclass instance
    """
    base, auth, rate_limit, unavailable = _PROVIDER_FAMILIES[family]
    what = "embedding provider" if family == "embedding" else "answer generator"

    if status_code in (401, 403):
        return auth(f"Authentication with {provider} {what} failed")
    if status_code == 429:
        return rate_limit(
            f"Rate limit exceeded at {provider} {what}. Please try again later.",
            retry_after=retry_after,
        )
    if status_code is None or status_code in (502, 503, 504):
        return unavailable(f"The {provider} {what} is temporarily unavailable")
    return base(f"The {provider} {what} returned an error (HTTP {status_code})")
