"""Custom exception hierarchy for the KB ingestion service.

All application exceptions inherit from :class:`KBChatbotError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "openai", "anthropic", "r2") caused the failure,
and a class-level ``status_code`` used when the error escapes to HTTP.

The hierarchy is organized by concern:

    KBChatbotError  (base -- catch-all, HTTP 500)
    +-- TextExtractionError      (document → text)
    +-- DocumentRenderError      (page rasterization)
    +-- LLMError                 (any LLM API call failure)
    +-- EmbeddingError           (embedding API failure)
    +-- KBStoreError             (vector search / KB persistence)
    +-- ImageStoreError          (durable image upload)
    +-- PipelineError            (orchestration failures)
    +-- ConfigurationError       (startup / missing config)
    +-- UploadValidationError    (bad upload or approval body, HTTP 400)
    +-- JobNotFoundError         (unknown or expired job id, HTTP 404)
    +-- JobStateError            (operation not allowed in job state, HTTP 409)
    +-- JobCapacityError         (concurrency ceiling reached, HTTP 429)

Unit-scoped pipeline failures (one page, one chunk, one file) are caught
inside the pipeline and turned into error events.  Validation, capacity
and not-found errors propagate to the route and become HTTP responses.
"""


class KBChatbotError(Exception):
    """Base exception for all application errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  The ``__str__`` method prefixes the provider name in brackets
    for structured log output, e.g. ``[openai] Rate limit exceeded``.
    """

    status_code: int = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Document processing errors
# ---------------------------------------------------------------------------

class TextExtractionError(KBChatbotError):
    """Raised when text cannot be extracted from an uploaded document."""

    def __init__(
        self,
        message: str = "Text extraction failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class DocumentRenderError(KBChatbotError):
    """Raised when a page-oriented document cannot be rendered to images."""

    def __init__(
        self,
        message: str = "Document rendering failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# External service / provider errors
# ---------------------------------------------------------------------------

class LLMError(KBChatbotError):
    """Raised when an LLM API call fails or returns an unusable response."""

    def __init__(
        self,
        message: str = "LLM API call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmbeddingError(KBChatbotError):
    """Raised when the embedding API call fails."""

    def __init__(
        self,
        message: str = "Embedding generation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class KBStoreError(KBChatbotError):
    """Raised when a KB search or write fails."""

    def __init__(
        self,
        message: str = "Knowledge base operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ImageStoreError(KBChatbotError):
    """Raised when uploading an image to durable storage fails."""

    def __init__(
        self,
        message: str = "Image upload failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Orchestration / configuration errors
# ---------------------------------------------------------------------------

class PipelineError(KBChatbotError):
    """Raised when an ingestion run fails outside its per-unit error handling."""

    def __init__(
        self,
        message: str = "Pipeline orchestration failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(KBChatbotError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Job errors (surfaced to API callers)
# ---------------------------------------------------------------------------

class UploadValidationError(KBChatbotError):
    """Raised for malformed input: no files, oversized payload, bad approval body."""

    status_code = 400

    def __init__(
        self,
        message: str = "Invalid request",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class JobNotFoundError(KBChatbotError):
    """Raised when a job id is unknown or the job has been garbage-collected."""

    status_code = 404

    def __init__(
        self,
        message: str = "Job not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class JobStateError(KBChatbotError):
    """Raised when an operation is not allowed in the job's current status."""

    status_code = 409

    def __init__(
        self,
        message: str = "Job is not in a valid state for this operation",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class JobCapacityError(KBChatbotError):
    """Raised when the concurrent-job ceiling is reached.  Not queued."""

    status_code = 429

    def __init__(
        self,
        message: str = "Too many ingestion jobs are running; try again later",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
