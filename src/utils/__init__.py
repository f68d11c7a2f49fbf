"""Utility modules shared across the service.

- **errors** -- Domain exception hierarchy rooted at KBChatbotError; each
  error class carries the HTTP status it maps to when it escapes a route.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
- **media** -- image MIME sniffing from magic bytes.
- **text_similarity** -- character n-gram overlap used to attribute an
  illustrative image to a generated answer.
"""

from src.utils.errors import (
    ConfigurationError,
    DocumentRenderError,
    EmbeddingError,
    ImageStoreError,
    JobCapacityError,
    JobNotFoundError,
    JobStateError,
    KBChatbotError,
    KBStoreError,
    LLMError,
    PipelineError,
    TextExtractionError,
    UploadValidationError,
)
from src.utils.logging import bind_job_context, configure_logging, get_logger
from src.utils.media import detect_media_type
from src.utils.text_similarity import char_ngrams, ngram_overlap

__all__ = [
    "ConfigurationError",
    "DocumentRenderError",
    "EmbeddingError",
    "ImageStoreError",
    "JobCapacityError",
    "JobNotFoundError",
    "JobStateError",
    "KBChatbotError",
    "KBStoreError",
    "LLMError",
    "PipelineError",
    "TextExtractionError",
    "UploadValidationError",
    "bind_job_context",
    "char_ngrams",
    "configure_logging",
    "detect_media_type",
    "get_logger",
    "ngram_overlap",
]
