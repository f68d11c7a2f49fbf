"""OpenAI embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
KB questions, candidate questions and live customer questions all go
through this adapter, so they share one model and one vector space.
"""

from __future__ import annotations

import openai
import structlog

from src.config.settings import Settings
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.utils.errors import EmbeddingError

logger = structlog.get_logger(logger_name=__name__)

_OPENAI_BATCH_LIMIT = 2048

# Known embedding model dimensions.
_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by the OpenAI embeddings API.

    Uses ``text-embedding-3-small`` (1536 dims) by default.  When
    ``openai_base_url`` is configured the client points at that
    OpenAI-compatible endpoint instead.
    """

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.openai_api_key

        client_kwargs: dict = {"api_key": self._api_key}
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._model = settings.openai_embedding_model or "text-embedding-3-small"
        self._dimension = _MODEL_DIMENSIONS.get(self._model, 1536)

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts* in order, one API call per 2048 inputs.

        Whitespace runs are collapsed first, so a question split across
        lines by the generator embeds the same as its one-line form.

        Raises
        ------
        EmbeddingError
            A text is blank (the API rejects empty input) or the call fails.
        """
        if not texts:
            return []

        inputs = [" ".join(text.split()) for text in texts]
        if not all(inputs):
            raise EmbeddingError(
                message="Cannot embed blank text",
                provider_name=self.get_provider_name(),
            )

        vectors: list[list[float]] = []
        for offset in range(0, len(inputs), _OPENAI_BATCH_LIMIT):
            batch = inputs[offset : offset + _OPENAI_BATCH_LIMIT]
            try:
                response = await self._client.embeddings.create(input=batch, model=self._model)
            except openai.APIError as exc:
                raise EmbeddingError(
                    message=f"OpenAI embeddings API error: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc
            # The API tags each vector with its input position.
            vectors.extend(item.embedding for item in sorted(response.data, key=lambda item: item.index))
            logger.debug(
                "openai_embedding_batch",
                model=self._model,
                offset=offset,
                batch_size=len(batch),
                tokens=response.usage.total_tokens if response.usage else None,
            )
        return vectors

    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string."""
        result = await self.embed([text])
        if not result:
            raise EmbeddingError(
                message="Embeddings API returned no vectors",
                provider_name=self.get_provider_name(),
            )
        return result[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return f"openai-{self._model}"

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)
