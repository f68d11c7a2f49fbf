"""Embedding provider implementations.

Embeddings convert text into numeric vectors that capture semantic meaning.
The KB store keeps one vector per KB question; the deduplicator and the
answer router embed incoming questions with the same provider and compare.
"""

from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["OpenAIEmbeddingProvider"]
