"""Public interface definitions for all external collaborators.

Every external API or service is accessed exclusively through the abstract
base classes defined in this package.  Concrete adapters implement these
interfaces and are injected at runtime (see ``src/main.py``), so tests can
substitute mocks and a provider can be swapped in one place.

CONCRETE PROVIDER MAP:
    Interface             →  Concrete implementations (in src/providers/)
    ─────────────────────────────────────────────────────────────────────
    IEmbeddingProvider    →  OpenAIEmbeddingProvider
    ILLMProvider          →  AnthropicLLMProvider, OpenAILLMProvider
    IKBStore              →  ChromaDBKBStore
    IImageStore           →  R2ImageStore
    IJobStore             →  MemoryJobStore
"""

from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.image_store import IImageStore
from src.interfaces.job_store import IJobStore
from src.interfaces.kb_store import IKBStore
from src.interfaces.llm_provider import ILLMProvider

__all__ = [
    "IEmbeddingProvider",
    "IImageStore",
    "IJobStore",
    "IKBStore",
    "ILLMProvider",
]
