"""KB store adapters (IKBStore implementations)."""

from src.providers.kb_store.chromadb_kb_store import ChromaDBKBStore

__all__ = ["ChromaDBKBStore"]
