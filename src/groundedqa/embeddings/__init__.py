"""Embedding providers and vector stores."""

from .service import (
    EmbeddingConfig,
    EmbeddingProvider,
    HashEmbeddingProvider,
    HuggingFaceEmbeddingProvider,
    ensure_dimensions,
)
from .store import ChromaVectorStore, VectorStore

__all__ = [
    "ChromaVectorStore",
    "EmbeddingConfig",
    "EmbeddingProvider",
    "HashEmbeddingProvider",
    "HuggingFaceEmbeddingProvider",
    "VectorStore",
    "ensure_dimensions",
]
