"""Embedding providers for groundedqa."""

from __future__ import annotations

import hashlib
import logging
import math
from dataclasses import dataclass
from typing import List, Protocol, Sequence

from langchain_community.embeddings import HuggingFaceEmbeddings

from groundedqa.errors import EmbeddingError, classify_provider_error

LOGGER = logging.getLogger(__name__)

Vector = List[float]


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for embedding providers."""

    model: str = "BAAI/bge-small-en-v1.5"
    dim: int = 384
    device: str | None = None
    normalize: bool = True
    cache_folder: str | None = None


class EmbeddingProvider(Protocol):
    """Protocol describing embedding behaviour."""

    @property
    def dimensions(self) -> int:
        """Length shared by every vector this provider returns."""

    def embed_one(self, text: str) -> Vector:
        """Return the embedding vector for a single text."""

    def embed_many(self, texts: Sequence[str]) -> List[Vector]:
        """Return one vector per text, in input order."""


def ensure_dimensions(vectors: Sequence[Sequence[float]], expected_count: int, dim: int) -> None:
    """Raise ``EmbeddingError`` unless there is one ``dim``-length vector per input."""

    if len(vectors) != expected_count:
        raise EmbeddingError(
            f"Embedding provider returned {len(vectors)} vectors for {expected_count} texts",
        )
    for vector in vectors:
        if len(vector) != dim:
            raise EmbeddingError(f"Embedding dimension mismatch: expected {dim}, got {len(vector)}")


def _normalize(vector: Sequence[float]) -> Vector:
    norm = math.sqrt(sum(value * value for value in vector)) or 1.0
    return [value / norm for value in vector]


class HashEmbeddingProvider:
    """Deterministic lightweight embeddings used for tests and offline environments."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()

    @property
    def dimensions(self) -> int:
        return self._config.dim

    def _hash_to_vector(self, text: str) -> Vector:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        repeat = (self._config.dim + len(digest) - 1) // len(digest)
        raw = (digest * repeat)[: self._config.dim]
        vector = [byte / 255.0 for byte in raw]
        return _normalize(vector) if self._config.normalize else vector

    def embed_one(self, text: str) -> Vector:
        return self._hash_to_vector(text)

    def embed_many(self, texts: Sequence[str]) -> List[Vector]:
        return [self._hash_to_vector(text) for text in texts]


class HuggingFaceEmbeddingProvider:
    """Sentence-embedding provider backed by LangChain's Hugging Face integration."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()
        model_kwargs = {"device": self._config.device} if self._config.device else {}
        self._client = HuggingFaceEmbeddings(
            model_name=self._config.model,
            model_kwargs=model_kwargs,
            cache_folder=self._config.cache_folder,
            encode_kwargs={"normalize_embeddings": self._config.normalize},
        )
        LOGGER.info("Loaded embedding model %s", self._config.model)

    @property
    def dimensions(self) -> int:
        return self._config.dim

    def embed_one(self, text: str) -> Vector:
        try:
            vector = list(self._client.embed_query(text))
        except Exception as exc:
            raise classify_provider_error(exc, EmbeddingError, "Failed to generate embedding") from exc
        ensure_dimensions([vector], 1, self._config.dim)
        return vector

    def embed_many(self, texts: Sequence[str]) -> List[Vector]:
        if not texts:
            return []
        try:
            vectors = [list(vector) for vector in self._client.embed_documents(list(texts))]
        except Exception as exc:
            raise classify_provider_error(exc, EmbeddingError, "Failed to generate batch embeddings") from exc
        ensure_dimensions(vectors, len(texts), self._config.dim)
        return vectors
