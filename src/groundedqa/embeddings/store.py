"""Project-scoped vector store implementations."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable, Mapping, MutableMapping, Protocol, Sequence

import chromadb
from chromadb.api import ClientAPI

from groundedqa.errors import VectorStoreError
from groundedqa.models import Chunk, SearchResult

_SCALAR_TYPES = (str, int, float, bool)


class VectorStore(Protocol):
    """Protocol for per-project embedding persistence backends."""

    def ensure_collection(self, project_id: str) -> None:
        """Create the project's collection if it does not exist yet."""

    def upsert(self, project_id: str, chunks: Sequence[Chunk], vectors: Sequence[Sequence[float]]) -> Sequence[str]:
        """Persist chunk texts, vectors and metadata keyed by chunk id."""

    def search(self, project_id: str, vector: Sequence[float], k: int = 5) -> Sequence[SearchResult]:
        """Return at most ``k`` results ordered by descending score."""

    def delete_collection(self, project_id: str) -> None:
        """Remove the project's collection; absence is not an error."""

    def count(self, project_id: str) -> int:
        """Return number of stored chunks for the project."""


def _is_missing(exc: Exception) -> bool:
    message = str(exc).lower()
    return "does not exist" in message or "not found" in message


def _already_exists(exc: Exception) -> bool:
    return "already exists" in str(exc).lower()


class ChromaVectorStore:
    """Chroma-backed store with one cosine collection per project."""

    def __init__(
        self,
        *,
        client: ClientAPI | None = None,
        persist_directory: str | Path | None = None,
        collection_prefix: str = "project_",
    ) -> None:
        if client is not None:
            self._client = client
        elif persist_directory is not None:
            self._client = chromadb.PersistentClient(path=str(persist_directory))
        else:
            self._client = chromadb.EphemeralClient()
        self._prefix = collection_prefix

    def collection_name(self, project_id: str) -> str:
        return f"{self._prefix}{project_id}"

    def ensure_collection(self, project_id: str) -> None:
        name = self.collection_name(project_id)
        try:
            self._client.get_or_create_collection(
                name=name,
                metadata={"hnsw:space": "cosine", "project_id": project_id},
            )
        except Exception as exc:
            # A concurrent ingestion may have created it between the lookup and the insert.
            if not _already_exists(exc):
                raise VectorStoreError(f"Failed to create collection for project {project_id}: {exc}") from exc

    def upsert(self, project_id: str, chunks: Sequence[Chunk], vectors: Sequence[Sequence[float]]) -> Sequence[str]:
        if len(chunks) != len(vectors):
            raise VectorStoreError(f"Got {len(vectors)} vectors for {len(chunks)} chunks")
        if not chunks:
            return []
        try:
            collection = self._client.get_collection(name=self.collection_name(project_id))
            ids = [chunk.chunk_id for chunk in chunks]
            collection.upsert(
                ids=ids,
                documents=[chunk.text for chunk in chunks],
                embeddings=[list(vector) for vector in vectors],
                metadatas=[self._serialize_metadata(chunk.metadata) for chunk in chunks],
            )
        except Exception as exc:
            raise VectorStoreError(f"Failed to add documents to project {project_id}: {exc}") from exc
        return ids

    def search(self, project_id: str, vector: Sequence[float], k: int = 5) -> Sequence[SearchResult]:
        if k <= 0:
            return []
        try:
            collection = self._client.get_collection(name=self.collection_name(project_id))
        except Exception as exc:
            if _is_missing(exc):
                return []
            raise VectorStoreError(f"Failed to open collection for project {project_id}: {exc}") from exc
        try:
            available = collection.count()
            if available == 0:
                return []
            results = collection.query(
                query_embeddings=[list(vector)],
                n_results=min(k, available),
                include=["documents", "metadatas", "distances"],
            )
        except Exception as exc:
            raise VectorStoreError(f"Failed to perform similarity search for project {project_id}: {exc}") from exc
        retrieved = self._deserialize_results(results)
        # Stable sort: equal scores keep the store's native order.
        return sorted(retrieved, key=lambda result: result.score, reverse=True)

    def delete_collection(self, project_id: str) -> None:
        try:
            self._client.delete_collection(name=self.collection_name(project_id))
        except Exception as exc:
            if _is_missing(exc):
                return
            raise VectorStoreError(f"Failed to delete collection for project {project_id}: {exc}") from exc

    def count(self, project_id: str) -> int:
        try:
            return int(self._client.get_collection(name=self.collection_name(project_id)).count())
        except Exception as exc:
            if _is_missing(exc):
                return 0
            raise VectorStoreError(f"Failed to count chunks for project {project_id}: {exc}") from exc

    def heartbeat(self) -> int:
        return int(self._client.heartbeat())

    @classmethod
    def _serialize_metadata(cls, metadata: Mapping[str, object]) -> MutableMapping[str, object]:
        serialized: MutableMapping[str, object] = {}
        for key, value in metadata.items():
            if value is None:
                continue
            if isinstance(value, _SCALAR_TYPES):
                serialized[key] = value
            else:
                serialized[key] = cls._dumps(value)
        return serialized

    def _deserialize_results(self, results: Mapping[str, object]) -> list[SearchResult]:
        ids = list(self._first(results.get("ids", [])))
        documents = list(self._first(results.get("documents", [])))
        metadatas = list(self._first(results.get("metadatas", [])))
        distances = list(self._first(results.get("distances", [])))
        retrieved: list[SearchResult] = []
        for index, chunk_id in enumerate(ids):
            text = documents[index] if index < len(documents) and documents[index] else ""
            metadata = metadatas[index] if index < len(metadatas) and metadatas[index] else {}
            distance = distances[index] if index < len(distances) else None
            retrieved.append(
                SearchResult(
                    id=str(chunk_id),
                    text=text,
                    score=self._to_score(distance),
                    metadata=dict(metadata),
                ),
            )
        return retrieved

    @staticmethod
    def _to_score(distance: float | None) -> float:
        if distance is None:
            return 0.0
        return min(1.0, max(0.0, 1.0 - float(distance)))

    @staticmethod
    def _first(value: object) -> Iterable:
        if isinstance(value, list):
            return value[0] if value else []
        return []

    @staticmethod
    def _dumps(value: object) -> str:
        try:
            return json.dumps(value, default=str)
        except TypeError:
            return json.dumps({}, default=str)

