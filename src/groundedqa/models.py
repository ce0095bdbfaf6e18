"""Shared domain models used across the groundedqa pipelines."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Sequence


class DocumentStatus(str, Enum):
    """Persisted lifecycle of an ingested document."""

    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.READY, DocumentStatus.FAILED)

    def can_transition_to(self, target: "DocumentStatus") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS: Mapping[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.PENDING: frozenset({DocumentStatus.PROCESSING}),
    DocumentStatus.PROCESSING: frozenset({DocumentStatus.READY, DocumentStatus.FAILED}),
    DocumentStatus.READY: frozenset(),
    DocumentStatus.FAILED: frozenset(),
}


class SourceKind(str, Enum):
    """Declared origin of a document's content."""

    PDF = "pdf"
    DOCX = "docx"
    TXT = "txt"
    URL = "url"


@dataclass(frozen=True)
class ProjectRecord:
    project_id: str
    name: str
    created_at: datetime
    document_count: int = 0


@dataclass(frozen=True)
class DocumentRecord:
    """Metadata row describing an uploaded document."""

    document_id: str
    project_id: str
    filename: str
    source_kind: SourceKind
    status: DocumentStatus
    uploaded_at: datetime
    error_message: str | None = None
    storage_path: str | None = None


@dataclass(frozen=True)
class Chunk:
    """Bounded text segment with provenance metadata.

    ``metadata`` always carries ``document_id``, ``filename`` and a zero-based
    ``chunk_index``; any further keys are passed through to the vector store.
    """

    text: str
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.text:
            raise ValueError("Chunk text must not be empty")
        if not self.metadata.get("document_id"):
            raise ValueError("Chunk metadata must include document_id")
        index = self.metadata.get("chunk_index")
        if not isinstance(index, int) or index < 0:
            raise ValueError("Chunk metadata must include a non-negative chunk_index")

    @property
    def document_id(self) -> str:
        return str(self.metadata["document_id"])

    @property
    def chunk_index(self) -> int:
        return int(self.metadata["chunk_index"])

    @property
    def chunk_id(self) -> str:
        return f"{self.document_id}_{self.chunk_index}"


Vector = Sequence[float]


@dataclass(frozen=True)
class SearchResult:
    """Chunk returned from the vector store during retrieval."""

    id: str
    text: str
    score: float
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChatTurnResult:
    """Answer for one chat turn."""

    answer: str
    source_count: int
