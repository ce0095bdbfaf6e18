"""Document ingestion pipeline: extract, chunk, embed, store."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import List, Sequence

from groundedqa.embeddings.service import EmbeddingProvider, Vector, ensure_dimensions
from groundedqa.embeddings.store import VectorStore
from groundedqa.errors import DatabaseError, ExtractionError, NotFoundError
from groundedqa.ingestion.service import TextChunker, TextExtractor
from groundedqa.metrics.observability import PipelineMetrics, get_logger
from groundedqa.models import Chunk, DocumentRecord, DocumentStatus, SourceKind
from groundedqa.resilience.guards import DependencyGuards
from groundedqa.resilience.retry import Deadline
from groundedqa.storage.files import LocalFileStore
from groundedqa.storage.metadata import MetadataStore

NO_CHUNKS_MESSAGE = "No text chunks generated from document"


@dataclass(frozen=True)
class IngestionConfig:
    """Configuration for document processing."""

    request_timeout: float | None = 120.0


class _StageFailure(Exception):
    def __init__(self, stage: str, message: str) -> None:
        super().__init__(message)
        self.stage = stage
        self.message = message


class DocumentPipeline:
    """Drives one document from PENDING to READY or FAILED.

    Every stage catches its own errors and turns them into a single FAILED
    transition naming the stage. Retries only happen inside the breaker-guarded
    calls; a failed document stays failed.
    """

    def __init__(
        self,
        *,
        metadata: MetadataStore,
        files: LocalFileStore,
        extractor: TextExtractor,
        chunker: TextChunker,
        embedder: EmbeddingProvider,
        vector_store: VectorStore,
        guards: DependencyGuards,
        config: IngestionConfig | None = None,
    ) -> None:
        self._metadata = metadata
        self._files = files
        self._extractor = extractor
        self._chunker = chunker
        self._embedder = embedder
        self._vector_store = vector_store
        self._guards = guards
        self._config = config or IngestionConfig()
        self._logger = get_logger("ingestion")

    def process(self, document_id: str, *, deadline: Deadline | None = None) -> None:
        record = self._metadata.get_document(document_id)
        if record is None:
            raise NotFoundError(f"Document with id {document_id} not found")
        record = self._metadata.transition_document(document_id, DocumentStatus.PROCESSING)
        deadline = deadline or Deadline(self._config.request_timeout)
        log = self._logger.bind(document_id=document_id, project_id=record.project_id)
        log.info("ingestion.started", source_kind=record.source_kind.value)

        start = time.perf_counter()
        try:
            text = self._extract(record)
            chunks = self._chunk(record, text)
            if not chunks:
                self._fail(record, "chunk", NO_CHUNKS_MESSAGE)
                return
            vectors = self._embed(chunks, deadline)
            self._store(record, chunks, vectors, deadline)
        except _StageFailure as failure:
            self._fail(record, failure.stage, failure.message)
            return

        try:
            self._metadata.transition_document(document_id, DocumentStatus.READY)
        except DatabaseError as exc:
            self._fail(record, "finalize", f"Failed to record completion: {exc}")
            return
        duration = time.perf_counter() - start
        PipelineMetrics.observe_ingestion(duration, len(chunks))
        PipelineMetrics.observe_document_outcome(DocumentStatus.READY.value, "complete")
        log.info("ingestion.complete", chunk_count=len(chunks), duration_seconds=duration)

    def _extract(self, record: DocumentRecord) -> str:
        try:
            payload = self._load_payload(record)
            return self._extractor.extract(record.source_kind, payload)
        except Exception as exc:
            raise _StageFailure("extract", f"Text extraction failed: {exc}") from exc

    def _load_payload(self, record: DocumentRecord) -> bytes | str:
        if record.source_kind is SourceKind.URL:
            return record.filename
        if not record.storage_path:
            raise ExtractionError("File payload is required for file documents")
        return self._files.load(record.storage_path)

    def _chunk(self, record: DocumentRecord, text: str) -> List[Chunk]:
        metadata = {
            "document_id": record.document_id,
            "filename": record.filename,
            "project_id": record.project_id,
            "source_kind": record.source_kind.value,
        }
        try:
            return list(self._chunker.chunk(text, metadata))
        except Exception as exc:
            raise _StageFailure("chunk", f"Chunking failed: {exc}") from exc

    def _embed(self, chunks: Sequence[Chunk], deadline: Deadline) -> List[Vector]:
        texts = [chunk.text for chunk in chunks]
        try:
            vectors = self._guards.embedding.execute(lambda: self._embedder.embed_many(texts), deadline=deadline)
            ensure_dimensions(vectors, len(chunks), self._embedder.dimensions)
        except Exception as exc:
            raise _StageFailure("embed", f"Embedding generation failed: {exc}") from exc
        return list(vectors)

    def _store(self, record: DocumentRecord, chunks: Sequence[Chunk], vectors: Sequence[Vector], deadline: Deadline) -> None:
        project_id = record.project_id
        try:
            self._guards.vector_store.execute(lambda: self._vector_store.ensure_collection(project_id), deadline=deadline)
            self._guards.vector_store.execute(
                lambda: self._vector_store.upsert(project_id, chunks, vectors),
                deadline=deadline,
            )
        except Exception as exc:
            raise _StageFailure("store", f"Vector storage failed: {exc}") from exc

    def _fail(self, record: DocumentRecord, stage: str, message: str) -> None:
        try:
            self._metadata.transition_document(record.document_id, DocumentStatus.FAILED, error_message=message)
        except DatabaseError as exc:
            self._logger.error(
                "ingestion.status_write_failed",
                document_id=record.document_id,
                project_id=record.project_id,
                stage=stage,
                error=message,
                detail=str(exc),
            )
            raise
        PipelineMetrics.observe_document_outcome(DocumentStatus.FAILED.value, stage)
        self._logger.warning(
            "ingestion.stage_failed",
            document_id=record.document_id,
            project_id=record.project_id,
            stage=stage,
            error=message,
        )
