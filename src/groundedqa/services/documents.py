"""Upload validation and inline processing of documents."""

from __future__ import annotations

import uuid
from pathlib import PurePath
from typing import Mapping

from groundedqa.errors import NotFoundError, ValidationError
from groundedqa.ingestion.pipeline import DocumentPipeline
from groundedqa.ingestion.service import validate_url
from groundedqa.metrics.observability import get_logger
from groundedqa.models import DocumentRecord, SourceKind
from groundedqa.resilience.retry import Deadline
from groundedqa.storage.files import LocalFileStore
from groundedqa.storage.metadata import MetadataStore

_MB = 1024 * 1024

DEFAULT_SIZE_LIMITS: Mapping[str, int] = {"pdf": 10 * _MB, "docx": 10 * _MB, "txt": 5 * _MB}

_CONTENT_TYPES: Mapping[str, SourceKind] = {
    "application/pdf": SourceKind.PDF,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": SourceKind.DOCX,
    "text/plain": SourceKind.TXT,
}

_FILE_KINDS = (SourceKind.PDF, SourceKind.DOCX, SourceKind.TXT)


def detect_file_kind(filename: str, content_type: str | None = None) -> SourceKind:
    """Resolve the document type from the file extension, then the content type."""

    suffix = PurePath(filename or "").suffix.lower().lstrip(".")
    for kind in _FILE_KINDS:
        if suffix == kind.value:
            return kind
    if content_type:
        kind = _CONTENT_TYPES.get(content_type.split(";", 1)[0].strip().lower())
        if kind is not None:
            return kind
    supported = ", ".join(kind.value for kind in _FILE_KINDS)
    raise ValidationError(f"Unsupported file type: {suffix or content_type or 'unknown'}. Supported types: {supported}")


class DocumentService:
    """Creates PENDING document records and hands them to the ingestion pipeline."""

    def __init__(
        self,
        *,
        metadata: MetadataStore,
        files: LocalFileStore,
        pipeline: DocumentPipeline,
        size_limits: Mapping[str, int] | None = None,
    ) -> None:
        self._metadata = metadata
        self._files = files
        self._pipeline = pipeline
        self._size_limits = dict(size_limits or DEFAULT_SIZE_LIMITS)
        self._logger = get_logger("documents")

    def upload_file(
        self,
        project_id: str,
        filename: str,
        content_type: str | None,
        data: bytes,
    ) -> DocumentRecord:
        kind = detect_file_kind(filename, content_type)
        self._validate_size(kind, len(data))
        self._require_project(project_id)
        document_id = uuid.uuid4().hex
        storage_path = self._files.save(document_id, kind.value, data)
        try:
            record = self._metadata.create_document(
                project_id,
                PurePath(filename).name or f"upload.{kind.value}",
                kind,
                storage_path=storage_path,
                document_id=document_id,
            )
        except Exception:
            self._files.delete(storage_path)
            raise
        self._logger.info("document.uploaded", document_id=document_id, project_id=project_id, size=len(data))
        return record

    def upload_url(self, project_id: str, url: str) -> DocumentRecord:
        url = (url or "").strip()
        validate_url(url)
        self._require_project(project_id)
        record = self._metadata.create_document(project_id, url, SourceKind.URL)
        self._logger.info("document.uploaded", document_id=record.document_id, project_id=project_id, url=url)
        return record

    def process(self, document_id: str, *, deadline: Deadline | None = None) -> DocumentRecord:
        """Run ingestion for a PENDING document and return its final record."""

        self._pipeline.process(document_id, deadline=deadline)
        return self.get_document(document_id)

    def get_document(self, document_id: str) -> DocumentRecord:
        record = self._metadata.get_document(document_id)
        if record is None:
            raise NotFoundError(f"Document with id {document_id} not found")
        return record

    def _validate_size(self, kind: SourceKind, size: int) -> None:
        if size == 0:
            raise ValidationError("Uploaded file is empty")
        limit = self._size_limits[kind.value]
        if size > limit:
            raise ValidationError(f"File size exceeds {limit // _MB}MB limit for {kind.value.upper()} files")

    def _require_project(self, project_id: str) -> None:
        if not project_id or not project_id.strip():
            raise ValidationError("projectId is required")
        if not self._metadata.project_exists(project_id):
            raise NotFoundError(f"Project with id {project_id} not found")
