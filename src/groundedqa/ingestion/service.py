"""Text extraction and chunking collaborators for document ingestion."""

from __future__ import annotations

import re
import tempfile
import unicodedata
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Mapping, Protocol, Sequence
from urllib.parse import urlparse

import httpx
from langchain_community.document_loaders import BSHTMLLoader, Docx2txtLoader, PyPDFLoader, TextLoader
from langchain_community.document_loaders.base import BaseLoader
from langchain_core.documents import Document as LCDocument
from langchain_text_splitters import RecursiveCharacterTextSplitter

from groundedqa.errors import ExtractionError, ValidationError
from groundedqa.metrics.observability import get_logger
from groundedqa.models import Chunk, SourceKind

_SCRIPT_STYLE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True)
class ExtractionConfig:
    """Configuration for text extraction."""

    encoding: str = "utf-8"
    http_timeout: float = 30.0
    max_download_bytes: int = 25 * 1024 * 1024


@dataclass(frozen=True)
class ChunkingConfig:
    """Configuration for the recursive character splitter."""

    chunk_size: int = 1000
    chunk_overlap: int = 200
    separators: tuple[str, ...] = ("\n\n", "\n", ". ", " ", "")


class TextExtractor(Protocol):
    """Protocol for turning a document payload into plain text."""

    def extract(self, source_kind: SourceKind, payload: bytes | str) -> str:
        """Return the text of the payload or raise ``ExtractionError``."""


class TextChunker(Protocol):
    """Protocol for splitting text into indexed chunks."""

    def chunk(self, text: str, metadata: Mapping[str, Any]) -> List[Chunk]:
        """Split ``text`` into chunks carrying ``metadata`` plus a chunk index."""


def _normalize_text(raw: str) -> str:
    normalized = unicodedata.normalize("NFKC", raw)
    normalized = normalized.replace("\u00a0", " ")
    normalized = re.sub(r"[ \t\f\v]+", " ", normalized)
    normalized = re.sub(r"\n{3,}", "\n\n", normalized)
    return normalized.strip()


def validate_url(url: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ValidationError("URL must use HTTP or HTTPS protocol")
    if not parsed.netloc:
        raise ValidationError(f"Invalid URL format: {url}")
    return url


class LangChainTextExtractor:
    """Extract text via LangChain loaders; URLs are fetched with httpx first."""

    _LOADERS: Mapping[SourceKind, type[BaseLoader]] = {
        SourceKind.PDF: PyPDFLoader,
        SourceKind.DOCX: Docx2txtLoader,
        SourceKind.TXT: TextLoader,
    }

    _logger = get_logger("extraction")

    def __init__(self, config: ExtractionConfig | None = None, *, http_client: httpx.Client | None = None) -> None:
        self._config = config or ExtractionConfig()
        self._http = http_client or httpx.Client(timeout=self._config.http_timeout, follow_redirects=True)

    def extract(self, source_kind: SourceKind, payload: bytes | str) -> str:
        if source_kind is SourceKind.URL:
            if not isinstance(payload, str):
                raise ExtractionError("URL documents need the URL as payload")
            text = self._extract_url(payload)
            self._logger.info("extraction.complete", source_kind=source_kind.value, characters=len(text))
            return text
        loader_cls = self._LOADERS.get(source_kind)
        if loader_cls is None:
            raise ExtractionError(f"Unsupported document type: {source_kind.value}")
        if not isinstance(payload, (bytes, bytearray)):
            raise ExtractionError(f"{source_kind.value.upper()} documents need file bytes as payload")
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / f"payload.{source_kind.value}"
            path.write_bytes(bytes(payload))
            documents = self._load(loader_cls, path, source_kind.value.upper())
        text = self._join(documents)
        self._logger.info("extraction.complete", source_kind=source_kind.value, characters=len(text))
        return text

    def _extract_url(self, url: str) -> str:
        try:
            validate_url(url)
        except ValidationError as exc:
            raise ExtractionError(str(exc)) from exc
        try:
            with self._http.stream("GET", url) as response:
                if response.status_code >= 400:
                    raise ExtractionError(f"Failed to extract text from URL: HTTP error {response.status_code}")
                body = bytearray()
                for block in response.iter_bytes():
                    body.extend(block)
                    if len(body) > self._config.max_download_bytes:
                        raise ExtractionError(f"Failed to extract text from URL: download too large: {url}")
                encoding = response.encoding or self._config.encoding
        except httpx.HTTPError as exc:
            raise ExtractionError(f"Failed to extract text from URL: {exc}") from exc
        html = _SCRIPT_STYLE.sub(" ", bytes(body).decode(encoding, errors="replace"))
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "page.html"
            path.write_text(html, encoding="utf-8")
            documents = self._load(BSHTMLLoader, path, "URL")
        text = " ".join(document.page_content for document in documents)
        return re.sub(r"\s+", " ", unicodedata.normalize("NFKC", text)).strip()

    def _load(self, loader_cls: type[BaseLoader], path: Path, label: str) -> Sequence[LCDocument]:
        try:
            return self._build_loader(loader_cls, path).load()
        except Exception as exc:
            raise ExtractionError(f"Failed to extract text from {label}: {exc}") from exc

    def _build_loader(self, loader_cls: type[BaseLoader], path: Path) -> BaseLoader:
        if loader_cls is TextLoader:
            return TextLoader(str(path), encoding=self._config.encoding)
        if loader_cls is BSHTMLLoader:
            return BSHTMLLoader(
                str(path),
                open_encoding="utf-8",
                bs_kwargs={"features": "html.parser"},
                get_text_separator=" ",
            )
        return loader_cls(str(path))

    @staticmethod
    def _join(documents: Sequence[LCDocument]) -> str:
        parts = [_normalize_text(document.page_content) for document in documents]
        return "\n\n".join(part for part in parts if part)


class LangChainTextChunker:
    """Deterministic chunking with LangChain's recursive character splitter."""

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self._config = config or ChunkingConfig()
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=self._config.chunk_size,
            chunk_overlap=self._config.chunk_overlap,
            separators=list(self._config.separators),
        )

    def chunk(self, text: str, metadata: Mapping[str, Any]) -> List[Chunk]:
        if not text or not text.strip():
            return []
        pieces = [piece.strip() for piece in self._splitter.split_text(text)]
        return [
            Chunk(text=piece, metadata={**metadata, "chunk_index": index})
            for index, piece in enumerate(piece for piece in pieces if piece)
        ]
