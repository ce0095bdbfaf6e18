"""Document ingestion pipeline."""

from .pipeline import NO_CHUNKS_MESSAGE, DocumentPipeline, IngestionConfig
from .service import (
    ChunkingConfig,
    ExtractionConfig,
    LangChainTextChunker,
    LangChainTextExtractor,
    TextChunker,
    TextExtractor,
    validate_url,
)

__all__ = [
    "ChunkingConfig",
    "DocumentPipeline",
    "ExtractionConfig",
    "IngestionConfig",
    "LangChainTextChunker",
    "LangChainTextExtractor",
    "NO_CHUNKS_MESSAGE",
    "TextChunker",
    "TextExtractor",
    "validate_url",
]
