"""Service layer orchestrations for groundedqa."""

from .documents import DocumentService, detect_file_kind
from .generation import (
    GenerationConfig,
    LanguageModelProvider,
    OpenAICompatibleGenerator,
    TemplateGenerator,
    TransformersGenerator,
)
from .projects import ProjectService
from .query import PromptBuilder, QueryConfig, QueryPipeline

__all__ = [
    "DocumentService",
    "GenerationConfig",
    "LanguageModelProvider",
    "OpenAICompatibleGenerator",
    "ProjectService",
    "PromptBuilder",
    "QueryConfig",
    "QueryPipeline",
    "TemplateGenerator",
    "TransformersGenerator",
    "detect_file_kind",
]
