"""Query orchestration combining retrieval, gating and generation."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Sequence

from groundedqa.embeddings.service import EmbeddingProvider, Vector, ensure_dimensions
from groundedqa.embeddings.store import VectorStore
from groundedqa.errors import NotFoundError, RequestCancelledError, ServiceUnavailableError, ValidationError
from groundedqa.metrics.observability import PipelineMetrics, TimedSection, get_logger
from groundedqa.models import ChatTurnResult, SearchResult
from groundedqa.resilience.guards import DependencyGuards
from groundedqa.resilience.retry import Deadline
from groundedqa.retrieval.context import ContextAssembler
from groundedqa.retrieval.gate import FALLBACK_ANSWER, RelevanceGate
from groundedqa.services.generation import LanguageModelProvider, clamp_temperature
from groundedqa.storage.metadata import MetadataStore

SYSTEM_INSTRUCTION = (
    "You are a helpful assistant that answers questions based ONLY on the provided context.\n"
    f'If the answer is not explicitly present in the context, respond exactly: "{FALLBACK_ANSWER}"\n'
    "Do not make assumptions or provide information not contained in the context."
)


@dataclass(frozen=True)
class QueryConfig:
    """Configuration for answering chat turns."""

    relevance_threshold: float = 0.75
    top_k: int = 5
    context_token_budget: int = 3000
    temperature: float = 0.3
    request_timeout: float | None = 120.0


@dataclass(frozen=True)
class InstructionPair:
    system: str
    user: str


class PromptBuilder:
    """Builds the fixed instruction pair handed to the language model."""

    def build(self, context: str, message: str) -> InstructionPair:
        user = (
            f"Context:\n{context}\n\n"
            f"Question: {message}\n\n"
            "Answer the question based only on the context provided above."
        )
        return InstructionPair(system=SYSTEM_INSTRUCTION, user=user)


class QueryPipeline:
    """Answers one chat turn strictly from a project's indexed documents."""

    def __init__(
        self,
        *,
        metadata: MetadataStore,
        embedder: EmbeddingProvider,
        vector_store: VectorStore,
        generator: LanguageModelProvider,
        guards: DependencyGuards,
        config: QueryConfig | None = None,
        prompt_builder: PromptBuilder | None = None,
    ) -> None:
        self._metadata = metadata
        self._embedder = embedder
        self._vector_store = vector_store
        self._generator = generator
        self._guards = guards
        self._config = config or QueryConfig()
        self._gate = RelevanceGate(self._config.relevance_threshold)
        self._assembler = ContextAssembler(self._config.context_token_budget)
        self._prompt_builder = prompt_builder or PromptBuilder()
        self._logger = get_logger("query")

    def answer(self, project_id: str, message: str, *, deadline: Deadline | None = None) -> ChatTurnResult:
        if not project_id or not project_id.strip():
            raise ValidationError("projectId is required")
        if not message or not message.strip():
            raise ValidationError("message is required")
        if not self._metadata.project_exists(project_id):
            raise NotFoundError(f"Project with id {project_id} not found")

        deadline = deadline or Deadline(self._config.request_timeout)
        log = self._logger.bind(project_id=project_id)

        vector = self._embed(message, deadline)
        retrieval_start = time.perf_counter()
        results = self._search(project_id, vector, deadline)
        retrieval_duration = time.perf_counter() - retrieval_start
        top_score = self._gate.top_score(results)
        PipelineMetrics.observe_retrieval(retrieval_duration, top_score)
        log.info("retrieval.complete", result_count=len(results), top_score=top_score)

        if not self._gate.passes(results):
            PipelineMetrics.observe_refusal()
            log.info("query.refused", reason="below_threshold", top_score=top_score, threshold=self._gate.threshold)
            return ChatTurnResult(answer=FALLBACK_ANSWER, source_count=0)

        context = self._assembler.assemble(results)
        if context.is_empty:
            PipelineMetrics.observe_refusal()
            log.info("query.refused", reason="context_budget", token_budget=self._assembler.token_budget)
            return ChatTurnResult(answer=FALLBACK_ANSWER, source_count=0)

        instructions = self._prompt_builder.build(context.text, message)
        with TimedSection(PipelineMetrics.observe_generation) as generation:
            answer = self._generate(instructions, deadline)
        log.info(
            "generation.complete",
            source_count=context.included_count,
            duration_seconds=generation.elapsed,
        )
        return ChatTurnResult(answer=answer, source_count=context.included_count)

    def _embed(self, message: str, deadline: Deadline) -> Vector:
        def operation() -> Vector:
            vector = self._embedder.embed_one(message)
            ensure_dimensions([vector], 1, self._embedder.dimensions)
            return vector

        try:
            return self._guards.embedding.execute(operation, deadline=deadline)
        except RequestCancelledError:
            raise
        except Exception as exc:
            raise self._unavailable("embed", exc, "Unable to process query") from exc

    def _search(self, project_id: str, vector: Vector, deadline: Deadline) -> Sequence[SearchResult]:
        try:
            return self._guards.vector_store.execute(
                lambda: self._vector_store.search(project_id, vector, k=self._config.top_k),
                deadline=deadline,
            )
        except RequestCancelledError:
            raise
        except Exception as exc:
            raise self._unavailable("search", exc, "Unable to search documents") from exc

    def _generate(self, instructions: InstructionPair, deadline: Deadline) -> str:
        temperature = clamp_temperature(self._config.temperature)
        try:
            return self._guards.language_model.execute(
                lambda: self._generator.generate(instructions.system, instructions.user, temperature),
                deadline=deadline,
            )
        except RequestCancelledError:
            raise
        except Exception as exc:
            raise self._unavailable("generate", exc, "Unable to generate response") from exc

    def _unavailable(self, stage: str, exc: Exception, message: str) -> ServiceUnavailableError:
        self._logger.warning("query.stage_failed", stage=stage, error=str(exc), error_type=type(exc).__name__)
        return ServiceUnavailableError(message)
