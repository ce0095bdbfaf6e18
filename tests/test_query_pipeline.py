"""Tests for the chat query pipeline."""

from __future__ import annotations

from typing import List, Sequence

import pytest

from groundedqa.errors import (
    CircuitOpenError,
    EmbeddingError,
    LanguageModelError,
    NotFoundError,
    ServiceUnavailableError,
    ValidationError,
    VectorStoreError,
)
from groundedqa.models import SearchResult
from groundedqa.resilience.breaker import CircuitConfig, CircuitState
from groundedqa.resilience.guards import DependencyGuards
from groundedqa.resilience.retry import RetryConfig
from groundedqa.services.query import QueryConfig, QueryPipeline
from groundedqa.storage.metadata import MetadataStore


class FakeEmbedder:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls = 0

    @property
    def dimensions(self) -> int:
        return 3

    def embed_one(self, text: str) -> List[float]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return [0.1, 0.2, 0.3]

    def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        return [self.embed_one(text) for text in texts]


class FakeVectorStore:
    def __init__(self, results: Sequence[SearchResult] = (), error: Exception | None = None) -> None:
        self.results = list(results)
        self.error = error
        self.requested_k: list[int] = []

    def search(self, project_id: str, vector: Sequence[float], k: int = 5) -> Sequence[SearchResult]:
        self.requested_k.append(k)
        if self.error is not None:
            raise self.error
        return self.results[:k]


class RecordingGenerator:
    def __init__(self, reply: str = "  The answer is 42.\n", error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[tuple[str, str, float]] = []

    def generate(self, system_instruction: str, user_instruction: str, temperature: float) -> str:
        self.calls.append((system_instruction, user_instruction, temperature))
        if self.error is not None:
            raise self.error
        return self.reply


def _results(*scores: float, text: str = "chunk") -> list[SearchResult]:
    return [
        SearchResult(id=f"doc_{index}", text=f"{text} {index}", score=score, metadata={})
        for index, score in enumerate(scores)
    ]


def _pipeline(
    *,
    embedder: FakeEmbedder | None = None,
    store: FakeVectorStore | None = None,
    generator: RecordingGenerator | None = None,
    config: QueryConfig | None = None,
    threshold: int = 5,
) -> tuple[QueryPipeline, str, DependencyGuards]:
    metadata = MetadataStore.from_url("sqlite://")
    project_id = metadata.create_project("docs").project_id
    guards = DependencyGuards.build(CircuitConfig(failure_threshold=threshold), RetryConfig(max_attempts=1))
    pipeline = QueryPipeline(
        metadata=metadata,
        embedder=embedder or FakeEmbedder(),
        vector_store=store or FakeVectorStore(),
        generator=generator or RecordingGenerator(),
        guards=guards,
        config=config or QueryConfig(),
    )
    return pipeline, project_id, guards


def test_low_relevance_returns_fallback_without_calling_model():
    generator = RecordingGenerator()
    pipeline, project_id, _ = _pipeline(store=FakeVectorStore(_results(0.60, 0.55)), generator=generator)

    result = pipeline.answer(project_id, "What is the refund policy?")

    assert result.answer == "I don't know"
    assert result.source_count == 0
    assert generator.calls == []


def test_no_results_returns_fallback():
    generator = RecordingGenerator()
    pipeline, project_id, _ = _pipeline(generator=generator)
    result = pipeline.answer(project_id, "Anything?")
    assert (result.answer, result.source_count) == ("I don't know", 0)
    assert generator.calls == []


def test_relevant_results_are_answered_verbatim_with_clamped_temperature():
    generator = RecordingGenerator()
    store = FakeVectorStore(_results(0.80, 0.79, 0.78, 0.77, 0.76, 0.70))
    pipeline, project_id, _ = _pipeline(store=store, generator=generator, config=QueryConfig(temperature=0.9))

    result = pipeline.answer(project_id, "What is the answer?")

    assert result.answer == "  The answer is 42.\n"
    assert result.source_count == 5
    assert store.requested_k == [5]
    assert len(generator.calls) == 1
    system, user, temperature = generator.calls[0]
    assert temperature <= 0.3
    assert 'respond exactly: "I don\'t know"' in system
    assert user.startswith("Context:\nchunk 0\n\nchunk 1")
    assert "\n\nQuestion: What is the answer?\n\n" in user
    assert user.index("chunk 4") < user.index("Question:")


def test_source_count_reflects_context_truncation():
    generator = RecordingGenerator()
    store = FakeVectorStore(_results(0.9, 0.85, 0.8, text="x" * 40))
    pipeline, project_id, _ = _pipeline(
        store=store,
        generator=generator,
        config=QueryConfig(context_token_budget=25),
    )

    result = pipeline.answer(project_id, "question")

    assert result.source_count == 2
    assert "x" * 40 + " 2" not in generator.calls[0][1]


def test_oversized_top_chunk_is_refused_without_calling_model():
    generator = RecordingGenerator()
    store = FakeVectorStore(_results(0.95, text="y" * 400))
    pipeline, project_id, _ = _pipeline(store=store, generator=generator, config=QueryConfig(context_token_budget=10))

    result = pipeline.answer(project_id, "question")

    assert (result.answer, result.source_count) == ("I don't know", 0)
    assert generator.calls == []


@pytest.mark.parametrize(("project_id", "message"), [("", "hi"), ("   ", "hi"), ("p", ""), ("p", "  \n ")])
def test_blank_inputs_are_rejected(project_id: str, message: str):
    embedder = FakeEmbedder()
    pipeline, _, _ = _pipeline(embedder=embedder)
    with pytest.raises(ValidationError):
        pipeline.answer(project_id, message)
    assert embedder.calls == 0


def test_unknown_project_is_not_found():
    embedder = FakeEmbedder()
    pipeline, _, _ = _pipeline(embedder=embedder)
    with pytest.raises(NotFoundError):
        pipeline.answer("missing-project", "hello")
    assert embedder.calls == 0


def test_repeated_embedding_failures_open_the_circuit():
    embedder = FakeEmbedder(error=EmbeddingError("provider down"))
    pipeline, project_id, guards = _pipeline(embedder=embedder, threshold=5)

    for _ in range(5):
        with pytest.raises(ServiceUnavailableError):
            pipeline.answer(project_id, "hello")
    assert guards.embedding.get_state() is CircuitState.OPEN

    for _ in range(4):
        with pytest.raises(ServiceUnavailableError) as excinfo:
            pipeline.answer(project_id, "hello")
        assert isinstance(excinfo.value.__cause__, CircuitOpenError)
    assert embedder.calls == 5
    assert guards.embedding.get_state() is CircuitState.OPEN


def test_search_failure_is_service_unavailable():
    generator = RecordingGenerator()
    pipeline, project_id, _ = _pipeline(store=FakeVectorStore(error=VectorStoreError("down")), generator=generator)
    with pytest.raises(ServiceUnavailableError) as excinfo:
        pipeline.answer(project_id, "hello")
    assert excinfo.value.status_code == 503
    assert "down" not in excinfo.value.message
    assert generator.calls == []


def test_generation_failure_is_service_unavailable():
    generator = RecordingGenerator(error=LanguageModelError("model crashed"))
    pipeline, project_id, _ = _pipeline(store=FakeVectorStore(_results(0.9)), generator=generator)
    with pytest.raises(ServiceUnavailableError):
        pipeline.answer(project_id, "hello")
    assert len(generator.calls) == 1
