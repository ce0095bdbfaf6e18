"""Observability helpers for groundedqa."""

from __future__ import annotations

import logging
import time
from contextvars import ContextVar
from typing import Callable

import structlog
from prometheus_client import Counter, Gauge, Histogram

_logger_configured = False
_correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


def configure_logging(level: int | str = logging.INFO) -> None:
    global _logger_configured  # noqa: PLW0603 - module-level guard
    if _logger_configured:
        return
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _logger_configured = True


def bind_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    structlog.contextvars.clear_contextvars()
    _correlation_id_var.set("-")


def get_correlation_id() -> str:
    return _correlation_id_var.get()


def get_logger(name: str = "groundedqa") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


def _clamp_score(score: float) -> float:
    if score < 0.0:
        return 0.0
    if score > 1.0:
        return 1.0
    return score


_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


class PipelineMetrics:
    """Prometheus metrics for pipeline stages."""

    ingestion_latency = Histogram(
        "groundedqa_ingestion_duration_seconds",
        "Time spent processing one document.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
    )
    ingestion_chunks = Histogram(
        "groundedqa_ingestion_chunk_count",
        "Chunks produced per processed document.",
        buckets=(0, 1, 5, 10, 20, 40, 80, 160),
    )
    document_outcomes = Counter(
        "groundedqa_document_outcomes_total",
        "Documents reaching a terminal status.",
        ["status", "stage"],
    )
    retrieval_latency = Histogram(
        "groundedqa_retrieval_duration_seconds",
        "Time spent searching the vector store for one query.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    )
    top_score = Histogram(
        "groundedqa_retrieval_top_score",
        "Highest similarity score per query.",
        buckets=(0.0, 0.25, 0.5, 0.75, 0.9, 1.0),
    )
    gate_refusals = Counter(
        "groundedqa_relevance_refusals_total",
        "Queries answered with the fallback because retrieval was not relevant enough.",
    )
    generation_latency = Histogram(
        "groundedqa_generation_duration_seconds",
        "Time spent generating answers.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0),
    )
    breaker_state = Gauge(
        "groundedqa_circuit_state",
        "Circuit breaker state per dependency (0=closed, 1=half_open, 2=open).",
        ["dependency"],
    )
    breaker_rejections = Counter(
        "groundedqa_circuit_rejections_total",
        "Calls rejected while a circuit was open.",
        ["dependency"],
    )
    retry_attempts = Counter(
        "groundedqa_retry_attempts_failed_total",
        "Failed attempts observed by the retry executor.",
        ["retryable"],
    )

    @classmethod
    def observe_ingestion(cls, duration_seconds: float, chunk_count: int) -> None:
        cls.ingestion_latency.observe(duration_seconds)
        cls.ingestion_chunks.observe(chunk_count)

    @classmethod
    def observe_document_outcome(cls, status: str, stage: str) -> None:
        cls.document_outcomes.labels(status=status, stage=stage).inc()

    @classmethod
    def observe_retrieval(cls, duration_seconds: float, top_score: float) -> None:
        cls.retrieval_latency.observe(duration_seconds)
        cls.top_score.observe(_clamp_score(top_score))

    @classmethod
    def observe_refusal(cls) -> None:
        cls.gate_refusals.inc()

    @classmethod
    def observe_generation(cls, duration_seconds: float) -> None:
        cls.generation_latency.observe(duration_seconds)

    @classmethod
    def observe_breaker_state(cls, dependency: str, state: str) -> None:
        cls.breaker_state.labels(dependency=dependency).set(_STATE_VALUES.get(state, 0))

    @classmethod
    def observe_rejection(cls, dependency: str) -> None:
        cls.breaker_rejections.labels(dependency=dependency).inc()

    @classmethod
    def observe_failed_attempt(cls, retryable: bool) -> None:
        cls.retry_attempts.labels(retryable=str(retryable).lower()).inc()


class TimedSection:
    """Context manager capturing elapsed time for metrics."""

    def __init__(self, callback: Callable[[float], None]) -> None:
        self._callback = callback
        self._start = 0.0
        self.elapsed = 0.0

    def __enter__(self) -> "TimedSection":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.elapsed = time.perf_counter() - self._start
        self._callback(self.elapsed)


__all__ = [
    "PipelineMetrics",
    "TimedSection",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_correlation_id",
    "get_logger",
]
