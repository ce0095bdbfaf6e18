"""Long-lived breakers, one per protected dependency."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterator

from groundedqa.errors import NotFoundError
from groundedqa.resilience.breaker import CircuitBreaker, CircuitConfig
from groundedqa.resilience.retry import RetryConfig, RetryExecutor

EMBEDDING = "embedding"
LANGUAGE_MODEL = "language_model"
VECTOR_STORE = "vector_store"


@dataclass(frozen=True)
class DependencyGuards:
    """Breakers shared by every pipeline invocation in the process."""

    embedding: CircuitBreaker
    language_model: CircuitBreaker
    vector_store: CircuitBreaker

    def __iter__(self) -> Iterator[CircuitBreaker]:
        return iter((self.embedding, self.language_model, self.vector_store))

    def get(self, name: str) -> CircuitBreaker:
        for breaker in self:
            if breaker.name == name:
                return breaker
        raise NotFoundError(f"Unknown circuit breaker: {name}")

    @classmethod
    def build(
        cls,
        circuit: CircuitConfig,
        retry: RetryConfig,
        *,
        sleep: Callable[[float], None] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> "DependencyGuards":
        executor = RetryExecutor(retry, sleep=sleep)
        extra = {"clock": clock} if clock is not None else {}
        return cls(
            embedding=CircuitBreaker(EMBEDDING, circuit, retry=executor, **extra),
            language_model=CircuitBreaker(LANGUAGE_MODEL, circuit, retry=executor, **extra),
            vector_store=CircuitBreaker(VECTOR_STORE, circuit, retry=executor, **extra),
        )
