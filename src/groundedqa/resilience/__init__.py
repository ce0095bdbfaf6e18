"""Retry and circuit-breaker harness for external calls."""

from .breaker import CircuitBreaker, CircuitConfig, CircuitState, CircuitStats
from .guards import DependencyGuards
from .retry import Deadline, RetryConfig, RetryExecutor, is_retryable

__all__ = [
    "CircuitBreaker",
    "CircuitConfig",
    "CircuitState",
    "CircuitStats",
    "Deadline",
    "DependencyGuards",
    "RetryConfig",
    "RetryExecutor",
    "is_retryable",
]
