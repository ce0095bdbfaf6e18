"""Circuit breaker isolating a failing dependency from its callers."""

from __future__ import annotations

import threading
import time
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any, Callable, TypeVar

from groundedqa.errors import CircuitOpenError, RequestCancelledError, RequestTimeoutError
from groundedqa.metrics.observability import PipelineMetrics, get_logger
from groundedqa.resilience.retry import Deadline, RetryConfig, RetryExecutor

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitConfig:
    """Thresholds for one breaker; durations are in seconds."""

    failure_threshold: int = 5
    reset_timeout: float = 60.0
    monitoring_period: float = 60.0

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.reset_timeout <= 0:
            raise ValueError("reset_timeout must be positive")
        if self.monitoring_period <= 0:
            raise ValueError("monitoring_period must be positive")


@dataclass(frozen=True)
class CircuitStats:
    failure_count: int = 0
    success_count: int = 0
    last_failure_time: float | None = None
    last_success_time: float | None = None


class CircuitBreaker:
    """Three-state failure isolation for one protected dependency.

    Calls pass through a ``RetryExecutor`` while the circuit admits them, so
    a whole retry loop counts as a single outcome. The instance is meant to be
    long-lived and shared; every state change happens under a lock.
    """

    def __init__(
        self,
        name: str,
        config: CircuitConfig | None = None,
        *,
        retry: RetryExecutor | None = None,
        retry_config: RetryConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._name = name
        self._config = config or CircuitConfig()
        self._retry = retry or RetryExecutor(retry_config)
        self._retry_config = retry_config
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._stats = CircuitStats()
        self._next_attempt_time = 0.0
        self._trial_in_flight = False
        self._logger = get_logger("breaker").bind(dependency=name)
        PipelineMetrics.observe_breaker_state(name, self._state.value)

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> CircuitConfig:
        return self._config

    @property
    def next_attempt_time(self) -> float:
        with self._lock:
            return self._next_attempt_time

    def execute(self, operation: Callable[[], T], *, deadline: Deadline | None = None) -> T:
        if deadline is not None:
            # An expired or cancelled request never reaches the dependency.
            deadline.check()
        is_trial = self._admit()
        started: list[bool] = []

        def attempt() -> T:
            started.append(True)
            return operation()

        try:
            result = self._retry.run(attempt, self._retry_config, deadline=deadline)
        except RequestCancelledError:
            self._on_cancelled(is_trial)
            raise
        except RequestTimeoutError as exc:
            if not started:
                self._on_cancelled(is_trial)
            else:
                self._on_failure(exc)
            raise
        except Exception as exc:
            self._on_failure(exc)
            raise
        self._on_success()
        return result

    def get_state(self) -> CircuitState:
        with self._lock:
            return self._state

    def get_stats(self) -> CircuitStats:
        with self._lock:
            return replace(self._stats)

    def reset(self) -> None:
        with self._lock:
            self._transition(CircuitState.CLOSED)
            self._next_attempt_time = 0.0

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "name": self._name,
                "state": self._state.value,
                "next_attempt_time": self._next_attempt_time if self._state is CircuitState.OPEN else None,
                **asdict(self._stats),
            }

    def _admit(self) -> bool:
        with self._lock:
            if self._state is CircuitState.OPEN:
                if self._clock() < self._next_attempt_time:
                    self._reject()
                self._transition(CircuitState.HALF_OPEN)
                self._trial_in_flight = True
                return True
            if self._state is CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    self._reject()
                self._trial_in_flight = True
                return True
            return False

    def _reject(self) -> None:
        PipelineMetrics.observe_rejection(self._name)
        raise CircuitOpenError(self._name)

    def _on_success(self) -> None:
        with self._lock:
            now = self._clock()
            if self._state is CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                self._transition(CircuitState.CLOSED)
                self._logger.info("breaker.closed")
                return
            self._stats = replace(
                self._stats,
                failure_count=0,
                success_count=self._stats.success_count + 1,
                last_success_time=now,
            )

    def _on_failure(self, exc: Exception) -> None:
        with self._lock:
            now = self._clock()
            failures = self._stats.failure_count
            last = self._stats.last_failure_time
            if last is not None and now - last > self._config.monitoring_period:
                failures = 0
            self._stats = replace(self._stats, failure_count=failures + 1, last_failure_time=now)
            if self._state is CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                self._open(now, exc)
            elif self._state is CircuitState.CLOSED and self._stats.failure_count >= self._config.failure_threshold:
                self._open(now, exc)

    def _on_cancelled(self, is_trial: bool) -> None:
        if not is_trial:
            return
        with self._lock:
            # The trial never completed, so the next caller may attempt it.
            self._trial_in_flight = False
            self._transition(CircuitState.OPEN)

    def _open(self, now: float, exc: Exception) -> None:
        self._next_attempt_time = now + self._config.reset_timeout
        self._transition(CircuitState.OPEN)
        self._logger.warning(
            "breaker.opened",
            failure_count=self._stats.failure_count,
            reset_timeout_seconds=self._config.reset_timeout,
            error_type=type(exc).__name__,
        )

    def _transition(self, state: CircuitState) -> None:
        if state is CircuitState.CLOSED:
            self._stats = CircuitStats()
            self._trial_in_flight = False
        self._state = state
        PipelineMetrics.observe_breaker_state(self._name, state.value)


__all__ = ["CircuitBreaker", "CircuitConfig", "CircuitState", "CircuitStats"]
