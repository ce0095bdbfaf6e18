from __future__ import annotations

import threading

import pytest

from groundedqa.errors import (
    CircuitOpenError,
    EmbeddingError,
    NotFoundError,
    RequestCancelledError,
    RequestTimeoutError,
)
from groundedqa.resilience.breaker import CircuitBreaker, CircuitConfig, CircuitState
from groundedqa.resilience.guards import DependencyGuards
from groundedqa.resilience.retry import Deadline, RetryConfig, RetryExecutor


class _FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _fail() -> None:
    raise EmbeddingError("provider down")


def _breaker(clock: _FakeClock, *, threshold: int = 3, attempts: int = 1, **config: float) -> CircuitBreaker:
    return CircuitBreaker(
        "embedding",
        CircuitConfig(failure_threshold=threshold, **config),
        retry=RetryExecutor(RetryConfig(max_attempts=attempts), sleep=lambda _: None),
        clock=clock,
    )


def _trip(breaker: CircuitBreaker, times: int) -> None:
    for _ in range(times):
        with pytest.raises(EmbeddingError):
            breaker.execute(_fail)


def test_breaker_opens_after_threshold_and_rejects_without_calling():
    clock = _FakeClock()
    breaker = _breaker(clock, threshold=3)
    _trip(breaker, 3)
    assert breaker.get_state() is CircuitState.OPEN

    calls: list[int] = []
    with pytest.raises(CircuitOpenError) as excinfo:
        breaker.execute(lambda: calls.append(1))
    assert calls == []
    assert str(excinfo.value) == "Circuit breaker for embedding is OPEN - service unavailable"
    assert excinfo.value.status_code == 503


def test_retry_loop_counts_as_a_single_failure():
    clock = _FakeClock()
    breaker = _breaker(clock, threshold=5, attempts=3)
    calls: list[int] = []

    def failing() -> None:
        calls.append(1)
        raise EmbeddingError("down")

    with pytest.raises(EmbeddingError):
        breaker.execute(failing)
    assert len(calls) == 3
    assert breaker.get_stats().failure_count == 1


def test_half_open_trial_success_closes_and_resets_stats():
    clock = _FakeClock()
    breaker = _breaker(clock, threshold=2, reset_timeout=30.0)
    _trip(breaker, 2)
    assert breaker.next_attempt_time == clock.now + 30.0

    clock.advance(29.0)
    with pytest.raises(CircuitOpenError):
        breaker.execute(lambda: "ignored")

    clock.advance(1.0)
    assert breaker.execute(lambda: "recovered") == "recovered"
    assert breaker.get_state() is CircuitState.CLOSED
    stats = breaker.get_stats()
    assert stats.failure_count == 0
    assert stats.last_failure_time is None


def test_half_open_trial_failure_reopens_with_new_timeout():
    clock = _FakeClock()
    breaker = _breaker(clock, threshold=2, reset_timeout=10.0)
    _trip(breaker, 2)
    clock.advance(10.0)
    _trip(breaker, 1)
    assert breaker.get_state() is CircuitState.OPEN
    assert breaker.next_attempt_time == clock.now + 10.0


def test_half_open_admits_a_single_trial():
    clock = _FakeClock()
    breaker = _breaker(clock, threshold=1, reset_timeout=5.0)
    _trip(breaker, 1)
    clock.advance(5.0)

    started = threading.Event()
    release = threading.Event()
    outcome: list[str] = []

    def trial() -> str:
        started.set()
        release.wait(5.0)
        return "trial"

    worker = threading.Thread(target=lambda: outcome.append(breaker.execute(trial)))
    worker.start()
    try:
        assert started.wait(5.0)
        assert breaker.get_state() is CircuitState.HALF_OPEN
        with pytest.raises(CircuitOpenError):
            breaker.execute(lambda: "second")
    finally:
        release.set()
        worker.join(5.0)
    assert outcome == ["trial"]
    assert breaker.get_state() is CircuitState.CLOSED


def test_success_in_closed_state_resets_failure_count():
    clock = _FakeClock()
    breaker = _breaker(clock, threshold=3)
    _trip(breaker, 2)
    breaker.execute(lambda: None)
    _trip(breaker, 2)
    assert breaker.get_state() is CircuitState.CLOSED
    assert breaker.get_stats().failure_count == 2
    assert breaker.get_stats().success_count == 1


def test_failures_outside_monitoring_period_do_not_accumulate():
    clock = _FakeClock()
    breaker = _breaker(clock, threshold=3, monitoring_period=60.0)
    _trip(breaker, 2)
    clock.advance(61.0)
    _trip(breaker, 1)
    assert breaker.get_state() is CircuitState.CLOSED
    assert breaker.get_stats().failure_count == 1


def test_cancellation_is_not_counted_as_failure():
    clock = _FakeClock()
    breaker = _breaker(clock, threshold=1)

    def cancelled() -> None:
        raise RequestCancelledError("client went away")

    with pytest.raises(RequestCancelledError):
        breaker.execute(cancelled)
    assert breaker.get_state() is CircuitState.CLOSED
    assert breaker.get_stats().failure_count == 0


def test_cancelled_trial_returns_to_open():
    clock = _FakeClock()
    breaker = _breaker(clock, threshold=1, reset_timeout=5.0)
    _trip(breaker, 1)
    clock.advance(5.0)

    def cancelled() -> None:
        raise RequestCancelledError("client went away")

    with pytest.raises(RequestCancelledError):
        breaker.execute(cancelled)
    assert breaker.get_state() is CircuitState.OPEN
    assert breaker.execute(lambda: "next trial") == "next trial"


def test_expired_deadline_is_not_counted_as_failure():
    clock = _FakeClock()
    breaker = _breaker(clock, threshold=5)
    calls: list[int] = []

    for _ in range(5):
        deadline = Deadline(1.0, clock=clock)
        clock.advance(5.0)
        with pytest.raises(RequestTimeoutError):
            breaker.execute(lambda: calls.append(1), deadline=deadline)

    assert calls == []
    assert breaker.get_state() is CircuitState.CLOSED
    assert breaker.get_stats().failure_count == 0


def test_expired_deadline_does_not_take_the_half_open_trial():
    clock = _FakeClock()
    breaker = _breaker(clock, threshold=1, reset_timeout=5.0)
    _trip(breaker, 1)
    clock.advance(5.0)

    deadline = Deadline(1.0, clock=clock)
    clock.advance(2.0)
    with pytest.raises(RequestTimeoutError):
        breaker.execute(lambda: "never called", deadline=deadline)

    assert breaker.get_state() is CircuitState.OPEN
    assert breaker.execute(lambda: "trial") == "trial"
    assert breaker.get_state() is CircuitState.CLOSED


def test_manual_reset_closes_circuit():
    clock = _FakeClock()
    breaker = _breaker(clock, threshold=1)
    _trip(breaker, 1)
    breaker.reset()
    assert breaker.get_state() is CircuitState.CLOSED
    assert breaker.snapshot()["next_attempt_time"] is None


def test_concurrent_failures_are_all_counted():
    clock = _FakeClock()
    breaker = _breaker(clock, threshold=100)
    barrier = threading.Barrier(16)

    def worker() -> None:
        barrier.wait()
        try:
            breaker.execute(_fail)
        except EmbeddingError:
            pass

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5.0)
    assert breaker.get_stats().failure_count == 16


def test_dependency_guards_share_one_breaker_per_dependency():
    guards = DependencyGuards.build(CircuitConfig(), RetryConfig(max_attempts=1))
    assert [breaker.name for breaker in guards] == ["embedding", "language_model", "vector_store"]
    assert guards.get("vector_store") is guards.vector_store
    with pytest.raises(NotFoundError):
        guards.get("cache")
