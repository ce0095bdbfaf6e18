"""Bounded exponential-backoff retries for calls to unreliable dependencies."""

from __future__ import annotations

import contextvars
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Callable, TypeVar

from groundedqa.errors import (
    CircuitOpenError,
    ConflictError,
    NotFoundError,
    RequestCancelledError,
    RequestTimeoutError,
    ValidationError,
)
from groundedqa.metrics.observability import PipelineMetrics, get_logger

T = TypeVar("T")

_POLL_INTERVAL = 0.05
_CALL_POOL = ThreadPoolExecutor(max_workers=32, thread_name_prefix="groundedqa-call")

_TERMINAL_ERRORS: tuple[type[BaseException], ...] = (
    ValidationError,
    NotFoundError,
    ConflictError,
    CircuitOpenError,
    RequestCancelledError,
)


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy for one call site."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_factor: float = 2.0
    attempt_timeout: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.backoff_factor <= 1:
            raise ValueError("backoff_factor must be > 1")
        if self.attempt_timeout is not None and self.attempt_timeout <= 0:
            raise ValueError("attempt_timeout must be positive")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given 1-based attempt failed."""

        return min(self.base_delay * self.backoff_factor ** (attempt - 1), self.max_delay)


class Deadline:
    """Time limit and cancellation signal of the request that owns a call.

    ``timeout=None`` means no time limit; cancellation is still possible via
    ``cancel()`` or the supplied ``threading.Event``.
    """

    def __init__(
        self,
        timeout: float | None = None,
        *,
        cancel_event: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._expires_at = None if timeout is None else clock() + timeout
        self._cancel_event = cancel_event or threading.Event()

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0

    def check(self) -> None:
        if self.cancelled:
            raise RequestCancelledError("Request was cancelled")
        if self.expired:
            raise RequestTimeoutError("Request deadline exceeded")

    def sleep(self, seconds: float) -> None:
        """Wait ``seconds`` unless cancelled first or the deadline cannot accommodate it."""

        self.check()
        remaining = self.remaining()
        if remaining is not None and seconds >= remaining:
            raise RequestTimeoutError("Request deadline would expire before the next attempt")
        if self._cancel_event.wait(seconds):
            raise RequestCancelledError("Request was cancelled")


def is_retryable(error: BaseException) -> bool:
    """Caller mistakes and control-flow signals are terminal; everything else is retried."""

    return not isinstance(error, _TERMINAL_ERRORS)


class RetryExecutor:
    """Runs an operation with bounded exponential-backoff retries."""

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._config = config or RetryConfig()
        self._sleep = sleep
        self._logger = get_logger("retry")

    @property
    def config(self) -> RetryConfig:
        return self._config

    def run(
        self,
        operation: Callable[[], T],
        config: RetryConfig | None = None,
        *,
        deadline: Deadline | None = None,
    ) -> T:
        """Return the operation's result or re-raise the error of the last attempt."""

        policy = config or self._config
        for attempt in range(1, policy.max_attempts + 1):
            if deadline is not None:
                deadline.check()
            try:
                return self._attempt(operation, policy, deadline)
            except Exception as exc:
                retryable = is_retryable(exc)
                PipelineMetrics.observe_failed_attempt(retryable)
                if not retryable or attempt == policy.max_attempts:
                    raise
                delay = policy.delay_for(attempt)
                self._logger.warning(
                    "retry.attempt_failed",
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    delay_seconds=delay,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                self._wait(delay, deadline)
        raise RuntimeError("retry loop exited without a result")

    def _attempt(self, operation: Callable[[], T], policy: RetryConfig, deadline: Deadline | None) -> T:
        limit = policy.attempt_timeout
        if deadline is not None:
            remaining = deadline.remaining()
            if remaining is not None:
                limit = remaining if limit is None else min(limit, remaining)
        if limit is None and deadline is None:
            return operation()

        # Run on a worker so a hung call can be abandoned at the time limit or on cancellation.
        context = contextvars.copy_context()
        future = _CALL_POOL.submit(context.run, operation)
        ends_at = None if limit is None else time.monotonic() + limit
        while True:
            if deadline is not None and deadline.cancelled:
                future.cancel()
                raise RequestCancelledError("Request was cancelled")
            wait_for = _POLL_INTERVAL
            if ends_at is not None:
                left = ends_at - time.monotonic()
                if left <= 0:
                    future.cancel()
                    raise RequestTimeoutError(f"Call exceeded its {limit:.2f}s time limit")
                wait_for = min(wait_for, left)
            try:
                return future.result(timeout=wait_for)
            except FutureTimeoutError:
                if future.done():
                    raise
                continue

    def _wait(self, delay: float, deadline: Deadline | None) -> None:
        if self._sleep is not None:
            if deadline is not None:
                deadline.check()
            self._sleep(delay)
            return
        if deadline is not None:
            deadline.sleep(delay)
        else:
            time.sleep(delay)


__all__ = ["Deadline", "RetryConfig", "RetryExecutor", "is_retryable"]
