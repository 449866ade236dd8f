"""
Caller-supplied resilience policy for repository / backing-store calls.

The engines issue single attempts; whoever composes them decides whether to
retry. `ResiliencePolicy.call(fn)` retries retryable ``IndexServiceError``s with
``backoff ** attempt`` sleeps and trips a consecutive-failure circuit breaker.
`PASS_THROUGH` is the default: one attempt, no breaker.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional, TypeVar

from src.core.errors import CircuitOpenError, IndexServiceError
from src.log import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitBreaker:
    """closed → open after `threshold` consecutive failures → half-open after `reset_seconds`."""

    def __init__(self, threshold: int = 5, reset_seconds: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self.threshold = max(1, threshold)
        self.reset_seconds = reset_seconds
        self._clock = clock
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        with self._lock:
            if self._opened_at is None:
                return "closed"
            if self._clock() - self._opened_at >= self.reset_seconds:
                return "half_open"
            return "open"

    def allow(self) -> bool:
        return self.state != "open"

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._opened_at = None

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            if self._failures >= self.threshold:
                if self._opened_at is None:
                    logger.warning("circuit opened after %d consecutive failures", self._failures)
                self._opened_at = self._clock()


class ResiliencePolicy:
    def __init__(
        self,
        max_retries: int = 0,
        backoff: float = 1.5,
        breaker: Optional[CircuitBreaker] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_retries = max(0, max_retries)
        self.backoff = backoff
        self.breaker = breaker
        self._sleep = sleep

    @classmethod
    def from_settings(cls, cfg) -> "ResiliencePolicy":
        return cls(
            max_retries=cfg.max_retries,
            backoff=cfg.retry_backoff,
            breaker=CircuitBreaker(cfg.breaker_threshold, cfg.breaker_reset_seconds),
        )

    def call(self, fn: Callable[[], T]) -> T:
        last_err: Optional[IndexServiceError] = None
        for attempt in range(self.max_retries + 1):
            if self.breaker is not None and not self.breaker.allow():
                raise CircuitOpenError("circuit open, call rejected")
            try:
                result = fn()
            except IndexServiceError as e:
                if not e.retryable:
                    # 非瞬时错误（NotFound 等）说明对端可达
                    if self.breaker is not None:
                        self.breaker.record_success()
                    raise
                last_err = e
                if self.breaker is not None:
                    self.breaker.record_failure()
                if attempt >= self.max_retries:
                    raise
                delay = self.backoff ** attempt
                logger.debug("retryable failure (%s), attempt %d/%d, sleeping %.2fs",
                             e.code, attempt + 1, self.max_retries + 1, delay)
                self._sleep(delay)
                continue
            if self.breaker is not None:
                self.breaker.record_success()
            return result
        if last_err:
            raise last_err
        raise RuntimeError("resilience policy exhausted without result")


PASS_THROUGH = ResiliencePolicy()
