"""Admission limiting, cancellation and retry/backoff for backend calls."""

import random
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, TypeVar

from s3_tree_clone.errors import (
    ErrorClassifier,
    ErrorKind,
    OperationCancelled,
    classify_error,
    is_timeout,
)

T = TypeVar("T")


class CancellationToken:
    """Run-scoped cooperative cancellation signal."""

    def __init__(self):
        self._event = threading.Event()
        self._listeners = []
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            self._event.set()
            listeners = list(self._listeners)
        for listener in listeners:
            listener()

    def add_listener(self, callback: Callable[[], None]) -> None:
        with self._lock:
            self._listeners.append(callback)

    def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled first."""
        if self._event.wait(seconds):
            raise OperationCancelled("cancelled while backing off")

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("run cancelled")


class AdmissionLimiter:
    """Weighted semaphore bounding the number of outstanding backend requests."""

    def __init__(self, capacity: int, cancel_token: Optional[CancellationToken] = None):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.cancel_token = cancel_token or CancellationToken()
        self._in_use = 0
        self._condition = threading.Condition()
        self.cancel_token.add_listener(self._wake_all)

    @property
    def in_use(self) -> int:
        with self._condition:
            return self._in_use

    def _wake_all(self) -> None:
        with self._condition:
            self._condition.notify_all()

    def _clamp(self, weight: int) -> int:
        if weight < 1:
            raise ValueError("weight must be at least 1")
        return min(weight, self.capacity)

    def acquire(self, weight: int = 1) -> None:
        weight = self._clamp(weight)
        with self._condition:
            while self._in_use + weight > self.capacity:
                self.cancel_token.raise_if_cancelled()
                self._condition.wait()
            self.cancel_token.raise_if_cancelled()
            self._in_use += weight

    def release(self, weight: int = 1) -> None:
        weight = self._clamp(weight)
        with self._condition:
            if weight > self._in_use:
                raise RuntimeError("released more admission than was acquired")
            self._in_use -= weight
            self._condition.notify_all()

    @contextmanager
    def slot(self, weight: int = 1) -> Iterator[None]:
        self.acquire(weight)
        try:
            yield
        finally:
            self.release(weight)


class RetryTokenBucket:
    """Retry quota shared by every call of a run.

    Each retry withdraws tokens and every successful call refunds some, so a
    backend that keeps failing quickly stops being retried at all.
    """

    def __init__(self, capacity: int = 500, retry_cost: int = 5, timeout_cost: int = 10, refund: int = 1):
        self.capacity = capacity
        self.retry_cost = retry_cost
        self.timeout_cost = timeout_cost
        self.refund = refund
        self._tokens = capacity
        self._lock = threading.Lock()

    @property
    def available(self) -> int:
        with self._lock:
            return self._tokens

    def withdraw(self, timeout: bool = False) -> bool:
        cost = self.timeout_cost if timeout else self.retry_cost
        with self._lock:
            if self._tokens < cost:
                return False
            self._tokens -= cost
            return True

    def deposit(self) -> None:
        with self._lock:
            self._tokens = min(self.capacity, self._tokens + self.refund)


class RetryPolicy:
    """Bounded retries with capped exponential backoff and full jitter.

    ``max_attempts`` counts the first attempt; 0 and 1 both mean a single
    attempt with no retry.
    """

    def __init__(
        self,
        max_attempts: int = 10,
        max_backoff: float = 60.0,
        base_delay: float = 0.05,
        classifier: ErrorClassifier = classify_error,
        token_bucket: Optional[RetryTokenBucket] = None,
        cancel_token: Optional[CancellationToken] = None,
        rng: Optional[random.Random] = None,
    ):
        if max_attempts < 0:
            raise ValueError("max_attempts must not be negative")
        self.max_attempts = max(1, max_attempts)
        self.max_backoff = max_backoff
        self.base_delay = base_delay
        self.classifier = classifier
        self.token_bucket = token_bucket or RetryTokenBucket()
        self.cancel_token = cancel_token or CancellationToken()
        self.rng = rng or random.Random()

    def backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        ceiling = min(self.max_backoff, self.base_delay * (2 ** attempt))
        return self.rng.uniform(0, ceiling)

    def call(self, fn: Callable[..., T], *args, **kwargs) -> T:
        attempt = 0
        while True:
            self.cancel_token.raise_if_cancelled()
            attempt += 1
            try:
                result = fn(*args, **kwargs)
            except Exception as e:
                if (
                    attempt >= self.max_attempts
                    or self.classifier(e) is not ErrorKind.TRANSIENT
                    or not self.token_bucket.withdraw(timeout=is_timeout(e))
                ):
                    raise
                self.cancel_token.sleep(self.backoff(attempt))
                continue
            self.token_bucket.deposit()
            return result


class BackendGate:
    """Admission limiter and retry policy applied together around backend calls."""

    def __init__(self, limiter: AdmissionLimiter, retry: RetryPolicy):
        self.limiter = limiter
        self.retry = retry

    @property
    def cancel_token(self) -> CancellationToken:
        return self.limiter.cancel_token

    def call(self, fn: Callable[..., T], *args, weight: int = 1, **kwargs) -> T:
        with self.limiter.slot(weight):
            return self.retry.call(fn, *args, **kwargs)
