"""Tests for admission limiting, cancellation and retries."""

import random
import threading
import time

import pytest
from botocore.exceptions import EndpointConnectionError, ReadTimeoutError

from s3_tree_clone.errors import ErrorKind, OperationCancelled
from s3_tree_clone.limiter import (
    AdmissionLimiter,
    BackendGate,
    CancellationToken,
    RetryPolicy,
    RetryTokenBucket,
)
from s3_tree_clone.memory_store import make_client_error


def slow_down():
    return make_client_error("PutObject", "SlowDown", "Please reduce your request rate.", 503)


def access_denied():
    return make_client_error("PutObject", "AccessDenied", "Access Denied", 403)


class Flaky:
    """Callable failing with the given errors before returning ``result``."""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestAdmissionLimiter:
    """Test the weighted admission semaphore."""

    def test_acquire_and_release(self):
        limiter = AdmissionLimiter(3)
        limiter.acquire(2)
        assert limiter.in_use == 2
        limiter.release(2)
        assert limiter.in_use == 0

    def test_weight_is_clamped_to_capacity(self):
        """A request heavier than the whole capacity must not deadlock."""
        limiter = AdmissionLimiter(2)
        with limiter.slot(5):
            assert limiter.in_use == 2
        assert limiter.in_use == 0

    def test_invalid_values(self):
        with pytest.raises(ValueError):
            AdmissionLimiter(0)
        with pytest.raises(ValueError):
            AdmissionLimiter(1).acquire(0)
        with pytest.raises(RuntimeError):
            AdmissionLimiter(1).release(1)

    def test_blocks_until_capacity_is_released(self):
        limiter = AdmissionLimiter(1)
        limiter.acquire()
        acquired = threading.Event()

        def waiter():
            with limiter.slot():
                acquired.set()

        thread = threading.Thread(target=waiter)
        thread.start()
        assert not acquired.wait(0.1)

        limiter.release()
        thread.join(timeout=5)
        assert acquired.is_set()

    def test_never_exceeds_capacity(self):
        limiter = AdmissionLimiter(3)
        peak = []
        lock = threading.Lock()

        def work():
            with limiter.slot():
                with lock:
                    peak.append(limiter.in_use)
                time.sleep(0.01)

        threads = [threading.Thread(target=work) for _ in range(12)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert max(peak) <= 3
        assert limiter.in_use == 0

    def test_cancel_wakes_waiter(self):
        token = CancellationToken()
        limiter = AdmissionLimiter(1, cancel_token=token)
        limiter.acquire()
        errors = []

        def waiter():
            try:
                limiter.acquire()
            except OperationCancelled as e:
                errors.append(e)

        thread = threading.Thread(target=waiter)
        thread.start()
        time.sleep(0.05)
        token.cancel()
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert len(errors) == 1

    def test_acquire_after_cancel_fails(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelled):
            AdmissionLimiter(4, cancel_token=token).acquire()


class TestCancellationToken:
    """Test the run-scoped cancellation signal."""

    def test_sleep_returns_when_not_cancelled(self):
        CancellationToken().sleep(0)

    def test_sleep_interrupted_by_cancel(self):
        token = CancellationToken()
        threading.Timer(0.05, token.cancel).start()

        started = time.monotonic()
        with pytest.raises(OperationCancelled):
            token.sleep(10)
        assert time.monotonic() - started < 5

    def test_listeners_called_on_cancel(self):
        token = CancellationToken()
        seen = []
        token.add_listener(lambda: seen.append(True))
        token.cancel()
        assert token.cancelled
        assert seen == [True]


class TestRetryPolicy:
    """Test bounded retries with backoff."""

    def test_retries_transient_errors(self):
        flaky = Flaky([slow_down(), slow_down()])
        policy = RetryPolicy(max_attempts=3, base_delay=0)

        assert policy.call(flaky) == "ok"
        assert flaky.calls == 3

    def test_network_errors_are_retried(self):
        flaky = Flaky([EndpointConnectionError(endpoint_url="https://s3.amazonaws.com")])
        assert RetryPolicy(max_attempts=2, base_delay=0).call(flaky) == "ok"

    def test_gives_up_after_max_attempts(self):
        flaky = Flaky([slow_down()] * 5)
        policy = RetryPolicy(max_attempts=3, base_delay=0)

        with pytest.raises(Exception) as excinfo:
            policy.call(flaky)

        assert excinfo.value.response["Error"]["Code"] == "SlowDown"
        assert flaky.calls == 3

    def test_fatal_errors_are_not_retried(self):
        flaky = Flaky([access_denied()])
        with pytest.raises(Exception):
            RetryPolicy(max_attempts=5, base_delay=0).call(flaky)
        assert flaky.calls == 1

    @pytest.mark.parametrize("attempts", [0, 1])
    def test_zero_or_one_attempt_disables_retries(self, attempts):
        flaky = Flaky([slow_down()])
        with pytest.raises(Exception):
            RetryPolicy(max_attempts=attempts, base_delay=0).call(flaky)
        assert flaky.calls == 1

    def test_negative_attempts_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=-1)

    def test_injected_classifier(self):
        flaky = Flaky([ValueError("flaky"), ValueError("flaky")])
        policy = RetryPolicy(max_attempts=3, base_delay=0, classifier=lambda e: ErrorKind.TRANSIENT)

        assert policy.call(flaky) == "ok"

    def test_backoff_is_capped(self):
        policy = RetryPolicy(max_backoff=2.0, base_delay=1.0, rng=random.Random(7))
        for attempt in range(1, 30):
            assert 0 <= policy.backoff(attempt) <= 2.0

    def test_backoff_grows_exponentially_before_cap(self):
        class Ceiling(random.Random):
            def uniform(self, a, b):
                return b

        policy = RetryPolicy(max_backoff=60.0, base_delay=0.05, rng=Ceiling())
        assert policy.backoff(1) == pytest.approx(0.1)
        assert policy.backoff(3) == pytest.approx(0.4)
        assert policy.backoff(20) == 60.0

    def test_cancel_stops_retrying(self):
        token = CancellationToken()
        token.cancel()
        flaky = Flaky([])
        with pytest.raises(OperationCancelled):
            RetryPolicy(cancel_token=token).call(flaky)
        assert flaky.calls == 0


class TestRetryTokenBucket:
    """Test the shared retry quota."""

    def test_withdraw_and_deposit(self):
        bucket = RetryTokenBucket(capacity=12, retry_cost=5, timeout_cost=10, refund=1)
        assert bucket.withdraw()
        assert bucket.available == 7
        assert not bucket.withdraw(timeout=True)
        bucket.deposit()
        assert bucket.available == 8

    def test_deposit_never_exceeds_capacity(self):
        bucket = RetryTokenBucket(capacity=3)
        bucket.deposit()
        assert bucket.available == 3

    def test_exhausted_bucket_stops_retries(self):
        bucket = RetryTokenBucket(capacity=5, retry_cost=5)
        flaky = Flaky([slow_down()] * 3)
        policy = RetryPolicy(max_attempts=10, base_delay=0, token_bucket=bucket)

        with pytest.raises(Exception):
            policy.call(flaky)

        # One retry paid for, then the quota ran out.
        assert flaky.calls == 2
        assert bucket.available == 0

    def test_timeouts_cost_more(self):
        bucket = RetryTokenBucket(capacity=10, retry_cost=5, timeout_cost=10)
        flaky = Flaky([ReadTimeoutError(endpoint_url="https://s3.amazonaws.com")])

        assert RetryPolicy(max_attempts=2, base_delay=0, token_bucket=bucket).call(flaky) == "ok"
        assert bucket.available == 1


class TestBackendGate:
    """Test the limiter and retry policy working together."""

    def test_slot_held_for_every_attempt(self):
        limiter = AdmissionLimiter(4)
        gate = BackendGate(limiter, RetryPolicy(max_attempts=3, base_delay=0))
        seen = []

        def call(value):
            seen.append(limiter.in_use)
            if len(seen) < 2:
                raise slow_down()
            return value

        assert gate.call(call, "done", weight=3) == "done"
        assert seen == [3, 3]
        assert limiter.in_use == 0

    def test_slot_released_on_failure(self):
        limiter = AdmissionLimiter(2)
        gate = BackendGate(limiter, RetryPolicy(max_attempts=1))

        with pytest.raises(Exception):
            gate.call(Flaky([access_denied()]))

        assert limiter.in_use == 0

    def test_cancel_token_comes_from_limiter(self):
        token = CancellationToken()
        gate = BackendGate(AdmissionLimiter(1, cancel_token=token), RetryPolicy())
        assert gate.cancel_token is token
