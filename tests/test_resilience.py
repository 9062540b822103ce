"""Tests for the circuit breaker and retry handler."""

import pytest

from hybrid_retrieval.adapters.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerError,
    CircuitBreakerState,
)
from hybrid_retrieval.pipelines.retry_handler import RetryConfig, RetryHandler


class ManualClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


async def failing_call():
    raise RuntimeError("provider down")


async def ok_call():
    return "ok"


@pytest.mark.asyncio
async def test_breaker_opens_after_threshold():
    """Consecutive failures open the breaker and later calls are rejected."""
    breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=30.0, clock=ManualClock())

    for _ in range(2):
        with pytest.raises(RuntimeError):
            await breaker.call(failing_call)

    assert breaker.get_state() == CircuitBreakerState.OPEN
    assert breaker.is_open
    with pytest.raises(CircuitBreakerError) as exc_info:
        await breaker.call(ok_call)
    assert exc_info.value.retry_after == pytest.approx(30.0)


@pytest.mark.asyncio
async def test_breaker_half_open_probe_closes_on_success():
    """After the recovery timeout one probe decides the state."""
    clock = ManualClock()
    breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=10.0, clock=clock)

    with pytest.raises(RuntimeError):
        await breaker.call(failing_call)
    assert breaker.get_state() == CircuitBreakerState.OPEN

    clock.now += 10.0
    assert await breaker.call(ok_call) == "ok"
    assert breaker.get_state() == CircuitBreakerState.CLOSED
    assert breaker.failure_count == 0


@pytest.mark.asyncio
async def test_breaker_failed_probe_reopens():
    """A failing probe reopens the breaker immediately."""
    clock = ManualClock()
    breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=5.0, clock=clock)
    await breaker.force_close()

    for _ in range(3):
        with pytest.raises(RuntimeError):
            await breaker.call(failing_call)

    clock.now += 5.0
    with pytest.raises(RuntimeError):
        await breaker.call(failing_call)
    assert breaker.get_state() == CircuitBreakerState.OPEN
    assert breaker.get_stats()["state"] == "open"


@pytest.mark.asyncio
async def test_breaker_ignores_unexpected_exceptions():
    """Only expected exception types count as failures."""
    breaker = CircuitBreaker(failure_threshold=1, expected_exception=RuntimeError)

    async def bad_input():
        raise KeyError("caller bug")

    with pytest.raises(KeyError):
        await breaker.call(bad_input)
    assert breaker.get_state() == CircuitBreakerState.CLOSED
    assert breaker.failure_count == 0


@pytest.mark.asyncio
async def test_retry_succeeds_after_transient_failures():
    """Transient errors are retried until the call succeeds."""
    handler = RetryHandler(RetryConfig(max_attempts=3, base_delay=0.0, jitter=False))
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("reset")
        return "done"

    assert await handler.execute_with_retry(flaky, operation_name="flaky") == "done"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_retry_gives_up_and_reraises():
    """The last error propagates once attempts run out."""
    handler = RetryHandler(RetryConfig(max_attempts=2, base_delay=0.0, jitter=False))
    with pytest.raises(RuntimeError, match="provider down"):
        await handler.execute_with_retry(failing_call)


@pytest.mark.asyncio
async def test_retry_skips_non_transient_errors():
    """Errors outside the retryable set are raised on the first attempt."""
    handler = RetryHandler(RetryConfig(max_attempts=5, base_delay=0.0))
    calls = []

    async def missing_package():
        calls.append(1)
        raise ImportError("no module named sentence_transformers")

    with pytest.raises(ImportError):
        await handler.execute_with_retry(missing_package)
    assert len(calls) == 1


def test_retry_delay_is_capped():
    """Exponential backoff never exceeds max_delay."""
    handler = RetryHandler(RetryConfig(base_delay=1.0, max_delay=4.0, jitter=False))
    assert [handler._calculate_delay(i) for i in range(4)] == [1.0, 2.0, 4.0, 4.0]


@pytest.mark.asyncio
async def test_retry_raises_fatal_subclasses_at_once():
    """Fatal types are not retried even when they subclass a retryable one."""

    class LoadFailed(RuntimeError):
        pass

    handler = RetryHandler(RetryConfig(max_attempts=3, base_delay=0.0, fatal_exceptions=(LoadFailed,)))
    calls = []

    async def load():
        calls.append(1)
        raise LoadFailed("model missing")

    with pytest.raises(LoadFailed):
        await handler.execute_with_retry(load, operation_name="load")
    assert len(calls) == 1
