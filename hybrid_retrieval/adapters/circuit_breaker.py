"""Circuit breaker guarding calls into the embedding provider.

When the embedding model keeps failing, every search would otherwise wait for
the same failure before falling back to keyword ranking. The breaker opens
after ``failure_threshold`` consecutive failures and rejects calls until
``recovery_timeout`` seconds have passed; one probe call is then let through
(HALF_OPEN) and its outcome decides whether the breaker closes again.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, Union

import structlog

logger = structlog.get_logger("adapters.circuit_breaker")


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerError(Exception):
    """Raised instead of calling through while the breaker is open."""

    def __init__(self, name: str, retry_after: float):
        super().__init__(f"Circuit breaker {name} is open")
        self.name = name
        self.retry_after = retry_after


ExceptionTypes = Union[Type[BaseException], Tuple[Type[BaseException], ...]]


class CircuitBreaker:
    """Async circuit breaker.

    Parameters
    - failure_threshold: consecutive failures before the breaker opens
    - recovery_timeout: seconds to stay OPEN before a HALF_OPEN probe
    - expected_exception: exception type(s) counted as failures; anything
      else propagates without touching the failure count
    - name: identifier used in logs
    - clock: monotonic time source, replaceable in tests
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        recovery_timeout: float = 30.0,
        expected_exception: ExceptionTypes = Exception,
        name: str = "embedding",
        clock: Callable[[], float] = time.monotonic
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self.name = name
        self._clock = clock

        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = CircuitBreakerState.CLOSED
        self._probe_in_flight = False
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        """True while calls would be rejected right now."""
        return self.state == CircuitBreakerState.OPEN and not self._should_attempt_reset()

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Await ``func(*args, **kwargs)`` under breaker protection."""
        async with self._lock:
            if self.state == CircuitBreakerState.OPEN:
                if not self._should_attempt_reset():
                    raise CircuitBreakerError(self.name, self._retry_after())
                self.state = CircuitBreakerState.HALF_OPEN
                logger.info("Circuit breaker transitioning to HALF_OPEN", name=self.name)

            if self.state == CircuitBreakerState.HALF_OPEN:
                if self._probe_in_flight:
                    raise CircuitBreakerError(self.name, self.recovery_timeout)
                self._probe_in_flight = True

        try:
            result = await func(*args, **kwargs)
        except self.expected_exception:
            await self._on_failure()
            raise
        except BaseException:
            # Not a provider failure (cancellation, caller bugs); release the probe slot only
            async with self._lock:
                self._probe_in_flight = False
            raise

        await self._on_success()
        return result

    def _should_attempt_reset(self) -> bool:
        if self.last_failure_time is None:
            return True
        return (self._clock() - self.last_failure_time) >= self.recovery_timeout

    def _retry_after(self) -> float:
        if self.last_failure_time is None:
            return 0.0
        elapsed = self._clock() - self.last_failure_time
        return max(self.recovery_timeout - elapsed, 0.0)

    async def _on_success(self):
        async with self._lock:
            if self.state == CircuitBreakerState.HALF_OPEN:
                logger.info("Circuit breaker reset to CLOSED", name=self.name)
            self.state = CircuitBreakerState.CLOSED
            self.failure_count = 0
            self._probe_in_flight = False

    async def _on_failure(self):
        async with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._clock()
            self._probe_in_flight = False

            if (self.state == CircuitBreakerState.HALF_OPEN or
                    self.failure_count >= self.failure_threshold):
                self.state = CircuitBreakerState.OPEN
                logger.warning(
                    "Circuit breaker opened due to failures",
                    name=self.name,
                    failure_count=self.failure_count,
                    threshold=self.failure_threshold
                )

    def get_state(self) -> CircuitBreakerState:
        return self.state

    def get_stats(self) -> dict:
        """Get circuit breaker statistics."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
            "retry_after": self._retry_after() if self.state == CircuitBreakerState.OPEN else 0.0,
        }

    async def force_close(self):
        """Reset to CLOSED, e.g. after the model was reloaded by hand."""
        async with self._lock:
            self.state = CircuitBreakerState.CLOSED
            self.failure_count = 0
            self.last_failure_time = None
            self._probe_in_flight = False
            logger.info("Circuit breaker forced to CLOSED", name=self.name)
