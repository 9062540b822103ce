"""Retry with exponential backoff for embedding model operations."""

import asyncio
import random
from typing import Any, Awaitable, Callable, Tuple, Type

import structlog

from ..common.config import EmbeddingConfig

logger = structlog.get_logger("pipelines.retry_handler")

# Download, I/O and device failures; ImportError and ValueError are not retried
TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    OSError,
    RuntimeError,
)


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS,
        fatal_exceptions: Tuple[Type[BaseException], ...] = ()
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions
        # Raised at once even when they subclass a retryable type
        self.fatal_exceptions = fatal_exceptions

    @classmethod
    def from_config(
        cls,
        config: EmbeddingConfig,
        fatal_exceptions: Tuple[Type[BaseException], ...] = ()
    ) -> "RetryConfig":
        return cls(
            max_attempts=config.hr_embedding_retry_attempts,
            base_delay=config.hr_embedding_retry_base_delay,
            max_delay=config.hr_embedding_retry_max_delay,
            fatal_exceptions=fatal_exceptions,
        )


class RetryHandler:
    """Runs a coroutine function until it succeeds or attempts run out."""

    def __init__(self, config: RetryConfig):
        self.config = config

    async def execute_with_retry(
        self,
        func: Callable[..., Awaitable[Any]],
        *args,
        operation_name: str = "unknown",
        **kwargs
    ) -> Any:
        """Await ``func`` with retries; the last failure is re-raised."""
        for attempt in range(self.config.max_attempts):
            try:
                result = await func(*args, **kwargs)
            except self.config.retryable_exceptions as e:
                if isinstance(e, self.config.fatal_exceptions):
                    logger.error(
                        "Operation failed with a non-retryable error",
                        operation=operation_name,
                        attempt=attempt + 1,
                        error=str(e)
                    )
                    raise
                if attempt == self.config.max_attempts - 1:
                    logger.error(
                        "Operation failed after all retries",
                        operation=operation_name,
                        attempts=self.config.max_attempts,
                        error=str(e)
                    )
                    raise

                delay = self._calculate_delay(attempt)
                logger.warning(
                    "Operation failed, retrying",
                    operation=operation_name,
                    attempt=attempt + 1,
                    total_attempts=self.config.max_attempts,
                    delay_seconds=round(delay, 3),
                    error=str(e)
                )
                await asyncio.sleep(delay)
                continue

            if attempt > 0:
                logger.info(
                    "Operation succeeded after retry",
                    operation=operation_name,
                    attempt=attempt + 1
                )
            return result

        raise RuntimeError("unreachable: retry loop exited without result")

    def _calculate_delay(self, attempt: int) -> float:
        """Backoff delay before retry number ``attempt + 1``."""
        delay = self.config.base_delay * (self.config.exponential_base ** attempt)
        delay = min(delay, self.config.max_delay)

        if self.config.jitter:
            jitter_range = delay * 0.1
            delay += random.uniform(-jitter_range, jitter_range)

        return max(delay, 0.0)
