"""Metrics collection for the retrieval engine.

Provides a thin convenience wrapper around ``prometheus_client`` so the
search engine, the ingest pass and the HTTP layer record metrics with
consistent names and label sets.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A single registry is kept per collector (inject one in tests)
"""

import time
from functools import wraps
from typing import Any, Callable, Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

logger = structlog.get_logger("metrics")


class MetricsCollector:
    """Centralized metrics collection.

    Parameters
    - service_name: Logical name used for scoping
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        # HTTP
        self.request_count = Counter(
            'http_requests_total',
            'Total HTTP requests',
            ['method', 'endpoint', 'status'],
            registry=self.registry
        )

        self.request_duration = Histogram(
            'http_request_duration_seconds',
            'HTTP request duration',
            ['method', 'endpoint'],
            registry=self.registry
        )

        # Search
        self.search_requests = Counter(
            'hr_search_requests_total',
            'Total search requests',
            ['mode'],
            registry=self.registry
        )

        self.search_duration = Histogram(
            'hr_search_duration_seconds',
            'Search duration',
            ['mode'],
            registry=self.registry
        )

        self.degraded_searches = Counter(
            'hr_search_degraded_total',
            'Searches that fell back to keyword-only scoring',
            ['reason'],
            registry=self.registry
        )

        # Embeddings
        self.embedding_requests = Counter(
            'hr_embedding_requests_total',
            'Total embedding generation requests',
            ['model_name', 'kind'],
            registry=self.registry
        )

        self.embedding_duration = Histogram(
            'hr_embedding_duration_seconds',
            'Embedding generation duration',
            ['model_name', 'kind'],
            registry=self.registry
        )

        self.records_embedded = Counter(
            'hr_records_embedded_total',
            'Records that received a vector during ingest',
            ['model_name'],
            registry=self.registry
        )

        self.model_ready = Gauge(
            'hr_embedding_model_ready',
            'Whether the embedding model is loaded (1) or not (0)',
            ['model_name'],
            registry=self.registry
        )

        # Query understanding
        self.intent_classifications = Counter(
            'hr_intent_classifications_total',
            'Classified queries by intent',
            ['intent'],
            registry=self.registry
        )

    def record_http_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration: float
    ) -> None:
        """Record HTTP request metrics.

        duration is expected in seconds to match Prometheus histogram units.
        """
        self.request_count.labels(method=method, endpoint=endpoint, status=status).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def record_search(self, mode: str, duration: float) -> None:
        """Record search metrics."""
        self.search_requests.labels(mode=mode).inc()
        self.search_duration.labels(mode=mode).observe(duration)

    def record_degraded_search(self, reason: str) -> None:
        """Record a fallback to keyword-only scoring."""
        self.degraded_searches.labels(reason=reason).inc()

    def record_embedding(self, model_name: str, kind: str, duration: float) -> None:
        """Record embedding generation metrics (``kind``: query or batch)."""
        self.embedding_requests.labels(model_name=model_name, kind=kind).inc()
        self.embedding_duration.labels(model_name=model_name, kind=kind).observe(duration)

    def record_records_embedded(self, model_name: str, count: int) -> None:
        self.records_embedded.labels(model_name=model_name).inc(count)

    def set_model_ready(self, model_name: str, ready: bool) -> None:
        self.model_ready.labels(model_name=model_name).set(1 if ready else 0)

    def record_intent(self, intent: str) -> None:
        self.intent_classifications.labels(intent=intent).inc()

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get or create the metrics collector for this process.

    Returns a process-wide singleton to avoid duplicate collectors/labels.
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
    return _metrics_collector


def measure_time(operation: str, **labels: Any) -> Callable:
    """Decorator logging the execution time of a synchronous function.

    Example
    >>> @measure_time("describe", component="query_router")
    ... def describe(rows):
    ...     ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
                duration = time.time() - start_time
                logger.debug(
                    f"Operation {operation} completed",
                    operation=operation,
                    duration_ms=duration * 1000,
                    **labels
                )
                return result
            except Exception as e:
                duration = time.time() - start_time
                logger.error(
                    f"Operation {operation} failed",
                    operation=operation,
                    duration_ms=duration * 1000,
                    error=str(e),
                    **labels
                )
                raise
        return wrapper
    return decorator
