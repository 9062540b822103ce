"""Shared fixtures: deterministic embedding providers and configs."""

import hashlib
from typing import List, Sequence

import numpy as np
import pytest
from prometheus_client import CollectorRegistry

from hybrid_retrieval.common.config import SearchConfig
from hybrid_retrieval.common.metrics import MetricsCollector
from hybrid_retrieval.encoders.embedding_manager import (
    EmbeddingProvider,
    EmbeddingUnavailableError,
    ProviderStatus,
)
from hybrid_retrieval.ranking.keyword import tokenize

FAKE_DIMENSION = 256


class FakeEmbeddingProvider(EmbeddingProvider):
    """Hashing bag-of-words embedder: shared words mean similar vectors."""

    def __init__(self, model_name: str = "fake-bow", dimension: int = FAKE_DIMENSION):
        super().__init__(model_name)
        self.dimension = dimension
        self.embed_calls = 0
        self.batch_calls = 0

    async def initialize(self, progress_callback=None) -> None:
        if progress_callback is not None:
            progress_callback(0.0)
        self._status = ProviderStatus.READY
        if progress_callback is not None:
            progress_callback(100.0)

    def vectorize(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension)
        for token in tokenize(text):
            bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0
        norm = np.linalg.norm(vector)
        return vector / norm if norm else vector

    async def embed(self, text: str) -> np.ndarray:
        await self.initialize()
        self.embed_calls += 1
        return self.vectorize(text)

    async def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        await self.initialize()
        self.batch_calls += 1
        return [self.vectorize(text) for text in texts]


class FailingEmbeddingProvider(EmbeddingProvider):
    """Provider whose model never loads."""

    def __init__(self, model_name: str = "broken-model"):
        super().__init__(model_name)
        self.attempts = 0

    async def initialize(self, progress_callback=None) -> None:
        self.attempts += 1
        self._status = ProviderStatus.FAILED
        raise EmbeddingUnavailableError("model download failed")

    async def embed(self, text: str) -> np.ndarray:
        await self.initialize()
        return np.zeros(0)


@pytest.fixture
def search_config() -> SearchConfig:
    """Defaults with instant retries so failure paths stay fast."""
    return SearchConfig(
        hr_embedding_retry_attempts=1,
        hr_embedding_retry_base_delay=0.0,
        hr_embedding_retry_max_delay=0.0,
    )


@pytest.fixture
def fake_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def failing_provider() -> FailingEmbeddingProvider:
    return FailingEmbeddingProvider()


@pytest.fixture
def metrics_collector() -> MetricsCollector:
    return MetricsCollector("test-service", registry=CollectorRegistry())


@pytest.fixture
def city_records():
    return [
        {"city": "Paris", "pop": 100},
        {"city": "Lyon", "pop": 50},
    ]
