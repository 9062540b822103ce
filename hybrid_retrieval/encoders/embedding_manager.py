"""Embedding provider: model loading and embedding generation.

The embedding model is an expensive, process-wide resource. Providers load it
once, expose their loading status, and serve ``embed`` calls off the event
loop in the default thread-pool executor. Concurrent ``initialize`` calls made
while the model is still loading all await the same in-flight load.
"""

import asyncio
import importlib
import time
from abc import ABC, abstractmethod
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np
import structlog

from ..common.config import EmbeddingConfig
from ..common.metrics import MetricsCollector
from ..pipelines.retry_handler import RetryConfig, RetryHandler
from ..vector.similarity import cosine_similarity

logger = structlog.get_logger("encoders.embedding_manager")

ProgressCallback = Callable[[float], Any]

# Progress percentages reported while loading
PROGRESS_STARTED = 0.0
PROGRESS_LIBRARY_IMPORTED = 40.0
PROGRESS_READY = 100.0


class EmbeddingUnavailableError(RuntimeError):
    """The model could not be loaded or produced no usable vector."""


class ModelLoadError(EmbeddingUnavailableError):
    """Model loading failed after the provider's own load retries."""


class ProviderStatus(Enum):
    """Embedding model lifecycle."""
    NOT_LOADED = "not_loaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class EmbeddingProvider(ABC):
    """Contract every embedding backend implements."""

    def __init__(self, model_name: str):
        self.model_name = model_name
        self._status = ProviderStatus.NOT_LOADED

    @property
    def status(self) -> ProviderStatus:
        return self._status

    @property
    def is_ready(self) -> bool:
        return self._status == ProviderStatus.READY

    @abstractmethod
    async def initialize(self, progress_callback: Optional[ProgressCallback] = None) -> None:
        """Load the model; safe to call repeatedly and concurrently."""

    @abstractmethod
    async def embed(self, text: str) -> np.ndarray:
        """Embed one text; raises ``EmbeddingUnavailableError`` on failure."""

    async def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        """Embed several texts, in order."""
        return [await self.embed(text) for text in texts]

    def similarity(self, vec1: Any, vec2: Any) -> float:
        return cosine_similarity(vec1, vec2)

    def health_check(self) -> Dict[str, Any]:
        return {
            "model_name": self.model_name,
            "status": self._status.value,
            "ready": self.is_ready,
        }


class SentenceTransformerProvider(EmbeddingProvider):
    """Embedding provider backed by ``sentence-transformers``.

    Parameters
    - config: ``EmbeddingConfig`` (model name, batch size, normalisation,
      load retry policy)
    - metrics_collector: optional collector for embedding timings
    - retry_handler: override the load retry policy (tests)

    Notes
    - ``sentence_transformers`` is imported inside the loader so that
      importing this module (and keyword-only search) never pulls in torch
    - progress listeners receive non-decreasing percentages; a listener
      that joins mid-load first sees the current percentage
    """

    def __init__(
        self,
        config: EmbeddingConfig,
        metrics_collector: Optional[MetricsCollector] = None,
        retry_handler: Optional[RetryHandler] = None
    ):
        super().__init__(config.hr_embedding_model)
        self.config = config
        self.metrics = metrics_collector
        self.retry_handler = retry_handler or RetryHandler(RetryConfig.from_config(config))
        self.dimension: Optional[int] = None

        self._model: Any = None
        self._init_task: Optional[asyncio.Task] = None
        self._listeners: List[ProgressCallback] = []
        self._progress = PROGRESS_STARTED

    async def initialize(self, progress_callback: Optional[ProgressCallback] = None) -> None:
        if self._status == ProviderStatus.READY:
            if progress_callback is not None:
                self._notify(progress_callback, PROGRESS_READY)
            return

        if progress_callback is not None:
            self._listeners.append(progress_callback)
            if self._init_task is not None:
                self._notify(progress_callback, self._progress)

        if self._init_task is None:
            self._init_task = asyncio.get_running_loop().create_task(self._initialize())

        try:
            # shield: one caller being cancelled must not abort the shared load
            await asyncio.shield(self._init_task)
        finally:
            if progress_callback is not None and progress_callback in self._listeners:
                self._listeners.remove(progress_callback)

    async def _initialize(self) -> None:
        self._status = ProviderStatus.LOADING
        self._progress = PROGRESS_STARTED
        self._report(PROGRESS_STARTED)
        logger.info("Loading embedding model", model_name=self.model_name)
        start_time = time.time()

        try:
            model = await self.retry_handler.execute_with_retry(
                self._load_model,
                operation_name=f"load_model_{self.model_name}"
            )
        except Exception as e:
            self._status = ProviderStatus.FAILED
            self._init_task = None
            if self.metrics:
                self.metrics.set_model_ready(self.model_name, False)
            logger.error("Failed to load embedding model", model_name=self.model_name, error=str(e))
            raise ModelLoadError(
                f"Embedding model {self.model_name} could not be loaded: {e}"
            ) from e

        self._model = model
        self._status = ProviderStatus.READY
        self._report(PROGRESS_READY)
        if self.metrics:
            self.metrics.set_model_ready(self.model_name, True)

        logger.info(
            "Loaded embedding model",
            model_name=self.model_name,
            dimension=self.dimension,
            load_time_ms=round((time.time() - start_time) * 1000, 1)
        )

    async def _load_model(self) -> Any:
        """Import the library and construct the model, both off the event loop."""
        loop = asyncio.get_running_loop()
        module = await loop.run_in_executor(None, importlib.import_module, "sentence_transformers")
        self._report(PROGRESS_LIBRARY_IMPORTED)

        model = await loop.run_in_executor(None, module.SentenceTransformer, self.model_name)
        self.dimension = model.get_sentence_embedding_dimension()
        if self.dimension and self.dimension != self.config.hr_embedding_dimension:
            logger.warning(
                "Model dimension differs from configured dimension",
                model_name=self.model_name,
                model_dimension=self.dimension,
                configured_dimension=self.config.hr_embedding_dimension
            )
        return model

    def _report(self, percent: float) -> None:
        self._progress = max(self._progress, percent)
        for listener in list(self._listeners):
            self._notify(listener, self._progress)

    def _notify(self, listener: ProgressCallback, percent: float) -> None:
        try:
            listener(percent)
        except Exception as e:
            # Progress is observational; a broken listener must not fail the load
            logger.warning("Progress listener raised", model_name=self.model_name, error=str(e))

    async def _encode(self, texts: List[str], kind: str) -> List[np.ndarray]:
        await self.initialize()

        loop = asyncio.get_running_loop()
        start_time = time.time()
        encode = partial(
            self._model.encode,
            texts,
            batch_size=self.config.hr_embedding_batch_size,
            normalize_embeddings=self.config.hr_embedding_normalize,
            convert_to_numpy=True,
            show_progress_bar=False
        )
        try:
            raw = await loop.run_in_executor(None, encode)
        except Exception as e:
            logger.error("Embedding generation failed", model_name=self.model_name, kind=kind, error=str(e))
            raise EmbeddingUnavailableError(f"Embedding generation failed: {e}") from e

        vectors = [np.asarray(row, dtype=np.float64).ravel() for row in raw]
        if len(vectors) != len(texts) or any(v.size == 0 for v in vectors):
            raise EmbeddingUnavailableError("Embedding model returned an empty vector")

        if self.metrics:
            self.metrics.record_embedding(self.model_name, kind, time.time() - start_time)
        return vectors

    async def embed(self, text: str) -> np.ndarray:
        vectors = await self._encode([text], kind="query")
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        if not texts:
            return []
        return await self._encode(list(texts), kind="batch")

    def health_check(self) -> Dict[str, Any]:
        health = super().health_check()
        health["dimension"] = self.dimension
        health["progress"] = self._progress
        return health


class EmbeddingProviderRegistry:
    """Process-wide registry handing out one shared provider per model."""

    def __init__(self):
        self._providers: Dict[str, EmbeddingProvider] = {}

    def get(
        self,
        model_name: Optional[str] = None,
        config: Optional[EmbeddingConfig] = None,
        metrics_collector: Optional[MetricsCollector] = None
    ) -> EmbeddingProvider:
        """Get or create the provider for ``model_name``."""
        config = config or EmbeddingConfig()
        if model_name is not None and model_name != config.hr_embedding_model:
            config = config.model_copy(update={"hr_embedding_model": model_name})
        name = config.hr_embedding_model

        if name not in self._providers:
            self._providers[name] = SentenceTransformerProvider(config, metrics_collector)
            logger.info("Registered embedding provider", model_name=name)
        return self._providers[name]

    def register(self, provider: EmbeddingProvider) -> None:
        self._providers[provider.model_name] = provider

    def clear(self) -> None:
        self._providers.clear()


_provider_registry = EmbeddingProviderRegistry()


def get_embedding_provider(
    model_name: Optional[str] = None,
    config: Optional[EmbeddingConfig] = None,
    metrics_collector: Optional[MetricsCollector] = None
) -> EmbeddingProvider:
    """Return the shared provider for ``model_name`` (default: configured model)."""
    return _provider_registry.get(model_name, config, metrics_collector)


def get_provider_registry() -> EmbeddingProviderRegistry:
    return _provider_registry
