"""Ingest-time embedding pass.

Embeds every record that lacks a current vector, in batches, attaching the
vector to the record as soon as its batch completes. Interrupting or failing
the pass leaves already-embedded records intact, and rerunning it skips them.
"""

import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, List, Optional, Sequence

import structlog

from ..common.config import EmbeddingConfig
from ..common.logging import log_performance
from ..common.metrics import MetricsCollector
from ..encoders.embedding_manager import EmbeddingProvider, EmbeddingUnavailableError, ModelLoadError
from ..records import Record, attach_vector, has_current_vector, record_embedding_text
from .retry_handler import RetryConfig, RetryHandler

logger = structlog.get_logger("pipelines.indexer")


@dataclass
class IndexingReport:
    """Outcome of one embedding pass."""
    total: int
    embedded: int = 0
    skipped: int = 0
    failed: int = 0
    completed: bool = True
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class RecordIndexer:
    """Attach embeddings to records ahead of search.

    Parameters
    - provider: embedding provider shared with the search engine
    - config: batch size and retry policy
    - metrics_collector: optional collector for embedded-record counts
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        config: Optional[EmbeddingConfig] = None,
        metrics_collector: Optional[MetricsCollector] = None,
        retry_handler: Optional[RetryHandler] = None
    ):
        self.provider = provider
        self.config = config or EmbeddingConfig()
        self.metrics = metrics_collector
        # The provider already retried its model load; batches do not retry it again
        self.retry_handler = retry_handler or RetryHandler(
            RetryConfig.from_config(self.config, fatal_exceptions=(ModelLoadError,))
        )

    async def embed_records(
        self,
        records: Sequence[Record],
        progress_callback: Optional[Callable[[float], Any]] = None
    ) -> IndexingReport:
        """Embed records missing a current vector; never raises on provider failure."""
        report = IndexingReport(total=len(records))
        pending: List[Record] = []
        for record in records:
            if has_current_vector(record):
                report.skipped += 1
            elif not record_embedding_text(record):
                # Nothing to embed (non-mapping or no content fields)
                report.failed += 1
            else:
                pending.append(record)

        if not pending:
            self._progress(progress_callback, 100.0)
            logger.info("No records need embedding", total=report.total, skipped=report.skipped)
            return report

        batch_size = max(1, self.config.hr_embedding_batch_size)
        start_time = time.time()
        self._progress(progress_callback, 0.0)

        for offset in range(0, len(pending), batch_size):
            batch = pending[offset:offset + batch_size]
            texts = [record_embedding_text(record) for record in batch]

            try:
                vectors = await self.retry_handler.execute_with_retry(
                    self.provider.embed_batch,
                    texts,
                    operation_name=f"embed_batch_{offset // batch_size}"
                )
                if len(vectors) != len(batch):
                    raise EmbeddingUnavailableError(
                        f"Provider returned {len(vectors)} vectors for {len(batch)} texts"
                    )
            except Exception as e:
                report.completed = False
                report.error = str(e)
                report.failed += len(pending) - offset
                logger.error(
                    "Embedding pass stopped",
                    embedded=report.embedded,
                    remaining=len(pending) - offset,
                    error=str(e)
                )
                break

            for record, vector, text in zip(batch, vectors, texts):
                attach_vector(record, vector, text)
            report.embedded += len(batch)

            if self.metrics:
                self.metrics.record_records_embedded(self.provider.model_name, len(batch))
            self._progress(progress_callback, 100.0 * (offset + len(batch)) / len(pending))

        log_performance(
            "embed_records",
            round((time.time() - start_time) * 1000, 1),
            model_name=self.provider.model_name,
            total=report.total,
            embedded=report.embedded,
            skipped=report.skipped,
            failed=report.failed,
            completed=report.completed
        )
        return report

    @staticmethod
    def _progress(callback: Optional[Callable[[float], Any]], percent: float) -> None:
        if callback is None:
            return
        try:
            callback(percent)
        except Exception as e:
            # Progress is observational; a broken listener must not stop the pass
            logger.warning("Progress listener raised", percent=percent, error=str(e))
