"""Hybrid search over in-memory records.

Combines vector similarity (semantic) with keyword coverage (lexical) and
merges the two rankings with Reciprocal Rank Fusion (RRF), or with a linear
blend of the raw scores when configured. When the embedding provider cannot
produce a query vector the engine ranks by keyword score alone; provider
failures never propagate out of a search.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence, Tuple

import numpy as np
import structlog

from ..adapters.circuit_breaker import CircuitBreaker, CircuitBreakerError
from ..common.config import SearchConfig
from ..common.metrics import MetricsCollector
from ..encoders.embedding_manager import EmbeddingProvider, EmbeddingUnavailableError
from ..ranking.fusion import create_fusion_algorithm
from ..ranking.keyword import KeywordScorer, PreparedQuery
from ..records import Record, ScoredCandidate, record_text, record_vector
from ..vector.similarity import cosine_similarity

logger = structlog.get_logger("hybrid.search_manager")

FUSION_MODES = ("rrf", "weighted")
KEYWORD_MODE = "keyword"


@dataclass
class SearchOutcome:
    """Ranked candidates plus the signals describing how they were produced.

    ``degraded`` is set when an embedding failure forced keyword-only
    ranking; an empty, non-degraded outcome means nothing matched.
    """
    candidates: List[ScoredCandidate]
    mode: str
    degraded: bool = False
    degraded_reason: Optional[str] = None
    threshold: float = 0.0
    query_tokens: List[str] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def records(self) -> List[Record]:
        return [candidate.record for candidate in self.candidates]


class HybridSearchEngine:
    """Ranks records for a free-text query.

    Parameters
    - config: ``SearchConfig`` with fusion mode, weights and thresholds
    - embedding_provider: optional provider for query vectors; without one
      every search is keyword-only
    - metrics_collector: optional Prometheus collector

    Notes
    - Record vectors are read from the ``_vector`` field attached at ingest
      time; the query vector is computed once per search.
    - Scoring runs in chunks, yielding to the event loop between chunks, and
      ordering is always decided by a stable sort after every score is known.
    """

    def __init__(
        self,
        config: Optional[SearchConfig] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
        metrics_collector: Optional[MetricsCollector] = None
    ):
        self.config = config or SearchConfig()
        self.embedding_provider = embedding_provider
        self.metrics = metrics_collector

        if self.config.hr_search_fusion not in FUSION_MODES:
            raise ValueError(f"Unknown fusion algorithm: {self.config.hr_search_fusion}")

        self.keyword_scorer = KeywordScorer(
            exact_match_score=self.config.hr_search_exact_match_score,
            partial_match_weight=self.config.hr_search_partial_match_weight
        )
        self.fusion_algorithms = {
            # normalised so the configured threshold reads as a share of the best score
            "rrf": create_fusion_algorithm(
                "rrf",
                k=self.config.hr_search_rrf_k,
                semantic_weight=self.config.hr_search_semantic_weight,
                lexical_weight=self.config.hr_search_keyword_weight,
                normalize=True
            ),
            "weighted": create_fusion_algorithm(
                "weighted",
                semantic_weight=self.config.hr_search_blend_semantic_weight,
                lexical_weight=self.config.hr_search_blend_keyword_weight
            ),
        }

        # Per-engine breaker: one failing provider should not trip unrelated engines
        self.embedding_circuit_breaker = CircuitBreaker(
            failure_threshold=self.config.hr_search_breaker_failure_threshold,
            recovery_timeout=self.config.hr_search_breaker_recovery_timeout,
            name="embedding_provider"
        )

    def default_threshold(self, mode: str) -> float:
        if mode == "rrf":
            return self.config.hr_search_rrf_threshold
        if mode == "weighted":
            return self.config.hr_search_blend_threshold
        return self.config.hr_search_keyword_threshold

    async def search(
        self,
        records: Sequence[Record],
        query: str,
        top_k: Optional[int] = None,
        threshold: Optional[float] = None,
        progress_callback: Optional[Callable[[float], Any]] = None,
        fusion: Optional[str] = None
    ) -> List[Record]:
        """Return the records matching ``query``, best first.

        Parameters
        - records: candidate records, optionally carrying ``_vector``
        - query: free text; a query without usable tokens returns ``[]``
        - top_k: maximum number of results (default from config)
        - threshold: minimum score, on the scale of the mode actually used
        - progress_callback: receives model loading progress percentages
        - fusion: ``"rrf"`` or ``"weighted"`` (default from config)
        """
        outcome = await self.search_with_details(
            records,
            query,
            top_k=top_k,
            threshold=threshold,
            progress_callback=progress_callback,
            fusion=fusion
        )
        return outcome.records

    async def search_with_details(
        self,
        records: Sequence[Record],
        query: str,
        top_k: Optional[int] = None,
        threshold: Optional[float] = None,
        progress_callback: Optional[Callable[[float], Any]] = None,
        fusion: Optional[str] = None
    ) -> SearchOutcome:
        """Like ``search`` but returns scores and degradation signals."""
        start_time = time.time()
        mode = fusion or self.config.hr_search_fusion
        if mode not in FUSION_MODES:
            raise ValueError(f"Unknown fusion algorithm: {mode}")
        top_k = self.config.hr_search_top_k if top_k is None else top_k

        records = list(records or [])
        prepared = self.keyword_scorer.prepare(query)
        if prepared.is_empty or top_k <= 0 or not records:
            logger.debug(
                "Search skipped",
                empty_query=prepared.is_empty,
                top_k=top_k,
                records_count=len(records)
            )
            return SearchOutcome(
                candidates=[],
                mode=mode,
                threshold=self.default_threshold(mode) if threshold is None else threshold,
                query_tokens=list(prepared.tokens)
            )

        query_vector: Optional[np.ndarray] = None
        degraded_reason: Optional[str] = None
        if self.embedding_provider is not None and self._any_record_vector(records):
            query_vector, degraded_reason = await self._generate_query_embedding(
                query, progress_callback
            )
        if query_vector is None:
            mode = KEYWORD_MODE

        if threshold is None:
            threshold = self.default_threshold(mode)

        scored = await self._score_records(records, prepared, query_vector)
        ranked = self._rank(scored, mode)
        final_candidates = [c for c in ranked if c.score >= threshold][:top_k]

        duration = time.time() - start_time
        outcome = SearchOutcome(
            candidates=final_candidates,
            mode=mode,
            degraded=degraded_reason is not None,
            degraded_reason=degraded_reason,
            threshold=threshold,
            query_tokens=list(prepared.tokens),
            duration_ms=round(duration * 1000, 3)
        )

        if self.metrics:
            self.metrics.record_search(mode, duration)
            if outcome.degraded:
                self.metrics.record_degraded_search(degraded_reason)

        logger.info(
            "Search completed",
            query=query[:50],
            mode=mode,
            degraded=outcome.degraded,
            candidates_count=len(records),
            results_count=len(final_candidates),
            duration_ms=outcome.duration_ms
        )
        return outcome

    @staticmethod
    def _any_record_vector(records: Sequence[Record]) -> bool:
        return any(record_vector(record) is not None for record in records)

    async def _generate_query_embedding(
        self,
        query: str,
        progress_callback: Optional[Callable[[float], Any]] = None
    ) -> Tuple[Optional[np.ndarray], Optional[str]]:
        """Embed the query, returning ``(vector, None)`` or ``(None, reason)``."""

        async def embed_query() -> Any:
            """Load the model if needed, then embed the query."""
            if progress_callback is not None:
                await self.embedding_provider.initialize(progress_callback)
            return await self.embedding_provider.embed(query)

        try:
            raw = await self.embedding_circuit_breaker.call(embed_query)
        except CircuitBreakerError as e:
            logger.warning(
                "Embedding circuit open, using keyword search",
                retry_after=round(e.retry_after, 1)
            )
            return None, "circuit_open"
        except EmbeddingUnavailableError as e:
            logger.warning("Embedding unavailable, using keyword search", error=str(e))
            return None, "embedding_unavailable"
        except Exception as e:
            logger.error("Query embedding failed, using keyword search", error=str(e))
            return None, "embedding_error"

        try:
            vector = np.asarray(raw, dtype=np.float64).ravel()
        except (TypeError, ValueError):
            vector = np.empty(0)
        if vector.size == 0:
            logger.warning("Embedding provider returned an empty vector, using keyword search")
            return None, "empty_vector"
        return vector, None

    async def _score_records(
        self,
        records: List[Record],
        prepared: PreparedQuery,
        query_vector: Optional[np.ndarray]
    ) -> List[ScoredCandidate]:
        """Score every record against both signals."""
        chunk_size = max(1, self.config.hr_search_scoring_chunk_size)
        scored: List[ScoredCandidate] = []

        for start in range(0, len(records), chunk_size):
            if start:
                await asyncio.sleep(0)
            for record in records[start:start + chunk_size]:
                scored.append(self._score_record(record, prepared, query_vector))

        return scored

    def _score_record(
        self,
        record: Record,
        prepared: PreparedQuery,
        query_vector: Optional[np.ndarray]
    ) -> ScoredCandidate:
        text = record_text(record)
        keyword_score = self.keyword_scorer.score_prepared(prepared, text)
        matched_terms = self.keyword_scorer.matched_terms(prepared, text) if keyword_score > 0 else []

        semantic_score = 0.0
        if query_vector is not None:
            vector = record_vector(record)
            if vector is not None:
                semantic_score = cosine_similarity(query_vector, vector)

        return ScoredCandidate(
            record=record,
            score=0.0,
            semantic_score=semantic_score,
            keyword_score=keyword_score,
            matched_terms=matched_terms
        )

    def _rank(self, scored: List[ScoredCandidate], mode: str) -> List[ScoredCandidate]:
        """Order scored candidates according to ``mode``."""
        if mode == KEYWORD_MODE:
            lexical = [c for c in scored if c.keyword_score > 0]
            for candidate in lexical:
                candidate.score = candidate.keyword_score
                candidate.sources = ["keyword"]
            return sorted(lexical, key=lambda c: c.score, reverse=True)

        floor = self.config.hr_search_min_semantic_similarity
        semantic = [c for c in scored if c.semantic_score > 0 and c.semantic_score >= floor]
        lexical = [c for c in scored if c.keyword_score > 0]

        if mode == "rrf":
            # Two-stage: each signal picks its own top candidates before fusion
            pool = self.config.hr_search_candidate_pool
            semantic = sorted(semantic, key=lambda c: c.semantic_score, reverse=True)[:pool]
            lexical = sorted(lexical, key=lambda c: c.keyword_score, reverse=True)[:pool]

        return self.fusion_algorithms[mode].fuse_results(
            semantic_results=semantic,
            lexical_results=lexical
        )
