"""Result fusion algorithms for hybrid search.

Both algorithms take a semantic ranking and a keyword ranking of
``ScoredCandidate`` objects and return one list sorted by fused score,
descending. Items are identified across lists by ``record_key`` (a
deterministic serialization of the record content), never by position.
Ties keep first-seen order: semantic list first, then keyword list.
"""

from typing import Dict, List, Sequence, Tuple

import structlog

from ..records import ScoredCandidate

logger = structlog.get_logger("ranking.fusion")

SEMANTIC_SOURCE = "semantic"
KEYWORD_SOURCE = "keyword"


class RankFusionAlgorithm:
    """Base class for rank fusion algorithms."""

    name = "base"

    def fuse_results(
        self,
        semantic_results: Sequence[ScoredCandidate],
        lexical_results: Sequence[ScoredCandidate],
        **kwargs
    ) -> List[ScoredCandidate]:
        """Fuse semantic and lexical search results."""
        raise NotImplementedError


def _merge_into(
    merged: Dict[str, ScoredCandidate],
    candidate: ScoredCandidate,
    source: str
) -> ScoredCandidate:
    """Insert or update the merged entry for ``candidate``'s record."""
    key = candidate.key
    entry = merged.get(key)
    if entry is None:
        entry = ScoredCandidate(record=candidate.record, score=0.0)
        merged[key] = entry

    if source == SEMANTIC_SOURCE:
        entry.semantic_score = max(entry.semantic_score, candidate.semantic_score)
    else:
        entry.keyword_score = max(entry.keyword_score, candidate.keyword_score)
        if not entry.matched_terms:
            entry.matched_terms = list(candidate.matched_terms)

    if source not in entry.sources:
        entry.sources.append(source)
    return entry


class ReciprocalRankFusion(RankFusionAlgorithm):
    """Weighted Reciprocal Rank Fusion (RRF).

    An item at 0-indexed position ``i`` of a source list contributes
    ``weight / (k + i + 1)``; contributions are summed across sources. A
    large ``k`` flattens the curve so position matters more than the raw
    magnitude of either source's scores.

    Parameters
    - k: smoothing constant
    - semantic_weight / lexical_weight: per-source multipliers
    - normalize: divide fused scores by the best achievable score
      (rank 0 in every source), mapping them into ``[0, 1]``
    """

    name = "rrf"

    def __init__(
        self,
        k: float = 60.0,
        semantic_weight: float = 1.5,
        lexical_weight: float = 1.0,
        normalize: bool = False
    ):
        if k <= 0:
            raise ValueError(f"RRF k must be positive, got {k}")
        self.k = k
        self.semantic_weight = semantic_weight
        self.lexical_weight = lexical_weight
        self.normalize = normalize

    @property
    def max_score(self) -> float:
        """Fused score of an item ranked first in both sources."""
        return (self.semantic_weight + self.lexical_weight) / (self.k + 1)

    def fuse_results(
        self,
        semantic_results: Sequence[ScoredCandidate],
        lexical_results: Sequence[ScoredCandidate],
        **kwargs
    ) -> List[ScoredCandidate]:
        """Fuse results using weighted RRF."""
        merged: Dict[str, ScoredCandidate] = {}
        sources: Tuple[Tuple[str, Sequence[ScoredCandidate], float], ...] = (
            (SEMANTIC_SOURCE, semantic_results, self.semantic_weight),
            (KEYWORD_SOURCE, lexical_results, self.lexical_weight),
        )

        for source, results, weight in sources:
            for rank, candidate in enumerate(results):
                entry = _merge_into(merged, candidate, source)
                entry.score += weight / (self.k + rank + 1)

        fused = list(merged.values())
        if self.normalize and self.max_score > 0:
            for entry in fused:
                entry.score = entry.score / self.max_score

        # sorted() is stable, so equal scores keep first-seen order
        fused = sorted(fused, key=lambda c: c.score, reverse=True)

        logger.debug(
            "RRF fusion completed",
            semantic_count=len(semantic_results),
            lexical_count=len(lexical_results),
            fused_count=len(fused),
            k_parameter=self.k
        )

        return fused


class WeightedScoreFusion(RankFusionAlgorithm):
    """Linear blend of semantic and keyword scores.

    ``score = semantic * w_s + keyword * w_k`` with weights normalised to
    sum to one. Negative cosine similarities count as zero so blended
    scores stay in ``[0, 1]``. Candidates missing from one list score zero
    for that signal.
    """

    name = "weighted"

    def __init__(self, semantic_weight: float = 0.7, lexical_weight: float = 0.3):
        total_weight = semantic_weight + lexical_weight
        if total_weight <= 0:
            raise ValueError("Blend weights must sum to a positive value")

        self.semantic_weight = semantic_weight / total_weight
        self.lexical_weight = lexical_weight / total_weight

    def blend(self, semantic_score: float, keyword_score: float) -> float:
        return (self.semantic_weight * max(semantic_score, 0.0) +
                self.lexical_weight * max(keyword_score, 0.0))

    def fuse_results(
        self,
        semantic_results: Sequence[ScoredCandidate],
        lexical_results: Sequence[ScoredCandidate],
        **kwargs
    ) -> List[ScoredCandidate]:
        """Fuse results using weighted scores."""
        merged: Dict[str, ScoredCandidate] = {}

        for candidate in semantic_results:
            _merge_into(merged, candidate, SEMANTIC_SOURCE)
        for candidate in lexical_results:
            _merge_into(merged, candidate, KEYWORD_SOURCE)

        fused = list(merged.values())
        for entry in fused:
            entry.score = self.blend(entry.semantic_score, entry.keyword_score)

        fused = sorted(fused, key=lambda c: c.score, reverse=True)

        logger.debug(
            "Weighted score fusion completed",
            semantic_count=len(semantic_results),
            lexical_count=len(lexical_results),
            fused_count=len(fused),
            semantic_weight=self.semantic_weight,
            lexical_weight=self.lexical_weight
        )

        return fused


def create_fusion_algorithm(algorithm: str = "rrf", **params) -> RankFusionAlgorithm:
    """Create a fusion algorithm instance."""

    if algorithm == "rrf":
        return ReciprocalRankFusion(
            k=params.get("k", 60.0),
            semantic_weight=params.get("semantic_weight", 1.5),
            lexical_weight=params.get("lexical_weight", 1.0),
            normalize=params.get("normalize", False),
        )

    elif algorithm == "weighted":
        return WeightedScoreFusion(
            semantic_weight=params.get("semantic_weight", 0.7),
            lexical_weight=params.get("lexical_weight", 0.3),
        )

    else:
        raise ValueError(f"Unknown fusion algorithm: {algorithm}")
