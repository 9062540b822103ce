"""Hybrid retrieval engine.

Layout:
- ``records``: record helpers and the ``ScoredCandidate`` ranking pair
- ``vector``: cosine similarity
- ``ranking``: keyword scoring and rank fusion
- ``encoders``: embedding providers with single-flight model loading
- ``hybrid``: ``HybridSearchEngine`` combining both signals
- ``intelligence``: intent classification and structured query execution
- ``pipelines``: ingest-time embedding pass and retry policy
- ``api`` / ``main``: FastAPI service

Import convenience:
- from hybrid_retrieval.hybrid.search_manager import HybridSearchEngine
"""

__version__ = "0.1.0"
