"""Configuration management for the hybrid retrieval engine.

This module centralizes environment-driven configuration for the search
engine, the embedding provider and the HTTP service. It builds on
``pydantic_settings.BaseSettings`` so configuration can be provided via
environment variables, ``.env`` files, or defaults.

Highlights
- Strongly-typed settings with sensible defaults
- Field names double as environment variable names (case-insensitive),
  e.g. ``hr_search_rrf_k`` is read from ``HR_SEARCH_RRF_K``
- Weights, thresholds and constants are tunable defaults, not contracts

Usage
- Inject the appropriate config in your entrypoint: ``config = SearchConfig()``
- Or select dynamically: ``config = get_config("search")``
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration shared by every component.

    Notes
    - Add new shared settings here so downstream configs inherit them.
    - Unknown variables in ``.env`` are ignored so one file can serve
      several processes.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    hr_env: str = Field(default="local")

    # Logging
    hr_log_level: str = Field(default="INFO")
    hr_log_format: str = Field(default="json")


class EmbeddingConfig(BaseConfig):
    """Configuration for the embedding provider and the ingest-time pass.

    The model is a black box returning fixed-length vectors; only its name,
    expected dimensionality and batching knobs live here.
    """

    hr_embedding_model: str = Field(default="sentence-transformers/all-MiniLM-L6-v2")
    hr_embedding_dimension: int = Field(default=384)
    hr_embedding_batch_size: int = Field(default=32, ge=1)
    hr_embedding_normalize: bool = Field(default=True)
    hr_embedding_preload: bool = Field(default=False)

    # Retry policy for model loading and ingest-time batches
    hr_embedding_retry_attempts: int = Field(default=3, ge=1)
    hr_embedding_retry_base_delay: float = Field(default=0.5, ge=0.0)
    hr_embedding_retry_max_delay: float = Field(default=8.0, ge=0.0)


class SearchConfig(EmbeddingConfig):
    """Configuration for the hybrid search engine and its HTTP service.

    Two scoring policies are supported:

    - ``rrf``: two-stage reciprocal-rank fusion over the top
      ``hr_search_candidate_pool`` semantic and keyword candidates. Fused
      scores are normalised to ``[0, 1]`` by the best achievable score, so
      ``hr_search_rrf_threshold`` is small.
    - ``weighted``: per-record linear blend of semantic and keyword scores,
      filtered by ``hr_search_blend_threshold``.

    When the embedding provider is unavailable the engine ranks by keyword
    score alone and applies ``hr_search_keyword_threshold``.
    """

    hr_search_port: int = Field(default=9007)

    # Policy selection
    hr_search_fusion: str = Field(default="rrf")

    # Reciprocal-rank fusion
    hr_search_rrf_k: float = Field(default=60.0, gt=0.0)
    hr_search_semantic_weight: float = Field(default=1.5, ge=0.0)
    hr_search_keyword_weight: float = Field(default=1.0, ge=0.0)
    hr_search_candidate_pool: int = Field(default=50, ge=1)

    # Linear blend
    hr_search_blend_semantic_weight: float = Field(default=0.7, ge=0.0)
    hr_search_blend_keyword_weight: float = Field(default=0.3, ge=0.0)

    # Thresholds and limits
    hr_search_top_k: int = Field(default=20, ge=1)
    hr_search_rrf_threshold: float = Field(default=0.05, ge=0.0)
    hr_search_blend_threshold: float = Field(default=0.3, ge=0.0)
    hr_search_keyword_threshold: float = Field(default=0.1, ge=0.0)
    hr_search_min_semantic_similarity: float = Field(default=0.2)

    # Keyword scoring
    hr_search_exact_match_score: float = Field(default=1.0, gt=0.0)
    hr_search_partial_match_weight: float = Field(default=0.85, gt=0.0)

    # Scoring sweep: records scored between event-loop yields
    hr_search_scoring_chunk_size: int = Field(default=500, ge=1)

    # Circuit breaker around query embedding
    hr_search_breaker_failure_threshold: int = Field(default=3, ge=1)
    hr_search_breaker_recovery_timeout: float = Field(default=30.0, ge=0.0)


def get_config(service_name: str) -> BaseConfig:
    """Get configuration for a specific component.

    Parameters
    - service_name: ``search`` or ``embedding``

    Returns
    - A concrete ``BaseConfig`` subclass pre-wired to read the right env vars.
    """
    config_map = {
        "search": SearchConfig,
        "embedding": EmbeddingConfig,
    }

    # Unknown names get the shared base settings
    config_class = config_map.get(service_name, BaseConfig)
    return config_class()
