"""Tests for the hybrid search engine."""

import numpy as np
import pytest

from hybrid_retrieval.common.config import EmbeddingConfig, SearchConfig
from hybrid_retrieval.hybrid.search_manager import HybridSearchEngine
from hybrid_retrieval.pipelines.indexer import RecordIndexer

from .conftest import FakeEmbeddingProvider


class EmptyVectorProvider(FakeEmbeddingProvider):
    async def embed(self, text):
        return np.zeros(0)


class BrokenProvider(FakeEmbeddingProvider):
    async def embed(self, text):
        raise ValueError("tokenizer exploded")


@pytest.fixture
def pie_records():
    return [
        {"name": "red apple pie"},
        {"name": "apple pie"},
        {"name": "red pie"},
        {"name": "apple"},
        {"name": "red"},
    ]


@pytest.fixture
def quarterly_records():
    return [
        {"title": "quarterly revenue report", "_vector": [1.0, 0.0]},
        {"title": "team offsite agenda", "_vector": [0.0, 1.0]},
    ]


async def embed_all(provider, records):
    await RecordIndexer(provider, EmbeddingConfig()).embed_records(records)
    return records


@pytest.mark.asyncio
async def test_keyword_only_without_vectors(search_config, fake_provider, city_records):
    """Records without vectors are ranked by keyword score, no model call."""
    engine = HybridSearchEngine(search_config, fake_provider)

    outcome = await engine.search_with_details(city_records, "Paris")

    assert outcome.records == [city_records[0]]
    assert outcome.mode == "keyword"
    assert not outcome.degraded
    assert fake_provider.embed_calls == 0


@pytest.mark.asyncio
async def test_hybrid_search_with_vectors(search_config, fake_provider, city_records):
    """With vectors the query is embedded once and fused with keywords."""
    await embed_all(fake_provider, city_records)
    engine = HybridSearchEngine(search_config, fake_provider)

    outcome = await engine.search_with_details(city_records, "Paris")

    assert outcome.mode == "rrf"
    assert not outcome.degraded
    assert outcome.records[0] is city_records[0]
    assert outcome.candidates[0].score == pytest.approx(1.0)
    assert outcome.candidates[0].sources == ["semantic", "keyword"]
    assert fake_provider.embed_calls == 1


@pytest.mark.asyncio
async def test_search_without_provider(search_config, city_records):
    """No provider configured is keyword search, not a degradation."""
    engine = HybridSearchEngine(search_config)
    outcome = await engine.search_with_details(city_records, "lyon")
    assert outcome.records == [city_records[1]]
    assert outcome.mode == "keyword"
    assert outcome.degraded_reason is None


@pytest.mark.asyncio
@pytest.mark.parametrize("query", ["", "   ", "a of to", "?!"])
async def test_queries_without_tokens_return_nothing(search_config, fake_provider, city_records, query):
    """Queries with no usable tokens match nothing."""
    engine = HybridSearchEngine(search_config, fake_provider)
    assert await engine.search(city_records, query) == []
    assert fake_provider.embed_calls == 0


@pytest.mark.asyncio
async def test_empty_inputs(search_config, city_records):
    """Empty record lists and non-positive limits return nothing."""
    engine = HybridSearchEngine(search_config)
    assert await engine.search([], "Paris") == []
    assert await engine.search(city_records, "Paris", top_k=0) == []


@pytest.mark.asyncio
async def test_top_k_keeps_best(search_config, pie_records):
    """The exact phrase ranks first and top_k truncates the rest."""
    engine = HybridSearchEngine(search_config)

    best = await engine.search(pie_records, "red apple pie", top_k=1)
    assert best == [{"name": "red apple pie"}]

    everything = await engine.search(pie_records, "red apple pie")
    assert [r["name"] for r in everything] == ["red apple pie", "apple pie", "red pie", "apple", "red"]


@pytest.mark.asyncio
async def test_top_k_with_vectors(search_config, fake_provider, pie_records):
    """Fusion keeps the record that tops both signals first."""
    await embed_all(fake_provider, pie_records)
    engine = HybridSearchEngine(search_config, fake_provider)

    results = await engine.search(pie_records, "red apple pie", top_k=1)
    assert [r["name"] for r in results] == ["red apple pie"]


@pytest.mark.asyncio
async def test_exact_phrase_beats_reordered_tokens(search_config):
    """A literal occurrence of the query outranks the same words reordered."""
    records = [{"text": "pie apple recipe"}, {"text": "apple pie recipe"}]
    engine = HybridSearchEngine(search_config)

    outcome = await engine.search_with_details(records, "apple pie")

    assert [c.record["text"] for c in outcome.candidates] == ["apple pie recipe", "pie apple recipe"]
    assert outcome.candidates[0].keyword_score == pytest.approx(1.0)
    assert outcome.candidates[1].keyword_score == pytest.approx(0.85)


@pytest.mark.asyncio
async def test_search_is_idempotent(search_config, fake_provider, pie_records):
    """Repeating a search over unchanged records gives the same list."""
    await embed_all(fake_provider, pie_records)
    engine = HybridSearchEngine(search_config, fake_provider)

    first = await engine.search(pie_records, "apple pie")
    second = await engine.search(pie_records, "apple pie")
    assert first == second


@pytest.mark.asyncio
async def test_chunked_scoring_matches_single_pass(fake_provider, pie_records):
    """Yielding between chunks does not change the ranking."""
    await embed_all(fake_provider, pie_records)
    small_chunks = HybridSearchEngine(SearchConfig(hr_search_scoring_chunk_size=2), fake_provider)
    one_chunk = HybridSearchEngine(SearchConfig(), fake_provider)

    assert await small_chunks.search(pie_records, "red pie") == await one_chunk.search(pie_records, "red pie")


@pytest.mark.asyncio
async def test_explicit_threshold(search_config, pie_records):
    """A caller threshold applies on the keyword scale in keyword mode."""
    engine = HybridSearchEngine(search_config)
    results = await engine.search(pie_records, "red apple pie", threshold=0.5)
    assert [r["name"] for r in results] == ["red apple pie", "apple pie", "red pie"]


@pytest.mark.asyncio
async def test_weighted_mode(search_config, fake_provider, city_records):
    """Weighted fusion blends raw scores 0.7 / 0.3."""
    await embed_all(fake_provider, city_records)
    engine = HybridSearchEngine(search_config, fake_provider)

    outcome = await engine.search_with_details(city_records, "Paris", fusion="weighted")

    top = outcome.candidates[0]
    assert outcome.mode == "weighted"
    assert top.record is city_records[0]
    assert top.score == pytest.approx(0.7 * top.semantic_score + 0.3 * 1.0)
    assert outcome.threshold == pytest.approx(0.3)


def test_unknown_fusion_mode_rejected():
    """Test configuration validation."""
    with pytest.raises(ValueError):
        HybridSearchEngine(SearchConfig(hr_search_fusion="combsum"))


@pytest.mark.asyncio
async def test_unknown_fusion_argument_rejected(search_config, city_records):
    engine = HybridSearchEngine(search_config)
    with pytest.raises(ValueError):
        await engine.search(city_records, "Paris", fusion="combsum")


@pytest.mark.asyncio
async def test_provider_failure_degrades_to_keywords(search_config, failing_provider, quarterly_records, metrics_collector):
    """A model that cannot load still lets keyword matches through."""
    engine = HybridSearchEngine(search_config, failing_provider, metrics_collector)

    outcome = await engine.search_with_details(quarterly_records, "quarterly revenue report")

    assert outcome.records == [quarterly_records[0]]
    assert outcome.mode == "keyword"
    assert outcome.degraded
    assert outcome.degraded_reason == "embedding_unavailable"
    metrics = metrics_collector.get_metrics()
    assert 'hr_search_degraded_total{reason="embedding_unavailable"} 1.0' in metrics
    assert 'hr_search_requests_total{mode="keyword"} 1.0' in metrics


@pytest.mark.asyncio
async def test_circuit_opens_after_repeated_failures(failing_provider, quarterly_records):
    """Once the breaker opens the provider is not called at all."""
    engine = HybridSearchEngine(SearchConfig(hr_search_breaker_failure_threshold=2), failing_provider)

    reasons = []
    for _ in range(3):
        outcome = await engine.search_with_details(quarterly_records, "revenue")
        reasons.append(outcome.degraded_reason)
        assert outcome.records == [quarterly_records[0]]

    assert reasons == ["embedding_unavailable", "embedding_unavailable", "circuit_open"]
    assert failing_provider.attempts == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "provider_class, reason",
    [(EmptyVectorProvider, "empty_vector"), (BrokenProvider, "embedding_error")]
)
async def test_unusable_query_vectors_degrade(search_config, quarterly_records, provider_class, reason):
    """Empty vectors and unexpected provider errors both fall back to keywords."""
    engine = HybridSearchEngine(search_config, provider_class())
    outcome = await engine.search_with_details(quarterly_records, "offsite")
    assert outcome.degraded_reason == reason
    assert outcome.records == [quarterly_records[1]]


@pytest.mark.asyncio
async def test_mismatched_and_malformed_records(search_config, fake_provider):
    """Bad vectors score zero semantically and bad records never raise."""
    records = [
        None,
        "loose string",
        {"city": "Paris", "_vector": [1.0, 0.0]},
        {"city": "Paris centre", "_vector": "corrupt"},
        {"city": "Lyon", "_vector": [[1.0], [0.0]]},
    ]
    engine = HybridSearchEngine(search_config, fake_provider)

    outcome = await engine.search_with_details(records, "Paris")

    assert outcome.mode == "rrf"
    assert [c.record["city"] for c in outcome.candidates] == ["Paris", "Paris centre"]
    assert all(c.semantic_score == 0.0 for c in outcome.candidates)


@pytest.mark.asyncio
async def test_progress_callback(search_config, fake_provider, city_records):
    """Model loading progress is forwarded during the first search."""
    await embed_all(fake_provider, city_records)
    engine = HybridSearchEngine(search_config, fake_provider)
    progress = []

    await engine.search(city_records, "Paris", progress_callback=progress.append)

    assert progress == sorted(progress)
    assert progress[-1] == 100.0
