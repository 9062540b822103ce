"""Tests for the hybrid retrieval engine.

Unit tests cover scoring, fusion, intent classification and the embedding
lifecycle with deterministic fake providers; ``test_api`` drives the FastAPI
app in-process through ``TestClient``.
"""
