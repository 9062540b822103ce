"""Ingest-time embedding pipelines.

Highlights
- ``indexer``: embeds records in batches, resumable after interruption
- ``retry_handler``: exponential backoff for model loading and batch encoding
"""
