"""Common utilities shared across the engine.

Includes:
- ``config``: Pydantic-based configuration from environment variables.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics helpers.

Import pattern:
- from hybrid_retrieval.common.config import SearchConfig
- from hybrid_retrieval.common.logging import configure_logging
"""
