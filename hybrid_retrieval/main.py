"""Retrieval service main application."""

import time
from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.routes import router as api_router
from .common.config import SearchConfig
from .common.logging import configure_logging
from .common.metrics import get_metrics_collector
from .encoders.embedding_manager import (
    EmbeddingProvider,
    EmbeddingUnavailableError,
    ProviderStatus,
    get_embedding_provider,
)
from .hybrid.search_manager import HybridSearchEngine
from .intelligence.query_executor import QueryRouter
from .intelligence.query_understanding import QueryIntentClassifier
from .pipelines.indexer import RecordIndexer

logger = structlog.get_logger("retrieval_service")

SERVICE_NAME = "hybrid-retrieval"
SERVICE_VERSION = "0.1.0"


def create_app(
    config: Optional[SearchConfig] = None,
    provider: Optional[EmbeddingProvider] = None
) -> FastAPI:
    """Build the FastAPI application.

    Parameters
    - config: service configuration (read from the environment if omitted)
    - provider: embedding provider to use instead of the shared
      sentence-transformers provider (tests inject fakes here)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        service_config = config or SearchConfig()
        configure_logging(SERVICE_NAME, service_config.hr_log_level, service_config.hr_log_format)

        logger.info("Starting retrieval service", env=service_config.hr_env)

        metrics_collector = get_metrics_collector(SERVICE_NAME)
        embedding_provider = provider or get_embedding_provider(
            config=service_config,
            metrics_collector=metrics_collector
        )

        if service_config.hr_embedding_preload:
            try:
                await embedding_provider.initialize()
            except EmbeddingUnavailableError as e:
                # Search keeps working keyword-only; later calls retry the load
                logger.warning("Embedding model preload failed", error=str(e))

        engine = HybridSearchEngine(service_config, embedding_provider, metrics_collector)
        classifier = QueryIntentClassifier(metrics_collector)

        app.state.config = service_config
        app.state.metrics_collector = metrics_collector
        app.state.embedding_provider = embedding_provider
        app.state.search_engine = engine
        app.state.classifier = classifier
        app.state.query_router = QueryRouter(engine, classifier)
        app.state.indexer = RecordIndexer(embedding_provider, service_config, metrics_collector)

        logger.info("Retrieval service started successfully")

        yield

        logger.info("Retrieval service shutdown complete")

    app = FastAPI(
        title="Hybrid Retrieval Service",
        description="Hybrid semantic and keyword search over tabular records",
        version=SERVICE_VERSION,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api/v1")

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Time requests, record HTTP metrics and add ``X-Process-Time``."""
        start_time = time.time()

        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as e:
            logger.error("Unhandled request error", path=request.url.path, error=str(e))
            status_code = 500
            response = JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "detail": str(e)}
            )

        duration = time.time() - start_time
        response.headers["X-Process-Time"] = str(duration)

        if hasattr(request.app.state, "metrics_collector"):
            request.app.state.metrics_collector.record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status=status_code,
                duration=duration
            )

        return response

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint.

        The service answers keyword searches without a model, so a failed
        embedding model reports ``degraded`` rather than unhealthy.
        """
        embedding_provider = getattr(request.app.state, "embedding_provider", None)
        if embedding_provider is None:
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "service": SERVICE_NAME}
            )

        embedding = embedding_provider.health_check()
        status = "degraded" if embedding_provider.status == ProviderStatus.FAILED else "healthy"
        return {"status": status, "service": SERVICE_NAME, "embedding": embedding}

    @app.get("/metrics")
    async def metrics(request: Request):
        """Prometheus metrics endpoint."""
        if hasattr(request.app.state, "metrics_collector"):
            metrics_data = request.app.state.metrics_collector.get_metrics()
            return Response(content=metrics_data, media_type="text/plain")
        return Response(content="# No metrics available\n", media_type="text/plain")

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "status": "running",
            "endpoints": {
                "health": "/health",
                "metrics": "/metrics",
                "search": "/api/v1/search",
                "intent": "/api/v1/intent",
                "query": "/api/v1/query",
                "embed": "/api/v1/embed"
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "hybrid_retrieval.main:app",
        host="0.0.0.0",
        port=SearchConfig().hr_search_port,
        log_level="info"
    )
