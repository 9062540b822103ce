"""API routes for the retrieval service."""

import time
from typing import Any, Dict, List, Literal, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from ..hybrid.search_manager import HybridSearchEngine
from ..intelligence.query_executor import QueryRouter
from ..intelligence.query_understanding import QueryIntentClassifier
from ..pipelines.indexer import RecordIndexer

logger = structlog.get_logger("api.routes")

router = APIRouter()


class SearchRequest(BaseModel):
    """Request model for search endpoint."""
    records: List[Dict[str, Any]] = Field(..., description="Candidate records, optionally with _vector")
    query: str = Field(..., description="Search query")
    top_k: Optional[int] = Field(None, ge=0, description="Maximum number of results")
    threshold: Optional[float] = Field(None, description="Minimum fused score")
    fusion: Optional[Literal["rrf", "weighted"]] = Field(None, description="Score combination policy")


class SearchHit(BaseModel):
    """One ranked record."""
    record: Dict[str, Any] = Field(..., description="Record without embedding payload")
    score: float = Field(..., description="Fused relevance score")
    semantic_score: float = Field(..., description="Cosine similarity to the query")
    keyword_score: float = Field(..., description="Keyword coverage score")
    matched_terms: List[str] = Field(default_factory=list, description="Query terms found in the record")
    sources: List[str] = Field(default_factory=list, description="Rankings the record appeared in")


class SearchResponse(BaseModel):
    """Response model for search endpoint."""
    results: List[SearchHit] = Field(..., description="Search results")
    total: int = Field(..., description="Number of results")
    query: str = Field(..., description="Original query")
    mode: str = Field(..., description="rrf, weighted or keyword")
    degraded: bool = Field(..., description="True when embeddings failed and keyword ranking was used")
    degraded_reason: Optional[str] = Field(None, description="Why the search degraded")
    latency_ms: float = Field(..., description="Search latency in milliseconds")


class IntentRequest(BaseModel):
    """Request model for intent classification."""
    query: str = Field(..., description="Natural-language question")
    columns: Optional[List[str]] = Field(None, description="Known field names")


class IntentResponse(BaseModel):
    """Classified intent."""
    type: str
    operation: str
    column: Optional[str] = None
    value: Any = None
    conditions: List[Dict[str, Any]] = Field(default_factory=list)
    limit: Optional[int] = None
    order: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    semantic_query: Optional[str] = None
    matched_rule: str


class QueryRequest(BaseModel):
    """Request model for question answering over records."""
    records: List[Dict[str, Any]] = Field(..., description="Records to query")
    question: str = Field(..., description="Natural-language question")
    top_k: Optional[int] = Field(None, ge=0, description="Maximum search results")


class QueryResponse(BaseModel):
    """Answer to a question."""
    kind: str = Field(..., description="records, aggregate, summary or message")
    intent: Optional[IntentResponse] = None
    records: List[Dict[str, Any]] = Field(default_factory=list)
    value: Any = None
    summary: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
    degraded: bool = False


class EmbedRequest(BaseModel):
    """Request model for the ingest-time embedding pass."""
    records: List[Dict[str, Any]] = Field(..., description="Records to embed")


class IndexingReportModel(BaseModel):
    total: int
    embedded: int
    skipped: int
    failed: int
    completed: bool
    error: Optional[str] = None


class EmbedResponse(BaseModel):
    """Records with vectors attached, plus the pass report."""
    records: List[Dict[str, Any]] = Field(..., description="Records including _vector and _text_hash")
    report: IndexingReportModel


def get_search_engine(request: Request) -> HybridSearchEngine:
    """Get search engine from application state."""
    return request.app.state.search_engine


def get_classifier(request: Request) -> QueryIntentClassifier:
    return request.app.state.classifier


def get_query_router(request: Request) -> QueryRouter:
    return request.app.state.query_router


def get_indexer(request: Request) -> RecordIndexer:
    return request.app.state.indexer


@router.post("/search", response_model=SearchResponse)
async def search(
    request: SearchRequest,
    engine: HybridSearchEngine = Depends(get_search_engine)
):
    """Rank the submitted records for a query."""
    start_time = time.time()

    try:
        outcome = await engine.search_with_details(
            request.records,
            request.query,
            top_k=request.top_k,
            threshold=request.threshold,
            fusion=request.fusion
        )
    except Exception as e:
        logger.error("Search failed", query=request.query[:50], error=str(e))
        raise HTTPException(status_code=500, detail=f"Search failed: {str(e)}")

    return SearchResponse(
        results=[SearchHit(**candidate.to_dict()) for candidate in outcome.candidates],
        total=len(outcome.candidates),
        query=request.query,
        mode=outcome.mode,
        degraded=outcome.degraded,
        degraded_reason=outcome.degraded_reason,
        latency_ms=(time.time() - start_time) * 1000
    )


@router.post("/intent", response_model=IntentResponse)
async def classify_intent(
    request: IntentRequest,
    classifier: QueryIntentClassifier = Depends(get_classifier)
):
    """Classify a question without executing it."""
    intent = classifier.classify(request.query, request.columns)
    return IntentResponse(**intent.to_dict())


@router.post("/query", response_model=QueryResponse)
async def run_query(
    request: QueryRequest,
    query_router: QueryRouter = Depends(get_query_router)
):
    """Answer a question about the submitted records."""
    try:
        result = await query_router.run(request.records, request.question, top_k=request.top_k)
    except Exception as e:
        logger.error("Query failed", question=request.question[:50], error=str(e))
        raise HTTPException(status_code=500, detail=f"Query failed: {str(e)}")

    return QueryResponse(**result.to_dict())


@router.post("/embed", response_model=EmbedResponse)
async def embed_records(
    request: EmbedRequest,
    indexer: RecordIndexer = Depends(get_indexer)
):
    """Attach embeddings to records that lack a current vector."""
    records = request.records
    report = await indexer.embed_records(records)

    logger.info(
        "Embed request completed",
        total=report.total,
        embedded=report.embedded,
        completed=report.completed
    )
    return EmbedResponse(records=records, report=IndexingReportModel(**report.to_dict()))
