"""
API request/response models for the FAQ search API.

Pydantic models providing:
- Input validation with field constraints
- OpenAPI schema generation with examples
- Conversion to/from internal search engine dataclasses

These models sit at the API boundary. The search engine uses plain
dataclasses internally (src/faqsearch/embeddings/models.py), and this module
translates between the HTTP layer and the engine layer.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Request Models
# =============================================================================


class SearchRequest(BaseModel):
    """Request for hybrid FAQ search."""

    query: str = Field(
        ..., min_length=1, max_length=500, description="Search query text"
    )
    category: Optional[str] = Field(None, description="Exact category filter")
    limit: int = Field(20, ge=1, le=100, description="Maximum results to return")
    min_score: Optional[float] = Field(
        None, ge=0.0, le=1.0, description="Similarity threshold (server default if omitted)"
    )
    use_semantic_search: Optional[bool] = Field(
        None, description="Try semantic search first (server default if omitted)"
    )
    user_id: Optional[str] = Field(
        None, max_length=200, description="Caller identity for query telemetry"
    )

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("query cannot be blank")
        return v.strip()

    def to_engine_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for FAQSearchEngine.search()."""
        return {
            "query": self.query,
            "category": self.category,
            "limit": self.limit,
            "min_score": self.min_score,
            "use_semantic_search": self.use_semantic_search,
            "user_id": self.user_id,
        }

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "query": "how do I reset my password",
                    "category": "account",
                    "limit": 5,
                }
            ]
        }
    }


class ClickRequest(BaseModel):
    """Click on a search result."""

    entry_id: int = Field(..., ge=1, description="Clicked FAQ entry id")
    position: int = Field(..., ge=1, description="1-based rank in the result list")
    query: Optional[str] = Field(
        None, max_length=500, description="Query that produced the result list"
    )


# =============================================================================
# Response Models
# =============================================================================


class FAQResult(BaseModel):
    """An FAQ entry in search results."""

    id: int
    question: str
    answer: str
    category: Optional[str] = None
    helpful_ratio: float = Field(description="Helpful votes as a percentage (0-100)")
    views: int
    is_pinned: bool
    relevance_score: float = Field(description="Blended relevance score [0, 1]")
    updated_at: Optional[datetime] = None

    @classmethod
    def from_internal(cls, internal) -> "FAQResult":
        """Create from internal search engine FAQResult dataclass."""
        return cls(
            id=internal.id,
            question=internal.question,
            answer=internal.answer,
            category=internal.category,
            helpful_ratio=internal.helpful_ratio,
            views=internal.views,
            is_pinned=internal.is_pinned,
            relevance_score=internal.relevance_score,
            updated_at=internal.updated_at,
        )


class SearchResponse(BaseModel):
    """Response from the search endpoint."""

    results: list[FAQResult]
    total_results: int
    response_time_ms: float
    method: str = Field(description="'semantic' or 'keyword'")
    fallback_used: bool = Field(
        description="True if semantic search was attempted and abandoned"
    )
    success: bool = True
    error: Optional[str] = None

    @classmethod
    def from_internal(cls, internal) -> "SearchResponse":
        """Create from internal search engine SearchResult dataclass."""
        return cls(
            results=[FAQResult.from_internal(r) for r in internal.results],
            total_results=internal.total_results,
            response_time_ms=round(internal.response_time_ms, 2),
            method=internal.method,
            fallback_used=internal.fallback_used,
            success=internal.success,
            error=internal.error,
        )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "results": [
                        {
                            "id": 42,
                            "question": "How do I reset my password?",
                            "answer": "Open Settings, then Security...",
                            "category": "account",
                            "helpful_ratio": 92.0,
                            "views": 1200,
                            "is_pinned": False,
                            "relevance_score": 0.951,
                        }
                    ],
                    "total_results": 1,
                    "response_time_ms": 38.4,
                    "method": "semantic",
                    "fallback_used": False,
                    "success": True,
                }
            ]
        }
    }


class ClickResponse(BaseModel):
    """Response from the click endpoint."""

    success: bool = True


class FAQListResponse(BaseModel):
    """Response from the suggested and trending endpoints."""

    results: list[FAQResult]
    total_results: int

    @classmethod
    def from_internal(cls, results) -> "FAQListResponse":
        items = [FAQResult.from_internal(r) for r in results]
        return cls(results=items, total_results=len(items))


class PopularQuery(BaseModel):
    """A frequent query in the analytics window."""

    query: str
    count: int
    clicks: int
    avg_response_time_ms: float


class AnalyticsResponse(BaseModel):
    """Query telemetry aggregated over a window of days."""

    period_days: int
    total_searches: int
    clicked_searches: int
    click_through_rate: float = Field(description="Clicked searches as a percentage of all searches")
    avg_response_time_ms: float
    fallback_count: int
    fallback_rate: float
    semantic_count: int
    keyword_count: int
    top_queries: list[PopularQuery] = Field(default_factory=list)


class StatsResponse(BaseModel):
    """System statistics response."""

    total_entries: int
    published_entries: int
    embedded_entries: int
    search_eligible_entries: int
    needs_refresh: int
    embedding_coverage_pct: float
    vector_count: int
    dimension: int
    model_version: str
    degraded: bool

    @classmethod
    def from_internal(cls, stats: dict) -> "StatsResponse":
        """Create from FAQSearchEngine.get_stats()."""
        embedding = stats.get("embedding_stats", {})
        index = stats.get("index_stats", {})
        return cls(
            total_entries=embedding.get("total_entries", 0),
            published_entries=embedding.get("published_entries", 0),
            embedded_entries=embedding.get("embedded_entries", 0),
            search_eligible_entries=embedding.get("search_eligible_entries", 0),
            needs_refresh=embedding.get("needs_refresh", 0),
            embedding_coverage_pct=embedding.get("coverage_pct", 0.0),
            vector_count=index.get("vector_count", 0),
            dimension=index.get("dimension", 0),
            model_version=stats.get("model_version", ""),
            degraded=stats.get("degraded", False),
        )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="'healthy', 'degraded' or 'unhealthy'")
    message: str
    vector_index_loaded: bool
    provider_healthy: bool


# =============================================================================
# Error Models
# =============================================================================


class ErrorDetail(BaseModel):
    """Error detail in response."""

    code: str = Field(description="Error code (e.g., VALIDATION_ERROR)")
    message: str
    details: Optional[dict] = None


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: ErrorDetail
