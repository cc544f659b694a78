"""
Models for embedding generation and hybrid FAQ search.

Contains:
- Result and statistics models for embedding providers
- Match model for the vector index
- Result models for FAQSearchEngine
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import numpy as np


@dataclass
class EmbeddingResult:
    """
    One embedding returned by a provider.

    Example:
        result = provider.embed("How do I reset my password?")
        print(result.dimension, result.tokens_used, result.from_cache)
    """

    vector: np.ndarray
    tokens_used: int
    model: str
    from_cache: bool = False

    @property
    def dimension(self) -> int:
        return int(self.vector.shape[0])


@dataclass
class BatchEmbeddingResult:
    """
    Result of embedding several texts in one call.

    results is aligned with the input texts; items that failed are None and
    have a matching {index, error} entry in errors.
    """

    results: list[Optional[EmbeddingResult]] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)
    total_tokens: int = 0

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r is not None)


@dataclass
class ProviderSessionStats:
    """
    Counters kept by a provider for the lifetime of the process.

    Reported by FAQSearchEngine.get_stats() and the indexer summary.
    """

    total_generated: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    api_calls: int = 0
    total_tokens_used: int = 0

    @property
    def cache_hit_rate(self) -> float:
        """Cache hits as a percentage of lookups."""
        lookups = self.cache_hits + self.cache_misses
        if lookups == 0:
            return 0.0
        return round(self.cache_hits / lookups * 100, 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_generated": self.total_generated,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "cache_hit_rate": self.cache_hit_rate,
            "api_calls": self.api_calls,
            "total_tokens_used": self.total_tokens_used,
        }


@dataclass
class VectorMatch:
    """Single nearest-neighbour hit from the vector index."""

    id: str
    score: float
    metadata: dict = field(default_factory=dict)


# =============================================================================
# Search Result Models
# =============================================================================


@dataclass
class FAQResult:
    """
    Single FAQ result from hybrid search.

    Contains the entry fields shown to users plus the relevance score.
    """

    id: int
    question: str
    answer: str
    category: Optional[str] = None
    helpful_ratio: float = 0.0
    views: int = 0
    is_pinned: bool = False
    relevance_score: float = 0.0
    updated_at: Optional[datetime] = None


@dataclass
class SearchResult:
    """
    Response from FAQSearchEngine.search().

    method is 'semantic' or 'keyword'. fallback_used is True when the
    keyword path served a query that asked for semantic search. On total
    failure success is False, error is set and results is empty.
    """

    results: list[FAQResult] = field(default_factory=list)
    total_results: int = 0
    response_time_ms: float = 0.0
    method: str = "semantic"
    fallback_used: bool = False
    success: bool = True
    error: Optional[str] = None
