"""
Hybrid search engine for the FAQ knowledge base.

Orchestrates semantic + keyword search by combining:
- Query embedding via the configured provider (cached)
- FAISS vector search (semantic similarity)
- Relevance blending with popularity, helpfulness and pinning
- Keyword fallback when semantic search is disabled, empty or failing
- Query/click telemetry for ranking analysis

Example:
    engine = FAQSearchEngine(db, provider, vector_index, settings=settings)
    engine.load()

    result = engine.search("How do I reset my password?", limit=5)
    for item in result.results:
        print(f"{item.question}: {item.relevance_score:.3f}")
"""

import logging
import threading
import time
from typing import Optional

import numpy as np
from cachetools import TTLCache

from ..config import Settings
from ..database import FAQDatabase
from ..models import KnowledgeEntry
from ..telemetry import SearchTelemetry
from .models import FAQResult, SearchResult
from .provider import EmbeddingProvider
from .scoring import (
    DEFAULT_WEIGHTS,
    KEYWORD_MATCH_SCORE,
    RelevanceWeights,
    calculate_relevance_score,
    extract_keywords,
    matches_keywords,
)
from .vector_index import FAISSVectorIndex, IndexCompatibilityError

logger = logging.getLogger(__name__)

VECTOR_ID_PREFIX = "faq-"

SUGGESTED_SCORE = 0.9
TRENDING_SCORE = 0.95


def vector_id(entry_id: int) -> str:
    """Vector index id for an FAQ entry."""
    return f"{VECTOR_ID_PREFIX}{entry_id}"


def parse_vector_id(key: str) -> Optional[int]:
    """Entry id from a vector index id, or None if it isn't an FAQ id."""
    if not key.startswith(VECTOR_ID_PREFIX):
        return None
    try:
        return int(key[len(VECTOR_ID_PREFIX):])
    except ValueError:
        return None


def to_result(entry: KnowledgeEntry, score: float) -> FAQResult:
    return FAQResult(
        id=entry.id,
        question=entry.question,
        answer=entry.answer,
        category=entry.category,
        helpful_ratio=entry.helpful_ratio,
        views=entry.views,
        is_pinned=entry.is_pinned,
        relevance_score=round(score, 3),
        updated_at=entry.updated_at,
    )


class FAQSearchEngine:
    """
    Hybrid semantic + keyword search over FAQ entries.

    Semantic candidates are scored as:
        score = similarity + helpful boost + view boost + pin boost, clamped to [0, 1]

    Keyword matches all get KEYWORD_MATCH_SCORE and are ordered by views.
    search() never raises for dependency failures: it falls back to keyword
    search, or returns success=False with an error message.

    Example:
        engine = FAQSearchEngine(db, provider, vector_index)
        result = engine.search("refund policy", category="billing")
        if result.fallback_used:
            print("served by keyword search")
    """

    MAX_LIMIT = 100

    # Default cache configuration
    QUERY_CACHE_SIZE = 1000
    QUERY_CACHE_TTL = 3600  # 1 hour

    def __init__(
        self,
        db: FAQDatabase,
        provider: EmbeddingProvider,
        vector_index: FAISSVectorIndex,
        settings: Optional[Settings] = None,
        telemetry: Optional[SearchTelemetry] = None,
        weights: RelevanceWeights = DEFAULT_WEIGHTS,
    ):
        """
        Initialize the search engine.

        Args:
            db: Corpus store
            provider: Embedding provider for queries
            vector_index: Vector index holding FAQ embeddings
            settings: Defaults for min_score, semantic search and fallback
            telemetry: Query/click logger (built from db if omitted)
            weights: Relevance boost weights
        """
        self.db = db
        self.provider = provider
        self.vector_index = vector_index
        self.settings = settings or Settings()
        self.telemetry = telemetry or SearchTelemetry(db)
        self.weights = weights

        self._query_cache: TTLCache = TTLCache(
            maxsize=self.QUERY_CACHE_SIZE,
            ttl=self.QUERY_CACHE_TTL,
        )
        self._cache_lock = threading.Lock()

        # State
        self._loaded = False
        self._degraded = False

    def load(self) -> bool:
        """
        Load the vector index and prepare for searching.

        Returns:
            True if the vector index loaded, False if in degraded mode

        Note:
            This method is idempotent - safe to call multiple times.
        """
        if self._loaded:
            return not self._degraded

        logger.info("Loading FAQ search engine...")

        try:
            if self.vector_index.exists():
                self.vector_index.load()
                logger.info(f"Vector index loaded ({self.vector_index.count} vectors)")
            else:
                logger.warning(
                    f"Vector index not found at {self.vector_index.index_dir}. "
                    "Run 'faqsearch index-run' to build it."
                )
                self._degraded = True
        except IndexCompatibilityError as e:
            logger.warning(f"Index compatibility error: {e}. Falling back to keyword search.")
            self._degraded = True
        except Exception as e:
            logger.warning(f"Failed to load vector index: {e}. Falling back to keyword search.")
            self._degraded = True

        self._loaded = True
        return not self._degraded

    # =========================================================================
    # Search
    # =========================================================================

    def search(
        self,
        query: str,
        category: Optional[str] = None,
        limit: int = 20,
        min_score: Optional[float] = None,
        use_semantic_search: Optional[bool] = None,
        user_id: Optional[str] = None,
    ) -> SearchResult:
        """
        Search FAQ entries.

        Flow:
        1. Semantic path (if enabled): embed query, query vector index for
           limit * 2 candidates, drop ineligible entries, blend scores
        2. Keyword path if semantic is disabled, empty or failing (and
           fallback is permitted)
        3. Log the query and count a hit on the top result

        Args:
            query: Free-text query (must be non-blank)
            category: Optional exact category filter
            limit: Maximum results, clamped to 1..100
            min_score: Similarity threshold (defaults to settings.min_score)
            use_semantic_search: Try the semantic path (defaults to settings)
            user_id: Optional caller identity for telemetry

        Returns:
            SearchResult

        Raises:
            ValueError: If the query is blank
        """
        start_time = time.perf_counter()

        query_text = (query or "").strip()
        if not query_text:
            raise ValueError("Query cannot be empty")

        limit = max(1, min(int(limit), self.MAX_LIMIT))
        if min_score is None:
            min_score = self.settings.min_score
        if use_semantic_search is None:
            use_semantic_search = self.settings.enable_semantic_search

        if not self._loaded:
            self.load()

        results: list[FAQResult] = []
        method = "semantic"
        fallback_used = False
        success = True
        error: Optional[str] = None

        semantic_error: Optional[str] = None
        run_keyword = not use_semantic_search

        if use_semantic_search:
            try:
                results = self._semantic_search(query_text, category, limit, min_score)
                if not results:
                    logger.info(f"No semantic results for {query_text!r}")
            except Exception as e:
                logger.warning(f"Semantic search failed: {e}")
                semantic_error = f"Semantic search failed: {e}"

            if not results and self.settings.fallback_to_keyword:
                logger.info("Falling back to keyword search")
                fallback_used = True
                run_keyword = True
            elif semantic_error:
                success = False
                error = semantic_error

        if run_keyword:
            method = "keyword"
            try:
                results = self._keyword_search(query_text, category, limit)
            except Exception as e:
                logger.error(f"Keyword search failed: {e}")
                results = []
                success = False
                error = f"Search failed: {e}"

        result = SearchResult(
            results=results,
            total_results=len(results),
            response_time_ms=(time.perf_counter() - start_time) * 1000,
            method=method,
            fallback_used=fallback_used,
            success=success,
            error=error,
        )

        self.telemetry.log_query(query_text, result, user_id=user_id)
        return result

    def _semantic_search(
        self,
        query: str,
        category: Optional[str],
        limit: int,
        min_score: float,
    ) -> list[FAQResult]:
        """Vector search plus relevance blending."""
        try:
            if self.vector_index.refresh_if_stale():
                self._degraded = False
        except Exception as e:
            logger.warning(f"Failed to reload vector index: {e}")

        embedding = self._get_query_embedding(query)
        matches = self.vector_index.query(embedding, top_k=limit * 2, min_score=min_score)
        logger.debug(f"Vector index returned {len(matches)} candidates")

        if not matches:
            return []

        ids = [parse_vector_id(m.id) for m in matches]
        entries = self.db.get_entries(i for i in ids if i is not None)

        scored: list[FAQResult] = []
        for match, entry_id in zip(matches, ids):
            entry = entries.get(entry_id) if entry_id is not None else None
            if entry is None or not entry.is_search_eligible:
                logger.warning(f"Dropping vector hit {match.id}: no eligible entry")
                continue

            if category and entry.category != category:
                continue

            score = calculate_relevance_score(
                match.score,
                entry.helpful_ratio,
                entry.views,
                entry.is_pinned,
                self.weights,
            )
            scored.append(to_result(entry, score))

        scored.sort(key=lambda r: r.relevance_score, reverse=True)
        return scored[:limit]

    def _keyword_search(
        self,
        query: str,
        category: Optional[str],
        limit: int,
    ) -> list[FAQResult]:
        """Substring match on question/answer, ordered by views."""
        keywords = extract_keywords(query)
        if not keywords:
            logger.info(f"No keywords extracted from {query!r}")
            return []

        entries = self.db.get_published_entries(category)
        matched = [e for e in entries if matches_keywords(e, keywords)]
        return [to_result(e, KEYWORD_MATCH_SCORE) for e in matched[:limit]]

    def _get_query_embedding(self, query: str) -> np.ndarray:
        """
        Get embedding for a query string (with caching).

        One provider attempt only: a failure here means keyword fallback.
        """
        with self._cache_lock:
            cached = self._query_cache.get(query)
        if cached is not None:
            return cached

        embedding = self.provider.embed(query, retry=False).vector
        with self._cache_lock:
            self._query_cache[query] = embedding
        return embedding

    # =========================================================================
    # Clicks, Popularity Views and Analytics
    # =========================================================================

    def record_click(self, entry_id: int, position: int, query: Optional[str] = None) -> bool:
        """
        Record a click on a search result.

        Returns:
            True if the entry exists
        """
        return self.telemetry.record_click(entry_id, position, query=query)

    def get_suggested(self, category: Optional[str] = None, limit: int = 5) -> list[FAQResult]:
        """Pinned entries first, then most clicked, then most viewed."""
        limit = max(1, min(limit, self.MAX_LIMIT))
        entries = self.db.get_suggested_entries(category=category, limit=limit)
        return [to_result(e, SUGGESTED_SCORE) for e in entries]

    def get_trending(self, days: int = 7, limit: int = 10) -> list[FAQResult]:
        """Most viewed then most helpful entries changed in the last N days."""
        days = max(1, min(days, 90))
        limit = max(1, min(limit, self.MAX_LIMIT))
        entries = self.db.get_trending_entries(days=days, limit=limit)
        return [to_result(e, TRENDING_SCORE) for e in entries]

    def get_search_analytics(self, days: int = 7) -> dict:
        """Query telemetry aggregated over the last N days."""
        days = max(1, min(days, 365))
        return self.telemetry.get_search_analytics(days)

    # =========================================================================
    # Health and Statistics
    # =========================================================================

    def health_check(self) -> dict:
        """
        Check the engine's dependencies.

        The engine is healthy while the corpus store answers, since keyword
        search still works without the vector index or provider.
        """
        vector_status = self.vector_index.health_check()
        provider_status = self.provider.health_check()

        try:
            self.db.count_entries()
            healthy = True
            message = "ok"
        except Exception as e:
            healthy = False
            message = f"Corpus store unavailable: {e}"

        if healthy and (
            self._degraded
            or not vector_status.get("healthy")
            or not provider_status.get("healthy")
        ):
            message = "degraded: keyword search only"

        return {
            "healthy": healthy,
            "message": message,
            "vector_index": vector_status,
            "provider": provider_status,
        }

    def get_stats(self) -> dict:
        """
        Get search engine statistics.

        Returns:
            Dict with engine state, cache stats, index stats, provider
            session stats and corpus embedding coverage
        """
        stats = {
            "loaded": self._loaded,
            "degraded": self._degraded,
            "semantic_search_enabled": self.settings.enable_semantic_search,
            "fallback_to_keyword": self.settings.fallback_to_keyword,
            "model_version": self.provider.model,
        }

        stats["caches"] = {
            "query_cache_size": len(self._query_cache),
            "query_cache_max": self.QUERY_CACHE_SIZE,
            "provider_cache_size": self.provider.cache_size,
        }

        try:
            stats["index_stats"] = self.vector_index.stats()
        except Exception as e:
            stats["index_stats"] = {"error": str(e)}

        stats["provider_stats"] = self.provider.stats.to_dict()
        stats["embedding_stats"] = self.db.get_embedding_stats()

        return stats

    def clear_caches(self) -> None:
        """Clear query and provider caches."""
        with self._cache_lock:
            self._query_cache.clear()
        self.provider.clear_memory_cache()
        logger.info("Search engine caches cleared")
