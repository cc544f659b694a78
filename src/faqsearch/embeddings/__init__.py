"""
Embedding, vector index and hybrid search module for FAQ discovery.

Provides vector embeddings for FAQ entries through a pluggable provider
(OpenAI-compatible HTTP API or a local Sentence Transformers model), a FAISS
vector index, and a search engine that blends semantic similarity with
popularity signals and falls back to keyword search.

Features:
- Lazy model loading (defers 2-3s load time until first use)
- In-memory and persistent embedding caches
- Exact cosine-similarity FAISS index with per-record upsert/delete
- Relevance blending (helpfulness, views, pinning) clamped to [0, 1]
- Keyword fallback with uniform response shape

Example:
    from src.faqsearch.embeddings import FAQSearchEngine, FAISSVectorIndex, create_provider

    provider = create_provider(settings, db=db)
    index = FAISSVectorIndex(index_dir=Path(settings.index_dir), dimension=provider.dimension)
    engine = FAQSearchEngine(db, provider, index, settings=settings)

    result = engine.search("How do I pay my artists?", limit=5)
"""

from .models import (
    BatchEmbeddingResult,
    EmbeddingResult,
    FAQResult,
    ProviderSessionStats,
    SearchResult,
    VectorMatch,
)
from .provider import (
    EmbeddingProvider,
    EmbeddingProviderError,
    EmbeddingRateLimitError,
    EmbeddingUnavailableError,
    EmbeddingValidationError,
    OpenAIEmbeddingProvider,
    SentenceTransformerProvider,
    create_provider,
)
from .vector_index import (
    DimensionMismatchError,
    FAISSVectorIndex,
    IndexCompatibilityError,
    VectorIndexError,
)
from .scoring import (
    KEYWORD_MATCH_SCORE,
    RelevanceWeights,
    calculate_relevance_score,
    extract_keywords,
)
from .search_engine import FAQSearchEngine, parse_vector_id, vector_id

__all__ = [
    # Models
    "BatchEmbeddingResult",
    "EmbeddingResult",
    "FAQResult",
    "ProviderSessionStats",
    "SearchResult",
    "VectorMatch",
    # Providers
    "EmbeddingProvider",
    "EmbeddingProviderError",
    "EmbeddingRateLimitError",
    "EmbeddingUnavailableError",
    "EmbeddingValidationError",
    "OpenAIEmbeddingProvider",
    "SentenceTransformerProvider",
    "create_provider",
    # Vector index
    "FAISSVectorIndex",
    "VectorIndexError",
    "DimensionMismatchError",
    "IndexCompatibilityError",
    # Scoring
    "KEYWORD_MATCH_SCORE",
    "RelevanceWeights",
    "calculate_relevance_score",
    "extract_keywords",
    # Search
    "FAQSearchEngine",
    "vector_id",
    "parse_vector_id",
]
