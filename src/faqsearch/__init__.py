"""
FAQ Search - hybrid semantic/keyword search over a knowledge base.

This package keeps a vector index of FAQ embeddings in sync with the
SQLite corpus store and serves ranked queries over it.

Features:
- Batch indexer with resume, pacing and partial-failure recovery
- Run state persisted per batch (progress/results/errors files)
- OpenAI-compatible or local sentence-transformers embeddings
- Relevance blending with helpfulness, views and pinning
- Keyword fallback when semantic search is unavailable
- Query and click telemetry with search analytics
- Daemon mode for periodic re-indexing
"""

from .config import Settings
from .models import IndexerOptions, IndexingRun, KnowledgeEntry
from .database import FAQDatabase
from .telemetry import SearchTelemetry
from .pacing import BatchPacer, PacerState
from .run_store import RunStore
from .indexer import BatchIndexer, IndexerError, IndexerFatalError
from .daemon import IndexerDaemon, DaemonError, DaemonAlreadyRunning, DaemonNotRunning
from .components import Components, build_components

__all__ = [
    # Configuration
    "Settings",
    # Core models
    "KnowledgeEntry",
    "IndexerOptions",
    "IndexingRun",
    # Storage
    "FAQDatabase",
    "SearchTelemetry",
    # Indexing pipeline
    "BatchIndexer",
    "BatchPacer",
    "PacerState",
    "RunStore",
    "IndexerError",
    "IndexerFatalError",
    "IndexerDaemon",
    "DaemonError",
    "DaemonAlreadyRunning",
    "DaemonNotRunning",
    # Wiring
    "Components",
    "build_components",
]
__version__ = "1.0.0"
