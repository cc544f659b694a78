"""
Wiring of the corpus store, provider, vector index, telemetry and engine.

The same clients are shared by the indexer and the query engine so both see
one vector index and one embedding cache.

Example:
    components = build_components(Settings.from_env())
    result = components.engine.search("refund policy")
    run = components.indexer().run(IndexerOptions(limit=50))
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .config import Settings
from .database import FAQDatabase
from .embeddings.provider import EmbeddingProvider, create_provider
from .embeddings.search_engine import FAQSearchEngine
from .embeddings.vector_index import FAISSVectorIndex
from .indexer import BatchIndexer
from .run_store import RunStore
from .telemetry import SearchTelemetry

logger = logging.getLogger(__name__)


@dataclass
class Components:
    """Constructed clients for one process."""
    settings: Settings
    db: FAQDatabase
    provider: EmbeddingProvider
    vector_index: FAISSVectorIndex
    telemetry: SearchTelemetry
    engine: FAQSearchEngine
    run_store: RunStore

    def indexer(self, sleep: Optional[Callable[[float], object]] = None) -> BatchIndexer:
        """New BatchIndexer over the shared clients."""
        return BatchIndexer(
            self.db,
            self.provider,
            self.vector_index,
            run_store=self.run_store,
            sleep=sleep,
        )

    def close(self) -> None:
        self.provider.close()


def build_components(
    settings: Optional[Settings] = None,
    provider: Optional[EmbeddingProvider] = None,
    load_index: bool = True,
) -> Components:
    """
    Construct every client from settings.

    Args:
        settings: Runtime settings (read from the environment if omitted)
        provider: Pre-built provider, replacing the one settings would create
        load_index: Load the persisted vector index now

    Returns:
        Components bundle
    """
    settings = settings or Settings.from_env()

    db = FAQDatabase(settings.db_path)
    provider = provider or create_provider(settings, db=db)
    vector_index = FAISSVectorIndex(
        index_dir=Path(settings.index_dir),
        dimension=provider.dimension,
        model_version=provider.model,
    )
    telemetry = SearchTelemetry(db)
    engine = FAQSearchEngine(
        db,
        provider,
        vector_index,
        settings=settings,
        telemetry=telemetry,
    )

    if load_index:
        engine.load()

    logger.debug(
        f"Components built (provider={settings.embedding_provider}, "
        f"model={provider.model}, db={settings.db_path})"
    )

    return Components(
        settings=settings,
        db=db,
        provider=provider,
        vector_index=vector_index,
        telemetry=telemetry,
        engine=engine,
        run_store=RunStore(settings.runs_dir),
    )
