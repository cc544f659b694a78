"""
Shared pytest fixtures for all tests.

This module provides reusable fixtures for:
- Temporary directories and files
- Database instances with sample FAQ entries
- A deterministic embedding provider and a vector index
- A wired search engine and indexer

Fixtures are designed to be composable - use `test_db` for database tests,
add `indexed_db` on top for search tests, etc.
"""

import tempfile
from pathlib import Path
from typing import Generator

import pytest
from tenacity import wait_none

from src.faqsearch.config import Settings
from src.faqsearch.database import FAQDatabase
from src.faqsearch.embeddings.search_engine import FAQSearchEngine
from src.faqsearch.embeddings.vector_index import FAISSVectorIndex
from src.faqsearch.indexer import BatchIndexer
from src.faqsearch.models import IndexerOptions
from src.faqsearch.run_store import RunStore

from .factories import FakeEmbeddingProvider, generate_test_entries


# =============================================================================
# Basic Fixtures
# =============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Provide a temporary directory for test files.

    The directory is automatically cleaned up after the test completes.

    Yields:
        Path to temporary directory
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db_path(temp_dir: Path) -> Path:
    """Path for a temporary test database."""
    return temp_dir / "test_faq.db"


@pytest.fixture
def settings(temp_dir: Path, temp_db_path: Path) -> Settings:
    """
    Settings pointing at the temp directory.

    min_score is low because the fake provider's bag-of-words vectors give
    modest similarities for paraphrases.
    """
    return Settings(
        db_path=str(temp_db_path),
        index_dir=str(temp_dir / "vector_index"),
        runs_dir=str(temp_dir / "runs"),
        min_score=0.2,
        embedding_provider="local",
        embedding_model="fake-model",
        embedding_dimension=32,
        rate_limit_rpm=0,
    )


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def empty_db(temp_db_path: Path) -> FAQDatabase:
    """Empty database with the schema created."""
    return FAQDatabase(str(temp_db_path))


@pytest.fixture
def test_db(temp_db_path: Path) -> FAQDatabase:
    """
    Database with the 10 sample FAQ entries (ids 1-10), none embedded.

    Returns:
        FAQDatabase instance with sample data
    """
    db = FAQDatabase(str(temp_db_path))
    generate_test_entries(db, n=10)
    return db


# =============================================================================
# Embedding Fixtures
# =============================================================================


@pytest.fixture
def fake_provider() -> FakeEmbeddingProvider:
    """Deterministic 32-dimensional provider with retry waits disabled."""
    provider = FakeEmbeddingProvider(dimension=32)
    provider._retry_wait = wait_none()
    return provider


@pytest.fixture
def vector_index(settings: Settings) -> FAISSVectorIndex:
    """Empty 32-dimensional vector index in the temp directory."""
    return FAISSVectorIndex(
        index_dir=Path(settings.index_dir),
        dimension=32,
        model_version="fake-model",
    )


@pytest.fixture
def run_store(settings: Settings) -> RunStore:
    return RunStore(settings.runs_dir)


@pytest.fixture
def indexer(test_db, fake_provider, vector_index, run_store) -> BatchIndexer:
    """Indexer over the sample database with sleeping disabled."""
    return BatchIndexer(
        test_db,
        fake_provider,
        vector_index,
        run_store=run_store,
        sleep=lambda seconds: None,
    )


@pytest.fixture
def indexed_db(test_db, indexer) -> FAQDatabase:
    """Sample database after one full indexer run (all 10 entries embedded)."""
    run = indexer.run(IndexerOptions(batch_size=4, batch_delay=0))
    assert run.status == "completed"
    return test_db


@pytest.fixture
def search_engine(indexed_db, fake_provider, vector_index, settings) -> FAQSearchEngine:
    """Search engine over the indexed sample database."""
    engine = FAQSearchEngine(indexed_db, fake_provider, vector_index, settings=settings)
    engine.load()
    return engine


# =============================================================================
# Skip Markers for Optional Features
# =============================================================================


def requires_faiss(func):
    """
    Decorator to skip tests if FAISS is not available.
    """
    try:
        import faiss  # noqa: F401

        return func
    except ImportError:
        return pytest.mark.skip(reason="FAISS not installed")(func)


def requires_sentence_transformers(func):
    """
    Decorator to skip tests if sentence-transformers is not available.
    """
    try:
        import sentence_transformers  # noqa: F401

        return func
    except ImportError:
        return pytest.mark.skip(reason="sentence-transformers not installed")(func)
