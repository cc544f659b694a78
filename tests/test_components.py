"""Tests for build_components wiring."""

from unittest.mock import patch

from src.faqsearch.components import build_components
from src.faqsearch.embeddings.provider import OpenAIEmbeddingProvider
from src.faqsearch.indexer import BatchIndexer
from src.faqsearch.models import IndexerOptions
from tests.conftest import requires_faiss

from .factories import FakeEmbeddingProvider, generate_test_entries


class TestBuildComponents:

    def test_shared_clients(self, settings, fake_provider):
        components = build_components(settings, provider=fake_provider, load_index=False)

        assert components.engine.db is components.db
        assert components.engine.provider is fake_provider
        assert components.engine.vector_index is components.vector_index
        assert components.engine.telemetry is components.telemetry
        assert components.vector_index.dimension == 32
        assert components.vector_index.model_version == "fake-model"
        assert str(components.run_store.runs_dir) == settings.runs_dir

    def test_indexer_uses_shared_clients(self, settings, fake_provider):
        components = build_components(settings, provider=fake_provider, load_index=False)
        indexer = components.indexer(sleep=lambda s: None)

        assert isinstance(indexer, BatchIndexer)
        assert indexer.vector_index is components.vector_index
        assert indexer.run_store is components.run_store

    def test_provider_from_settings(self, settings):
        settings.embedding_provider = "openai"
        settings.api_key = "sk-test"
        components = build_components(settings, load_index=False)
        try:
            assert isinstance(components.provider, OpenAIEmbeddingProvider)
            assert components.vector_index.dimension == settings.embedding_dimension
        finally:
            components.close()

    def test_close_closes_provider(self, settings, fake_provider):
        components = build_components(settings, provider=fake_provider, load_index=False)
        with patch.object(fake_provider, "close") as close:
            components.close()
        close.assert_called_once()

    def test_load_without_index_is_degraded(self, settings, fake_provider):
        components = build_components(settings, provider=fake_provider)
        health = components.engine.health_check()
        assert health["healthy"] is True
        assert health["message"] != "ok"

    @requires_faiss
    def test_index_then_search(self, settings):
        components = build_components(settings, provider=FakeEmbeddingProvider(), load_index=False)
        generate_test_entries(components.db, n=10)

        run = components.indexer(sleep=lambda s: None).run(IndexerOptions(batch_delay=0))
        assert run.success_count == 10

        # A fresh process picks up the saved index
        fresh = build_components(settings, provider=FakeEmbeddingProvider())
        assert fresh.vector_index.count == 10

        question = fresh.db.get_entry(1).question
        result = fresh.engine.search(question)
        assert result.method == "semantic"
        assert 1 in [r.id for r in result.results]
