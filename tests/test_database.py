"""
Tests for FAQDatabase operations.

Tests cover:
- Schema creation
- Entry upserts and freshness tracking
- Indexer selection and embedding write-back
- Popularity views (suggested, trending)
- Query/click telemetry
- Embedding cache and daemon state
"""

import sqlite3

import numpy as np
import pytest

from src.faqsearch.database import FAQDatabase

from .factories import insert_entry, random_unit_vector


# =============================================================================
# Schema Tests
# =============================================================================


class TestDatabaseCreation:
    """Test database initialization."""

    def test_creates_all_tables(self, empty_db):
        """All tables exist after initialization."""
        with sqlite3.connect(empty_db.db_path) as conn:
            tables = {
                row[0]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            }
        assert {"faq_entries", "search_query_logs", "embedding_cache", "daemon_state"} <= tables

    def test_creates_parent_directory(self, temp_dir):
        """Missing parent directories are created."""
        db = FAQDatabase(str(temp_dir / "nested" / "dir" / "faq.db"))
        assert db.db_path.exists()

    def test_reopening_keeps_data(self, temp_db_path):
        """Schema creation is idempotent."""
        db = FAQDatabase(str(temp_db_path))
        insert_entry(db)
        reopened = FAQDatabase(str(temp_db_path))
        assert reopened.count_entries() == 1


# =============================================================================
# Entry Tests
# =============================================================================


class TestUpsertEntry:
    """Test insert and update of FAQ entries."""

    def test_insert_returns_new_id(self, empty_db):
        entry_id, is_new = empty_db.upsert_entry("How do refunds work?", "Within 5 days.")
        assert is_new is True
        assert entry_id == 1

        entry = empty_db.get_entry(entry_id)
        assert entry.question == "How do refunds work?"
        assert entry.is_published is True
        assert entry.has_embedding is False

    def test_insert_with_explicit_id(self, empty_db):
        entry_id, is_new = empty_db.upsert_entry("Q", "A", entry_id=42)
        assert (entry_id, is_new) == (42, True)
        assert empty_db.get_entry(42) is not None

    def test_update_existing(self, empty_db):
        entry_id = insert_entry(empty_db, category="billing")
        _, is_new = empty_db.upsert_entry(
            "How do I reset my password?",
            "Open Settings and click Reset password.",
            entry_id=entry_id,
            category="account",
            views=10,
        )
        assert is_new is False
        entry = empty_db.get_entry(entry_id)
        assert entry.category == "account"
        assert entry.views == 10

    def test_content_change_marks_embedded_entry_for_refresh(self, empty_db):
        """Editing an embedded entry's text flags it for re-embedding."""
        entry_id = insert_entry(empty_db)
        empty_db.update_entry_embedding(entry_id, random_unit_vector(8, seed=1), "m")

        empty_db.upsert_entry("New question?", "New answer.", entry_id=entry_id)

        entry = empty_db.get_entry(entry_id)
        assert entry.needs_embedding_refresh is True
        assert entry.is_search_eligible is False

    def test_counter_change_does_not_mark_for_refresh(self, empty_db):
        entry_id = insert_entry(empty_db, question="Q?", answer="A.")
        empty_db.update_entry_embedding(entry_id, random_unit_vector(8, seed=1), "m")

        empty_db.upsert_entry("Q?", "A.", entry_id=entry_id, views=500)

        assert empty_db.get_entry(entry_id).needs_embedding_refresh is False

    def test_content_change_without_embedding_does_not_flag(self, empty_db):
        entry_id = insert_entry(empty_db)
        empty_db.upsert_entry("Changed?", "Changed.", entry_id=entry_id)
        assert empty_db.get_entry(entry_id).needs_embedding_refresh is False


class TestEntryQueries:
    """Test entry lookups."""

    def test_get_missing_entry(self, empty_db):
        assert empty_db.get_entry(999) is None

    def test_get_entries_skips_missing(self, test_db):
        entries = test_db.get_entries([1, 2, 999])
        assert set(entries) == {1, 2}

    def test_get_entries_empty(self, test_db):
        assert test_db.get_entries([]) == {}

    def test_published_entries_ordered_by_views(self, empty_db):
        low = insert_entry(empty_db, question="low", views=5)
        high = insert_entry(empty_db, question="high", views=500)
        insert_entry(empty_db, question="hidden", views=9999, is_published=False)

        ids = [e.id for e in empty_db.get_published_entries()]
        assert ids == [high, low]

    def test_published_entries_category_filter(self, empty_db):
        insert_entry(empty_db, question="a", category="billing")
        insert_entry(empty_db, question="b", category="account")
        entries = empty_db.get_published_entries(category="billing")
        assert [e.category for e in entries] == ["billing"]

    def test_set_published(self, test_db):
        assert test_db.set_published(1, False) is True
        assert 1 not in test_db.get_published_ids()
        assert test_db.set_published(999, False) is False

    def test_count_entries(self, test_db):
        test_db.set_published(1, False)
        assert test_db.count_entries() == 10
        assert test_db.count_entries(published_only=True) == 9


# =============================================================================
# Embedding Tests
# =============================================================================


class TestEmbeddingSelection:
    """Test the indexer's selection query."""

    def test_selects_unembedded_published(self, test_db):
        test_db.set_published(3, False)
        ids = [e.id for e in test_db.get_entries_needing_embeddings()]
        assert ids == [1, 2, 4, 5, 6, 7, 8, 9, 10]

    def test_skips_fresh_embeddings(self, test_db):
        test_db.update_entry_embedding(1, random_unit_vector(8, seed=1), "m")
        ids = [e.id for e in test_db.get_entries_needing_embeddings()]
        assert 1 not in ids

    def test_selects_stale_embeddings(self, test_db):
        test_db.update_entry_embedding(1, random_unit_vector(8, seed=1), "m")
        test_db.set_needs_refresh(1, True)
        ids = [e.id for e in test_db.get_entries_needing_embeddings()]
        assert ids[0] == 1

    def test_force_all_includes_fresh(self, test_db):
        for entry_id in range(1, 11):
            test_db.update_entry_embedding(entry_id, random_unit_vector(8, seed=entry_id), "m")
        assert test_db.get_entries_needing_embeddings() == []
        assert len(test_db.get_entries_needing_embeddings(force_all=True)) == 10

    def test_resume_from_id_is_inclusive(self, test_db):
        ids = [e.id for e in test_db.get_entries_needing_embeddings(resume_from_id=8)]
        assert ids == [8, 9, 10]

    def test_limit_applies_after_resume(self, test_db):
        ids = [
            e.id for e in test_db.get_entries_needing_embeddings(resume_from_id=4, limit=2)
        ]
        assert ids == [4, 5]

    def test_other_model_or_dimension_is_stale(self, test_db):
        test_db.update_entry_embedding(1, random_unit_vector(8, seed=1), "m")

        def selected(**kwargs):
            return 1 in [e.id for e in test_db.get_entries_needing_embeddings(**kwargs)]

        assert selected(model="m", dimension=8) is False
        assert selected(model="other", dimension=8) is True
        assert selected(model="m", dimension=16) is True
        assert selected() is False


class TestEmbeddingWriteBack:
    """Test storing and reading embeddings."""

    def test_update_and_read_back(self, test_db):
        vector = random_unit_vector(16, seed=3)
        assert test_db.update_entry_embedding(1, vector, "fake-model") is True

        stored = test_db.get_entry_embedding(1)
        np.testing.assert_array_almost_equal(stored, vector)

        entry = test_db.get_entry(1)
        assert entry.has_embedding is True
        assert entry.embedding_model == "fake-model"
        assert entry.embedding_dimension == 16
        assert entry.embedding_generated_at is not None

    def test_update_clears_refresh_flag(self, test_db):
        test_db.set_needs_refresh(1, True)
        test_db.update_entry_embedding(1, random_unit_vector(8), "m")
        assert test_db.get_entry(1).needs_embedding_refresh is False

    def test_update_missing_entry(self, test_db):
        assert test_db.update_entry_embedding(999, random_unit_vector(8), "m") is False

    def test_missing_embedding_is_none(self, test_db):
        assert test_db.get_entry_embedding(1) is None

    def test_mark_for_refresh_all_embedded(self, test_db):
        test_db.update_entry_embedding(1, random_unit_vector(8), "m")
        test_db.update_entry_embedding(2, random_unit_vector(8), "m")
        assert test_db.mark_for_refresh() == 2

    def test_mark_for_refresh_ids(self, test_db):
        assert test_db.mark_for_refresh([1, 2, 3]) == 3
        assert test_db.mark_for_refresh([]) == 0

    def test_embedding_stats(self, test_db):
        test_db.update_entry_embedding(1, random_unit_vector(8), "m")
        test_db.update_entry_embedding(2, random_unit_vector(8), "m")
        test_db.set_needs_refresh(2, True)

        stats = test_db.get_embedding_stats()
        assert stats["total_entries"] == 10
        assert stats["published_entries"] == 10
        assert stats["embedded_entries"] == 2
        assert stats["search_eligible_entries"] == 1
        assert stats["needs_refresh"] == 1
        assert stats["coverage_pct"] == pytest.approx(10.0)
        assert stats["models"] == {"m": 2}

    def test_embedding_stats_empty(self, empty_db):
        stats = empty_db.get_embedding_stats()
        assert stats["total_entries"] == 0
        assert stats["coverage_pct"] == 0.0


# =============================================================================
# Popularity View Tests
# =============================================================================


class TestPopularityViews:
    """Test suggested and trending queries."""

    def test_suggested_order(self, empty_db):
        viewed = insert_entry(empty_db, question="viewed", views=1000)
        clicked = insert_entry(empty_db, question="clicked", views=1)
        pinned = insert_entry(empty_db, question="pinned", is_pinned=True)
        empty_db.increment_clicks(clicked)

        ids = [e.id for e in empty_db.get_suggested_entries(limit=3)]
        assert ids == [pinned, clicked, viewed]

    def test_suggested_skips_unpublished(self, empty_db):
        insert_entry(empty_db, question="hidden", is_pinned=True, is_published=False)
        assert empty_db.get_suggested_entries() == []

    def test_trending_order(self, empty_db):
        a = insert_entry(empty_db, question="a", views=10, helpful_count=1)
        b = insert_entry(empty_db, question="b", views=10, helpful_count=9)
        c = insert_entry(empty_db, question="c", views=50)

        ids = [e.id for e in empty_db.get_trending_entries(days=7, limit=10)]
        assert ids == [c, b, a]

    def test_trending_falls_back_to_all_published(self, empty_db):
        old = insert_entry(empty_db, question="old", views=10)
        with sqlite3.connect(empty_db.db_path) as conn:
            conn.execute(
                "UPDATE faq_entries SET created_at = datetime('now', '-60 days'), "
                "updated_at = datetime('now', '-60 days')"
            )

        ids = [e.id for e in empty_db.get_trending_entries(days=7)]
        assert ids == [old]


# =============================================================================
# Telemetry Tests
# =============================================================================


class TestQueryLogging:
    """Test query logs, hits and clicks."""

    def _log(self, db, query="reset password", top_id=1, method="semantic", fallback=False):
        return db.log_search_query(
            query_text=query,
            result_count=1 if top_id else 0,
            top_result_id=top_id,
            top_result_score=0.9 if top_id else None,
            response_time_ms=40.0,
            method=method,
            fallback_used=fallback,
        )

    def test_log_search_query(self, test_db):
        log_id = self._log(test_db)
        row = test_db.get_query_log(log_id)
        assert row["query_text"] == "reset password"
        assert row["top_result_id"] == 1
        assert row["clicked_entry_id"] is None

    def test_increment_search_hits(self, test_db):
        test_db.increment_search_hits(1)
        test_db.increment_search_hits(1)
        assert test_db.get_entry(1).search_hits == 2

    def test_increment_clicks_unknown_entry(self, test_db):
        assert test_db.increment_clicks(999) is False

    def test_attach_click_by_query_text(self, test_db):
        self._log(test_db, query="refunds", top_id=3)
        log_id = self._log(test_db, query="reset password", top_id=1)

        attached = test_db.attach_click(2, position=2, query_text="reset password")

        assert attached == log_id
        row = test_db.get_query_log(log_id)
        assert row["clicked_entry_id"] == 2
        assert row["clicked_position"] == 2
        assert row["clicked_at"] is not None

    def test_attach_click_by_top_result(self, test_db):
        log_id = self._log(test_db, top_id=7)
        assert test_db.attach_click(7, position=1) == log_id

    def test_attach_click_targets_most_recent_unclicked(self, test_db):
        first = self._log(test_db)
        second = self._log(test_db)

        assert test_db.attach_click(1, 1, query_text="reset password") == second
        assert test_db.attach_click(1, 1, query_text="reset password") == first
        assert test_db.attach_click(1, 1, query_text="reset password") is None

    def test_attach_click_ignores_old_queries(self, test_db):
        log_id = self._log(test_db)
        with sqlite3.connect(test_db.db_path) as conn:
            conn.execute(
                "UPDATE search_query_logs SET searched_at = datetime('now', '-2 days') "
                "WHERE id = ?",
                (log_id,),
            )
        assert test_db.attach_click(1, 1, query_text="reset password") is None

    def test_search_analytics(self, test_db):
        self._log(test_db, query="a", method="semantic")
        self._log(test_db, query="b", method="keyword", fallback=True)
        self._log(test_db, query="c", top_id=None, method="keyword", fallback=True)
        self._log(test_db, query="d", method="semantic")
        test_db.attach_click(1, 1, query_text="a")

        analytics = test_db.get_search_analytics(days=7)
        assert analytics["total_searches"] == 4
        assert analytics["clicked_searches"] == 1
        assert analytics["click_through_rate"] == 25.0
        assert analytics["fallback_count"] == 2
        assert analytics["fallback_rate"] == 50.0
        assert analytics["semantic_count"] == 2
        assert analytics["keyword_count"] == 2
        assert analytics["avg_response_time_ms"] == 40.0
        assert analytics["period_days"] == 7

    def test_search_analytics_empty(self, empty_db):
        analytics = empty_db.get_search_analytics()
        assert analytics["total_searches"] == 0
        assert analytics["click_through_rate"] == 0.0

    def test_popular_queries(self, test_db):
        for _ in range(3):
            self._log(test_db, query="refunds")
        self._log(test_db, query="shipping")
        test_db.attach_click(1, 1, query_text="refunds")

        popular = test_db.get_popular_queries(days=7, limit=10)
        assert popular[0] == {
            "query": "refunds",
            "count": 3,
            "clicks": 1,
            "avg_response_time_ms": 40.0,
        }
        assert popular[1]["query"] == "shipping"


# =============================================================================
# Embedding Cache Tests
# =============================================================================


class TestEmbeddingCache:
    """Test the persistent embedding cache."""

    def test_put_and_get(self, empty_db):
        vector = random_unit_vector(8, seed=5)
        empty_db.put_cached_embedding("hash1", "some text", vector, "m")

        cached_vector, model = empty_db.get_cached_embedding("hash1")
        np.testing.assert_array_almost_equal(cached_vector, vector)
        assert model == "m"

    def test_miss(self, empty_db):
        assert empty_db.get_cached_embedding("nope") is None

    def test_get_bumps_usage(self, empty_db):
        empty_db.put_cached_embedding("hash1", "t", random_unit_vector(8), "m")
        empty_db.get_cached_embedding("hash1")
        empty_db.get_cached_embedding("hash1")

        stats = empty_db.get_embedding_cache_stats()
        assert stats["total_embeddings"] == 1
        assert stats["total_uses"] == 3

    def test_clear_old_entries(self, empty_db):
        empty_db.put_cached_embedding("old", "t", random_unit_vector(8), "m")
        empty_db.put_cached_embedding("new", "t", random_unit_vector(8), "m")
        with sqlite3.connect(empty_db.db_path) as conn:
            conn.execute(
                "UPDATE embedding_cache SET last_used_at = datetime('now', '-40 days') "
                "WHERE text_hash = 'old'"
            )

        assert empty_db.clear_embedding_cache(max_age_days=30) == 1
        assert empty_db.get_cached_embedding("old") is None
        assert empty_db.get_cached_embedding("new") is not None


# =============================================================================
# Daemon State Tests
# =============================================================================


class TestDaemonState:
    """Test daemon state tracking."""

    def test_initial_state(self, empty_db):
        state = empty_db.get_daemon_state()
        assert state["status"] == "stopped"
        assert state["pid"] is None

    def test_running_resets_counters(self, empty_db):
        empty_db.update_daemon_state(1234, "running")
        empty_db.update_daemon_heartbeat(completed_run_id="run-1")
        empty_db.update_daemon_state(5678, "running")

        state = empty_db.get_daemon_state()
        assert state["pid"] == 5678
        assert state["status"] == "running"
        assert state["runs_completed"] == 0
        assert state["started_at"] is not None

    def test_heartbeat_counts_runs(self, empty_db):
        empty_db.update_daemon_state(1234, "running")
        empty_db.update_daemon_heartbeat()
        empty_db.update_daemon_heartbeat(completed_run_id="run-1")
        empty_db.update_daemon_heartbeat(completed_run_id="run-2")

        state = empty_db.get_daemon_state()
        assert state["runs_completed"] == 2
        assert state["last_run_id"] == "run-2"
        assert state["last_heartbeat"] is not None

    def test_stopped_keeps_last_run(self, empty_db):
        empty_db.update_daemon_state(1234, "running")
        empty_db.update_daemon_heartbeat(completed_run_id="run-1")
        empty_db.update_daemon_state(1234, "stopped")

        state = empty_db.get_daemon_state()
        assert state["status"] == "stopped"
        assert state["last_run_id"] == "run-1"
