"""Tests for SearchTelemetry query and click logging."""

from unittest.mock import MagicMock

import pytest

from src.faqsearch.embeddings.models import FAQResult, SearchResult
from src.faqsearch.telemetry import SearchTelemetry


def _result(*entry_ids, method="semantic", fallback_used=False, score=0.9):
    return SearchResult(
        results=[FAQResult(id=i, question=f"q{i}", answer="", relevance_score=score) for i in entry_ids],
        total_results=len(entry_ids),
        response_time_ms=12.25,
        method=method,
        fallback_used=fallback_used,
    )


@pytest.fixture
def telemetry(test_db):
    return SearchTelemetry(test_db)


class TestLogQuery:

    def test_writes_row(self, telemetry, test_db):
        log_id = telemetry.log_query("reset password", _result(7, 3), user_id="u1")

        row = test_db.get_query_log(log_id)
        assert row["query_text"] == "reset password"
        assert row["result_count"] == 2
        assert row["top_result_id"] == 7
        assert row["top_result_score"] == 0.9
        assert row["response_time_ms"] == 12.25
        assert row["method"] == "semantic"
        assert row["fallback_used"] == 0
        assert row["user_id"] == "u1"

    def test_counts_hit_on_top_result_only(self, telemetry, test_db):
        telemetry.log_query("reset password", _result(7, 3))
        assert test_db.get_entry(7).search_hits == 1
        assert test_db.get_entry(3).search_hits == 0

    def test_empty_result(self, telemetry, test_db):
        log_id = telemetry.log_query("nothing", _result(method="keyword", fallback_used=True))
        row = test_db.get_query_log(log_id)
        assert row["top_result_id"] is None
        assert row["result_count"] == 0
        assert row["fallback_used"] == 1

    def test_store_failure_swallowed(self):
        db = MagicMock()
        db.log_search_query.side_effect = RuntimeError("locked")
        assert SearchTelemetry(db).log_query("q", _result(1)) is None
        db.increment_search_hits.assert_not_called()


class TestRecordClick:

    def test_click_on_top_result(self, telemetry, test_db):
        """A click on entry 7 at position 1 after a query whose top result was 7."""
        log_id = telemetry.log_query("royalties", _result(7, 2))
        clicks_before = test_db.get_entry(7).clicks

        assert telemetry.record_click(entry_id=7, position=1) is True

        assert test_db.get_entry(7).clicks == clicks_before + 1
        row = test_db.get_query_log(log_id)
        assert row["clicked_entry_id"] == 7
        assert row["clicked_position"] == 1

    def test_click_matched_by_query_text(self, telemetry, test_db):
        log_id = telemetry.log_query("royalties", _result(7, 2))
        telemetry.record_click(entry_id=2, position=2, query="royalties")

        row = test_db.get_query_log(log_id)
        assert row["clicked_entry_id"] == 2
        assert row["clicked_position"] == 2

    def test_click_without_matching_query(self, telemetry, test_db):
        assert telemetry.record_click(entry_id=5, position=1) is True
        assert test_db.get_entry(5).clicks == 1

    def test_unknown_entry(self, telemetry):
        assert telemetry.record_click(entry_id=999, position=1) is False

    def test_attach_failure_still_counts_click(self):
        db = MagicMock()
        db.increment_clicks.return_value = True
        db.attach_click.side_effect = RuntimeError("locked")
        assert SearchTelemetry(db).record_click(1, 1) is True


class TestAnalytics:

    def test_aggregates(self, telemetry, test_db):
        telemetry.log_query("refunds", _result(3))
        telemetry.log_query("refunds", _result(3))
        telemetry.log_query("shipping", _result(method="keyword", fallback_used=True))
        telemetry.record_click(3, 1, query="refunds")

        analytics = telemetry.get_search_analytics(days=7, top_queries=5)
        assert analytics["total_searches"] == 3
        assert analytics["clicked_searches"] == 1
        assert analytics["click_through_rate"] == pytest.approx(33.33)
        assert analytics["fallback_rate"] == pytest.approx(33.33)
        assert analytics["top_queries"][0] == {
            "query": "refunds",
            "count": 2,
            "clicks": 1,
            "avg_response_time_ms": 12.25,
        }

    def test_store_failure_returns_zeroes(self):
        db = MagicMock()
        db.get_search_analytics.side_effect = RuntimeError("locked")
        analytics = SearchTelemetry(db).get_search_analytics(days=30)
        assert analytics["total_searches"] == 0
        assert analytics["period_days"] == 30
        assert analytics["top_queries"] == []
