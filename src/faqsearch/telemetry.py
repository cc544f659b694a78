"""
Query and click telemetry for FAQ search.

Wraps the corpus store's telemetry tables. Every write is best-effort:
store errors are logged and swallowed so a telemetry failure never fails a
user-visible search.
"""

import logging
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .database import FAQDatabase
    from .embeddings.models import SearchResult

logger = logging.getLogger(__name__)

# Clicks attach to queries made within this window
CLICK_ATTRIBUTION_HOURS = 24


class SearchTelemetry:
    """
    Records search queries and result clicks.

    Example:
        telemetry = SearchTelemetry(db)
        log_id = telemetry.log_query("reset password", result)
        telemetry.record_click(entry_id=42, position=1)
    """

    def __init__(self, db: "FAQDatabase"):
        self.db = db

    def log_query(
        self,
        query: str,
        result: "SearchResult",
        user_id: Optional[str] = None,
    ) -> Optional[int]:
        """
        Write one query log row and count a search hit on the top result.

        Args:
            query: Trimmed query text
            result: Final search result
            user_id: Optional caller identity

        Returns:
            Log row id, or None if logging failed
        """
        top = result.results[0] if result.results else None

        try:
            log_id = self.db.log_search_query(
                query_text=query,
                result_count=len(result.results),
                top_result_id=top.id if top else None,
                top_result_score=top.relevance_score if top else None,
                response_time_ms=round(result.response_time_ms, 2),
                method=result.method,
                fallback_used=result.fallback_used,
                user_id=user_id,
            )
        except Exception as e:
            logger.warning(f"Failed to log search query: {e}")
            return None

        if top is not None:
            try:
                self.db.increment_search_hits(top.id)
            except Exception as e:
                logger.warning(f"Failed to count search hit for entry {top.id}: {e}")

        return log_id

    def record_click(
        self,
        entry_id: int,
        position: int,
        query: Optional[str] = None,
    ) -> bool:
        """
        Record a click on a search result.

        Increments the entry's click counter and attaches the click to the
        most recent matching unclicked query log row in the last 24 hours.

        Args:
            entry_id: Clicked entry
            position: 1-based position in the result list
            query: Query text the click came from, if known

        Returns:
            True if the entry exists (whether or not a log row matched)
        """
        try:
            if not self.db.increment_clicks(entry_id):
                return False
        except Exception as e:
            logger.warning(f"Failed to count click for entry {entry_id}: {e}")
            return False

        try:
            log_id = self.db.attach_click(
                entry_id,
                position,
                query_text=query,
                within_hours=CLICK_ATTRIBUTION_HOURS,
            )
            if log_id is None:
                logger.debug(f"No recent query found for click on entry {entry_id}")
        except Exception as e:
            logger.warning(f"Failed to attach click for entry {entry_id}: {e}")

        return True

    def get_search_analytics(self, days: int = 7, top_queries: int = 10) -> dict:
        """
        Aggregate telemetry over the last N days.

        Returns:
            Analytics dict with top_queries; zeroed figures if the store fails
        """
        try:
            analytics = self.db.get_search_analytics(days)
            analytics["top_queries"] = self.db.get_popular_queries(days, limit=top_queries)
            return analytics
        except Exception as e:
            logger.warning(f"Failed to compute search analytics: {e}")
            return {
                "total_searches": 0,
                "clicked_searches": 0,
                "click_through_rate": 0.0,
                "avg_response_time_ms": 0.0,
                "fallback_count": 0,
                "fallback_rate": 0.0,
                "semantic_count": 0,
                "keyword_count": 0,
                "period_days": days,
                "top_queries": [],
            }
