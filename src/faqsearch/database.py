"""
SQLite corpus store for FAQ search.

Provides persistent storage with:
- FAQ knowledge-base entries with popularity and feedback counters
- Embedding vectors and freshness flags written by the indexer
- Search query and click telemetry for ranking analysis
- A persistent embedding cache keyed by text hash
- Daemon state tracking for the background indexer
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

import numpy as np

from .models import KnowledgeEntry

logger = logging.getLogger(__name__)

# SQL schema definitions
SCHEMA_SQL = """
-- Knowledge base: one row per FAQ entry
CREATE TABLE IF NOT EXISTS faq_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    question TEXT NOT NULL,
    answer TEXT NOT NULL DEFAULT '',
    category TEXT,
    is_published BOOLEAN NOT NULL DEFAULT 1,
    views INTEGER NOT NULL DEFAULT 0,
    helpful_count INTEGER NOT NULL DEFAULT 0,
    unhelpful_count INTEGER NOT NULL DEFAULT 0,
    is_pinned BOOLEAN NOT NULL DEFAULT 0,
    clicks INTEGER NOT NULL DEFAULT 0,           -- clicks from search results
    search_hits INTEGER NOT NULL DEFAULT 0,      -- times served as top result
    embedding BLOB,                              -- float32 vector, NULL until indexed
    embedding_model TEXT,
    embedding_dimension INTEGER,
    needs_embedding_refresh BOOLEAN NOT NULL DEFAULT 0,
    embedding_generated_at TIMESTAMP,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_faq_published ON faq_entries(is_published);
CREATE INDEX IF NOT EXISTS idx_faq_refresh ON faq_entries(needs_embedding_refresh);
CREATE INDEX IF NOT EXISTS idx_faq_category ON faq_entries(category);

-- Daemon state: single-row table for the background indexer
CREATE TABLE IF NOT EXISTS daemon_state (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    pid INTEGER,
    status TEXT DEFAULT 'stopped',
    last_heartbeat TIMESTAMP,
    started_at TIMESTAMP,
    runs_completed INTEGER DEFAULT 0,
    last_run_id TEXT
);

INSERT OR IGNORE INTO daemon_state (id, status) VALUES (1, 'stopped');
"""

# Schema for query/click telemetry
TELEMETRY_SCHEMA = """
CREATE TABLE IF NOT EXISTS search_query_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    query_text TEXT NOT NULL,
    result_count INTEGER NOT NULL DEFAULT 0,
    top_result_id INTEGER,
    top_result_score REAL,
    response_time_ms REAL,
    method TEXT NOT NULL DEFAULT 'semantic',    -- 'semantic' or 'keyword'
    fallback_used BOOLEAN NOT NULL DEFAULT 0,
    clicked_entry_id INTEGER,
    clicked_position INTEGER,
    clicked_at TIMESTAMP,
    user_id TEXT,
    searched_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_query_logs_time ON search_query_logs(searched_at);
CREATE INDEX IF NOT EXISTS idx_query_logs_top ON search_query_logs(top_result_id);
"""

# Schema for the persistent embedding cache
EMBEDDING_CACHE_SCHEMA = """
CREATE TABLE IF NOT EXISTS embedding_cache (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    text_hash TEXT UNIQUE NOT NULL,     -- sha256 of the trimmed text
    text TEXT NOT NULL,
    embedding BLOB NOT NULL,
    model TEXT NOT NULL,
    dimension INTEGER NOT NULL,
    usage_count INTEGER DEFAULT 1,
    last_used_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_embedding_cache_used ON embedding_cache(last_used_at);
"""

# Every faq_entries column except the vector blob
ENTRY_COLUMNS = """
    id, question, answer, category, is_published, views, helpful_count,
    unhelpful_count, is_pinned, clicks, search_hits,
    embedding IS NOT NULL AS has_embedding, embedding_model,
    embedding_dimension, needs_embedding_refresh, embedding_generated_at,
    created_at, updated_at
"""


def vector_to_blob(vector: np.ndarray) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def blob_to_vector(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32).copy()


class FAQDatabase:
    """
    SQLite database manager for the FAQ knowledge base.

    Handles schema creation, entry upserts with freshness tracking, the
    indexer's selection and write-back, and query telemetry.

    Example:
        db = FAQDatabase("data/faq.db")
        entry_id, is_new = db.upsert_entry(question="How do I pay?", answer="...")
        pending = db.get_entries_needing_embeddings()
    """

    def __init__(self, db_path: str = "data/faq.db"):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        """Create tables and run migrations."""
        with self._connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA_SQL)
            conn.executescript(TELEMETRY_SCHEMA)
            conn.executescript(EMBEDDING_CACHE_SCHEMA)

        self._migrate_click_timestamp()

        logger.debug(f"Database schema ensured at {self.db_path}")

    def _migrate_click_timestamp(self) -> None:
        """Add clicked_at to query logs created before click timestamps existed."""
        with self._connection() as conn:
            cursor = conn.execute("PRAGMA table_info(search_query_logs)")
            columns = {row[1] for row in cursor.fetchall()}

            if "clicked_at" not in columns:
                logger.info("Adding clicked_at column to search_query_logs...")
                conn.execute("ALTER TABLE search_query_logs ADD COLUMN clicked_at TIMESTAMP")

    # =========================================================================
    # Entry Methods (Corpus Store)
    # =========================================================================

    def upsert_entry(
        self,
        question: str,
        answer: str = "",
        entry_id: Optional[int] = None,
        category: Optional[str] = None,
        is_published: bool = True,
        is_pinned: bool = False,
        views: int = 0,
        helpful_count: int = 0,
        unhelpful_count: int = 0,
    ) -> tuple[int, bool]:
        """
        Insert or update an FAQ entry.

        Changing the question or answer of an entry that already has an
        embedding marks it for refresh so the next indexer run re-embeds it.

        Args:
            question: Question text
            answer: Answer text
            entry_id: Explicit id (insert with this id, or update it if present)
            category: Optional category label
            is_published: Visibility flag
            is_pinned: Manual boost flag
            views: View counter
            helpful_count: Helpful votes
            unhelpful_count: Unhelpful votes

        Returns:
            Tuple of (entry_id, is_new)
        """
        with self._connection() as conn:
            existing = None
            if entry_id is not None:
                existing = conn.execute(
                    "SELECT question, answer, embedding IS NOT NULL AS has_embedding "
                    "FROM faq_entries WHERE id = ?",
                    (entry_id,),
                ).fetchone()

            if existing is None:
                cursor = conn.execute(
                    """
                    INSERT INTO faq_entries (
                        id, question, answer, category, is_published, is_pinned,
                        views, helpful_count, unhelpful_count
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry_id, question, answer, category, is_published,
                        is_pinned, views, helpful_count, unhelpful_count,
                    ),
                )
                return cursor.lastrowid, True

            content_changed = (
                existing["question"] != question or existing["answer"] != answer
            )
            needs_refresh = bool(existing["has_embedding"]) and content_changed
            if needs_refresh:
                logger.debug(f"Entry {entry_id} content changed, marking for refresh")

            conn.execute(
                """
                UPDATE faq_entries SET
                    question = ?, answer = ?, category = ?, is_published = ?,
                    is_pinned = ?, views = ?, helpful_count = ?, unhelpful_count = ?,
                    needs_embedding_refresh = CASE WHEN ? THEN 1 ELSE needs_embedding_refresh END,
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (
                    question, answer, category, is_published, is_pinned, views,
                    helpful_count, unhelpful_count, needs_refresh, entry_id,
                ),
            )
            return entry_id, False

    def get_entry(self, entry_id: int) -> Optional[KnowledgeEntry]:
        """
        Get an entry by id.

        Args:
            entry_id: FAQ entry id

        Returns:
            KnowledgeEntry, or None if not found
        """
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT {ENTRY_COLUMNS} FROM faq_entries WHERE id = ?",
                (entry_id,),
            ).fetchone()
            return KnowledgeEntry.from_row(dict(row)) if row else None

    def get_entries(self, entry_ids: Iterable[int]) -> dict[int, KnowledgeEntry]:
        """
        Fetch several entries in one query.

        Args:
            entry_ids: Ids to fetch (missing ids are simply absent from the result)

        Returns:
            Dict mapping id -> KnowledgeEntry
        """
        ids = list(dict.fromkeys(entry_ids))
        if not ids:
            return {}

        placeholders = ",".join("?" * len(ids))
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT {ENTRY_COLUMNS} FROM faq_entries WHERE id IN ({placeholders})",
                ids,
            ).fetchall()
        return {row["id"]: KnowledgeEntry.from_row(dict(row)) for row in rows}

    def get_published_entries(self, category: Optional[str] = None) -> list[KnowledgeEntry]:
        """
        Scan published entries, most viewed first.

        Args:
            category: Optional exact category filter

        Returns:
            Entries ordered by views desc, then id
        """
        conditions = ["is_published = 1"]
        params: list[Any] = []
        if category:
            conditions.append("category = ?")
            params.append(category)

        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {ENTRY_COLUMNS} FROM faq_entries
                WHERE {' AND '.join(conditions)}
                ORDER BY views DESC, id ASC
                """,
                params,
            ).fetchall()
        return [KnowledgeEntry.from_row(dict(row)) for row in rows]

    def set_published(self, entry_id: int, is_published: bool) -> bool:
        """Publish or unpublish an entry. Returns False if the id is unknown."""
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE faq_entries SET is_published = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (is_published, entry_id),
            )
            return cursor.rowcount > 0

    def mark_for_refresh(self, entry_ids: Optional[list[int]] = None) -> int:
        """
        Flag entries for re-embedding.

        Args:
            entry_ids: Entries to flag, or None to flag every embedded entry
                (use after changing the embedding model)

        Returns:
            Number of entries flagged
        """
        with self._connection() as conn:
            if entry_ids is None:
                cursor = conn.execute(
                    "UPDATE faq_entries SET needs_embedding_refresh = 1 "
                    "WHERE embedding IS NOT NULL"
                )
            else:
                if not entry_ids:
                    return 0
                placeholders = ",".join("?" * len(entry_ids))
                cursor = conn.execute(
                    f"UPDATE faq_entries SET needs_embedding_refresh = 1 "
                    f"WHERE id IN ({placeholders})",
                    list(entry_ids),
                )
            return cursor.rowcount

    def count_entries(self, published_only: bool = False) -> int:
        """Count entries, optionally only published ones."""
        where = "WHERE is_published = 1" if published_only else ""
        with self._connection() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM faq_entries {where}").fetchone()[0]

    def get_published_ids(self) -> set[int]:
        """Ids of all published entries."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT id FROM faq_entries WHERE is_published = 1"
            ).fetchall()
            return {row[0] for row in rows}

    # =========================================================================
    # Embedding Methods (Indexer write-back)
    # =========================================================================

    def get_entries_needing_embeddings(
        self,
        force_all: bool = False,
        resume_from_id: Optional[int] = None,
        limit: Optional[int] = None,
        model: Optional[str] = None,
        dimension: Optional[int] = None,
    ) -> list[KnowledgeEntry]:
        """
        Select published entries the indexer should embed.

        Without force_all, only entries with no embedding, with the refresh
        flag set, or (when model or dimension is given) embedded under a
        different model or vector length are selected. resume_from_id and
        limit apply after selection in id order, so repeating a run with the
        same resume point selects the same prefix of remaining work.

        Args:
            force_all: Select every published entry
            resume_from_id: Skip entries with id below this value
            limit: Maximum entries to return
            model: Current embedding model
            dimension: Current vector length

        Returns:
            Entries ordered by id ascending
        """
        conditions = ["is_published = 1"]
        params: list[Any] = []

        if not force_all:
            stale = ["embedding IS NULL", "needs_embedding_refresh = 1"]
            if model is not None:
                stale.append("embedding_model IS NOT ?")
                params.append(model)
            if dimension is not None:
                stale.append("embedding_dimension IS NOT ?")
                params.append(dimension)
            conditions.append(f"({' OR '.join(stale)})")

        if resume_from_id is not None:
            conditions.append("id >= ?")
            params.append(resume_from_id)

        sql = f"""
            SELECT {ENTRY_COLUMNS} FROM faq_entries
            WHERE {' AND '.join(conditions)}
            ORDER BY id ASC
        """
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        with self._connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [KnowledgeEntry.from_row(dict(row)) for row in rows]

    def update_entry_embedding(
        self,
        entry_id: int,
        embedding: np.ndarray,
        model: str,
    ) -> bool:
        """
        Store a freshly generated embedding and clear the refresh flag.

        Args:
            entry_id: FAQ entry id
            embedding: Vector of shape (dimension,)
            model: Embedding model tag

        Returns:
            True if the entry exists and was updated
        """
        vector = np.asarray(embedding, dtype=np.float32)
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE faq_entries SET
                    embedding = ?, embedding_model = ?, embedding_dimension = ?,
                    embedding_generated_at = CURRENT_TIMESTAMP,
                    needs_embedding_refresh = 0
                WHERE id = ?
                """,
                (vector_to_blob(vector), model, int(vector.shape[0]), entry_id),
            )
            return cursor.rowcount > 0

    def set_needs_refresh(self, entry_id: int, needs_refresh: bool = True) -> None:
        """Set or clear the refresh flag on a single entry."""
        with self._connection() as conn:
            conn.execute(
                "UPDATE faq_entries SET needs_embedding_refresh = ? WHERE id = ?",
                (needs_refresh, entry_id),
            )

    def get_entry_embedding(self, entry_id: int) -> Optional[np.ndarray]:
        """
        Retrieve an entry's embedding as a numpy array.

        Args:
            entry_id: FAQ entry id

        Returns:
            Embedding array or None if not embedded
        """
        with self._connection() as conn:
            row = conn.execute(
                "SELECT embedding FROM faq_entries WHERE id = ?", (entry_id,)
            ).fetchone()
            if row and row[0] is not None:
                return blob_to_vector(row[0])
            return None

    def get_embedding_stats(self) -> dict:
        """
        Get embedding coverage statistics.

        Returns:
            Dict with entry counts, coverage percentage and models in use
        """
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    SUM(CASE WHEN is_published = 1 THEN 1 ELSE 0 END) AS published,
                    SUM(CASE WHEN is_published = 1 AND embedding IS NOT NULL
                             AND needs_embedding_refresh = 0 THEN 1 ELSE 0 END) AS eligible,
                    SUM(CASE WHEN embedding IS NOT NULL THEN 1 ELSE 0 END) AS embedded,
                    SUM(CASE WHEN needs_embedding_refresh = 1 THEN 1 ELSE 0 END) AS stale
                FROM faq_entries
                """
            ).fetchone()
            models = conn.execute(
                """
                SELECT embedding_model, COUNT(*) FROM faq_entries
                WHERE embedding IS NOT NULL
                GROUP BY embedding_model
                """
            ).fetchall()

        published = row["published"] or 0
        eligible = row["eligible"] or 0
        return {
            "total_entries": row["total"] or 0,
            "published_entries": published,
            "embedded_entries": row["embedded"] or 0,
            "search_eligible_entries": eligible,
            "needs_refresh": row["stale"] or 0,
            "coverage_pct": (eligible / published * 100) if published else 0.0,
            "models": {m[0]: m[1] for m in models},
        }

    # =========================================================================
    # Popularity Views
    # =========================================================================

    def get_suggested_entries(
        self, category: Optional[str] = None, limit: int = 5
    ) -> list[KnowledgeEntry]:
        """
        Suggested entries: pinned first, then most clicked, then most viewed.

        Args:
            category: Optional category filter
            limit: Maximum entries to return
        """
        conditions = ["is_published = 1"]
        params: list[Any] = []
        if category:
            conditions.append("category = ?")
            params.append(category)

        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {ENTRY_COLUMNS} FROM faq_entries
                WHERE {' AND '.join(conditions)}
                ORDER BY is_pinned DESC, clicks DESC, views DESC, id ASC
                LIMIT ?
                """,
                params + [limit],
            ).fetchall()
        return [KnowledgeEntry.from_row(dict(row)) for row in rows]

    def get_trending_entries(self, days: int = 7, limit: int = 10) -> list[KnowledgeEntry]:
        """
        Trending entries: most viewed, then most helpful.

        Restricted to entries created or updated in the last N days. When
        nothing changed in the window, all published entries are ranked
        instead.

        Args:
            days: Size of the window
            limit: Maximum entries to return
        """
        window = f"-{days} days"
        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {ENTRY_COLUMNS} FROM faq_entries
                WHERE is_published = 1
                  AND (created_at > datetime('now', ?) OR updated_at > datetime('now', ?))
                ORDER BY views DESC, helpful_count DESC, id ASC
                LIMIT ?
                """,
                (window, window, limit),
            ).fetchall()

            if not rows:
                rows = conn.execute(
                    f"""
                    SELECT {ENTRY_COLUMNS} FROM faq_entries
                    WHERE is_published = 1
                    ORDER BY views DESC, helpful_count DESC, id ASC
                    LIMIT ?
                    """,
                    (limit,),
                ).fetchall()

        return [KnowledgeEntry.from_row(dict(row)) for row in rows]

    # =========================================================================
    # Telemetry Methods
    # =========================================================================

    def log_search_query(
        self,
        query_text: str,
        result_count: int,
        top_result_id: Optional[int],
        top_result_score: Optional[float],
        response_time_ms: float,
        method: str,
        fallback_used: bool,
        user_id: Optional[str] = None,
    ) -> int:
        """
        Insert one query log row.

        Returns:
            Id of the new log row
        """
        with self._connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO search_query_logs (
                    query_text, result_count, top_result_id, top_result_score,
                    response_time_ms, method, fallback_used, user_id
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    query_text, result_count, top_result_id, top_result_score,
                    response_time_ms, method, fallback_used, user_id,
                ),
            )
            return cursor.lastrowid

    def increment_search_hits(self, entry_id: int) -> None:
        """Count one appearance of an entry as the top search result."""
        with self._connection() as conn:
            conn.execute(
                "UPDATE faq_entries SET search_hits = search_hits + 1 WHERE id = ?",
                (entry_id,),
            )

    def increment_clicks(self, entry_id: int) -> bool:
        """Count one click on an entry. Returns False if the id is unknown."""
        with self._connection() as conn:
            cursor = conn.execute(
                "UPDATE faq_entries SET clicks = clicks + 1 WHERE id = ?",
                (entry_id,),
            )
            return cursor.rowcount > 0

    def attach_click(
        self,
        entry_id: int,
        position: int,
        query_text: Optional[str] = None,
        within_hours: int = 24,
    ) -> Optional[int]:
        """
        Attach a click to the most relevant earlier query log row.

        The target is the most recent unclicked row within the window whose
        query text matches (when given), otherwise whose top result is the
        clicked entry.

        Args:
            entry_id: Clicked entry
            position: 1-based position of the entry in the result list
            query_text: Query the click came from, if known
            within_hours: How far back to look for the query

        Returns:
            Id of the updated log row, or None if no row matched
        """
        window = f"-{within_hours} hours"
        if query_text:
            match_sql, match_param = "query_text = ?", query_text
        else:
            match_sql, match_param = "top_result_id = ?", entry_id

        with self._connection() as conn:
            row = conn.execute(
                f"""
                SELECT id FROM search_query_logs
                WHERE {match_sql} AND clicked_entry_id IS NULL
                  AND searched_at > datetime('now', ?)
                ORDER BY searched_at DESC, id DESC
                LIMIT 1
                """,
                (match_param, window),
            ).fetchone()

            if row is None:
                return None

            conn.execute(
                """
                UPDATE search_query_logs
                SET clicked_entry_id = ?, clicked_position = ?, clicked_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (entry_id, position, row["id"]),
            )
            return row["id"]

    def get_query_log(self, log_id: int) -> Optional[dict]:
        """Get a single query log row."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM search_query_logs WHERE id = ?", (log_id,)
            ).fetchone()
            return dict(row) if row else None

    def get_search_analytics(self, days: int = 7) -> dict:
        """
        Aggregate query telemetry over the last N days.

        Args:
            days: Number of days to analyze

        Returns:
            Dict with totals, click-through rate, latency and fallback rate
        """
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    SUM(CASE WHEN clicked_entry_id IS NOT NULL THEN 1 ELSE 0 END) AS clicked,
                    AVG(response_time_ms) AS avg_ms,
                    SUM(CASE WHEN fallback_used THEN 1 ELSE 0 END) AS fallbacks,
                    SUM(CASE WHEN method = 'semantic' THEN 1 ELSE 0 END) AS semantic,
                    SUM(CASE WHEN method = 'keyword' THEN 1 ELSE 0 END) AS keyword
                FROM search_query_logs
                WHERE searched_at > datetime('now', ?)
                """,
                (f"-{days} days",),
            ).fetchone()

        total = row["total"] or 0
        clicked = row["clicked"] or 0
        fallbacks = row["fallbacks"] or 0

        return {
            "total_searches": total,
            "clicked_searches": clicked,
            "click_through_rate": round(clicked / total * 100, 2) if total else 0.0,
            "avg_response_time_ms": round(row["avg_ms"] or 0.0, 2),
            "fallback_count": fallbacks,
            "fallback_rate": round(fallbacks / total * 100, 2) if total else 0.0,
            "semantic_count": row["semantic"] or 0,
            "keyword_count": row["keyword"] or 0,
            "period_days": days,
        }

    def get_popular_queries(self, days: int = 7, limit: int = 20) -> list[dict]:
        """
        Get most frequent query texts in the last N days.

        Returns:
            List of dicts with query, count, clicks, avg_response_time_ms
        """
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT query_text, COUNT(*) AS count,
                       SUM(CASE WHEN clicked_entry_id IS NOT NULL THEN 1 ELSE 0 END) AS clicks,
                       AVG(response_time_ms) AS avg_ms
                FROM search_query_logs
                WHERE searched_at > datetime('now', ?)
                GROUP BY query_text
                ORDER BY count DESC, query_text ASC
                LIMIT ?
                """,
                (f"-{days} days", limit),
            ).fetchall()

        return [
            {
                "query": r["query_text"],
                "count": r["count"],
                "clicks": r["clicks"] or 0,
                "avg_response_time_ms": round(r["avg_ms"] or 0.0, 2),
            }
            for r in rows
        ]

    # =========================================================================
    # Embedding Cache Methods
    # =========================================================================

    def get_cached_embedding(self, text_hash: str) -> Optional[tuple[np.ndarray, str]]:
        """
        Look up a cached embedding and bump its usage counters.

        Args:
            text_hash: sha256 hex digest of the trimmed text

        Returns:
            Tuple of (vector, model) or None on a miss
        """
        with self._connection() as conn:
            row = conn.execute(
                "SELECT embedding, model FROM embedding_cache WHERE text_hash = ?",
                (text_hash,),
            ).fetchone()
            if row is None:
                return None

            conn.execute(
                """
                UPDATE embedding_cache
                SET usage_count = usage_count + 1, last_used_at = CURRENT_TIMESTAMP
                WHERE text_hash = ?
                """,
                (text_hash,),
            )
            return blob_to_vector(row["embedding"]), row["model"]

    def put_cached_embedding(
        self,
        text_hash: str,
        text: str,
        embedding: np.ndarray,
        model: str,
    ) -> None:
        """Insert or replace a cache entry."""
        vector = np.asarray(embedding, dtype=np.float32)
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO embedding_cache (text_hash, text, embedding, model, dimension)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(text_hash) DO UPDATE SET
                    embedding = excluded.embedding,
                    model = excluded.model,
                    dimension = excluded.dimension,
                    last_used_at = CURRENT_TIMESTAMP
                """,
                (text_hash, text, vector_to_blob(vector), model, int(vector.shape[0])),
            )

    def clear_embedding_cache(self, max_age_days: int = 30) -> int:
        """
        Evict cache entries not used in the last N days.

        Returns:
            Number of entries deleted
        """
        with self._connection() as conn:
            cursor = conn.execute(
                "DELETE FROM embedding_cache WHERE last_used_at < datetime('now', ?)",
                (f"-{max_age_days} days",),
            )
            deleted = cursor.rowcount

        logger.info(f"Cleared {deleted} embedding cache entries older than {max_age_days} days")
        return deleted

    def get_embedding_cache_stats(self) -> dict:
        """Size and usage figures for the embedding cache."""
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS total, SUM(usage_count) AS uses,
                       AVG(usage_count) AS avg_uses,
                       MIN(created_at) AS oldest, MAX(created_at) AS newest
                FROM embedding_cache
                """
            ).fetchone()

        return {
            "total_embeddings": row["total"] or 0,
            "total_uses": row["uses"] or 0,
            "avg_uses": round(row["avg_uses"] or 0.0, 2),
            "oldest_created": row["oldest"],
            "newest_created": row["newest"],
        }

    # =========================================================================
    # Daemon State Methods
    # =========================================================================

    def update_daemon_state(
        self,
        pid: Optional[int],
        status: str,
        last_run_id: Optional[str] = None,
    ) -> None:
        """
        Update daemon state in database.

        Args:
            pid: Process ID
            status: 'running' or 'stopped'
            last_run_id: Id of the most recent indexer run
        """
        with self._connection() as conn:
            if status == "running":
                conn.execute(
                    """
                    UPDATE daemon_state
                    SET pid = ?, status = ?, started_at = CURRENT_TIMESTAMP,
                        last_heartbeat = CURRENT_TIMESTAMP, runs_completed = 0
                    WHERE id = 1
                    """,
                    (pid, status),
                )
            else:
                conn.execute(
                    """
                    UPDATE daemon_state
                    SET pid = ?, status = ?, last_run_id = COALESCE(?, last_run_id)
                    WHERE id = 1
                    """,
                    (pid, status, last_run_id),
                )

    def update_daemon_heartbeat(self, completed_run_id: Optional[str] = None) -> None:
        """
        Update daemon heartbeat timestamp.

        Args:
            completed_run_id: Run that just finished, if any (bumps the run counter)
        """
        with self._connection() as conn:
            if completed_run_id is not None:
                conn.execute(
                    """
                    UPDATE daemon_state
                    SET last_heartbeat = CURRENT_TIMESTAMP,
                        runs_completed = runs_completed + 1, last_run_id = ?
                    WHERE id = 1
                    """,
                    (completed_run_id,),
                )
            else:
                conn.execute(
                    "UPDATE daemon_state SET last_heartbeat = CURRENT_TIMESTAMP WHERE id = 1"
                )

    def get_daemon_state(self) -> dict:
        """
        Get current daemon state.

        Returns:
            Dict with pid, status, last_heartbeat, started_at,
            runs_completed and last_run_id
        """
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM daemon_state WHERE id = 1").fetchone()

            if row:
                state = dict(row)
                state.pop("id", None)
                return state
            return {
                "pid": None,
                "status": "stopped",
                "last_heartbeat": None,
                "started_at": None,
                "runs_completed": 0,
                "last_run_id": None,
            }
