"""
Core models for the FAQ knowledge base and the embedding indexer.

KnowledgeEntry is a Pydantic model validated on the way out of the corpus
store. Indexer options and run state are plain dataclasses so they can be
threaded through the batch loop and serialized to JSON checkpoints.
"""

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, computed_field

# USD per 1K tokens for text-embedding-3-small
EMBEDDING_COST_PER_1K_TOKENS = 0.00002


class KnowledgeEntry(BaseModel):
    """
    One FAQ entry from the corpus store.

    The raw vector is kept out of the model; has_embedding reports whether
    the store holds one. Use FAQDatabase.get_entry_embedding() to read it.
    """

    id: int
    question: str
    answer: str = ""
    category: Optional[str] = None
    is_published: bool = True
    views: int = 0
    helpful_count: int = 0
    unhelpful_count: int = 0
    is_pinned: bool = False
    clicks: int = 0
    search_hits: int = 0
    has_embedding: bool = False
    embedding_model: Optional[str] = None
    embedding_dimension: Optional[int] = None
    needs_embedding_refresh: bool = False
    embedding_generated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field
    @property
    def helpful_ratio(self) -> float:
        """Share of helpful votes as a percentage (0-100), 0 without votes."""
        total = self.helpful_count + self.unhelpful_count
        if total == 0:
            return 0.0
        return round(self.helpful_count / total * 100, 2)

    @property
    def is_search_eligible(self) -> bool:
        """Published, embedded and not waiting for a refresh."""
        return (
            self.is_published
            and self.has_embedding
            and not self.needs_embedding_refresh
        )

    @property
    def embedding_text(self) -> str:
        """Text sent to the embedding provider (question plus answer context)."""
        return f"{self.question} {self.answer}".strip()

    @classmethod
    def from_row(cls, row: dict) -> "KnowledgeEntry":
        """Build from a faq_entries row (sqlite3.Row converted to dict)."""
        data = dict(row)
        data["has_embedding"] = data.pop("embedding", None) is not None or bool(
            data.get("has_embedding")
        )
        for flag in ("is_published", "is_pinned", "needs_embedding_refresh"):
            if flag in data and data[flag] is not None:
                data[flag] = bool(data[flag])
        return cls.model_validate(data)


# =============================================================================
# Indexer Models
# =============================================================================


@dataclass
class IndexerOptions:
    """
    Options for one indexer run.

    Example:
        options = IndexerOptions(batch_size=20, resume_from_id=120)
    """

    force_all: bool = False
    limit: Optional[int] = None
    resume_from_id: Optional[int] = None
    batch_size: int = 10
    skip_vector_index: bool = False
    dry_run: bool = False
    batch_delay: float = 0.5
    max_batch_retries: int = 3

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.limit is not None and self.limit < 0:
            raise ValueError("limit must be >= 0")
        if self.max_batch_retries < 1:
            raise ValueError("max_batch_retries must be >= 1")


@dataclass
class IndexingRun:
    """
    Mutable state of an indexer run.

    Written to the run store after every batch so a crashed or interrupted
    run can be inspected and resumed from last_processed_id.
    """

    run_id: str
    options: IndexerOptions = field(default_factory=IndexerOptions)
    status: str = "running"  # running, completed, interrupted, failed
    total_entries: int = 0
    processed_entries: int = 0
    success_count: int = 0
    failure_count: int = 0
    tokens_used: int = 0
    batches_completed: int = 0
    total_batches: int = 0
    last_processed_id: Optional[int] = None
    errors: list[dict] = field(default_factory=list)
    fatal_error: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: Optional[datetime] = None

    def record_failure(self, entry_id: int, error: str) -> None:
        """Count one failed entry and keep its error for triage."""
        self.failure_count += 1
        self.errors.append({"entry_id": entry_id, "error": error})

    def record_success(self, entry_id: int) -> None:
        """Count one embedded entry and advance the resume point."""
        self.success_count += 1
        if self.last_processed_id is None or entry_id > self.last_processed_id:
            self.last_processed_id = entry_id

    @property
    def duration_seconds(self) -> float:
        end = self.ended_at or datetime.now()
        return max(0.0, (end - self.started_at).total_seconds())

    @property
    def success_rate(self) -> float:
        """Successful entries as a percentage of all selected entries."""
        if self.total_entries == 0:
            return 0.0
        return self.success_count / self.total_entries * 100

    @property
    def progress_pct(self) -> float:
        if self.total_entries == 0:
            return 0.0
        return self.processed_entries / self.total_entries * 100

    @property
    def estimated_cost_usd(self) -> float:
        return self.tokens_used / 1000 * EMBEDDING_COST_PER_1K_TOKENS

    def estimated_seconds_remaining(self) -> Optional[float]:
        """Linear extrapolation from the average time per processed entry."""
        if self.processed_entries == 0:
            return None
        per_entry = self.duration_seconds / self.processed_entries
        return per_entry * max(0, self.total_entries - self.processed_entries)

    def to_dict(self) -> dict[str, Any]:
        """JSON-serializable snapshot including derived metrics."""
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["ended_at"] = self.ended_at.isoformat() if self.ended_at else None
        data["duration_seconds"] = round(self.duration_seconds, 3)
        data["success_rate"] = round(self.success_rate, 2)
        data["estimated_cost_usd"] = round(self.estimated_cost_usd, 6)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexingRun":
        """Restore a run from a progress/results snapshot."""
        known = {
            k: v for k, v in data.items()
            if k in cls.__dataclass_fields__
        }
        known["options"] = IndexerOptions(**(data.get("options") or {}))
        known["started_at"] = datetime.fromisoformat(data["started_at"])
        if data.get("ended_at"):
            known["ended_at"] = datetime.fromisoformat(data["ended_at"])
        return cls(**known)


def format_duration(seconds: Optional[float]) -> str:
    """Format seconds as '1h 2m 3s', '2m 3s' or '3s'."""
    if seconds is None or math.isnan(seconds):
        return "calculating..."
    total = int(seconds)
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
