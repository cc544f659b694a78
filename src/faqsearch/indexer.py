"""
Batch indexer for FAQ embeddings.

Selects entries that need (re)embedding, embeds them in paced batches, and
writes the vectors to both the corpus store and the vector index.

Features:
- Freshness-based selection with resume and limit in id order; entries
  embedded under another model or dimension count as stale
- One provider call per batch, with bounded retry on rate limits
- Partial-failure recovery (a failed batch never aborts the run)
- Run state persisted after every batch for inspection and resume
- Graceful stop: the in-flight batch finishes before the run returns
- Orphan pruning for vector records whose entry is gone or unpublished
- Metadata sync so index records follow vote and category changes

Example:
    indexer = BatchIndexer(db, provider, vector_index, run_store=RunStore("data/indexing_runs"))
    run = indexer.run(IndexerOptions(batch_size=20))
    print(f"{run.success_count}/{run.total_entries} embedded, {run.tokens_used} tokens")
"""

import logging
import math
import sqlite3
import threading
from datetime import datetime
from typing import Callable, Optional

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    stop_when_event_set,
)

from .database import FAQDatabase
from .embeddings.models import BatchEmbeddingResult
from .embeddings.provider import (
    EmbeddingProvider,
    EmbeddingRateLimitError,
    EmbeddingUnavailableError,
)
from .embeddings.search_engine import parse_vector_id, vector_id
from .embeddings.vector_index import FAISSVectorIndex
from .models import IndexerOptions, IndexingRun, KnowledgeEntry
from .pacing import BatchPacer
from .run_store import RunStore, new_run_id

logger = logging.getLogger(__name__)


class IndexerError(Exception):
    """Base exception for indexer errors."""
    pass


class IndexerFatalError(IndexerError):
    """Raised when a run cannot continue (provider or store unreachable)."""
    pass


class BatchIndexer:
    """
    Embeds FAQ entries in sequential, paced batches.

    Batch flow:
    1. Embed question + answer for every entry in one provider call
    2. Retry the call with backoff while the provider rate limits us
    3. Write each vector to the corpus store, then upsert it to the vector index
    4. Record per-entry successes and failures on the IndexingRun

    Example:
        indexer = BatchIndexer(db, provider, vector_index)
        run = indexer.run(IndexerOptions(limit=100), progress_callback=print)
        if run.status != "completed":
            print(f"Resume with --resume-from-id {run.last_processed_id}")
    """

    def __init__(
        self,
        db: FAQDatabase,
        provider: EmbeddingProvider,
        vector_index: Optional[FAISSVectorIndex] = None,
        run_store: Optional[RunStore] = None,
        sleep: Optional[Callable[[float], object]] = None,
    ):
        """
        Initialize the indexer.

        Args:
            db: Corpus store
            provider: Embedding provider
            vector_index: Vector index (None behaves like skip_vector_index)
            run_store: Where run files are written (None keeps runs in memory only)
            sleep: Replacement for the interruptible wait between batches
        """
        self.db = db
        self.provider = provider
        self.vector_index = vector_index
        self.run_store = run_store
        self._stop_event = threading.Event()
        self._sleep = sleep or self._stop_event.wait

    def request_stop(self) -> None:
        """Ask a running run() to stop after the in-flight batch."""
        logger.warning("Stop requested, finishing current batch...")
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    # =========================================================================
    # Run
    # =========================================================================

    def run(
        self,
        options: Optional[IndexerOptions] = None,
        progress_callback: Optional[Callable[[IndexingRun], None]] = None,
        run_id: Optional[str] = None,
    ) -> IndexingRun:
        """
        Execute one indexing run.

        Args:
            options: Run options (defaults to IndexerOptions())
            progress_callback: Called with the run state after every batch
            run_id: Explicit run id (generated if omitted)

        Returns:
            Final IndexingRun; status is 'completed', 'interrupted' or 'failed'
        """
        options = options or IndexerOptions()
        run = IndexingRun(run_id=run_id or new_run_id(), options=options)
        pacer = BatchPacer(base_delay=options.batch_delay)
        upserted_ids: list[int] = []
        self._stop_event.clear()

        logger.info(
            f"Starting indexer run {run.run_id} (force_all={options.force_all}, "
            f"limit={options.limit}, resume_from_id={options.resume_from_id}, "
            f"batch_size={options.batch_size}, dry_run={options.dry_run})"
        )

        try:
            entries = self._select_entries(options)
            run.total_entries = len(entries)
            run.total_batches = math.ceil(len(entries) / options.batch_size)
            self._save_progress(run)

            if not entries:
                logger.info("No entries need embeddings")

            for start in range(0, len(entries), options.batch_size):
                if self.stop_requested:
                    run.status = "interrupted"
                    logger.warning(
                        f"Run {run.run_id} interrupted after {run.batches_completed} batches"
                    )
                    break

                batch = entries[start : start + options.batch_size]
                upserted_ids.extend(self.process_batch(run, batch, pacer))
                run.processed_entries += len(batch)
                run.batches_completed += 1

                self._save_progress(run)
                if progress_callback:
                    progress_callback(run)

                has_more = start + options.batch_size < len(entries)
                if has_more and not self.stop_requested and pacer.current_delay > 0:
                    self._sleep(pacer.current_delay)

            metadata_updated = self._refresh_metadata(options)
            self._persist_vector_index(upserted_ids, changed=metadata_updated > 0)

            if run.status == "running":
                run.status = "completed"

        except (IndexerFatalError, EmbeddingUnavailableError) as e:
            run.status = "failed"
            run.fatal_error = str(e)
            logger.error(f"Run {run.run_id} failed: {e}")
            try:
                self._persist_vector_index(upserted_ids)
            except IndexerFatalError as save_error:
                logger.error(str(save_error))

        finally:
            run.ended_at = datetime.now()
            self._save_results(run)

        logger.info(
            f"Run {run.run_id} {run.status}: {run.success_count} succeeded, "
            f"{run.failure_count} failed, {run.tokens_used} tokens, "
            f"${run.estimated_cost_usd:.4f} in {run.duration_seconds:.1f}s"
        )
        return run

    def _select_entries(self, options: IndexerOptions) -> list[KnowledgeEntry]:
        try:
            return self.db.get_entries_needing_embeddings(
                force_all=options.force_all,
                resume_from_id=options.resume_from_id,
                limit=options.limit,
                model=self.provider.model,
                dimension=self.provider.dimension,
            )
        except sqlite3.Error as e:
            raise IndexerFatalError(f"Cannot read corpus store: {e}") from e

    # =========================================================================
    # Batch Processing
    # =========================================================================

    def process_batch(
        self,
        run: IndexingRun,
        batch: list[KnowledgeEntry],
        pacer: BatchPacer,
    ) -> list[int]:
        """
        Embed and store one batch, recording outcomes on the run.

        Args:
            run: Run state to update
            batch: Entries to embed
            pacer: Pacing state (slowed down on rate limits)

        Returns:
            Ids of entries upserted to the vector index

        Raises:
            EmbeddingUnavailableError: Provider unreachable (fatal for the run)
        """
        options = run.options
        batch_number = run.batches_completed + 1
        logger.info(
            f"Processing batch {batch_number}/{run.total_batches} ({len(batch)} entries)"
        )

        texts = [entry.embedding_text for entry in batch]

        try:
            result = self._embed_with_retry(texts, options, pacer)
            pacer.on_success()
        except EmbeddingRateLimitError as e:
            logger.error(f"Batch {batch_number} still rate limited: {e}")
            for entry in batch:
                run.record_failure(entry.id, "Rate limited: retries exhausted")
            return []
        except EmbeddingUnavailableError:
            raise
        except Exception as e:
            logger.error(f"Batch {batch_number} failed: {e}")
            pacer.on_error()
            for entry in batch:
                run.record_failure(entry.id, f"Embedding failed: {e}")
            return []

        run.tokens_used += result.total_tokens
        item_errors = {err["index"]: err["error"] for err in result.errors}
        upserted: list[int] = []

        for index, entry in enumerate(batch):
            embedding = result.results[index]
            if embedding is None:
                run.record_failure(entry.id, item_errors.get(index, "No embedding returned"))
                continue

            if options.dry_run:
                run.record_success(entry.id)
                continue

            try:
                updated = self.db.update_entry_embedding(entry.id, embedding.vector, embedding.model)
            except Exception as e:
                logger.error(f"Error updating entry {entry.id}: {e}")
                run.record_failure(entry.id, f"Database update failed: {e}")
                continue

            if not updated:
                run.record_failure(entry.id, "Entry no longer exists")
                continue

            if self.vector_index is not None and not options.skip_vector_index:
                if self._upsert_vector(entry, embedding.vector):
                    upserted.append(entry.id)

            run.record_success(entry.id)
            logger.debug(f"Embedded entry {entry.id} ({embedding.tokens_used} tokens)")

        return upserted

    def _embed_with_retry(
        self,
        texts: list[str],
        options: IndexerOptions,
        pacer: BatchPacer,
    ) -> BatchEmbeddingResult:
        """
        Embed one batch, retrying only rate limits.

        Each attempt is a single provider call with the provider's own retry
        disabled, so a batch costs at most max_batch_retries backend calls.
        A stop request ends the retries early.

        Raises:
            EmbeddingRateLimitError: Still rate limited on the last attempt
        """
        def backoff(retry_state) -> float:
            return pacer.backoff_delay(retry_state.attempt_number)

        for attempt in Retrying(
            stop=stop_after_attempt(options.max_batch_retries)
            | stop_when_event_set(self._stop_event),
            wait=backoff,
            retry=retry_if_exception_type(EmbeddingRateLimitError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        ):
            with attempt:
                try:
                    return self.provider.embed_batch(
                        texts, retry=False, persist=not options.dry_run
                    )
                except EmbeddingRateLimitError:
                    pacer.on_rate_limited()
                    raise

    @staticmethod
    def _vector_metadata(entry: KnowledgeEntry) -> dict:
        return {
            "faqId": entry.id,
            "question": entry.question,
            "category": entry.category,
            "helpfulRatio": entry.helpful_ratio,
        }

    def _upsert_vector(self, entry: KnowledgeEntry, vector) -> bool:
        """
        Upsert one vector; on failure flag the entry so the next run retries it.

        The corpus store write is kept either way.
        """
        try:
            self.vector_index.upsert(vector_id(entry.id), vector, self._vector_metadata(entry))
            return True
        except Exception as e:
            logger.warning(f"Failed to upsert entry {entry.id} to vector index: {e}")
            try:
                self.db.set_needs_refresh(entry.id, True)
            except Exception as flag_error:
                logger.warning(f"Failed to flag entry {entry.id} for refresh: {flag_error}")
            return False

    # =========================================================================
    # Persistence
    # =========================================================================

    def _persist_vector_index(self, upserted_ids: list[int], changed: bool = False) -> None:
        """Save the vector index if this run wrote to it."""
        if self.vector_index is None or not (upserted_ids or changed):
            return

        try:
            self.vector_index.save()
        except Exception as e:
            # The store now claims embeddings the saved index doesn't have
            try:
                self.db.mark_for_refresh(upserted_ids)
            except Exception as flag_error:
                logger.error(f"Failed to flag entries for refresh: {flag_error}")
            raise IndexerFatalError(f"Failed to save vector index: {e}") from e

    def _save_progress(self, run: IndexingRun) -> None:
        if self.run_store is None:
            return
        try:
            self.run_store.save_progress(run)
        except OSError as e:
            logger.warning(f"Failed to save progress for run {run.run_id}: {e}")

    def _save_results(self, run: IndexingRun) -> None:
        if self.run_store is None:
            return
        try:
            self.run_store.save_results(run)
        except OSError as e:
            logger.exception(f"Failed to save results for run {run.run_id}")
            raise IndexerFatalError(f"Cannot write run state: {e}") from e

    # =========================================================================
    # Maintenance
    # =========================================================================

    def _refresh_metadata(self, options: IndexerOptions) -> int:
        if self.vector_index is None or options.dry_run or options.skip_vector_index:
            return 0
        try:
            return self.sync_metadata(save=False)["updated"]
        except sqlite3.Error as e:
            logger.warning(f"Skipped vector metadata sync: {e}")
            return 0

    def sync_metadata(self, save: bool = True) -> dict:
        """
        Copy current entry fields into the metadata of indexed records.

        Vectors are left alone. Only records whose stored metadata differs
        from the entry (a new helpfulRatio after votes, an edited category)
        are rewritten. Records of missing or unpublished entries are left
        for prune_orphans().

        Args:
            save: Save the index when anything changed

        Returns:
            Dict with checked and updated counts
        """
        if self.vector_index is None:
            raise IndexerError("No vector index configured")

        keyed: dict[int, str] = {}
        for key in self.vector_index.keys():
            entry_id = parse_vector_id(key)
            if entry_id is not None:
                keyed[entry_id] = key

        ids = list(keyed)
        updated = 0

        for start in range(0, len(ids), 500):
            entries = self.db.get_entries(ids[start : start + 500])
            for entry_id, entry in entries.items():
                if not entry.is_published:
                    continue
                key = keyed[entry_id]
                expected = self._vector_metadata(entry)
                current = self.vector_index.get_metadata(key) or {}
                if any(current.get(field) != value for field, value in expected.items()):
                    self.vector_index.update_metadata(key, expected)
                    updated += 1

        if updated:
            logger.info(f"Refreshed metadata of {updated} vectors")
            if save:
                self.vector_index.save()

        return {"checked": len(ids), "updated": updated}

    def prune_orphans(self, dry_run: bool = False) -> dict:
        """
        Delete vector records whose entry is missing or unpublished.

        Args:
            dry_run: Report orphans without deleting them

        Returns:
            Dict with checked, orphaned and deleted counts plus orphan ids
        """
        if self.vector_index is None:
            raise IndexerError("No vector index configured")

        keys = self.vector_index.keys()
        published = self.db.get_published_ids()

        orphans = [
            key for key in keys
            if parse_vector_id(key) is not None and parse_vector_id(key) not in published
        ]

        deleted = 0
        if orphans and not dry_run:
            deleted = self.vector_index.delete_batch(orphans)
            self.vector_index.save()

        logger.info(
            f"Checked {len(keys)} vectors: {len(orphans)} orphaned, {deleted} deleted"
        )
        return {
            "checked": len(keys),
            "orphaned": len(orphans),
            "deleted": deleted,
            "orphan_ids": orphans,
        }
