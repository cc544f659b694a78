"""
On-disk records of indexer runs.

Each run gets a directory under runs_dir:

    {runs_dir}/{run_id}/progress.json   running state, rewritten after every batch
    {runs_dir}/{run_id}/results.json    final summary (duration, success rate, tokens, cost)
    {runs_dir}/{run_id}/errors.json     per-entry errors for triage

progress.json holds last_processed_id, which an operator passes back as
--resume-from-id to continue an interrupted or failed run.
"""

import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from .models import IndexingRun

logger = logging.getLogger(__name__)


def new_run_id() -> str:
    """Sortable unique run id, e.g. '20240105-141502-3fa2c1'."""
    return f"{datetime.now():%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:6]}"


class RunStore:
    """
    Reads and writes indexer run files.

    Example:
        store = RunStore("data/indexing_runs")
        store.save_progress(run)
        store.save_results(run)
        for summary in store.list_runs(limit=5):
            print(summary["run_id"], summary["status"])
    """

    PROGRESS_FILE = "progress.json"
    RESULTS_FILE = "results.json"
    ERRORS_FILE = "errors.json"

    def __init__(self, runs_dir: str = "data/indexing_runs"):
        self.runs_dir = Path(runs_dir)

    def run_dir(self, run_id: str) -> Path:
        return self.runs_dir / run_id

    def _write_json(self, path: Path, data: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
        tmp_path.replace(path)

    def _read_json(self, path: Path) -> Optional[Any]:
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    def save_progress(self, run: IndexingRun) -> Path:
        """
        Write the running state of a run.

        Returns:
            Path of progress.json
        """
        path = self.run_dir(run.run_id) / self.PROGRESS_FILE
        self._write_json(path, run.to_dict())
        return path

    def save_results(self, run: IndexingRun) -> Path:
        """
        Write the final summary and error list of a run.

        Also refreshes progress.json so both files agree on the final state.

        Returns:
            Path of results.json
        """
        self.save_progress(run)

        data = run.to_dict()
        errors = data.pop("errors")
        data["error_count"] = len(errors)

        self._write_json(self.run_dir(run.run_id) / self.ERRORS_FILE, errors)

        path = self.run_dir(run.run_id) / self.RESULTS_FILE
        self._write_json(path, data)
        logger.info(f"Saved results for run {run.run_id} to {path}")
        return path

    def load_run(self, run_id: str) -> Optional[IndexingRun]:
        """
        Load the latest saved state of a run.

        Returns:
            IndexingRun, or None if the run doesn't exist
        """
        data = self._read_json(self.run_dir(run_id) / self.PROGRESS_FILE)
        if data is None:
            return None
        return IndexingRun.from_dict(data)

    def load_errors(self, run_id: str) -> list[dict]:
        return self._read_json(self.run_dir(run_id) / self.ERRORS_FILE) or []

    def list_runs(self, limit: int = 10) -> list[dict]:
        """
        Summaries of the most recent runs, newest first.

        Args:
            limit: Maximum runs to return

        Returns:
            List of progress snapshots (without per-entry errors)
        """
        if not self.runs_dir.exists():
            return []

        run_dirs = sorted(
            (p for p in self.runs_dir.iterdir() if p.is_dir()),
            key=lambda p: p.name,
            reverse=True,
        )

        summaries = []
        for run_dir in run_dirs:
            try:
                data = self._read_json(run_dir / self.PROGRESS_FILE)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Skipping unreadable run {run_dir.name}: {e}")
                continue
            if data is None:
                continue

            errors = data.pop("errors", [])
            data["error_count"] = len(errors)
            summaries.append(data)
            if len(summaries) >= limit:
                break

        return summaries

    def latest_run(self) -> Optional[IndexingRun]:
        """Most recent run, or None if there are none."""
        runs = self.list_runs(limit=1)
        if not runs:
            return None
        return self.load_run(runs[0]["run_id"])
