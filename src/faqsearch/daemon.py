"""
Background indexer daemon.

Re-runs the batch indexer every ``interval`` seconds in a detached process.
State lives in two places: a pidfile on disk and the ``daemon_state`` row in
the corpus store (status, heartbeat, runs completed, last run id).

Unix only (os.fork, os.setsid).
"""

import logging
import os
import signal
import sys
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional

if TYPE_CHECKING:
    from .database import FAQDatabase
    from .indexer import BatchIndexer
    from .models import IndexerOptions

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 3600
DEFAULT_HEARTBEAT_INTERVAL = 10
# A heartbeat gap this large means the host slept
DEFAULT_WAKE_THRESHOLD = 300

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class DaemonError(Exception):
    """Base exception for daemon errors."""
    pass


class DaemonAlreadyRunning(DaemonError):
    pass


class DaemonNotRunning(DaemonError):
    pass


def _process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


class IndexerDaemon:
    """
    Start, stop and inspect the periodic indexer process.

    The indexer itself is built by a factory inside the forked process, so
    the daemon never inherits SQLite connections or HTTP clients from the
    CLI that launched it.

    Example:
        daemon = IndexerDaemon(db, pidfile="data/.indexer.pid")
        daemon.start(lambda: build_components(settings).indexer(), options, interval=900)
        daemon.status()["runs_completed"]
        daemon.stop()
    """

    def __init__(
        self,
        db: "FAQDatabase",
        pidfile: str | Path = "data/.indexer.pid",
        logfile: str | Path = "data/indexer_daemon.log",
        heartbeat_interval: int = DEFAULT_HEARTBEAT_INTERVAL,
        wake_threshold: int = DEFAULT_WAKE_THRESHOLD,
    ):
        self.db = db
        self.pidfile = Path(pidfile)
        self.logfile = Path(logfile)
        self.heartbeat_interval = heartbeat_interval
        self.wake_threshold = wake_threshold

        self._stop_event = threading.Event()
        self._indexer: Optional["BatchIndexer"] = None

        for path in (self.pidfile, self.logfile):
            path.parent.mkdir(parents=True, exist_ok=True)

    # -- pidfile -------------------------------------------------------------

    def get_pid(self) -> int | None:
        """PID recorded in the pidfile, or None when absent or unreadable."""
        try:
            return int(self.pidfile.read_text().strip())
        except (ValueError, FileNotFoundError):
            return None

    def is_running(self) -> bool:
        """True when the pidfile names a live process; stale pidfiles are removed."""
        if not self.pidfile.exists():
            return False

        pid = self.get_pid()
        try:
            alive = pid is not None and _process_alive(pid)
        except PermissionError:
            alive = False

        if not alive:
            self.pidfile.unlink(missing_ok=True)
        return alive

    # -- lifecycle -----------------------------------------------------------

    def start(
        self,
        indexer_factory: Callable[[], "BatchIndexer"],
        options: "IndexerOptions",
        interval: int = DEFAULT_INTERVAL,
    ) -> int:
        """
        Detach and run the indexer loop; returns the daemon's PID.

        Raises:
            DaemonAlreadyRunning: If a live daemon owns the pidfile
            DaemonError: If the first fork fails
        """
        if self.is_running():
            raise DaemonAlreadyRunning(f"Daemon already running with PID {self.get_pid()}")

        try:
            first = os.fork()
        except OSError as e:
            raise DaemonError(f"First fork failed: {e}")

        if first > 0:
            # Give the grandchild a moment to write its pidfile
            time.sleep(0.1)
            return self.get_pid() or first

        os.setsid()
        try:
            second = os.fork()
        except OSError:
            sys.exit(1)
        if second > 0:
            sys.exit(0)

        self._serve(indexer_factory, options, interval)
        sys.exit(0)

    def _redirect_output(self) -> None:
        handler = logging.FileHandler(self.logfile)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.root.addHandler(handler)
        logging.root.setLevel(logging.INFO)

        sys.stdout = open(self.logfile, "a")
        sys.stderr = sys.stdout
        os.close(0)

    def _serve(
        self,
        indexer_factory: Callable[[], "BatchIndexer"],
        options: "IndexerOptions",
        interval: int,
    ) -> None:
        pid = os.getpid()
        self.pidfile.write_text(str(pid))
        self._redirect_output()

        logger.info(f"Indexer daemon started with PID {pid}, interval {interval}s")
        self.db.update_daemon_state(pid, "running")

        for signum in (signal.SIGTERM, signal.SIGINT):
            signal.signal(signum, self._on_signal)

        try:
            self.run_loop(indexer_factory(), options, interval)
        except Exception as e:
            logger.exception(f"Daemon error: {e}")
        finally:
            self._release(pid)

    def _release(self, pid: int) -> None:
        try:
            self.db.update_daemon_state(pid, "stopped")
        except Exception as e:
            logger.error(f"Failed to record daemon stop: {e}")
        self.pidfile.unlink(missing_ok=True)
        logger.info("Indexer daemon stopped")

    def _on_signal(self, signum, frame):
        logger.info(f"Received signal {signum}, finishing current batch...")
        self.request_stop()

    # -- loop ----------------------------------------------------------------

    def run_loop(
        self,
        indexer: "BatchIndexer",
        options: "IndexerOptions",
        interval: int,
        max_runs: Optional[int] = None,
    ) -> int:
        """
        Run ``indexer`` until stopped or ``max_runs`` is reached.

        A failed run is logged and counted; the loop keeps going. Returns the
        number of runs attempted.
        """
        self._indexer = indexer
        self._stop_event.clear()
        attempted = 0

        beat = threading.Thread(target=self._beat, daemon=True)
        beat.start()

        try:
            while not self._stop_event.is_set():
                self._run_once(indexer, options)
                attempted += 1
                if max_runs is not None and attempted >= max_runs:
                    break
                logger.info(f"Next indexer run in {interval}s")
                self._stop_event.wait(interval)
        finally:
            self._stop_event.set()
            beat.join(timeout=self.heartbeat_interval + 1)
            self._indexer = None

        return attempted

    def _run_once(self, indexer: "BatchIndexer", options: "IndexerOptions") -> None:
        try:
            run = indexer.run(options)
        except Exception as e:
            logger.exception(f"Indexer run failed: {e}")
            return

        logger.info(
            f"Run {run.run_id} {run.status}: {run.success_count} embedded, "
            f"{run.failure_count} failed"
        )
        self.db.update_daemon_heartbeat(completed_run_id=run.run_id)

    def _beat(self) -> None:
        previous = time.time()
        while not self._stop_event.is_set():
            now = time.time()
            if now - previous > self.wake_threshold:
                logger.warning(f"Wake detected after {now - previous:.0f}s without heartbeat")
            previous = now

            try:
                self.db.update_daemon_heartbeat()
            except Exception as e:
                logger.warning(f"Failed to update heartbeat: {e}")

            self._stop_event.wait(self.heartbeat_interval)

    def request_stop(self) -> None:
        """Stop once the in-flight batch of the current run has finished."""
        self._stop_event.set()
        if self._indexer is not None:
            self._indexer.request_stop()

    # -- control from another process ----------------------------------------

    def stop(self, timeout: int = 30) -> bool:
        """
        SIGTERM the daemon and wait up to ``timeout`` seconds, then SIGKILL.

        Raises:
            DaemonNotRunning: If no live daemon owns the pidfile
        """
        pid = self.get_pid() if self.is_running() else None
        if pid is None:
            raise DaemonNotRunning("No daemon is running")

        logger.info(f"Stopping indexer daemon (PID {pid})...")
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            self.pidfile.unlink(missing_ok=True)
            return True

        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            time.sleep(1)
            if not _process_alive(pid):
                break
        else:
            logger.warning("Daemon didn't exit gracefully, sending SIGKILL...")
            try:
                os.kill(pid, signal.SIGKILL)
                time.sleep(0.5)
            except ProcessLookupError:
                pass

        self.pidfile.unlink(missing_ok=True)
        return True

    def status(self) -> dict:
        """Process liveness merged with the stored ``daemon_state`` row."""
        running = self.is_running()
        return {
            "running": running,
            "pid": self.get_pid() if running else None,
            "pidfile": str(self.pidfile),
            "logfile": str(self.logfile),
            **self.db.get_daemon_state(),
        }
