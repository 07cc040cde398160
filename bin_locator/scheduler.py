"""Scheduled backup sweep over the whole fleet.

A sweep reads every bin's live reading and, when it is usable, writes it to
the backup store. Bins are processed independently on a bounded thread pool;
one bin failing never stops the others. At most one sweep runs at a time.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional

from bin_locator.app_types import UpsertResult, utc_now
from bin_locator.backup_store import BackupStore
from bin_locator.errors import BinLocatorError, PartialSweepFailure, StorageUnavailable, SweepAlreadyRunning
from bin_locator.live_sources import LiveReadingSource
from bin_locator.validation import is_fresh
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="backup_scheduler")

SCHEDULER_SOURCE = "scheduler"
TIMED_OUT_REASON = "sweep timed out"
IN_FLIGHT_REASON = "sweep timed out while writing; may have committed"


class SweepOutcome(str, Enum):
    """Per-bin result of a sweep."""
    BACKED_UP = "backed-up"
    SKIPPED_INVALID_LIVE = "skipped-invalid-live"
    SKIPPED_STALE_WRITE = "skipped-stale-write"
    FAILED = "failed"


class SweepTrigger(str, Enum):
    """What started a sweep."""
    SCHEDULED = "scheduled"
    MANUAL = "manual"


@dataclass
class BinSweepResult:
    bin_id: str
    outcome: SweepOutcome
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {"binId": self.bin_id, "outcome": self.outcome.value, "reason": self.reason}


@dataclass
class SweepReport:
    """Aggregate outcome of one sweep, in fleet enumeration order."""
    trigger: SweepTrigger
    started_at: datetime
    finished_at: Optional[datetime] = None
    results: List[BinSweepResult] = field(default_factory=list)
    error: Optional[str] = None  # set when the fleet could not be enumerated
    timed_out: bool = False

    @property
    def counts(self) -> Dict[str, int]:
        out = {outcome.value: 0 for outcome in SweepOutcome}
        for result in self.results:
            out[result.outcome.value] += 1
        return out

    @property
    def failed(self) -> List[BinSweepResult]:
        return [r for r in self.results if r.outcome is SweepOutcome.FAILED]

    @property
    def partial_failure(self) -> bool:
        return bool(self.failed) or self.error is not None

    def raise_for_failures(self) -> None:
        """Raise PartialSweepFailure if any bin failed or the fleet listing failed."""
        if self.partial_failure:
            raise PartialSweepFailure(self)

    def summary(self) -> dict:
        """Counts and timings without the per-bin list."""
        return {
            "trigger": self.trigger.value,
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "binsProcessed": len(self.results),
            "counts": self.counts,
            "partialFailure": self.partial_failure,
            "timedOut": self.timed_out,
            "error": self.error,
        }

    def to_dict(self) -> dict:
        return {**self.summary(), "results": [r.to_dict() for r in self.results]}


class BackupScheduler:
    """Runs sweeps on a fixed interval in a background thread, or on demand."""

    def __init__(
        self,
        live_source: LiveReadingSource,
        backup_store: BackupStore,
        *,
        interval_seconds: float = 3600.0,
        freshness_window: Optional[timedelta] = None,
        max_workers: int = 8,
        timeout_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.live_source = live_source
        self.backup_store = backup_store
        self.interval_seconds = interval_seconds
        self.freshness_window = freshness_window
        self.max_workers = max_workers
        self.timeout_seconds = timeout_seconds
        self.clock = clock

        self._sweep_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_report: Optional[SweepReport] = None
        self._sweep_count = 0
        self._next_run_at: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    def _backup_bin(self, bin_id: str) -> BinSweepResult:
        """Validate one bin's live reading and try to back it up."""
        try:
            live = self.live_source.get_live_reading(bin_id)
        except StorageUnavailable as exc:
            return BinSweepResult(bin_id, SweepOutcome.FAILED, f"live source unavailable: {exc}")

        if live is None:
            return BinSweepResult(bin_id, SweepOutcome.SKIPPED_INVALID_LIVE, "no live reading")
        if not live.is_valid:
            return BinSweepResult(bin_id, SweepOutcome.SKIPPED_INVALID_LIVE, "invalid coordinates")
        if not is_fresh(live, self.clock(), self.freshness_window):
            return BinSweepResult(bin_id, SweepOutcome.SKIPPED_INVALID_LIVE, "live reading outside freshness window")

        try:
            result = self.backup_store.upsert(bin_id, live, source=SCHEDULER_SOURCE)
        except StorageUnavailable as exc:
            return BinSweepResult(bin_id, SweepOutcome.FAILED, f"backup store unavailable: {exc}")

        if result is UpsertResult.REJECTED_STALE:
            return BinSweepResult(bin_id, SweepOutcome.SKIPPED_STALE_WRITE, "stored backup is as new or newer")
        return BinSweepResult(bin_id, SweepOutcome.BACKED_UP)

    @staticmethod
    def _collect(bin_id: str, future: Future) -> BinSweepResult:
        try:
            return future.result()
        except BinLocatorError as exc:
            return BinSweepResult(bin_id, SweepOutcome.FAILED, str(exc))
        except Exception as exc:
            logger.exception(f"Unexpected error backing up bin {bin_id}")
            return BinSweepResult(bin_id, SweepOutcome.FAILED, f"unexpected error: {exc}")

    def run_sweep(
        self,
        trigger: SweepTrigger = SweepTrigger.MANUAL,
        *,
        wait_for_running: bool = True,
        timeout: Optional[float] = None,
    ) -> SweepReport:
        """Run one sweep over every known bin and return its report.

        If another sweep is in flight, block until it finishes
        (`wait_for_running=True`) or raise SweepAlreadyRunning. Bins still
        pending when `timeout` (default: the configured timeout) expires are
        cancelled and reported as failed; writes already made stay made.
        """
        if not self._sweep_lock.acquire(blocking=wait_for_running):
            raise SweepAlreadyRunning("A backup sweep is already running")

        release_now = True
        try:
            report, executor = self._sweep(trigger, self.timeout_seconds if timeout is None else timeout)
            if executor is not None:
                # Workers that were mid-write keep the lock until they finish,
                # so the next sweep can never overlap them.
                release_now = False
                threading.Thread(
                    target=self._drain_and_release,
                    args=(executor,),
                    name="backup-sweep-drain",
                    daemon=True,
                ).start()
        finally:
            if release_now:
                self._sweep_lock.release()

        with self._state_lock:
            self._last_report = report
            self._sweep_count += 1
        return report

    def _drain_and_release(self, executor: ThreadPoolExecutor) -> None:
        try:
            executor.shutdown(wait=True)
        finally:
            self._sweep_lock.release()

    def _sweep(self, trigger: SweepTrigger, timeout: Optional[float]):
        """Return (report, executor still draining or None)."""
        report = SweepReport(trigger=trigger, started_at=self.clock())
        logger.info(f"Starting {trigger.value} backup sweep")

        try:
            bin_ids = list(self.live_source.list_bin_ids())
        except StorageUnavailable as exc:
            logger.error(f"Backup sweep aborted; could not list bins: {exc}")
            report.error = f"fleet listing unavailable: {exc}"
            report.finished_at = self.clock()
            return report, None

        if not bin_ids:
            report.finished_at = self.clock()
            logger.info("Backup sweep finished; no bins known")
            return report, None

        executor = ThreadPoolExecutor(
            max_workers=max(1, min(self.max_workers, len(bin_ids))),
            thread_name_prefix="backup-sweep",
        )
        futures = [(bin_id, executor.submit(self._backup_bin, bin_id)) for bin_id in bin_ids]
        _done, not_done = wait([f for _, f in futures], timeout=timeout)

        for bin_id, future in futures:
            if future in not_done and future.cancel():
                report.results.append(BinSweepResult(bin_id, SweepOutcome.FAILED, TIMED_OUT_REASON))
            elif future.done():
                report.results.append(self._collect(bin_id, future))
            else:
                report.results.append(BinSweepResult(bin_id, SweepOutcome.FAILED, IN_FLIGHT_REASON))

        report.finished_at = self.clock()
        for failed in report.failed:
            logger.warning(f"Backup failed for bin {failed.bin_id}: {failed.reason}")
        logger.info(f"Backup sweep finished: {report.counts}")

        if not_done:
            report.timed_out = True
            logger.warning(f"Backup sweep timed out after {timeout}s; {len(not_done)} bin(s) not completed")
            return report, executor

        executor.shutdown(wait=True)
        return report, None

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background loop; a no-op if it is already running."""
        if self._thread is not None and self._thread.is_alive():
            return
        # Each loop owns its stop event, so a loop that outlived stop() still exits.
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run_loop, args=(self._stop_event,), name="backup-scheduler", daemon=True
        )
        self._thread.start()
        logger.info(f"Backup scheduler started (every {self.interval_seconds}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal the loop to exit and wait for it."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Backup scheduler loop still finishing a sweep; it will exit afterwards")
            self._thread = None
        self._next_run_at = None
        logger.info("Backup scheduler stopped")

    def _run_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            self._next_run_at = self.clock() + timedelta(seconds=self.interval_seconds)
            if stop_event.wait(self.interval_seconds):
                return
            try:
                self.run_sweep(SweepTrigger.SCHEDULED, wait_for_running=True)
            except Exception:  # pragma: no cover - keep the loop alive
                logger.exception("Scheduled backup sweep crashed")

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def last_report(self) -> Optional[SweepReport]:
        with self._state_lock:
            return self._last_report

    def status(self) -> dict:
        """Scheduler health and last-run summary."""
        with self._state_lock:
            last = self._last_report
            count = self._sweep_count
        window = self.freshness_window.total_seconds() if self.freshness_window else None
        return {
            "isRunning": self.is_running,
            "sweepInProgress": self._sweep_lock.locked(),
            "intervalSeconds": self.interval_seconds,
            "freshnessWindowSeconds": window,
            "maxWorkers": self.max_workers,
            "timeoutSeconds": self.timeout_seconds,
            "sweepCount": count,
            "nextSweepAt": self._next_run_at.isoformat() if self.is_running and self._next_run_at else None,
            "lastSweep": last.summary() if last else None,
        }
