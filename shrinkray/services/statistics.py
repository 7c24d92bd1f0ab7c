import queue
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from shrinkray.core.models import JobOutcome, OutcomeStatus
from shrinkray.utils.format import format_size
from shrinkray.utils.logger import get_logger


UNRECOGNIZED = "unrecognized"
DRY_RUN = "dry-run"


# ============================================================================
# Run Statistics
# ============================================================================


def _empty_bucket() -> Dict[str, int]:
    return {
        "shrunk": 0,
        "skipped": 0,
        "failed": 0,
        "original_size": 0,
        "new_size": 0,
        "space_saved": 0,
    }


@dataclass
class RunStats:
    """Aggregated results of one run."""

    scanned: int = 0
    shrunk: int = 0
    skipped: int = 0
    failed: int = 0
    ignored: int = 0
    planned: int = 0
    total_original_size: int = 0
    total_new_size: int = 0
    space_saved: int = 0
    planned_size: int = 0
    grew: int = 0
    wasted_size: int = 0
    kind_stats: Dict[str, Dict[str, int]] = field(default_factory=dict)
    container_stats: Dict[str, Dict[str, int]] = field(default_factory=dict)
    skip_reasons: Dict[str, int] = field(default_factory=dict)
    failures: List[Dict[str, str]] = field(default_factory=list)
    files: List[JobOutcome] = field(default_factory=list)
    total_processing_time: float = 0.0
    cancelled: bool = False

    @property
    def compression_ratio(self) -> float:
        """Percentage saved across the shrunk files."""
        if self.total_original_size <= 0:
            return 0.0
        return self.space_saved / self.total_original_size * 100

    def to_dict(self) -> Dict:
        return {
            "scanned": self.scanned,
            "shrunk": self.shrunk,
            "skipped": self.skipped,
            "failed": self.failed,
            "ignored": self.ignored,
            "planned": self.planned,
            "total_original_size": self.total_original_size,
            "total_new_size": self.total_new_size,
            "space_saved": self.space_saved,
            "planned_size": self.planned_size,
            "grew": self.grew,
            "wasted_size": self.wasted_size,
            "kind_stats": {key: dict(value) for key, value in self.kind_stats.items()},
            "container_stats": {key: dict(value) for key, value in self.container_stats.items()},
            "skip_reasons": dict(self.skip_reasons),
            "failures": [dict(failure) for failure in self.failures],
            "total_processing_time": self.total_processing_time,
            "cancelled": self.cancelled,
        }


# ============================================================================
# Statistics Tracker
# ============================================================================


class StatisticsTracker:
    """Applies job outcomes to a RunStats. Not thread safe; see OutcomeCollector."""

    def __init__(self, count_unknown_as_skipped: bool = True):
        """
        Initialize statistics tracker.

        Args:
            count_unknown_as_skipped: Count unrecognised files as skipped rather than ignored
        """
        self.count_unknown_as_skipped = count_unknown_as_skipped
        self.stats = RunStats()

    def record(self, outcome: JobOutcome) -> None:
        """
        Add one outcome to the statistics.

        Args:
            outcome: Terminal result for a scanned file
        """
        stats = self.stats
        stats.scanned += 1
        stats.files.append(outcome)
        stats.total_processing_time += outcome.processing_time

        if outcome.status is OutcomeStatus.SHRUNK:
            self._record_shrunk(outcome)
        elif outcome.status is OutcomeStatus.FAILED:
            stats.failed += 1
            stats.failures.append({"path": str(outcome.path), "reason": outcome.reason or ""})
            self._update_buckets(outcome, "failed")
        elif outcome.reason == UNRECOGNIZED and not self.count_unknown_as_skipped:
            stats.ignored += 1
        else:
            self._record_skipped(outcome)

    def _record_shrunk(self, outcome: JobOutcome) -> None:
        stats = self.stats
        new_size = outcome.new_size or 0
        stats.shrunk += 1
        stats.total_original_size += outcome.original_size
        stats.total_new_size += new_size
        stats.space_saved += outcome.space_saved
        self._update_buckets(outcome, "shrunk")

    def _record_skipped(self, outcome: JobOutcome) -> None:
        stats = self.stats
        stats.skipped += 1
        reason = outcome.reason or "unspecified"
        stats.skip_reasons[reason] = stats.skip_reasons.get(reason, 0) + 1
        if reason == DRY_RUN:
            stats.planned += 1
            stats.planned_size += outcome.original_size
        # Encoder output that came out larger than the original; it was discarded
        if outcome.new_size is not None and outcome.new_size > outcome.original_size:
            stats.grew += 1
            stats.wasted_size += outcome.new_size - outcome.original_size
        self._update_buckets(outcome, "skipped")

    def _update_buckets(self, outcome: JobOutcome, status: str) -> None:
        keys = [(self.stats.kind_stats, outcome.kind.value)]
        if outcome.container:
            keys.append((self.stats.container_stats, outcome.container))

        for table, key in keys:
            bucket = table.setdefault(key, _empty_bucket())
            bucket[status] += 1
            if status == "shrunk":
                bucket["original_size"] += outcome.original_size
                bucket["new_size"] += outcome.new_size or 0
                bucket["space_saved"] += outcome.space_saved

    def set_total_processing_time(self, total_time: float) -> None:
        """Replace the summed per-job time with the run's wall-clock time."""
        self.stats.total_processing_time = total_time

    def get_stats(self) -> RunStats:
        return self.stats


# ============================================================================
# Outcome Collector
# ============================================================================


class OutcomeCollector:
    """
    Funnels outcomes from worker threads to a single consumer thread.

    Workers call ``submit``; only the consumer thread touches the tracker, so
    the statistics never need a lock.
    """

    _STOP = object()

    def __init__(self, tracker: Optional[StatisticsTracker] = None):
        self.tracker = tracker or StatisticsTracker()
        self.logger = get_logger()
        self._queue: "queue.Queue" = queue.Queue()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._consume, name="shrinkray-collector", daemon=True)
        self._thread.start()

    def submit(self, outcome: JobOutcome) -> None:
        """Queue an outcome for aggregation. Safe to call from any thread."""
        self._queue.put(outcome)

    def close(self) -> RunStats:
        """Drain the queue, stop the consumer and return the final statistics."""
        if self._thread is not None:
            self._queue.put(self._STOP)
            self._thread.join()
            self._thread = None
        else:
            self._drain()
        return self.tracker.get_stats()

    def _consume(self) -> None:
        while True:
            item = self._queue.get()
            if item is self._STOP:
                return
            self._apply(item)

    def _drain(self) -> None:
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            if item is not self._STOP:
                self._apply(item)

    def _apply(self, outcome: JobOutcome) -> None:
        self.tracker.record(outcome)
        self._log(outcome)

    def _log(self, outcome: JobOutcome) -> None:
        name = outcome.path.name
        if outcome.status is OutcomeStatus.SHRUNK:
            self.logger.notice(
                f"Shrunk {name}: {format_size(outcome.original_size)} -> {format_size(outcome.new_size or 0)} "
                f"({outcome.compression_ratio:.1f}% saved)"
            )
        elif outcome.status is OutcomeStatus.FAILED:
            self.logger.error(f"Failed {outcome.path}: {outcome.reason}")
        elif outcome.reason == UNRECOGNIZED:
            self.logger.debug(f"Skipped {name}: {outcome.reason}")
        else:
            self.logger.info(f"Skipped {name}: {outcome.reason}")
