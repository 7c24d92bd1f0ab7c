import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path
from typing import Optional, Set, Tuple, Union

from shrinkray.core.classifier import TAG_PREFIX, TypeClassifier
from shrinkray.core.commit import SafetyCommitter
from shrinkray.core.config import ParameterValidator, ShrinkConfig
from shrinkray.core.errors import (
    CommitFailure,
    ConfigurationError,
    ExecutorFailure,
    StrategyUnavailable,
    ToolNotFoundError,
)
from shrinkray.core.models import Candidate, Classification, Job, JobOutcome, Strategy
from shrinkray.core.strategy import StrategySelector
from shrinkray.core.tagging import STAMPERS, stamp_file
from shrinkray.core.tool_executor import ToolExecutor
from shrinkray.core.walker import DiscoveryWalker
from shrinkray.services.statistics import DRY_RUN, UNRECOGNIZED, OutcomeCollector, RunStats, StatisticsTracker
from shrinkray.utils.file_processor import TEMP_MARKER, FileProcessor
from shrinkray.utils.format import format_size
from shrinkray.utils.logger import get_logger


# Containers whose metadata may sit beyond the classifier's prefix
TAG_PROBED_CONTAINERS = frozenset({"mp4", "mov", "m4a", "mkv", "webm"})


# ============================================================================
# Media Shrinker
# ============================================================================


class MediaShrinker:
    """Runs the discovery, selection, encoding and commit pipeline over a worker pool."""

    SLOT_POLL_INTERVAL = 0.1

    def __init__(
        self,
        config: ShrinkConfig,
        executor: Optional[ToolExecutor] = None,
        classifier: Optional[TypeClassifier] = None,
        collector: Optional[OutcomeCollector] = None,
    ):
        """
        Initialize media shrinker with configuration.

        Args:
            config: Run configuration
            executor: Encoder runner (built from config when omitted)
            classifier: Content sniffer (built from config when omitted)
            collector: Outcome aggregator (built from config when omitted)
        """
        self.config = config
        self.logger = get_logger()
        self.cancel_event = threading.Event()
        self.classifier = classifier or TypeClassifier(config.signatures)
        self.executor = executor or ToolExecutor(
            tool_paths=config.tool_paths,
            timeout=config.job_timeout,
            cancel_event=self.cancel_event,
            kill_on_cancel=config.kill_on_cancel,
        )
        self.committer = SafetyCommitter(
            self.classifier,
            min_reduction_ratio=config.min_reduction_ratio,
            preserve_metadata=config.preserve_metadata,
            prober=self.executor.probe if config.deep_verify else None,
        )
        self.walker = DiscoveryWalker(
            config.roots,
            exclude=config.exclude,
            max_depth=config.max_depth,
            follow_symlinks=config.follow_symlinks,
        )
        self.collector = collector or OutcomeCollector(StatisticsTracker(config.count_unknown_as_skipped))
        self.selector: Optional[StrategySelector] = None
        self._claimed: Set[str] = set()
        self._claim_lock = threading.Lock()

    def run(self) -> RunStats:
        """
        Process every file under the configured roots.

        Returns:
            Statistics of the run, including partial results when cancelled

        Raises:
            ConfigurationError: Invalid configuration; nothing was touched
        """
        ParameterValidator.validate(self.config)
        self.selector = StrategySelector(self.config)
        self._prepare_output_dir()

        workers = self.config.effective_workers
        slots = threading.BoundedSemaphore(workers)
        start_time = time.time()
        mode = " (dry run)" if self.config.dry_run else ""
        self.logger.info(f"Scanning {len(self.config.roots)} root(s) with {workers} worker(s){mode}")

        self.collector.start()
        try:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="shrinkray-worker") as pool:
                try:
                    self._dispatch(pool, slots)
                except KeyboardInterrupt:
                    self.logger.warning("Interrupted, waiting for running jobs to finish")
                    self.cancel()
        finally:
            stats = self.collector.close()

        self.collector.tracker.set_total_processing_time(time.time() - start_time)
        stats.cancelled = self.cancel_event.is_set()
        if self.walker.errors:
            self.logger.warning(f"{len(self.walker.errors)} path(s) could not be read during discovery")
        return stats

    def cancel(self) -> None:
        """Stop dispatching new jobs. Jobs already running are allowed to finish."""
        if not self.cancel_event.is_set():
            self.logger.warning("Cancellation requested, no new jobs will be started")
        self.cancel_event.set()

    def _prepare_output_dir(self) -> None:
        output_dir = self.config.output_dir
        if output_dir is None or self.config.dry_run:
            return
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise ConfigurationError(f"Cannot create output directory {output_dir}: {error}") from error
        self.logger.info(f"Writing shrunk files to {output_dir}")

    # ------------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------------

    def _dispatch(self, pool: ThreadPoolExecutor, slots: threading.BoundedSemaphore) -> None:
        for path in self.walker.walk():
            if self.cancel_event.is_set():
                return
            if not self._claim(path):
                self.logger.debug(f"Already seen {path}, skipping")
                continue

            prepared = self._prepare(path)
            if isinstance(prepared, JobOutcome):
                self.collector.submit(prepared)
                continue

            # Backpressure: the walker only advances when a worker slot is free
            while not slots.acquire(timeout=self.SLOT_POLL_INTERVAL):
                if self.cancel_event.is_set():
                    return

            candidate, strategy = prepared
            pool.submit(self._run_job, candidate, strategy, slots)

    def _prepare(self, path: Path) -> Union[JobOutcome, Tuple[Candidate, Strategy]]:
        """Stat, classify and select a strategy; returns a terminal outcome when there is nothing to run."""
        try:
            stat = os.stat(path)
        except OSError as error:
            return JobOutcome.failed(path, f"unreadable: {error.strerror or error}")
        size = stat.st_size

        try:
            classification = self.classifier.classify(path)
        except OSError as error:
            return JobOutcome.failed(path, f"unreadable: {error.strerror or error}", original_size=size)

        if not classification.is_media:
            return JobOutcome.skipped(path, UNRECOGNIZED, original_size=size)

        kind, container = classification.kind, classification.container
        if size < self.config.min_size:
            return JobOutcome.skipped(path, "below-threshold", size, kind, container)
        if self.config.max_size is not None and size > self.config.max_size:
            return JobOutcome.skipped(path, "above-max-size", size, kind, container)

        classification = self._read_tag(path, classification)
        try:
            strategy = self.selector.select(classification)
        except StrategyUnavailable as error:
            self.logger.debug(f"No strategy for {path.name}: {error}")
            return JobOutcome.skipped(path, error.reason, size, kind, container)

        candidate = Candidate(path, kind, container, size, stat.st_mtime_ns, classification.tagged)
        if self.config.dry_run:
            return self._plan(candidate, strategy)
        return candidate, strategy

    def _read_tag(self, path: Path, classification: Classification) -> Classification:
        """Look for the shrinkray comment where the classifier's prefix cannot see it."""
        if classification.tagged or classification.container not in TAG_PROBED_CONTAINERS:
            return classification
        if classification.kind.value not in self.config.enabled_kinds:
            return classification

        try:
            comment = self.executor.read_comment(path)
        except ToolNotFoundError as error:
            self.logger.debug(f"Cannot read the comment of {path.name}: {error}")
            return classification

        if comment and TAG_PREFIX in comment:
            return replace(classification, tagged=True)
        return classification

    def _plan(self, candidate: Candidate, strategy: Strategy) -> JobOutcome:
        path = candidate.path
        directory = self.config.output_dir or path.parent
        placeholder = directory / f"{path.stem}{TEMP_MARKER}XXXXXXXX{strategy.temp_suffix_for(path)}"
        command = self.executor.describe(Job(candidate, strategy, placeholder, output_dir=self.config.output_dir))
        self.logger.info(f"[dry run] {path} ({format_size(candidate.size)}): {command}")
        return JobOutcome.skipped(path, DRY_RUN, candidate.size, candidate.kind, candidate.container)

    # ------------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------------

    def _run_job(self, candidate: Candidate, strategy: Strategy, slots: threading.BoundedSemaphore) -> None:
        """Create, execute and commit one job, always producing exactly one outcome."""
        try:
            job = self._create_job(candidate, strategy)
            if isinstance(job, JobOutcome):
                self.collector.submit(job)
            else:
                self.collector.submit(self._execute(job))
        finally:
            slots.release()

    def _create_job(self, candidate: Candidate, strategy: Strategy) -> Union[Job, JobOutcome]:
        path = candidate.path
        output_dir = self.config.output_dir
        try:
            temp_path = FileProcessor.claim_temp_path(path, strategy.temp_suffix_for(path), output_dir)
        except OSError as error:
            return JobOutcome.failed(
                path,
                f"unwritable: cannot create temporary output: {error.strerror or error}",
                candidate.size,
                candidate.kind,
                candidate.container,
            )
        return Job(candidate, strategy, temp_path, output_dir=output_dir)

    def _execute(self, job: Job) -> JobOutcome:
        candidate = job.candidate
        start_time = time.time()
        self.logger.info(
            f"Shrinking {candidate.path.name} ({format_size(candidate.size)}, "
            f"{candidate.kind.value}/{candidate.container}) with {job.strategy.name}"
        )

        try:
            self.executor.run(job)
            self._stamp(job)
            final_path, new_size = self.committer.commit(job, claim=self._claim, release=self._release)
        except CommitFailure as error:
            FileProcessor.discard(job.temp_path)
            if error.is_skip:
                self.logger.debug(f"[job {job.job_id}] Keeping {candidate.path.name}: {error}")
                return self._skipped(job, error.kind, start_time, error.new_size)
            return self._failed(job, error.reason, start_time)
        except ExecutorFailure as error:
            FileProcessor.discard(job.temp_path)
            return self._failed(job, error.reason, start_time)
        except ToolNotFoundError as error:
            FileProcessor.discard(job.temp_path)
            return self._failed(job, f"tool-not-found: {error}", start_time)
        except Exception as error:  # pylint: disable=broad-except
            FileProcessor.discard(job.temp_path)
            self.logger.get_logger().exception(f"[job {job.job_id}] Unexpected error on {candidate.path}")
            return self._failed(job, f"internal-error: {error}", start_time)

        return JobOutcome.shrunk(candidate, new_size, final_path, time.time() - start_time)

    @staticmethod
    def _stamp(job: Job) -> None:
        """Write the shrinkray comment into image outputs; video and audio get it from the encoder."""
        container = job.strategy.container
        if container not in STAMPERS:
            return
        try:
            stamp_file(job.temp_path, container)
        except ValueError as error:
            raise CommitFailure(CommitFailure.CORRUPT_OUTPUT, f"output is not {container}: {error}") from error
        except OSError as error:
            raise CommitFailure(CommitFailure.CORRUPT_OUTPUT, f"output unreadable: {error}") from error

    @staticmethod
    def _skipped(job: Job, reason: str, start_time: float, new_size: Optional[int] = None) -> JobOutcome:
        candidate = job.candidate
        return JobOutcome.skipped(
            candidate.path,
            reason,
            candidate.size,
            candidate.kind,
            candidate.container,
            time.time() - start_time,
            new_size=new_size,
        )

    @staticmethod
    def _failed(job: Job, reason: str, start_time: float) -> JobOutcome:
        candidate = job.candidate
        return JobOutcome.failed(
            candidate.path, reason, candidate.size, candidate.kind, candidate.container, time.time() - start_time
        )

    # ------------------------------------------------------------------------
    # Path claims
    # ------------------------------------------------------------------------

    @staticmethod
    def _claim_key(path: Path) -> str:
        return os.path.normcase(os.path.realpath(path))

    def _claim(self, path: Path) -> bool:
        """Reserve a path for this run. Returns False if it was already reserved."""
        key = self._claim_key(path)
        with self._claim_lock:
            if key in self._claimed:
                return False
            self._claimed.add(key)
            return True

    def _release(self, path: Path) -> None:
        """Give up a reservation whose job never wrote to the path."""
        with self._claim_lock:
            self._claimed.discard(self._claim_key(path))
