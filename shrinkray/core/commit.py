import os
from pathlib import Path
from typing import Callable, Optional, Tuple

from shrinkray.core.classifier import TypeClassifier
from shrinkray.core.errors import CommitFailure
from shrinkray.core.models import Job
from shrinkray.utils.file_processor import FileProcessor
from shrinkray.utils.format import format_size
from shrinkray.utils.logger import get_logger


# ============================================================================
# Safety Commit Layer
# ============================================================================


class SafetyCommitter:
    """Decides whether an encoder output may replace its original, and replaces it."""

    def __init__(
        self,
        classifier: TypeClassifier,
        min_reduction_ratio: float = 0.05,
        preserve_metadata: bool = True,
        prober: Optional[Callable[[Path], bool]] = None,
    ):
        """
        Initialize committer.

        Args:
            classifier: Used to re-identify the output's content
            min_reduction_ratio: Minimum fraction of the original size that must be saved
            preserve_metadata: Copy permission bits and timestamps onto the replacement
            prober: Optional deep validation hook (e.g. ToolExecutor.probe)
        """
        self.classifier = classifier
        self.min_reduction_ratio = min_reduction_ratio
        self.preserve_metadata = preserve_metadata
        self.prober = prober
        self.logger = get_logger()

    def commit(
        self,
        job: Job,
        claim: Optional[Callable[[Path], bool]] = None,
        release: Optional[Callable[[Path], None]] = None,
    ) -> Tuple[Path, int]:
        """
        Validate a job's temporary output and move it into place.

        The original is only touched by the final rename. On any failure the
        temporary output is removed and the original is left as it was.

        Args:
            job: Job whose executor run succeeded
            claim: Called with the destination path before a suffix-changing
                rename; returning False aborts the commit
            release: Called with the destination path when it was claimed
                but the rename failed, so the claim does not outlive the job

        Returns:
            Tuple of (final path, new size)

        Raises:
            CommitFailure: The output was rejected or could not be moved
        """
        try:
            self._check_source(job)
            new_size = self._check_size(job)
            self._check_validity(job)
            final_path = self._replace(job, claim, release)
        except CommitFailure:
            FileProcessor.discard(job.temp_path)
            raise
        return final_path, new_size

    def _check_source(self, job: Job) -> None:
        candidate = job.candidate
        try:
            stat = os.stat(candidate.path)
        except OSError as error:
            raise CommitFailure(CommitFailure.SOURCE_CHANGED, f"original is gone: {error}") from error

        if stat.st_size != candidate.size or (candidate.mtime_ns and stat.st_mtime_ns != candidate.mtime_ns):
            raise CommitFailure(CommitFailure.SOURCE_CHANGED, "original was modified while it was being encoded")

    def _check_size(self, job: Job) -> int:
        original_size = job.candidate.size
        try:
            new_size = job.temp_path.stat().st_size
        except OSError as error:
            raise CommitFailure(CommitFailure.CORRUPT_OUTPUT, f"output vanished: {error}") from error

        saved = original_size - new_size
        if new_size >= original_size or saved / original_size < self.min_reduction_ratio:
            raise CommitFailure(
                CommitFailure.NOT_SMALLER_ENOUGH,
                f"{format_size(new_size)} vs {format_size(original_size)} original",
                new_size=new_size,
            )
        return new_size

    def _check_validity(self, job: Job) -> None:
        try:
            result = self.classifier.classify(job.temp_path)
        except OSError as error:
            raise CommitFailure(CommitFailure.CORRUPT_OUTPUT, f"output unreadable: {error}") from error

        if result.kind is not job.candidate.kind:
            raise CommitFailure(
                CommitFailure.CORRUPT_OUTPUT,
                f"output identified as {result.kind.value}, expected {job.candidate.kind.value}",
            )
        expected = job.strategy.container
        if expected is not None and result.container != expected:
            raise CommitFailure(
                CommitFailure.CORRUPT_OUTPUT,
                f"output identified as {result.container}, expected {expected}",
            )
        if self.prober is not None and not self.prober(job.temp_path):
            raise CommitFailure(CommitFailure.CORRUPT_OUTPUT, "output failed deep verification")

    def _replace(
        self,
        job: Job,
        claim: Optional[Callable[[Path], bool]],
        release: Optional[Callable[[Path], None]],
    ) -> Path:
        original = job.candidate.path
        destination = job.destination

        claimed = False
        if destination != original and claim is not None:
            if not claim(destination):
                raise CommitFailure(CommitFailure.RENAME_FAILED, f"{destination.name} is claimed by another job")
            claimed = True

        try:
            if self.preserve_metadata:
                FileProcessor.preserve_metadata(original, job.temp_path)
            final_path = FileProcessor.replace_original(
                job.temp_path, original, destination, keep_original=job.output_dir is not None
            )
        except OSError as error:
            if claimed and release is not None:
                # Whatever sits at the destination still has to be visited
                release(destination)
            if isinstance(error, FileExistsError):
                raise CommitFailure(CommitFailure.RENAME_FAILED, f"{destination.name} already exists") from error
            raise CommitFailure(CommitFailure.RENAME_FAILED, str(error)) from error

        verb = "Wrote" if job.output_dir is not None else "Replaced"
        self.logger.debug(f"[job {job.job_id}] {verb} {original.name} as {final_path}")
        return final_path
