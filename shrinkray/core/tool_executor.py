import os
import shutil
import subprocess  # nosec B404
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from shrinkray.core.errors import ExecutorFailure, ToolNotFoundError
from shrinkray.core.models import Job
from shrinkray.utils.file_processor import FileProcessor
from shrinkray.utils.logger import get_logger


# Locations checked when a tool is neither configured nor on PATH
COMMON_LOCATIONS: Dict[str, List[str]] = {
    "ffmpeg": [
        r"C:\ffmpeg\bin\ffmpeg.exe",
        r"C:\Program Files\ffmpeg\bin\ffmpeg.exe",
        "/opt/homebrew/bin/ffmpeg",
        "/usr/local/bin/ffmpeg",
    ],
    "ffprobe": [
        r"C:\ffmpeg\bin\ffprobe.exe",
        r"C:\Program Files\ffmpeg\bin\ffprobe.exe",
        "/opt/homebrew/bin/ffprobe",
        "/usr/local/bin/ffprobe",
    ],
}

STDERR_TAIL_LINES = 10


@dataclass(frozen=True)
class ToolResult:
    """Outcome of a successful encoder run."""

    command: List[str]
    returncode: int
    stderr: str
    elapsed: float


# ============================================================================
# Tool Executor
# ============================================================================


class ToolExecutor:
    """Runs external encoders as isolated child processes."""

    def __init__(
        self,
        tool_paths: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        kill_on_cancel: bool = False,
        poll_interval: float = 0.25,
    ):
        """
        Initialize executor.

        Args:
            tool_paths: Explicit tool locations, keyed by tool name
            timeout: Seconds a single job may run before its process is killed
            cancel_event: Run-level cancellation signal
            kill_on_cancel: Kill running children as soon as cancellation is requested
            poll_interval: Seconds between checks of timeout and cancellation
        """
        self.tool_paths = dict(tool_paths or {})
        self.timeout = timeout
        self.cancel_event = cancel_event
        self.kill_on_cancel = kill_on_cancel
        self.poll_interval = poll_interval
        self.logger = get_logger()
        self._resolved: Dict[str, str] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------------
    # Tool lookup
    # ------------------------------------------------------------------------

    def resolve(self, name: str) -> str:
        """
        Resolve a tool name to an executable path, caching the result.

        Raises:
            ToolNotFoundError: If the tool cannot be found anywhere
        """
        with self._lock:
            path = self._resolved.get(name)
            if path is None:
                path = self.tool_paths.get(name) or self.find_tool(name)
                if path is None:
                    raise ToolNotFoundError(name)
                self.logger.debug(f"Using {name} at {path}")
                self._resolved[name] = path
            return path

    @staticmethod
    def find_tool(name: str) -> Optional[str]:
        """Find a tool via SHRINKRAY_BIN_<NAME>, PATH, or common install locations."""
        env_path = os.environ.get(f"SHRINKRAY_BIN_{name.upper()}")
        if env_path:
            return env_path if Path(env_path).exists() else None

        found = shutil.which(name)
        if found:
            return found

        for candidate in COMMON_LOCATIONS.get(name, []):
            if Path(candidate).exists():
                return candidate

        return None

    # ------------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------------

    def build_command(self, job: Job) -> List[str]:
        tool_path = self.resolve(job.strategy.tool)
        return job.strategy.render(tool_path, job.candidate.path, job.temp_path)

    def describe(self, job: Job) -> str:
        """Printable command line for a job, without running it."""
        try:
            command = self.build_command(job)
        except ToolNotFoundError:
            command = job.strategy.render(job.strategy.tool, job.candidate.path, job.temp_path)
        return subprocess.list2cmdline(command)

    def run(self, job: Job) -> ToolResult:
        """
        Run a job's strategy, writing to the job's temporary path.

        Args:
            job: Job to execute

        Returns:
            ToolResult for a successful run with non-empty output

        Raises:
            ToolNotFoundError: If the strategy's tool is missing
            ExecutorFailure: On non-zero exit, crash, timeout, cancellation or empty output.
                The temporary output has been removed when this is raised.
        """
        try:
            command = self.build_command(job)
        except ToolNotFoundError:
            FileProcessor.discard(job.temp_path)
            raise

        self.logger.debug(f"[job {job.job_id}] Running: {subprocess.list2cmdline(command)}")
        start = time.monotonic()
        try:
            process = self._launch_process(command)
        except OSError as error:
            FileProcessor.discard(job.temp_path)
            raise ExecutorFailure(
                ExecutorFailure.LAUNCH_FAILED, f"could not start {job.strategy.tool}: {error}"
            ) from error

        try:
            stderr = self._wait(process, start)
            result = ToolResult(command, process.returncode, stderr, time.monotonic() - start)
            self._raise_on_error(result, job)
        except ExecutorFailure:
            FileProcessor.discard(job.temp_path)
            raise

        self.logger.debug(f"[job {job.job_id}] {job.strategy.tool} finished in {result.elapsed:.1f}s")
        return result

    def _launch_process(self, command: List[str]) -> subprocess.Popen:
        return subprocess.Popen(  # nosec B603
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )

    def _wait(self, process: subprocess.Popen, start: float) -> str:
        """Wait for the child, enforcing the timeout and honoring cancellation."""
        while True:
            try:
                _, stderr = process.communicate(timeout=self.poll_interval)
                return stderr or ""
            except subprocess.TimeoutExpired:
                if self.timeout is not None and time.monotonic() - start >= self.timeout:
                    stderr = self._kill(process)
                    raise ExecutorFailure(
                        ExecutorFailure.TIMEOUT,
                        f"timed out after {self.timeout:g}s",
                        stderr=stderr,
                    )
                if self.kill_on_cancel and self.cancel_event is not None and self.cancel_event.is_set():
                    stderr = self._kill(process)
                    raise ExecutorFailure(ExecutorFailure.CANCELLED, "run was cancelled", stderr=stderr)

    @staticmethod
    def _kill(process: subprocess.Popen) -> str:
        process.kill()
        _, stderr = process.communicate()
        return stderr or ""

    @staticmethod
    def _raise_on_error(result: ToolResult, job: Job) -> None:
        tool = job.strategy.tool
        diagnostic = ToolExecutor.stderr_tail(result.stderr)

        if result.returncode < 0:
            raise ExecutorFailure(
                ExecutorFailure.CRASH,
                f"{tool} was killed by signal {-result.returncode}{diagnostic}",
                returncode=result.returncode,
                stderr=result.stderr,
            )
        if result.returncode != 0:
            raise ExecutorFailure(
                ExecutorFailure.NON_ZERO_EXIT,
                f"{tool} exited with status {result.returncode}{diagnostic}",
                returncode=result.returncode,
                stderr=result.stderr,
            )

        try:
            size = job.temp_path.stat().st_size
        except FileNotFoundError:
            size = 0
        if size == 0:
            raise ExecutorFailure(
                ExecutorFailure.EMPTY_OUTPUT,
                f"{tool} produced no output{diagnostic}",
                returncode=result.returncode,
                stderr=result.stderr,
            )

    @staticmethod
    def stderr_tail(stderr: str) -> str:
        """Last few stderr lines, formatted for appending to a message."""
        lines = [line.rstrip() for line in stderr.splitlines() if line.strip()]
        if not lines:
            return ""
        return ": " + " | ".join(lines[-STDERR_TAIL_LINES:])

    # ------------------------------------------------------------------------
    # ffprobe queries
    # ------------------------------------------------------------------------

    def probe(self, path: Path) -> bool:
        """
        Check that ffprobe can open a file and recognise its format.

        Raises:
            ToolNotFoundError: If ffprobe is missing
        """
        output = self._ffprobe(path, "format=format_name")
        return bool(output and output.strip())

    def read_comment(self, path: Path) -> Optional[str]:
        """
        Read the container-level comment tag of a file.

        MP4 metadata usually sits at the end of the file, beyond the prefix the
        classifier reads.

        Returns:
            The comment, or None when there is none or ffprobe cannot read the file

        Raises:
            ToolNotFoundError: If ffprobe is missing
        """
        output = self._ffprobe(path, "format_tags=comment")
        comment = output.strip() if output else ""
        return comment or None

    def _ffprobe(self, path: Path, entries: str) -> Optional[str]:
        """Run ffprobe for one set of entries; returns stdout, or None on failure."""
        command = [
            self.resolve("ffprobe"),
            "-v",
            "error",
            "-show_entries",
            entries,
            "-of",
            "default=noprint_wrappers=1:nokey=1",
            str(path),
        ]
        try:
            result = subprocess.run(  # nosec B603
                command,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            self.logger.warning(f"ffprobe timed out on {path.name}")
            return None

        if result.returncode != 0:
            self.logger.debug(f"ffprobe rejected {path.name}{self.stderr_tail(result.stderr)}")
            return None
        return result.stdout
