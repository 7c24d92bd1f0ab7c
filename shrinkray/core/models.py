import itertools
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple


# ============================================================================
# Media Kinds
# ============================================================================


class MediaKind(Enum):
    """Media kind detected from file content."""

    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Classification:
    """Result of sniffing a file's leading bytes."""

    kind: MediaKind
    container: Optional[str] = None
    tagged: bool = False

    @property
    def is_media(self) -> bool:
        return self.kind is not MediaKind.UNKNOWN


UNKNOWN = Classification(MediaKind.UNKNOWN)

# File extension used for each output container
CONTAINER_SUFFIXES = {
    "jpeg": ".jpg",
    "png": ".png",
    "webp": ".webp",
    "webm": ".webm",
    "mkv": ".mkv",
    "mp4": ".mp4",
    "mov": ".mov",
    "ogg": ".ogg",
    "m4a": ".m4a",
    "mp3": ".mp3",
    "flac": ".flac",
}


# ============================================================================
# Candidates and Strategies
# ============================================================================


@dataclass(frozen=True)
class Candidate:
    """A discovered file tagged with its media kind and original size."""

    path: Path
    kind: MediaKind
    container: Optional[str]
    size: int
    mtime_ns: int = 0
    tagged: bool = False

    @property
    def classification(self) -> Classification:
        return Classification(self.kind, self.container, self.tagged)


@dataclass(frozen=True)
class Strategy:
    """
    Declarative compression plan for one candidate.

    ``args`` may reference ``{input}`` and ``{output}``. When neither appears,
    the input and output paths are appended after the parameters.

    ``container`` is the format the tool is told to write. Built-in strategies
    always set it; custom ones may leave it to the tool.
    """

    name: str
    kind: MediaKind
    tool: str
    args: Tuple[str, ...]
    output_suffix: Optional[str] = None
    container: Optional[str] = None

    def render(self, tool_path: str, input_path: Path, output_path: Path) -> List[str]:
        """
        Build the argv for one invocation.

        Args:
            tool_path: Resolved path of the external tool
            input_path: File to read
            output_path: File to write

        Returns:
            Complete command line
        """
        values = {"input": str(input_path), "output": str(output_path)}
        has_placeholders = any("{input}" in arg or "{output}" in arg for arg in self.args)
        command = [tool_path] + [self._substitute(arg, values) for arg in self.args]
        if not has_placeholders:
            command.extend([values["input"], values["output"]])
        return command

    def suffix_for(self, input_path: Path) -> str:
        return self.output_suffix if self.output_suffix is not None else input_path.suffix

    def temp_suffix_for(self, input_path: Path) -> str:
        """Extension of the temporary output, which follows the written container rather than the input name."""
        return CONTAINER_SUFFIXES.get(self.container or "", self.suffix_for(input_path))

    @staticmethod
    def _substitute(arg: str, values: dict) -> str:
        # str.format would choke on ffmpeg filter braces, so only the two known fields are replaced
        return arg.replace("{input}", values["input"]).replace("{output}", values["output"])


# ============================================================================
# Jobs and Outcomes
# ============================================================================

_job_ids = itertools.count(1)


@dataclass
class Job:
    """One candidate paired with one strategy and a private temporary output path."""

    candidate: Candidate
    strategy: Strategy
    temp_path: Path
    job_id: int = field(default_factory=lambda: next(_job_ids))
    output_dir: Optional[Path] = None

    @property
    def destination(self) -> Path:
        """Final location of the shrunk file once committed."""
        source = self.candidate.path
        if self.output_dir is not None:
            source = self.output_dir / source.name
        return source.with_suffix(self.strategy.suffix_for(source))


class OutcomeStatus(Enum):
    SHRUNK = "shrunk"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class JobOutcome:
    """Terminal result for one scanned file."""

    path: Path
    status: OutcomeStatus
    original_size: int = 0
    new_size: Optional[int] = None
    final_path: Optional[Path] = None
    reason: Optional[str] = None
    kind: MediaKind = MediaKind.UNKNOWN
    container: Optional[str] = None
    processing_time: float = 0.0

    @classmethod
    def shrunk(
        cls,
        candidate: Candidate,
        new_size: int,
        final_path: Path,
        processing_time: float = 0.0,
    ) -> "JobOutcome":
        return cls(
            path=candidate.path,
            status=OutcomeStatus.SHRUNK,
            original_size=candidate.size,
            new_size=new_size,
            final_path=final_path,
            kind=candidate.kind,
            container=candidate.container,
            processing_time=processing_time,
        )

    @classmethod
    def skipped(
        cls,
        path: Path,
        reason: str,
        original_size: int = 0,
        kind: MediaKind = MediaKind.UNKNOWN,
        container: Optional[str] = None,
        processing_time: float = 0.0,
        new_size: Optional[int] = None,
    ) -> "JobOutcome":
        return cls(
            path=path,
            status=OutcomeStatus.SKIPPED,
            original_size=original_size,
            new_size=new_size,
            reason=reason,
            kind=kind,
            container=container,
            processing_time=processing_time,
        )

    @classmethod
    def failed(
        cls,
        path: Path,
        reason: str,
        original_size: int = 0,
        kind: MediaKind = MediaKind.UNKNOWN,
        container: Optional[str] = None,
        processing_time: float = 0.0,
    ) -> "JobOutcome":
        return cls(
            path=path,
            status=OutcomeStatus.FAILED,
            original_size=original_size,
            reason=reason,
            kind=kind,
            container=container,
            processing_time=processing_time,
        )

    @property
    def space_saved(self) -> int:
        if self.status is not OutcomeStatus.SHRUNK or self.new_size is None:
            return 0
        return self.original_size - self.new_size

    @property
    def compression_ratio(self) -> float:
        """Percentage of the original size saved."""
        if self.original_size <= 0:
            return 0.0
        return self.space_saved / self.original_size * 100
