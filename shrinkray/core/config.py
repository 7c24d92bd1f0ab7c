import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from shrinkray.core.errors import ConfigurationError
from shrinkray.core.models import MediaKind, Strategy


# ============================================================================
# Configuration Classes
# ============================================================================


@dataclass
class ShrinkConfig:
    """Configuration for one shrinkray run."""

    roots: List[Path]
    exclude: List[str] = field(default_factory=list)
    max_depth: Optional[int] = None
    follow_symlinks: bool = False
    image_quality: int = 80
    video_crf: Optional[int] = None
    video_preset: str = "medium"
    audio_bitrate: str = "128k"
    max_resolution: Optional[str] = None
    max_bitrate: Optional[str] = None
    image_codecs: Tuple[str, ...] = ("jpeg",)
    video_codecs: Tuple[str, ...] = ("vp9",)
    audio_codecs: Tuple[str, ...] = ("opus",)
    enabled_kinds: Tuple[str, ...] = ("image", "video", "audio")
    preserve_format: bool = False
    min_reduction_ratio: float = 0.05
    min_size: int = 1024
    max_size: Optional[int] = None
    workers: Optional[int] = None
    job_timeout: Optional[float] = 3600.0
    dry_run: bool = False
    kill_on_cancel: bool = False
    deep_verify: bool = False
    preserve_metadata: bool = True
    output_dir: Optional[Path] = None
    tool_paths: Dict[str, str] = field(default_factory=dict)
    strategy_overrides: Dict[str, Strategy] = field(default_factory=dict)
    signatures: Optional[Sequence] = None
    count_unknown_as_skipped: bool = True
    strict: bool = True

    @property
    def effective_workers(self) -> int:
        """Worker pool size; defaults to the number of processing units."""
        return self.workers or os.cpu_count() or 1

    def to_dict(self) -> Dict:
        """Plain-value view of the options, for reports."""
        return {
            "roots": [str(root) for root in self.roots],
            "exclude": list(self.exclude),
            "max_depth": self.max_depth,
            "follow_symlinks": self.follow_symlinks,
            "image_quality": self.image_quality,
            "video_crf": self.video_crf,
            "video_preset": self.video_preset,
            "audio_bitrate": self.audio_bitrate,
            "max_resolution": self.max_resolution,
            "max_bitrate": self.max_bitrate,
            "image_codecs": list(self.image_codecs),
            "video_codecs": list(self.video_codecs),
            "audio_codecs": list(self.audio_codecs),
            "enabled_kinds": list(self.enabled_kinds),
            "preserve_format": self.preserve_format,
            "min_reduction_ratio": self.min_reduction_ratio,
            "min_size": self.min_size,
            "max_size": self.max_size,
            "workers": self.effective_workers,
            "job_timeout": self.job_timeout,
            "dry_run": self.dry_run,
            "output_dir": str(self.output_dir) if self.output_dir is not None else None,
        }


# ============================================================================
# Parameter Validator
# ============================================================================


class ParameterValidator:
    """Validates configuration before any work begins."""

    VALID_PRESETS = [
        "ultrafast",
        "superfast",
        "veryfast",
        "faster",
        "fast",
        "medium",
        "slow",
        "slower",
        "veryslow",
    ]

    @staticmethod
    def validate(config: ShrinkConfig) -> None:
        """Validate all parameters in the configuration. Raises ConfigurationError."""
        # Originals are only read when outputs go to a separate directory
        ParameterValidator.validate_roots(config.roots, config.dry_run or config.output_dir is not None)
        ParameterValidator.validate_output_dir(config.output_dir)
        ParameterValidator.validate_max_depth(config.max_depth)
        ParameterValidator.validate_image_quality(config.image_quality)
        ParameterValidator.validate_video_crf(config.video_crf)
        ParameterValidator.validate_video_preset(config.video_preset)
        ParameterValidator.validate_max_resolution(config.max_resolution)
        ParameterValidator.validate_codecs(config)
        ParameterValidator.validate_enabled_kinds(config.enabled_kinds)
        ParameterValidator.validate_reduction_ratio(config.min_reduction_ratio)
        ParameterValidator.validate_size_range(config.min_size, config.max_size)
        ParameterValidator.validate_workers(config.workers)
        ParameterValidator.validate_job_timeout(config.job_timeout)

    @staticmethod
    def validate_roots(roots: Sequence[Path], dry_run: bool = False) -> None:
        """Every root must exist; unless dry-running, its directory must be writable."""
        if not roots:
            raise ConfigurationError("At least one root path is required")

        for root in roots:
            if not root.exists():
                raise ConfigurationError(f"Root path does not exist: {root}")
            if dry_run:
                continue
            # Temporary outputs are written next to the originals
            directory = root if root.is_dir() else root.parent
            if not os.access(directory, os.W_OK | os.X_OK):
                raise ConfigurationError(f"Directory is not writable: {directory}")

    @staticmethod
    def validate_output_dir(output_dir: Optional[Path]) -> None:
        """The output directory may be missing, but must not be a file or read-only."""
        if output_dir is None or not output_dir.exists():
            return
        if not output_dir.is_dir():
            raise ConfigurationError(f"Output path is not a directory: {output_dir}")
        if not os.access(output_dir, os.W_OK | os.X_OK):
            raise ConfigurationError(f"Directory is not writable: {output_dir}")

    @staticmethod
    def validate_max_depth(max_depth: Optional[int]) -> None:
        if max_depth is not None and max_depth < 0:
            raise ConfigurationError(f"max_depth must be non-negative, got {max_depth}")

    @staticmethod
    def validate_image_quality(image_quality: int) -> None:
        if not (0 <= image_quality <= 100):
            raise ConfigurationError(f"image_quality must be between 0 and 100, got {image_quality}")

    @staticmethod
    def validate_video_crf(video_crf: Optional[int]) -> None:
        """CRF ranges differ per codec; 0-63 covers all supported encoders."""
        if video_crf is not None and not (0 <= video_crf <= 63):
            raise ConfigurationError(f"video_crf must be between 0 and 63, got {video_crf}")

    @staticmethod
    def validate_video_preset(video_preset: str) -> None:
        if video_preset not in ParameterValidator.VALID_PRESETS:
            raise ConfigurationError(
                f"video_preset must be one of {ParameterValidator.VALID_PRESETS}, got {video_preset}"
            )

    @staticmethod
    def validate_max_resolution(max_resolution: Optional[str]) -> None:
        if max_resolution is None:
            return

        from shrinkray.utils.format import parse_resolution

        try:
            parse_resolution(max_resolution)
        except ValueError as e:
            raise ConfigurationError(f"Invalid max resolution: {e}")

    @staticmethod
    def validate_codecs(config: ShrinkConfig) -> None:
        """Every preferred codec must exist in the built-in codec table for its kind."""
        from shrinkray.core.strategy import CODECS

        preferences = {
            MediaKind.IMAGE: config.image_codecs,
            MediaKind.VIDEO: config.video_codecs,
            MediaKind.AUDIO: config.audio_codecs,
        }
        for kind, names in preferences.items():
            for name in names:
                codec = CODECS.get(name)
                if codec is None or codec.kind is not kind:
                    valid = sorted(n for n, c in CODECS.items() if c.kind is kind)
                    raise ConfigurationError(f"Unknown {kind.value} codec '{name}'. Valid codecs: {valid}")

    @staticmethod
    def validate_enabled_kinds(enabled_kinds: Sequence[str]) -> None:
        valid = [MediaKind.IMAGE.value, MediaKind.VIDEO.value, MediaKind.AUDIO.value]
        for kind in enabled_kinds:
            if kind not in valid:
                raise ConfigurationError(f"Unknown media kind '{kind}'. Valid kinds: {valid}")

    @staticmethod
    def validate_reduction_ratio(ratio: float) -> None:
        if not (0 <= ratio < 1):
            raise ConfigurationError(f"min_reduction_ratio must be in [0, 1), got {ratio}")

    @staticmethod
    def validate_size_range(min_size: Optional[int], max_size: Optional[int]) -> None:
        """Validate min_size and max_size values."""
        if min_size is not None and min_size < 0:
            raise ConfigurationError(f"min_size must be non-negative, got {min_size}")
        if max_size is not None and max_size < 0:
            raise ConfigurationError(f"max_size must be non-negative, got {max_size}")
        if min_size is not None and max_size is not None and min_size > max_size:
            raise ConfigurationError(f"min_size ({min_size}) cannot be greater than max_size ({max_size})")

    @staticmethod
    def validate_workers(workers: Optional[int]) -> None:
        if workers is not None and workers < 1:
            raise ConfigurationError(f"workers must be at least 1, got {workers}")

    @staticmethod
    def validate_job_timeout(job_timeout: Optional[float]) -> None:
        if job_timeout is not None and job_timeout <= 0:
            raise ConfigurationError(f"job_timeout must be positive, got {job_timeout}")
