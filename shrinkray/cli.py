"""Command line interface for shrinkray."""

import argparse
import sys
import uuid
from pathlib import Path
from typing import Dict, List, Optional

from shrinkray import __version__
from shrinkray.core.config import ShrinkConfig
from shrinkray.core.errors import ConfigurationError
from shrinkray.core.media_shrinker import MediaShrinker
from shrinkray.services.reports import ReportGenerator
from shrinkray.services.statistics import RunStats
from shrinkray.utils.format import format_duration, format_size, parse_ratio, parse_size
from shrinkray.utils.logger import get_logger


EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_CONFIG = 2
EXIT_CANCELLED = 130


def _split_list(value: str) -> List[str]:
    return [item.strip().lower() for item in value.split(",") if item.strip()]


def _parse_tool(value: str) -> tuple:
    name, sep, path = value.partition("=")
    if not sep or not name or not path:
        raise argparse.ArgumentTypeError(f"expected NAME=PATH, got '{value}'")
    return name.strip(), path.strip()


def _size_arg(value: str) -> int:
    try:
        return parse_size(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def _ratio_arg(value: str) -> float:
    try:
        return parse_ratio(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shrinkray",
        description="Re-encode media files in place, keeping a replacement only when it is smaller and valid.",
    )
    parser.add_argument("roots", nargs="+", type=Path, help="Files or directories to process")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    discovery = parser.add_argument_group("discovery")
    discovery.add_argument("--exclude", action="append", default=[], metavar="GLOB", help="Skip matching paths")
    discovery.add_argument("--max-depth", type=int, default=None, help="Directory levels to descend (0 = no recursion)")
    discovery.add_argument("--follow-symlinks", action="store_true", help="Follow symbolic links")
    discovery.add_argument("--min-size", type=_size_arg, default=1024, help="Skip files smaller than this (e.g. 10KB)")
    discovery.add_argument("--max-size", type=_size_arg, default=None, help="Skip files larger than this (e.g. 2GB)")
    discovery.add_argument(
        "--kinds", type=_split_list, default=None, help="Comma-separated media kinds to process (image,video,audio)"
    )

    quality = parser.add_argument_group("quality")
    quality.add_argument("--image-quality", type=int, default=80, help="Image quality 0-100 (default: 80)")
    quality.add_argument("--video-crf", type=int, default=None, help="Video CRF (default depends on codec)")
    quality.add_argument("--video-preset", default="medium", help="x264/x265 preset (default: medium)")
    quality.add_argument("--audio-bitrate", default="128k", help="Audio bitrate (default: 128k)")
    quality.add_argument("--max-resolution", default=None, help="Downscale to fit WIDTHxHEIGHT (e.g. 1920x1080)")
    quality.add_argument("--max-bitrate", default=None, help="Video bitrate ceiling (e.g. 4M)")
    quality.add_argument("--image-codecs", type=_split_list, default=None, help="Preferred image codecs, in order")
    quality.add_argument("--video-codecs", type=_split_list, default=None, help="Preferred video codecs, in order")
    quality.add_argument("--audio-codecs", type=_split_list, default=None, help="Preferred audio codecs, in order")
    quality.add_argument("--preserve-format", action="store_true", help="Never change a file's container")
    quality.add_argument(
        "--min-reduction",
        type=_ratio_arg,
        default=0.05,
        help="Minimum saving required to replace a file, as a fraction or percentage (default: 5%%)",
    )

    execution = parser.add_argument_group("execution")
    execution.add_argument("--workers", type=int, default=None, help="Concurrent jobs (default: CPU count)")
    execution.add_argument("--timeout", type=float, default=3600.0, help="Seconds allowed per file (default: 3600)")
    execution.add_argument("--dry-run", action="store_true", help="Show what would be done without writing anything")
    execution.add_argument("--kill-on-cancel", action="store_true", help="Kill running encoders on Ctrl-C")
    execution.add_argument("--deep-verify", action="store_true", help="Check every output with ffprobe")
    execution.add_argument(
        "--no-preserve-metadata", action="store_true", help="Do not copy permissions and timestamps"
    )
    execution.add_argument(
        "--tool", action="append", type=_parse_tool, default=[], metavar="NAME=PATH", help="Explicit tool location"
    )
    execution.add_argument("--no-strict", action="store_true", help="Exit 0 even when some files failed")
    execution.add_argument(
        "--ignore-unknown", action="store_true", help="Do not count unrecognised files as skipped"
    )
    execution.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Write shrunk files into this directory and leave the originals untouched",
    )

    output = parser.add_argument_group("output")
    output.add_argument("--report-dir", type=Path, default=None, help="Write a JSON report under DIR/reports")
    output.add_argument("--log-level", default="INFO", help="DEBUG, INFO, WARNING or ERROR (default: INFO)")
    output.add_argument("--log-dir", default=None, help="Also write a detailed log file into this directory")
    output.add_argument(
        "--log-rotation", choices=["size", "time"], default=None, help="Rotate the log file by size or by time"
    )
    output.add_argument(
        "--log-max-bytes", type=_size_arg, default=10485760, help="Log size before rotating (default: 10MB)"
    )
    output.add_argument("--log-backup-count", type=int, default=5, help="Rotated log files to keep (default: 5)")
    output.add_argument(
        "--log-when", default="midnight", help="Time-based rotation interval, e.g. midnight or H (default: midnight)"
    )
    return parser


def config_from_args(args: argparse.Namespace) -> ShrinkConfig:
    config = ShrinkConfig(
        roots=list(args.roots),
        exclude=list(args.exclude),
        max_depth=args.max_depth,
        follow_symlinks=args.follow_symlinks,
        image_quality=args.image_quality,
        video_crf=args.video_crf,
        video_preset=args.video_preset,
        audio_bitrate=args.audio_bitrate,
        max_resolution=args.max_resolution,
        max_bitrate=args.max_bitrate,
        preserve_format=args.preserve_format,
        min_reduction_ratio=args.min_reduction,
        min_size=args.min_size,
        max_size=args.max_size,
        workers=args.workers,
        job_timeout=args.timeout,
        dry_run=args.dry_run,
        kill_on_cancel=args.kill_on_cancel,
        deep_verify=args.deep_verify,
        preserve_metadata=not args.no_preserve_metadata,
        output_dir=args.output_dir,
        tool_paths=dict(args.tool),
        count_unknown_as_skipped=not args.ignore_unknown,
        strict=not args.no_strict,
    )
    if args.kinds is not None:
        config.enabled_kinds = tuple(args.kinds)
    if args.image_codecs is not None:
        config.image_codecs = tuple(args.image_codecs)
    if args.video_codecs is not None:
        config.video_codecs = tuple(args.video_codecs)
    if args.audio_codecs is not None:
        config.audio_codecs = tuple(args.audio_codecs)
    return config


def print_summary(stats: RunStats, dry_run: bool = False) -> None:
    """Print the end-of-run summary to stdout."""
    title = "Dry Run Complete!" if dry_run else "Shrink Complete!"
    if stats.cancelled:
        title = "Shrink Cancelled"

    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)
    print(f"Scanned: {stats.scanned} files")
    print(f"Shrunk: {stats.shrunk} files")
    print(f"Skipped: {stats.skipped} files")
    print(f"Failed: {stats.failed} files")
    if stats.ignored:
        print(f"Ignored: {stats.ignored} files")

    if dry_run:
        print(f"Planned: {stats.planned} files ({format_size(stats.planned_size)})")
    else:
        print(f"Original size: {format_size(stats.total_original_size)}")
        print(f"New size: {format_size(stats.total_new_size)}")
        print(f"Space saved: {format_size(stats.space_saved)} ({stats.compression_ratio:.1f}%)")
        if stats.grew:
            print(f"Grew: {stats.grew} files ({format_size(stats.wasted_size)} discarded)")

    if stats.skip_reasons:
        print()
        print("Skip reasons:")
        for reason, count in sorted(stats.skip_reasons.items()):
            print(f"  {reason}: {count}")

    if stats.failures:
        print()
        print("Failures:")
        for failure in stats.failures:
            print(f"  {failure['path']}: {failure['reason']}")

    duration = format_duration(stats.total_processing_time)
    if duration:
        print()
        print(f"Total time: {duration}")
    print("=" * 60)


def exit_code_for(stats: RunStats, strict: bool) -> int:
    if stats.cancelled:
        return EXIT_CANCELLED
    if stats.failed and strict:
        return EXIT_FAILURES
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logger = get_logger()
    logger.configure(
        log_level=args.log_level,
        log_dir=args.log_dir,
        rotation_type=args.log_rotation,
        max_bytes=args.log_max_bytes,
        backup_count=args.log_backup_count,
        when=args.log_when,
    )

    try:
        config = config_from_args(args)
        shrinker = MediaShrinker(config)
        stats = shrinker.run()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG

    print_summary(stats, dry_run=config.dry_run)

    if args.report_dir is not None:
        cmd_args: Dict = dict(config.to_dict())
        cmd_args["argv"] = list(argv) if argv is not None else sys.argv[1:]
        title = config.roots[0].resolve().name if len(config.roots) == 1 else "shrinkray"
        ReportGenerator(args.report_dir).generate(stats, title, cmd_args=cmd_args, run_uuid=str(uuid.uuid4()))

    return exit_code_for(stats, config.strict)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
