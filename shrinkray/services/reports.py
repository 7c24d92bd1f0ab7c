import json
import re
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from shrinkray.core.models import OutcomeStatus
from shrinkray.services.statistics import RunStats
from shrinkray.utils.format import format_duration
from shrinkray.utils.logger import get_logger


# ============================================================================
# Report Generator
# ============================================================================


class ReportGenerator:
    """Generates JSON reports with run statistics."""

    def __init__(self, output_dir: Path):
        """
        Initialize report generator.

        Args:
            output_dir: Directory under which a ``reports`` folder is created
        """
        self.output_dir = Path(output_dir)
        self.logger = get_logger()

    def generate(
        self,
        stats: RunStats,
        title: str,
        cmd_args: Optional[Dict] = None,
        run_uuid: Optional[str] = None,
    ) -> Path:
        """
        Write a JSON report for one run.

        Args:
            stats: Statistics returned by MediaShrinker.run()
            title: Human readable name of the run (used for the file name)
            cmd_args: Options the run was started with
            run_uuid: Unique identifier for this run

        Returns:
            Path of the written report
        """
        reports_dir = self.output_dir / "reports"
        reports_dir.mkdir(parents=True, exist_ok=True)

        safe_name = "".join(c for c in title if c.isalnum() or c in (" ", "-", "_")).strip()
        safe_name = safe_name.replace(" ", "_") or "shrinkray"

        report_path = self._get_unique_path(reports_dir / f"{safe_name}_report.json")
        self._write_json_report(report_path, stats, title, cmd_args, run_uuid)
        self.logger.info(f"Report generated: {report_path}")
        return report_path

    def _get_unique_path(self, base_path: Path) -> Path:
        """Get a unique report path by incrementing number if file exists."""
        if not base_path.exists():
            return base_path

        base_name = base_path.stem
        suffix = base_path.suffix
        parent_dir = base_path.parent

        # Strip an existing " (N)" counter
        match = re.match(r"^(.+?)(\s*\(\d+\))?$", base_name)
        base_name_only = match.group(1).strip() if match else base_name

        existing_numbers = []
        pattern = re.compile(re.escape(base_name_only) + r"\s*\((\d+)\)" + re.escape(suffix))
        for file in parent_dir.glob(f"{base_name_only}*{suffix}"):
            match = pattern.match(file.name)
            if match:
                existing_numbers.append(int(match.group(1)))

        counter = (max(existing_numbers) + 1) if existing_numbers else 1
        return parent_dir / f"{base_name_only} ({counter}){suffix}"

    def _write_json_report(
        self,
        file_path: Path,
        stats: RunStats,
        report_title: str,
        cmd_args: Optional[Dict] = None,
        run_uuid: Optional[str] = None,
    ) -> None:
        metadata = {
            "title": f"Shrink Report: {report_title}",
            "generated": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            "cancelled": stats.cancelled,
        }
        if run_uuid:
            metadata["run_id"] = run_uuid

        summary = {
            "scanned": stats.scanned,
            "shrunk": stats.shrunk,
            "skipped": stats.skipped,
            "failed": stats.failed,
            "ignored": stats.ignored,
            "planned": stats.planned,
            "grew": stats.grew,
            "skip_reasons": dict(stats.skip_reasons),
        }

        size_statistics = {
            "total_original_size_bytes": stats.total_original_size,
            "total_new_size_bytes": stats.total_new_size,
            "space_saved_bytes": stats.space_saved,
            "compression_ratio_percent": round(stats.compression_ratio, 2),
            "planned_size_bytes": stats.planned_size,
            "wasted_size_bytes": stats.wasted_size,
            "by_kind": {key: dict(value) for key, value in stats.kind_stats.items()},
            "by_container": {key: dict(value) for key, value in stats.container_stats.items()},
        }

        processing_time = {
            "total_seconds": stats.total_processing_time,
            "formatted": format_duration(stats.total_processing_time),
        }

        file_details = []
        for outcome in stats.files:
            file_details.append(
                {
                    "path": str(outcome.path),
                    "final_path": str(outcome.final_path) if outcome.final_path else None,
                    "kind": outcome.kind.value,
                    "container": outcome.container,
                    "original_size_bytes": outcome.original_size,
                    "new_size_bytes": outcome.new_size,
                    "space_saved_bytes": outcome.space_saved,
                    "compression_ratio_percent": round(outcome.compression_ratio, 2),
                    "processing_time_seconds": round(outcome.processing_time, 2),
                    "status": outcome.status.value,
                    "reason": outcome.reason if outcome.status is not OutcomeStatus.SHRUNK else None,
                }
            )

        report = {
            "metadata": metadata,
            "summary": summary,
            "size_statistics": size_statistics,
            "processing_time": processing_time,
            "failures": [dict(failure) for failure in stats.failures],
            "file_details": file_details,
            "arguments": dict(cmd_args or {}),
        }

        with open(file_path, "w", encoding="utf-8") as f:
            json.dump(report, f, indent=2)
