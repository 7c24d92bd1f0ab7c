"""
shrinkray - Shrinks media files in place by re-encoding them with external tools.
"""

__version__ = "0.1.0"

# Package-level exports for convenience
from shrinkray.cli import main
from shrinkray.core.classifier import TypeClassifier
from shrinkray.core.config import ParameterValidator, ShrinkConfig
from shrinkray.core.media_shrinker import MediaShrinker
from shrinkray.core.models import Candidate, Classification, Job, JobOutcome, MediaKind, OutcomeStatus, Strategy
from shrinkray.core.strategy import StrategySelector
from shrinkray.core.tool_executor import ToolExecutor
from shrinkray.services.reports import ReportGenerator
from shrinkray.services.statistics import RunStats, StatisticsTracker
from shrinkray.utils.file_processor import FileProcessor
from shrinkray.utils.format import format_size, parse_resolution, parse_size


__all__ = [
    "ShrinkConfig",
    "ParameterValidator",
    "MediaShrinker",
    "TypeClassifier",
    "StrategySelector",
    "ToolExecutor",
    "MediaKind",
    "Classification",
    "Candidate",
    "Strategy",
    "Job",
    "JobOutcome",
    "OutcomeStatus",
    "ReportGenerator",
    "RunStats",
    "StatisticsTracker",
    "FileProcessor",
    "format_size",
    "parse_size",
    "parse_resolution",
    "main",
]
