"""
Logging for shrinkray, with RFC 5424 syslog severity levels.

A single process-wide logger writes plain messages to the console and,
optionally, detailed records (location and worker thread) to a log file.
"""

import logging
import sys
import threading
from datetime import datetime
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from pathlib import Path
from typing import Optional


# ============================================================================
# RFC 5424 Syslog Severity Levels
# ============================================================================

# RFC 5424: 0=Emergency, 1=Alert, 2=Critical, 3=Error, 4=Warning, 5=Notice, 6=Informational, 7=Debug
EMERGENCY = 70
ALERT = 60
NOTICE = 25

logging.addLevelName(EMERGENCY, "EMERGENCY")
logging.addLevelName(ALERT, "ALERT")
logging.addLevelName(NOTICE, "NOTICE")


# ============================================================================
# Formatters
# ============================================================================


class DetailedFormatter(logging.Formatter):
    """File formatter that adds module:function:line as ``%(location)s``."""

    def format(self, record: logging.LogRecord) -> str:
        record.location = f"{record.module}:{record.funcName}:{record.lineno}"
        return super().format(record)


class ConsoleFormatter(logging.Formatter):
    """Console formatter; prefixes warnings and worse with their level name."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if record.levelno >= logging.WARNING:
            return f"{record.levelname}: {message}"
        return message


# ============================================================================
# Singleton Logger
# ============================================================================


class ShrinkRayLogger:
    """
    Thread-safe singleton logger.

    Features:
    - RFC 5424 syslog severity levels
    - Console output (INFO+) and optional file output (configured level)
    - Worker thread names in file logs, since jobs run concurrently
    - Optional log rotation (size or time based)
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if getattr(self, "_initialized", False):
            return

        self._initialized = True
        self._logger = logging.getLogger("shrinkray")
        self._logger.setLevel(logging.DEBUG)
        self._logger.propagate = False

        self._console_handler: Optional[logging.Handler] = None
        self._file_handler: Optional[logging.Handler] = None
        self._log_file: Optional[Path] = None

    def configure(
        self,
        log_level: str = "INFO",
        log_dir: Optional[str] = None,
        enable_console: bool = True,
        rotation_type: Optional[str] = None,
        max_bytes: int = 10485760,  # 10 MB
        backup_count: int = 5,
        when: str = "midnight",
    ) -> None:
        """
        Configure the logger.

        Args:
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files; no file logging when None
            enable_console: Enable console output
            rotation_type: None for a plain file, "size" or "time" for rotation
            max_bytes: Max bytes for size-based rotation
            backup_count: Number of backup files to keep
            when: When to rotate for time-based rotation (e.g., "midnight", "H")
        """
        self.reset()

        level = getattr(logging, log_level.upper(), logging.INFO)
        self._logger.setLevel(level)

        if enable_console:
            self._console_handler = logging.StreamHandler(sys.stdout)
            self._console_handler.setLevel(max(level, logging.INFO))
            self._console_handler.setFormatter(ConsoleFormatter(fmt="%(message)s"))
            self._logger.addHandler(self._console_handler)

        if log_dir is not None:
            log_path = Path(log_dir)
            log_path.mkdir(parents=True, exist_ok=True)
            self._log_file = log_path / f"shrinkray_{datetime.now().strftime('%Y%m%d')}.log"
            self._file_handler = self._build_file_handler(self._log_file, rotation_type, max_bytes, backup_count, when)
            self._file_handler.setLevel(level)
            self._file_handler.setFormatter(
                DetailedFormatter(
                    fmt="%(asctime)s [%(levelname)s] [%(threadName)s] [%(location)s] %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
            self._logger.addHandler(self._file_handler)

    @staticmethod
    def _build_file_handler(
        log_file: Path,
        rotation_type: Optional[str],
        max_bytes: int,
        backup_count: int,
        when: str,
    ) -> logging.Handler:
        if rotation_type is None:
            return logging.FileHandler(log_file, encoding="utf-8", delay=True)
        if rotation_type == "size":
            return RotatingFileHandler(
                log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8", delay=True
            )
        if rotation_type == "time":
            return TimedRotatingFileHandler(log_file, when=when, backupCount=backup_count, encoding="utf-8", delay=True)
        raise ValueError(f"Invalid rotation_type: {rotation_type}. Must be 'size' or 'time'.")

    def reset(self) -> None:
        """Close and detach every handler."""
        for handler in list(self._logger.handlers):
            handler.close()
            self._logger.removeHandler(handler)
        self._console_handler = None
        self._file_handler = None
        self._log_file = None

    @property
    def log_file(self) -> Optional[Path]:
        return self._log_file

    def get_logger(self) -> logging.Logger:
        """Get the underlying logger instance."""
        return self._logger

    # Convenience methods for RFC 5424 severity levels

    def emergency(self, msg: str, *args, **kwargs) -> None:
        self._logger.log(EMERGENCY, msg, *args, **kwargs)

    def alert(self, msg: str, *args, **kwargs) -> None:
        self._logger.log(ALERT, msg, *args, **kwargs)

    def critical(self, msg: str, *args, **kwargs) -> None:
        self._logger.critical(msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs) -> None:
        self._logger.error(msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def notice(self, msg: str, *args, **kwargs) -> None:
        """Log notice message (severity 5 - normal but significant condition)."""
        self._logger.log(NOTICE, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs) -> None:
        self._logger.info(msg, *args, **kwargs)

    def debug(self, msg: str, *args, **kwargs) -> None:
        self._logger.debug(msg, *args, **kwargs)


# ============================================================================
# Global Logger Instance
# ============================================================================


def get_logger() -> ShrinkRayLogger:
    """
    Get the global ShrinkRayLogger instance.

    Returns:
        Singleton ShrinkRayLogger instance
    """
    return ShrinkRayLogger()
