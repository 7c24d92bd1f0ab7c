from pathlib import Path
from typing import Optional


# ============================================================================
# Error Taxonomy
# ============================================================================


class ShrinkRayError(Exception):
    """Base class for all shrinkray errors."""


class ConfigurationError(ShrinkRayError, ValueError):
    """Invalid configuration. Fatal, raised before any work starts."""


class DiscoveryError(ShrinkRayError):
    """A directory entry could not be listed or inspected."""

    def __init__(self, path: Path, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


class StrategyUnavailable(ShrinkRayError):
    """No compression strategy applies to a candidate."""

    def __init__(self, reason: str, detail: str = ""):
        super().__init__(detail or reason)
        self.reason = reason
        self.detail = detail


class ToolNotFoundError(ShrinkRayError, FileNotFoundError):
    """An external encoder binary could not be located."""

    def __init__(self, name: str):
        super().__init__(
            f"{name} not found. Install it and add it to PATH, "
            f"set SHRINKRAY_BIN_{name.upper()}, or pass --tool {name}=PATH."
        )
        self.name = name


class ExecutorFailure(ShrinkRayError):
    """The external encoder did not produce a usable output."""

    NON_ZERO_EXIT = "non-zero-exit"
    TIMEOUT = "timeout"
    CRASH = "crash"
    LAUNCH_FAILED = "launch-failed"
    EMPTY_OUTPUT = "empty-output"
    CANCELLED = "cancelled"

    def __init__(self, kind: str, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.kind = kind
        self.returncode = returncode
        self.stderr = stderr

    @property
    def reason(self) -> str:
        return f"{self.kind}: {self}"


class CommitFailure(ShrinkRayError):
    """A candidate output was rejected or could not be moved into place."""

    NOT_SMALLER_ENOUGH = "not-smaller-enough"
    CORRUPT_OUTPUT = "corrupt-output"
    RENAME_FAILED = "rename-failed"
    SOURCE_CHANGED = "source-changed"

    def __init__(self, kind: str, message: str, new_size: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.new_size = new_size

    @property
    def reason(self) -> str:
        return f"{self.kind}: {self}"

    @property
    def is_skip(self) -> bool:
        return self.kind == self.NOT_SMALLER_ENOUGH
