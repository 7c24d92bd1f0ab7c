# ============================================================================
# Utility Functions
# ============================================================================

import re


def format_size(size_bytes: int) -> str:
    """Format bytes to human-readable size."""
    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if abs(size) < 1024.0:
            return f"{size:.2f} {unit}"
        size /= 1024.0
    return f"{size:.2f} PB"


def format_duration(total_seconds: float) -> str:
    """Format seconds as '1h 2m 3.4s', '2m 3.4s' or '3.4s'."""
    if total_seconds <= 0:
        return ""
    hours = int(total_seconds // 3600)
    minutes = int((total_seconds % 3600) // 60)
    seconds = total_seconds % 60
    if hours > 0:
        return f"{hours}h {minutes}m {seconds:.1f}s"
    if minutes > 0:
        return f"{minutes}m {seconds:.1f}s"
    return f"{seconds:.1f}s"


def parse_size(size_str: str) -> int:
    """
    Parse a size string to bytes.

    Supports formats like:
    - "1MB", "500MB", "1.5GB", "2TB"
    - "1024B", "1.5K", "1024"
    - Case insensitive (kb, KB, Kb all work)

    Args:
        size_str: Size string to parse (e.g., "10MB", "1.5GB")

    Returns:
        Size in bytes as integer

    Raises:
        ValueError: If size string format is invalid
    """
    if not size_str or not isinstance(size_str, str):
        raise ValueError(f"Invalid size string: {size_str}")

    size_str = size_str.strip().upper()

    match = re.match(r"^(\d+(?:\.\d+)?)\s*([KMGT]?B?)$", size_str)
    if not match:
        raise ValueError(f"Invalid size format: {size_str}. Expected format like '10MB', '1.5GB', '500KB'")

    value = float(match.group(1))
    unit = match.group(2) or "B"

    units = {
        "B": 1,
        "K": 1024,
        "KB": 1024,
        "M": 1024**2,
        "MB": 1024**2,
        "G": 1024**3,
        "GB": 1024**3,
        "T": 1024**4,
        "TB": 1024**4,
    }

    return int(value * units[unit])


def parse_ratio(ratio_str: str) -> float:
    """
    Parse a size-reduction ratio.

    Accepts a fraction ("0.05") or a percentage ("5%").

    Raises:
        ValueError: If the value is not a number in [0, 1)
    """
    if not ratio_str or not isinstance(ratio_str, str):
        raise ValueError(f"Invalid ratio: {ratio_str}")

    text = ratio_str.strip()
    is_percent = text.endswith("%")
    if is_percent:
        text = text[:-1].strip()

    try:
        value = float(text)
    except ValueError:
        raise ValueError(f"Invalid ratio: {ratio_str}. Expected '0.05' or '5%'")

    if is_percent:
        value /= 100

    if not (0 <= value < 1):
        raise ValueError(f"Ratio must be between 0 and 1 (exclusive), got {ratio_str}")
    return value


def parse_resolution(resolution_str: str) -> tuple:
    """
    Parse a resolution string to (width, height) tuple.

    Supports formats like:
    - "1920x1080", "1280x720" (explicit width x height)
    - "720p", "1080p", "1440p", "2160p" (standard resolutions)
    - "2k", "4k", "8k" (standard resolutions)
    - Case insensitive

    Args:
        resolution_str: Resolution string to parse (e.g., "1920x1080", "1080p", "4k")

    Returns:
        Tuple of (width, height) as integers

    Raises:
        ValueError: If resolution string format is invalid
    """
    if not resolution_str or not isinstance(resolution_str, str):
        raise ValueError(f"Invalid resolution string: {resolution_str}")

    resolution_str = resolution_str.strip().lower()

    named_resolutions = {
        "480p": (854, 480),
        "720p": (1280, 720),
        "1080p": (1920, 1080),
        "1440p": (2560, 1440),
        "2160p": (3840, 2160),
        "2k": (2048, 1080),
        "4k": (3840, 2160),
        "8k": (7680, 4320),
    }

    if resolution_str in named_resolutions:
        return named_resolutions[resolution_str]

    match = re.match(r"^(\d+)x(\d+)$", resolution_str)
    if match:
        width = int(match.group(1))
        height = int(match.group(2))

        if width <= 0 or height <= 0:
            raise ValueError(f"Resolution dimensions must be positive: {resolution_str}")

        return (width, height)

    raise ValueError(
        f"Invalid resolution format: {resolution_str}. "
        f"Expected formats: '1920x1080', '720p', '1080p', '1440p', '2160p', '2k', '4k', '8k'"
    )
