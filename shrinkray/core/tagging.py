import struct
import zlib
from pathlib import Path

from shrinkray import __version__
from shrinkray.core.classifier import TAG_PREFIX


# Comment written into every output, so files this tool produced are
# recognised on later runs.
SHRINK_TAG = f"{TAG_PREFIX}{__version__}"

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


# ============================================================================
# Image Stamping
# ============================================================================
# ffmpeg's image muxers drop ``-metadata comment=...``, so image outputs get
# their comment inserted directly: a COM segment for JPEG, a tEXt chunk for PNG.


def jpeg_with_comment(data: bytes, comment: str) -> bytes:
    """Insert a COM segment right after the SOI marker."""
    if not data.startswith(b"\xff\xd8"):
        raise ValueError("not a JPEG stream")
    payload = comment.encode("utf-8")
    segment = b"\xff\xfe" + struct.pack(">H", len(payload) + 2) + payload
    return data[:2] + segment + data[2:]


def png_with_comment(data: bytes, comment: str) -> bytes:
    """Insert a ``Comment`` tEXt chunk right after the IHDR chunk."""
    if not data.startswith(PNG_SIGNATURE) or data[12:16] != b"IHDR":
        raise ValueError("not a PNG stream")
    (ihdr_length,) = struct.unpack(">I", data[8:12])
    end = 8 + 12 + ihdr_length  # length + type + data + crc

    body = b"tEXt" + b"Comment\x00" + comment.encode("latin-1")
    chunk = struct.pack(">I", len(body) - 4) + body + struct.pack(">I", zlib.crc32(body) & 0xFFFFFFFF)
    return data[:end] + chunk + data[end:]


STAMPERS = {
    "jpeg": jpeg_with_comment,
    "png": png_with_comment,
}


def stamp_file(path: Path, container: str, comment: str = SHRINK_TAG) -> bool:
    """
    Write ``comment`` into an image file in place.

    Args:
        path: File to stamp
        container: Container the file was written as
        comment: Comment text

    Returns:
        True if the file was stamped, False if the container has no stamper

    Raises:
        ValueError: The content does not match the container
        OSError: The file could not be read or rewritten
    """
    stamper = STAMPERS.get(container)
    if stamper is None:
        return False

    data = path.read_bytes()
    path.write_bytes(stamper(data, comment))
    return True
