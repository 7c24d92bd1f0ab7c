from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from shrinkray.core.models import UNKNOWN, Classification, MediaKind
from shrinkray.utils.logger import get_logger


# Written into the metadata of every video/audio output, so files this tool
# already produced are recognised on later runs.
TAG_PREFIX = "shrinkray/"


# ============================================================================
# Signature Table
# ============================================================================


@dataclass(frozen=True)
class Signature:
    """
    One content signature.

    ``magic`` must appear at ``offset``. ``lead`` (if set) must start the data,
    and ``contains`` (if set) must appear anywhere in the sniffed prefix.
    """

    container: str
    kind: MediaKind
    magic: bytes
    offset: int = 0
    lead: Optional[bytes] = None
    contains: Optional[bytes] = None

    def matches(self, data: bytes) -> bool:
        end = self.offset + len(self.magic)
        if data[self.offset : end] != self.magic:
            return False
        if self.lead is not None and not data.startswith(self.lead):
            return False
        return self.contains is None or self.contains in data


def _ftyp(brand: bytes, container: str, kind: MediaKind) -> Signature:
    return Signature(container, kind, b"ftyp" + brand, offset=4)


# Order matters: the first matching signature wins, so specific entries come
# before the generic ones sharing a prefix.
DEFAULT_SIGNATURES = (
    Signature("jpeg", MediaKind.IMAGE, b"\xff\xd8\xff"),
    Signature("png", MediaKind.IMAGE, b"\x89PNG\r\n\x1a\n"),
    Signature("gif", MediaKind.IMAGE, b"GIF87a"),
    Signature("gif", MediaKind.IMAGE, b"GIF89a"),
    Signature("webp", MediaKind.IMAGE, b"WEBP", offset=8, lead=b"RIFF"),
    Signature("bmp", MediaKind.IMAGE, b"\x00\x00\x00\x00", offset=6, lead=b"BM"),
    Signature("tiff", MediaKind.IMAGE, b"II*\x00"),
    Signature("tiff", MediaKind.IMAGE, b"MM\x00*"),
    _ftyp(b"heic", "heif", MediaKind.IMAGE),
    _ftyp(b"heix", "heif", MediaKind.IMAGE),
    _ftyp(b"mif1", "heif", MediaKind.IMAGE),
    _ftyp(b"msf1", "heif", MediaKind.IMAGE),
    _ftyp(b"avif", "avif", MediaKind.IMAGE),
    _ftyp(b"avis", "avif", MediaKind.IMAGE),
    _ftyp(b"M4A ", "m4a", MediaKind.AUDIO),
    _ftyp(b"M4B ", "m4a", MediaKind.AUDIO),
    _ftyp(b"qt  ", "mov", MediaKind.VIDEO),
    Signature("mp4", MediaKind.VIDEO, b"ftyp", offset=4),
    Signature("webm", MediaKind.VIDEO, b"\x1a\x45\xdf\xa3", contains=b"webm"),
    Signature("mkv", MediaKind.VIDEO, b"\x1a\x45\xdf\xa3"),
    Signature("avi", MediaKind.VIDEO, b"AVI ", offset=8, lead=b"RIFF"),
    Signature("wav", MediaKind.AUDIO, b"WAVE", offset=8, lead=b"RIFF"),
    Signature("flv", MediaKind.VIDEO, b"FLV\x01"),
    Signature("wmv", MediaKind.VIDEO, b"\x30\x26\xb2\x75\x8e\x66\xcf\x11"),
    Signature("mpeg", MediaKind.VIDEO, b"\x00\x00\x01\xba"),
    Signature("mpeg", MediaKind.VIDEO, b"\x00\x00\x01\xb3"),
    Signature("ogv", MediaKind.VIDEO, b"OggS", contains=b"\x80theora"),
    Signature("ogg", MediaKind.AUDIO, b"OggS"),
    Signature("flac", MediaKind.AUDIO, b"fLaC"),
    Signature("aiff", MediaKind.AUDIO, b"AIFF", offset=8, lead=b"FORM"),
    Signature("mp3", MediaKind.AUDIO, b"ID3"),
    Signature("mp3", MediaKind.AUDIO, b"\xff\xfb"),
    Signature("mp3", MediaKind.AUDIO, b"\xff\xf3"),
    Signature("mp3", MediaKind.AUDIO, b"\xff\xf2"),
    Signature("aac", MediaKind.AUDIO, b"\xff\xf1"),
    Signature("aac", MediaKind.AUDIO, b"\xff\xf9"),
)


# ============================================================================
# Type Classifier
# ============================================================================


class TypeClassifier:
    """Determines media kind and container from file content, never from the extension."""

    DEFAULT_PREFIX_SIZE = 4096

    def __init__(self, signatures: Optional[Sequence[Signature]] = None, prefix_size: int = DEFAULT_PREFIX_SIZE):
        """
        Initialize classifier.

        Args:
            signatures: Ordered signature table. Defaults to DEFAULT_SIGNATURES.
            prefix_size: Maximum number of bytes read from each file
        """
        self.signatures = tuple(signatures) if signatures is not None else DEFAULT_SIGNATURES
        self.prefix_size = prefix_size
        self._tag = TAG_PREFIX.encode("ascii")
        self.logger = get_logger()

    def classify(self, path: Path) -> Classification:
        """
        Classify a file by its leading bytes.

        Args:
            path: File to inspect

        Returns:
            Classification; UNKNOWN for empty or unrecognised content

        Raises:
            OSError: If the file cannot be read
        """
        with open(path, "rb") as f:
            prefix = f.read(self.prefix_size)

        result = self.classify_bytes(prefix)
        if result.is_media:
            self.logger.debug(f"Identified {path.name} as {result.kind.value}/{result.container}")
        else:
            self.logger.debug(f"Unable to identify {path.name}")
        return result

    def classify_bytes(self, data: bytes) -> Classification:
        """Classify an in-memory prefix."""
        data = data[: self.prefix_size]
        for signature in self.signatures:
            if signature.matches(data):
                return Classification(signature.kind, signature.container, self._tag in data)
        return UNKNOWN
