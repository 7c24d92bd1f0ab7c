from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple

from shrinkray.core.config import ShrinkConfig
from shrinkray.core.errors import StrategyUnavailable
from shrinkray.core.models import CONTAINER_SUFFIXES, Classification, MediaKind, Strategy
from shrinkray.core.tagging import SHRINK_TAG
from shrinkray.utils.format import parse_resolution


# ============================================================================
# Codec Table
# ============================================================================


@dataclass(frozen=True)
class Codec:
    """
    A target codec known to the selector.

    ``container`` is what the codec is written into when the format changes.
    ``containers`` lists input containers the codec can be written back into
    without changing the file's format. Lossless codecs are only ever used for
    those containers.
    """

    name: str
    kind: MediaKind
    container: str
    containers: FrozenSet[str]
    lossless: bool = False

    @property
    def suffix(self) -> str:
        return CONTAINER_SUFFIXES[self.container]


CODECS: Dict[str, Codec] = {
    "jpeg": Codec("jpeg", MediaKind.IMAGE, "jpeg", frozenset({"jpeg"})),
    "webp": Codec("webp", MediaKind.IMAGE, "webp", frozenset({"webp"})),
    "png": Codec("png", MediaKind.IMAGE, "png", frozenset({"png"}), lossless=True),
    "vp9": Codec("vp9", MediaKind.VIDEO, "webm", frozenset({"webm", "mkv"})),
    "av1": Codec("av1", MediaKind.VIDEO, "webm", frozenset({"webm", "mkv", "mp4", "mov"})),
    "hevc": Codec("hevc", MediaKind.VIDEO, "mp4", frozenset({"mp4", "mov", "mkv"})),
    "h264": Codec("h264", MediaKind.VIDEO, "mp4", frozenset({"mp4", "mov", "mkv"})),
    "opus": Codec("opus", MediaKind.AUDIO, "ogg", frozenset({"ogg"})),
    "aac": Codec("aac", MediaKind.AUDIO, "m4a", frozenset({"m4a"})),
    "mp3": Codec("mp3", MediaKind.AUDIO, "mp3", frozenset({"mp3"})),
    "flac": Codec("flac", MediaKind.AUDIO, "flac", frozenset({"flac"}), lossless=True),
}

DEFAULT_VIDEO_CRF = {"vp9": 33, "av1": 35, "hevc": 28, "h264": 23}

# ffmpeg muxer for each output container; passed explicitly so the output
# format never depends on a file name
MUXERS = {
    "jpeg": "image2",
    "png": "image2",
    "webp": "webp",
    "webm": "webm",
    "mkv": "matroska",
    "mp4": "mp4",
    "mov": "mov",
    "ogg": "ogg",
    "m4a": "ipod",
    "mp3": "mp3",
    "flac": "flac",
}

# Containers whose index is moved to the front, which also puts the comment
# tag within reach of the classifier
FASTSTART_CONTAINERS = frozenset({"mp4", "mov", "m4a"})

# Animated content would be flattened to a single frame
UNSUPPORTED_CONTAINERS = frozenset({"gif"})

ENCODER = "ffmpeg"
HEAD_ARGS = ("-hide_banner", "-loglevel", "error", "-nostdin", "-y", "-i", "{input}")


# ============================================================================
# Quality Mapping
# ============================================================================


def map_jpeg_quality(image_quality: int) -> int:
    """Map image_quality (0-100) to JPEG quality (1-95)."""
    if image_quality >= 100:
        return 95
    if image_quality >= 95:
        return image_quality - 5
    return max(1, min(90, int((image_quality / 94) * 90)))


def jpeg_qscale(image_quality: int) -> int:
    """FFmpeg -q:v for mjpeg: 2 is best, 31 is worst."""
    jpeg_quality = map_jpeg_quality(image_quality)
    ffmpeg_q = int(2 + (31 - 2) * (100 - jpeg_quality) / 100)
    return max(2, min(31, ffmpeg_q))


def map_webp_quality(image_quality: int) -> int:
    """Map image_quality (0-100) to WebP quality (1-95)."""
    return map_jpeg_quality(image_quality)


def png_compression_level(image_quality: int) -> int:
    """Higher quality settings spend more effort on (lossless) PNG compression."""
    if image_quality >= 80:
        level = int(6 + ((image_quality - 80) / 20) * 3)
    else:
        level = int((image_quality / 80) * 6)
    return max(0, min(9, level))


# ============================================================================
# Strategy Selector
# ============================================================================


class StrategySelector:
    """Maps a classification and the configuration to a compression strategy."""

    def __init__(self, config: ShrinkConfig):
        """
        Initialize selector.

        Args:
            config: Run configuration (quality targets, codec preferences, ceilings)
        """
        self.config = config
        self.preferences = {
            MediaKind.IMAGE: tuple(config.image_codecs),
            MediaKind.VIDEO: tuple(config.video_codecs),
            MediaKind.AUDIO: tuple(config.audio_codecs),
        }
        self.max_dimensions: Optional[Tuple[int, int]] = (
            parse_resolution(config.max_resolution) if config.max_resolution else None
        )
        self.tag = f"comment={SHRINK_TAG}"

    def select(self, classification: Classification) -> Strategy:
        """
        Choose a strategy for a classified file.

        Args:
            classification: Kind and container of the file

        Returns:
            The strategy to run

        Raises:
            StrategyUnavailable: The file should be left alone
        """
        kind = classification.kind
        container = classification.container

        if kind is MediaKind.UNKNOWN:
            raise StrategyUnavailable("unsupported-format", "content not recognised as media")
        if kind.value not in self.config.enabled_kinds:
            raise StrategyUnavailable("kind-disabled", f"{kind.value} processing is disabled")
        if classification.tagged:
            raise StrategyUnavailable("already-shrunk", "file carries the shrinkray tag")

        override = self.config.strategy_overrides.get(container or "")
        if override is not None:
            return override
        if container in UNSUPPORTED_CONTAINERS:
            raise StrategyUnavailable("unsupported-format", f"{container} files are not supported")
        override = self.config.strategy_overrides.get(kind.value)
        if override is not None:
            return override

        codec = self._pick_codec(kind, container)
        if codec is None:
            raise StrategyUnavailable("no-codec", f"no usable {kind.value} codec for {container}")

        keeps_format = self._keeps_format(codec, container)
        output_container = container if keeps_format else codec.container
        return Strategy(
            name=codec.name,
            kind=kind,
            tool=ENCODER,
            args=self._build_args(codec, container, output_container),
            output_suffix=None if keeps_format else codec.suffix,
            container=output_container,
        )

    def _pick_codec(self, kind: MediaKind, container: Optional[str]) -> Optional[Codec]:
        for name in self.preferences.get(kind, ()):
            codec = CODECS.get(name)
            if codec is None or codec.kind is not kind:
                continue
            if (self.config.preserve_format or codec.lossless) and container not in codec.containers:
                continue
            return codec
        return None

    def _keeps_format(self, codec: Codec, container: Optional[str]) -> bool:
        return self.config.preserve_format or container in codec.containers

    # ------------------------------------------------------------------------
    # Argument builders
    # ------------------------------------------------------------------------

    def _build_args(self, codec: Codec, container: Optional[str], output_container: str) -> Tuple[str, ...]:
        if codec.kind is MediaKind.IMAGE:
            body = self._image_args(codec, container)
        elif codec.kind is MediaKind.VIDEO:
            body = self._video_args(codec, output_container)
        else:
            body = self._audio_args(codec)

        if output_container in FASTSTART_CONTAINERS:
            body.extend(["-movflags", "+faststart"])
        body.extend(["-f", MUXERS[output_container]])
        return HEAD_ARGS + tuple(body) + ("{output}",)

    def _image_args(self, codec: Codec, container: Optional[str]) -> List[str]:
        quality = self.config.image_quality
        filters: List[str] = []
        if codec.name == "jpeg" and container in {"png", "webp", "bmp", "tiff"}:
            filters.append("format=rgb24")
        if self.max_dimensions:
            filters.append(self._scale_filter(even=False))

        args: List[str] = ["-vf", ",".join(filters)] if filters else []
        if codec.name == "jpeg":
            args.extend(["-c:v", "mjpeg", "-q:v", str(jpeg_qscale(quality))])
        elif codec.name == "webp":
            args.extend(["-c:v", "libwebp", "-quality", str(map_webp_quality(quality))])
        elif codec.name == "png":
            args.extend(["-c:v", "png", "-compression_level", str(png_compression_level(quality))])
        args.extend(["-frames:v", "1"])
        if codec.name != "webp":
            # image2 writes a single file instead of a numbered sequence
            args.extend(["-update", "1"])
        return args

    def _video_args(self, codec: Codec, output_container: str) -> List[str]:
        crf = str(self.config.video_crf if self.config.video_crf is not None else DEFAULT_VIDEO_CRF[codec.name])
        bitrate = self.config.audio_bitrate

        args: List[str] = []
        if self.max_dimensions:
            args.extend(["-vf", self._scale_filter(even=True)])

        if codec.name == "vp9":
            args.extend(["-c:v", "libvpx-vp9", "-crf", crf, "-b:v", "0", "-row-mt", "1"])
            args.extend(["-c:a", "libopus", "-b:a", bitrate])
        elif codec.name == "av1":
            args.extend(["-c:v", "libsvtav1", "-crf", crf])
            args.extend(["-c:a", "libopus", "-b:a", bitrate])
        elif codec.name == "hevc":
            args.extend(["-c:v", "libx265", "-crf", crf, "-preset", self.config.video_preset])
            if output_container in FASTSTART_CONTAINERS:
                # MP4/MOV players expect the hvc1 tag
                args.extend(["-tag:v", "hvc1"])
            args.extend(["-c:a", "aac", "-b:a", bitrate])
        else:
            args.extend(["-c:v", "libx264", "-crf", crf, "-preset", self.config.video_preset])
            args.extend(["-c:a", "aac", "-b:a", bitrate])

        if self.config.max_bitrate:
            args.extend(["-maxrate", self.config.max_bitrate, "-bufsize", self.config.max_bitrate])

        args.extend(["-map_metadata", "0", "-metadata", self.tag])
        return args

    def _audio_args(self, codec: Codec) -> List[str]:
        bitrate = self.config.audio_bitrate
        args: List[str] = ["-vn"]
        if codec.name == "opus":
            args.extend(["-c:a", "libopus", "-b:a", bitrate])
        elif codec.name == "aac":
            args.extend(["-c:a", "aac", "-b:a", bitrate])
        elif codec.name == "mp3":
            args.extend(["-c:a", "libmp3lame", "-b:a", bitrate])
        else:
            args.extend(["-c:a", "flac", "-compression_level", "12"])
        args.extend(["-map_metadata", "0", "-metadata", self.tag])
        return args

    def _scale_filter(self, even: bool) -> str:
        """Downscale to fit the ceiling, keeping aspect ratio and never upscaling."""
        width, height = self.max_dimensions
        expression = f"scale='min(iw,{width})':'min(ih,{height})':force_original_aspect_ratio=decrease"
        if even:
            # Most video encoders need even dimensions
            expression += ":force_divisible_by=2"
        return expression
