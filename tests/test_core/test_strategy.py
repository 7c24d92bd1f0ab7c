"""
Tests for shrinkray.core.strategy module.
"""

import pytest

from shrinkray import __version__
from shrinkray.core.config import ShrinkConfig
from shrinkray.core.errors import StrategyUnavailable
from shrinkray.core.models import Classification, MediaKind, Strategy
from shrinkray.core.strategy import (
    ENCODER,
    StrategySelector,
    jpeg_qscale,
    map_jpeg_quality,
    png_compression_level,
)


def _selector(temp_dir, **overrides) -> StrategySelector:
    return StrategySelector(ShrinkConfig(roots=[temp_dir], **overrides))


@pytest.mark.unit
class TestQualityMapping:
    """Tests for the quality mapping helpers."""

    def test_jpeg_quality_bounds(self):
        assert map_jpeg_quality(100) == 95
        assert map_jpeg_quality(96) == 91
        assert map_jpeg_quality(0) == 1

    def test_jpeg_qscale_monotonic(self):
        assert jpeg_qscale(100) < jpeg_qscale(80) < jpeg_qscale(10)
        assert 2 <= jpeg_qscale(0) <= 31

    def test_png_compression_level_range(self):
        assert png_compression_level(100) == 9
        assert png_compression_level(80) == 6
        assert png_compression_level(0) == 0


@pytest.mark.unit
class TestStrategySelector:
    """Tests for StrategySelector.select."""

    def test_jpeg_keeps_format(self, temp_dir):
        strategy = _selector(temp_dir).select(Classification(MediaKind.IMAGE, "jpeg"))

        assert strategy.name == "jpeg"
        assert strategy.tool == ENCODER
        assert strategy.output_suffix is None
        assert "-q:v" in strategy.args
        assert strategy.args[-1] == "{output}"
        assert "{input}" in strategy.args

    def test_png_converted_to_jpeg_by_default(self, temp_dir):
        strategy = _selector(temp_dir).select(Classification(MediaKind.IMAGE, "png"))

        assert strategy.name == "jpeg"
        assert strategy.output_suffix == ".jpg"
        assert "format=rgb24" in " ".join(strategy.args)

    def test_png_preserve_format_uses_lossless_png(self, temp_dir):
        strategy = _selector(temp_dir, preserve_format=True, image_codecs=("jpeg", "png")).select(
            Classification(MediaKind.IMAGE, "png")
        )

        assert strategy.name == "png"
        assert strategy.output_suffix is None
        assert "-compression_level" in strategy.args

    def test_preserve_format_without_matching_codec(self, temp_dir):
        with pytest.raises(StrategyUnavailable) as exc_info:
            _selector(temp_dir, preserve_format=True).select(Classification(MediaKind.IMAGE, "png"))

        assert exc_info.value.reason == "no-codec"

    def test_mp4_becomes_webm_with_vp9(self, temp_dir):
        strategy = _selector(temp_dir).select(Classification(MediaKind.VIDEO, "mp4"))

        assert strategy.name == "vp9"
        assert strategy.output_suffix == ".webm"
        assert "libvpx-vp9" in strategy.args
        assert "33" in strategy.args
        assert f"comment=shrinkray/{__version__}" in strategy.args

    def test_webm_input_keeps_suffix(self, temp_dir):
        strategy = _selector(temp_dir).select(Classification(MediaKind.VIDEO, "webm"))

        assert strategy.output_suffix is None

    def test_hevc_preference_with_preset_and_crf(self, temp_dir):
        strategy = _selector(temp_dir, video_codecs=("hevc",), video_crf=24, video_preset="slow").select(
            Classification(MediaKind.VIDEO, "mov")
        )

        assert strategy.name == "hevc"
        assert strategy.output_suffix is None
        assert "libx265" in strategy.args
        assert "24" in strategy.args
        assert "slow" in strategy.args

    def test_ceilings(self, temp_dir):
        strategy = _selector(temp_dir, max_resolution="1280x720", max_bitrate="2M").select(
            Classification(MediaKind.VIDEO, "mp4")
        )
        joined = " ".join(strategy.args)

        assert "min(iw,1280)" in joined
        assert "force_divisible_by=2" in joined
        assert "-maxrate 2M" in joined

    def test_audio_to_opus(self, temp_dir):
        strategy = _selector(temp_dir, audio_bitrate="96k").select(Classification(MediaKind.AUDIO, "wav"))

        assert strategy.name == "opus"
        assert strategy.output_suffix == ".ogg"
        assert "-vn" in strategy.args
        assert "96k" in strategy.args

    def test_gif_is_unsupported(self, temp_dir):
        with pytest.raises(StrategyUnavailable) as exc_info:
            _selector(temp_dir).select(Classification(MediaKind.IMAGE, "gif"))

        assert exc_info.value.reason == "unsupported-format"

    def test_unknown_is_unsupported(self, temp_dir):
        with pytest.raises(StrategyUnavailable) as exc_info:
            _selector(temp_dir).select(Classification(MediaKind.UNKNOWN))

        assert exc_info.value.reason == "unsupported-format"

    def test_disabled_kind(self, temp_dir):
        with pytest.raises(StrategyUnavailable) as exc_info:
            _selector(temp_dir, enabled_kinds=("image",)).select(Classification(MediaKind.VIDEO, "mp4"))

        assert exc_info.value.reason == "kind-disabled"

    def test_tagged_input_already_shrunk(self, temp_dir):
        with pytest.raises(StrategyUnavailable) as exc_info:
            _selector(temp_dir).select(Classification(MediaKind.VIDEO, "webm", tagged=True))

        assert exc_info.value.reason == "already-shrunk"

    def test_kind_override_does_not_enable_gif(self, temp_dir):
        selector = _selector(temp_dir, strategy_overrides={"image": Strategy("any", MediaKind.IMAGE, "tool", ())})

        with pytest.raises(StrategyUnavailable):
            selector.select(Classification(MediaKind.IMAGE, "gif"))

    def test_overrides_by_container_then_kind(self, temp_dir):
        by_container = Strategy("custom-mp4", MediaKind.VIDEO, "handbrake", ("--preset", "fast"))
        by_kind = Strategy("custom-video", MediaKind.VIDEO, "other", ())
        selector = _selector(temp_dir, strategy_overrides={"mp4": by_container, "video": by_kind})

        assert selector.select(Classification(MediaKind.VIDEO, "mp4")) is by_container
        assert selector.select(Classification(MediaKind.VIDEO, "mkv")) is by_kind

    def test_selection_is_deterministic(self, temp_dir):
        selector = _selector(temp_dir)
        classification = Classification(MediaKind.IMAGE, "webp")

        assert selector.select(classification) == selector.select(classification)


@pytest.mark.unit
class TestStrategyRender:
    """Tests for Strategy.render."""

    def test_placeholders_are_substituted(self, temp_dir):
        strategy = Strategy("x", MediaKind.IMAGE, "ffmpeg", ("-i", "{input}", "-vf", "scale='min(iw,10)'", "{output}"))

        command = strategy.render("/bin/ffmpeg", temp_dir / "a.jpg", temp_dir / "b.jpg")

        assert command == [
            "/bin/ffmpeg",
            "-i",
            str(temp_dir / "a.jpg"),
            "-vf",
            "scale='min(iw,10)'",
            str(temp_dir / "b.jpg"),
        ]

    def test_paths_appended_without_placeholders(self, temp_dir):
        strategy = Strategy("x", MediaKind.IMAGE, "cjpeg", ("-quality", "80"))

        command = strategy.render("cjpeg", temp_dir / "a.jpg", temp_dir / "b.jpg")

        assert command == ["cjpeg", "-quality", "80", str(temp_dir / "a.jpg"), str(temp_dir / "b.jpg")]


@pytest.mark.unit
class TestOutputContainer:
    """The written container is fixed by the strategy, never by a file name."""

    def _flag(self, strategy, name):
        return strategy.args[strategy.args.index(name) + 1]

    def test_kept_jpeg_names_its_muxer(self, temp_dir):
        strategy = _selector(temp_dir).select(Classification(MediaKind.IMAGE, "jpeg"))

        assert strategy.container == "jpeg"
        assert self._flag(strategy, "-f") == "image2"
        assert self._flag(strategy, "-c:v") == "mjpeg"
        assert strategy.args[-2:] == ("image2", "{output}")

    def test_extensionless_jpeg_gets_jpeg_temp_suffix(self, temp_dir):
        strategy = _selector(temp_dir).select(Classification(MediaKind.IMAGE, "jpeg"))

        assert strategy.suffix_for(temp_dir / "photo") == ""
        assert strategy.temp_suffix_for(temp_dir / "photo") == ".jpg"
        assert strategy.temp_suffix_for(temp_dir / "photo.png") == ".jpg"

    def test_converted_video_uses_codec_container(self, temp_dir):
        strategy = _selector(temp_dir).select(Classification(MediaKind.VIDEO, "mp4"))

        assert strategy.container == "webm"
        assert self._flag(strategy, "-f") == "webm"
        assert "-movflags" not in strategy.args

    def test_mp4_output_moves_index_to_front(self, temp_dir):
        strategy = _selector(temp_dir, video_codecs=("hevc",)).select(Classification(MediaKind.VIDEO, "mp4"))

        assert self._flag(strategy, "-f") == "mp4"
        assert self._flag(strategy, "-movflags") == "+faststart"
        assert self._flag(strategy, "-tag:v") == "hvc1"

    def test_mkv_kept_as_matroska(self, temp_dir):
        strategy = _selector(temp_dir, video_codecs=("hevc",)).select(Classification(MediaKind.VIDEO, "mkv"))

        assert strategy.container == "mkv"
        assert self._flag(strategy, "-f") == "matroska"
        assert "-tag:v" not in strategy.args

    def test_aac_audio_uses_ipod_muxer(self, temp_dir):
        strategy = _selector(temp_dir, audio_codecs=("aac",)).select(Classification(MediaKind.AUDIO, "m4a"))

        assert self._flag(strategy, "-f") == "ipod"
        assert strategy.temp_suffix_for(temp_dir / "song.m4a") == ".m4a"

    def test_override_without_container_keeps_input_suffix(self, temp_dir):
        strategy = Strategy("custom", MediaKind.IMAGE, "cjpeg", ())

        assert strategy.temp_suffix_for(temp_dir / "photo.jpeg") == ".jpeg"
