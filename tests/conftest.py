"""
Shared pytest fixtures and configuration.
"""

import shutil
import sys
import tempfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from shrinkray.core.config import ShrinkConfig
from shrinkray.core.models import MediaKind, Strategy
from shrinkray.core.tool_executor import ToolExecutor
from shrinkray.utils.logger import get_logger


# Leading bytes that the classifier recognises for each container
MEDIA_HEADERS = {
    "jpeg": b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00",
    "png": b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x01\x00\x00\x00\x01\x00\x08\x02\x00\x00\x00",
    "gif": b"GIF89a\x01\x00\x01\x00\x80\x00\x00",
    "webp": b"RIFF\x00\x00\x00\x00WEBPVP8 ",
    "mp4": b"\x00\x00\x00\x18ftypisom\x00\x00\x02\x00isomiso2",
    "mov": b"\x00\x00\x00\x14ftypqt  \x00\x00\x02\x00qt  ",
    "webm": b"\x1a\x45\xdf\xa3\x9f\x42\x86\x81\x01\x42\xf7\x81\x01\x42\x82\x84webm",
    "mkv": b"\x1a\x45\xdf\xa3\xa3\x42\x86\x81\x01\x42\xf7\x81\x01\x42\x82\x88matroska",
    "wav": b"RIFF\x00\x00\x00\x00WAVEfmt ",
    "mp3": b"ID3\x04\x00\x00\x00\x00\x00\x00",
    "ogg": b"OggS\x00\x02\x00\x00\x00\x00\x00\x00\x00\x00\x01\x1e\x01vorbis",
    "flac": b"fLaC\x00\x00\x00\x22",
}

# Stand-in for an external encoder. Usage: fake_encoder.py MODE PARAM INPUT OUTPUT
FAKE_ENCODER = '''
import os
import signal
import sys
import time

mode, param, source, target = sys.argv[1:5]
with open(source, "rb") as f:
    data = f.read()

if mode == "shrink":
    # PARAM is RATIO:FLOOR; never writes fewer than FLOOR bytes
    ratio, floor = param.split(":")
    keep = max(int(floor), int(len(data) * float(ratio)))
    output = data[: min(len(data), keep)]
elif mode == "grow":
    output = data + data
elif mode == "fail":
    sys.stderr.write("fake-encoder: " + param + "\\n")
    sys.exit(3)
elif mode == "empty":
    output = b""
elif mode == "garbage":
    output = b"\\x00" * int(param)
elif mode == "sleep":
    time.sleep(float(param))
    output = data[: len(data) // 2]
elif mode == "crash":
    os.kill(os.getpid(), signal.SIGKILL)
else:
    sys.exit("unknown mode " + mode)

with open(target, "wb") as f:
    f.write(output)
'''


def write_media(path: Path, container: str, size: int) -> Path:
    """Write a file of exactly ``size`` bytes whose content identifies as ``container``."""
    header = MEDIA_HEADERS[container]
    filler = bytes(range(32, 127))
    body = (filler * (size // len(filler) + 1))[: max(0, size - len(header))]
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes((header + body)[:size])
    return path


@pytest.fixture(autouse=True)
def reset_logger():
    """Keep the process-wide logger free of handlers between tests."""
    yield
    get_logger().reset()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    # Cleanup
    if temp_path.exists():
        shutil.rmtree(temp_path)


@pytest.fixture
def make_media(temp_dir):
    """Factory writing recognisable media files into temp_dir."""

    def _make(name: str, container: str, size: int) -> Path:
        return write_media(temp_dir / name, container, size)

    return _make


@pytest.fixture
def fake_encoder(temp_dir):
    """Path of a Python script that behaves like an encoder."""
    script_dir = Path(tempfile.mkdtemp())
    script = script_dir / "fake_encoder.py"
    script.write_text(FAKE_ENCODER, encoding="utf-8")
    yield script
    shutil.rmtree(script_dir)


@pytest.fixture
def fake_strategy(fake_encoder):
    """Factory for strategies that run the fake encoder through the current interpreter."""

    def _strategy(mode: str, param: str = "-", kind: MediaKind = MediaKind.IMAGE, suffix=None) -> Strategy:
        return Strategy(
            name=f"fake-{mode}",
            kind=kind,
            tool="fake",
            args=(str(fake_encoder), mode, param, "{input}", "{output}"),
            output_suffix=suffix,
        )

    return _strategy


@pytest.fixture
def fake_config(temp_dir):
    """Factory for a ShrinkConfig wired to the fake encoder."""

    def _config(**overrides) -> ShrinkConfig:
        options = {
            "roots": [temp_dir],
            "workers": 2,
            "job_timeout": 30.0,
            "tool_paths": {"fake": sys.executable},
        }
        options.update(overrides)
        return ShrinkConfig(**options)

    return _config


@pytest.fixture
def mock_executor():
    """Create a mocked ToolExecutor."""
    executor = MagicMock(spec=ToolExecutor)
    executor.describe.return_value = "/fake/path/to/ffmpeg -i input output"
    executor.read_comment.return_value = None
    return executor
