"""
Tests for shrinkray.core.commit module.
"""

import os
from pathlib import Path

import pytest

from shrinkray.core.classifier import TypeClassifier
from shrinkray.core.commit import SafetyCommitter
from shrinkray.core.errors import CommitFailure
from shrinkray.core.models import Candidate, Job, MediaKind, Strategy
from shrinkray.utils.file_processor import FileProcessor


def _job(
    source: Path, kind: MediaKind, container: str, output: bytes, suffix=None, writes=None, output_dir=None
) -> Job:
    stat = source.stat()
    candidate = Candidate(source, kind, container, stat.st_size, stat.st_mtime_ns)
    strategy = Strategy("test", kind, "ffmpeg", (), output_suffix=suffix, container=writes)
    temp_path = FileProcessor.claim_temp_path(source, strategy.temp_suffix_for(source), output_dir)
    temp_path.write_bytes(output)
    return Job(candidate, strategy, temp_path, output_dir=output_dir)


@pytest.fixture
def committer():
    return SafetyCommitter(TypeClassifier(), min_reduction_ratio=0.05)


@pytest.mark.unit
class TestSafetyCommitter:
    """Tests for SafetyCommitter.commit."""

    def test_smaller_valid_output_replaces_original(self, committer, make_media):
        source = make_media("photo.jpg", "jpeg", 10_000)
        os.utime(source, (1_000_000_000, 1_000_000_000))
        job = _job(source, MediaKind.IMAGE, "jpeg", source.read_bytes()[:6_000])

        final_path, new_size = committer.commit(job)

        assert final_path == source
        assert new_size == 6_000
        assert source.stat().st_size == 6_000
        assert abs(source.stat().st_mtime - 1_000_000_000) < 1.0
        assert not job.temp_path.exists()

    def test_suffix_change_moves_to_destination(self, committer, make_media):
        source = make_media("clip.mp4", "mp4", 20_000)
        job = _job(source, MediaKind.VIDEO, "mp4", source.read_bytes()[:8_000], suffix=".webm")

        final_path, new_size = committer.commit(job)

        assert final_path == source.with_suffix(".webm")
        assert final_path.stat().st_size == 8_000
        assert not source.exists()

    def test_not_smaller_enough_is_a_skip(self, committer, make_media):
        source = make_media("photo.jpg", "jpeg", 10_000)
        job = _job(source, MediaKind.IMAGE, "jpeg", source.read_bytes()[:9_800])

        with pytest.raises(CommitFailure) as exc_info:
            committer.commit(job)

        assert exc_info.value.kind == CommitFailure.NOT_SMALLER_ENOUGH
        assert exc_info.value.is_skip
        assert source.stat().st_size == 10_000
        assert not job.temp_path.exists()

    def test_larger_output_is_rejected(self, make_media):
        committer = SafetyCommitter(TypeClassifier(), min_reduction_ratio=0.0)
        source = make_media("photo.jpg", "jpeg", 10_000)
        job = _job(source, MediaKind.IMAGE, "jpeg", source.read_bytes() * 2)

        with pytest.raises(CommitFailure) as exc_info:
            committer.commit(job)

        assert exc_info.value.kind == CommitFailure.NOT_SMALLER_ENOUGH
        assert exc_info.value.new_size == 20_000

    def test_zero_ratio_accepts_any_saving(self, make_media):
        committer = SafetyCommitter(TypeClassifier(), min_reduction_ratio=0.0)
        source = make_media("photo.jpg", "jpeg", 10_000)
        job = _job(source, MediaKind.IMAGE, "jpeg", source.read_bytes()[:9_999])

        assert committer.commit(job)[1] == 9_999

    def test_corrupt_output_is_a_failure(self, committer, make_media):
        source = make_media("photo.jpg", "jpeg", 10_000)
        job = _job(source, MediaKind.IMAGE, "jpeg", b"\x00" * 100)

        with pytest.raises(CommitFailure) as exc_info:
            committer.commit(job)

        assert exc_info.value.kind == CommitFailure.CORRUPT_OUTPUT
        assert not exc_info.value.is_skip
        assert source.stat().st_size == 10_000
        assert not job.temp_path.exists()

    def test_deep_verification_failure(self, make_media):
        committer = SafetyCommitter(TypeClassifier(), prober=lambda path: False)
        source = make_media("photo.jpg", "jpeg", 10_000)
        job = _job(source, MediaKind.IMAGE, "jpeg", source.read_bytes()[:5_000])

        with pytest.raises(CommitFailure) as exc_info:
            committer.commit(job)

        assert exc_info.value.kind == CommitFailure.CORRUPT_OUTPUT
        assert source.stat().st_size == 10_000

    def test_source_changed_during_encode(self, committer, make_media):
        source = make_media("photo.jpg", "jpeg", 10_000)
        job = _job(source, MediaKind.IMAGE, "jpeg", source.read_bytes()[:5_000])
        with open(source, "ab") as f:
            f.write(b"appended")

        with pytest.raises(CommitFailure) as exc_info:
            committer.commit(job)

        assert exc_info.value.kind == CommitFailure.SOURCE_CHANGED
        assert source.stat().st_size == 10_008
        assert not job.temp_path.exists()

    def test_existing_destination_is_rename_failure(self, committer, make_media):
        source = make_media("clip.mp4", "mp4", 20_000)
        existing = source.with_suffix(".webm")
        existing.write_bytes(b"keep me")
        job = _job(source, MediaKind.VIDEO, "mp4", source.read_bytes()[:8_000], suffix=".webm")

        with pytest.raises(CommitFailure) as exc_info:
            committer.commit(job)

        assert exc_info.value.kind == CommitFailure.RENAME_FAILED
        assert existing.read_bytes() == b"keep me"
        assert source.stat().st_size == 20_000
        assert not job.temp_path.exists()

    def test_claimed_destination_is_rename_failure(self, committer, make_media):
        source = make_media("clip.mp4", "mp4", 20_000)
        job = _job(source, MediaKind.VIDEO, "mp4", source.read_bytes()[:8_000], suffix=".webm")

        with pytest.raises(CommitFailure) as exc_info:
            committer.commit(job, claim=lambda path: False)

        assert exc_info.value.kind == CommitFailure.RENAME_FAILED
        assert source.exists()

    def test_os_error_during_replace(self, committer, make_media, mocker):
        source = make_media("photo.jpg", "jpeg", 10_000)
        job = _job(source, MediaKind.IMAGE, "jpeg", source.read_bytes()[:5_000])
        mocker.patch.object(FileProcessor, "replace_original", side_effect=OSError("disk full"))

        with pytest.raises(CommitFailure) as exc_info:
            committer.commit(job)

        assert exc_info.value.kind == CommitFailure.RENAME_FAILED
        assert source.stat().st_size == 10_000
        assert not job.temp_path.exists()

    def test_output_in_wrong_container_is_corrupt(self, committer, make_media):
        source = make_media("photo.jpg", "jpeg", 10_000)
        job = _job(source, MediaKind.IMAGE, "jpeg", source.read_bytes()[:5_000], writes="png")

        with pytest.raises(CommitFailure) as exc_info:
            committer.commit(job)

        assert exc_info.value.kind == CommitFailure.CORRUPT_OUTPUT
        assert "expected png" in str(exc_info.value)
        assert source.stat().st_size == 10_000

    def test_existing_destination_releases_its_claim(self, committer, make_media):
        source = make_media("clip.mp4", "mp4", 20_000)
        existing = source.with_suffix(".webm")
        existing.write_bytes(b"keep me")
        job = _job(source, MediaKind.VIDEO, "mp4", source.read_bytes()[:8_000], suffix=".webm")
        claimed, released = [], []

        with pytest.raises(CommitFailure) as exc_info:
            committer.commit(job, claim=lambda path: claimed.append(path) or True, release=released.append)

        assert exc_info.value.kind == CommitFailure.RENAME_FAILED
        assert claimed == [existing]
        assert released == [existing]
        assert existing.read_bytes() == b"keep me"

    def test_refused_claim_is_not_released(self, committer, make_media):
        source = make_media("clip.mp4", "mp4", 20_000)
        job = _job(source, MediaKind.VIDEO, "mp4", source.read_bytes()[:8_000], suffix=".webm")
        released = []

        with pytest.raises(CommitFailure):
            committer.commit(job, claim=lambda path: False, release=released.append)

        assert released == []

    def test_successful_rename_keeps_claim(self, committer, make_media):
        source = make_media("clip.mp4", "mp4", 20_000)
        job = _job(source, MediaKind.VIDEO, "mp4", source.read_bytes()[:8_000], suffix=".webm")
        released = []

        committer.commit(job, claim=lambda path: True, release=released.append)

        assert released == []

    def test_output_dir_leaves_original_alone(self, committer, make_media, temp_dir):
        source = make_media("clip.mp4", "mp4", 20_000)
        original = source.read_bytes()
        output_dir = temp_dir / "out"
        output_dir.mkdir()
        job = _job(source, MediaKind.VIDEO, "mp4", original[:8_000], suffix=".webm", output_dir=output_dir)

        final_path, new_size = committer.commit(job)

        assert final_path == output_dir / "clip.webm"
        assert final_path.read_bytes() == original[:8_000]
        assert source.read_bytes() == original
        assert not job.temp_path.exists()

    def test_output_dir_never_overwrites(self, committer, make_media, temp_dir):
        source = make_media("photo.jpg", "jpeg", 10_000)
        output_dir = temp_dir / "out"
        output_dir.mkdir()
        (output_dir / "photo.jpg").write_bytes(b"earlier")
        job = _job(source, MediaKind.IMAGE, "jpeg", source.read_bytes()[:5_000], output_dir=output_dir)

        with pytest.raises(CommitFailure) as exc_info:
            committer.commit(job)

        assert exc_info.value.kind == CommitFailure.RENAME_FAILED
        assert (output_dir / "photo.jpg").read_bytes() == b"earlier"
        assert source.stat().st_size == 10_000
