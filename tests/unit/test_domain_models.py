import pytest
from pathlib import Path
from pydantic import ValidationError
from chaptr.domain.errors import ChaptrError, EncodeError, EncodeInterrupted, VerificationError
from chaptr.domain.models import EncodeJob, JobState, MediaFile, ProbeResult

def test_media_file_from_path(tmp_path):
    path = tmp_path / "Holiday Clip.MOV"
    path.write_bytes(b"0123456789")

    media = MediaFile.from_path(path)
    assert media.size_bytes == 10
    assert media.base_name == "Holiday Clip"
    assert media.extension == ".MOV"
    assert media.directory == tmp_path

def test_media_file_is_immutable(tmp_path):
    media = MediaFile(path=tmp_path / "a.mkv", size_bytes=1)
    with pytest.raises(ValidationError):
        media.size_bytes = 2

def test_probe_result_fps():
    assert ProbeResult(codec="h264", height=1080, fps_num=30000, fps_den=1001, duration_s=10).fps == pytest.approx(29.97, abs=0.01)
    assert ProbeResult(codec="h264", height=1080, fps_num=25, fps_den=0, duration_s=10).fps == 0.0

def test_encode_job_initial_state(tmp_path):
    job = EncodeJob(source=MediaFile(path=tmp_path / "a.mkv", size_bytes=1))
    assert job.state == JobState.DISCOVERED
    assert not job.is_terminal
    assert job.failed_checks == []
    assert job.cleaned is False

@pytest.mark.parametrize("state,terminal", [
    (JobState.PROBED, False),
    (JobState.ENCODING, False),
    (JobState.SKIPPED, True),
    (JobState.COMMITTED, True),
    (JobState.ROLLED_BACK, True),
    (JobState.COMMIT_FAILED, True),
    (JobState.INTERRUPTED, True),
])
def test_terminal_states(tmp_path, state, terminal):
    job = EncodeJob(source=MediaFile(path=tmp_path / "a.mkv", size_bytes=1), state=state)
    assert job.is_terminal is terminal

def test_error_hierarchy():
    assert issubclass(EncodeInterrupted, EncodeError)
    assert issubclass(VerificationError, ChaptrError)
    err = EncodeError("boom", returncode=3)
    assert err.returncode == 3

def test_verification_error_lists_checks():
    err = VerificationError(["duration", "audio"], "delta=6s")
    assert err.failed_checks == ["duration", "audio"]
    assert "duration, audio" in str(err)
