import threading
import pytest
from pathlib import Path
from unittest.mock import patch, MagicMock
from chaptr.config.models import AppConfig, EncoderConfig, JobSettings
from chaptr.domain.errors import EncodeError, EncodeInterrupted
from chaptr.domain.models import EncodeJob, MediaFile
from chaptr.infrastructure.ffmpeg import FFmpegAdapter, build_command

from conftest import probe_result


def _job(chapter_path=None):
    media = MediaFile(path=Path("/videos/clip.mkv"), size_bytes=1000)
    return EncodeJob(
        source=media,
        transient_path=Path("/videos/TMP_clip.mp4"),
        chapter_path=chapter_path,
        source_probe=probe_result(duration_s=10),
    )


def test_build_command_defaults(settings):
    cmd = build_command(Path("in.mkv"), Path("TMP_in.mp4"), settings)

    assert cmd[0] == "ffmpeg"
    assert cmd[cmd.index("-i") + 1] == "in.mkv"
    assert "-map_chapters" not in cmd
    assert cmd[cmd.index("-c:v") + 1] == "av1_nvenc"
    assert cmd[cmd.index("-cq") + 1] == "30"
    assert cmd[cmd.index("-preset") + 1] == "p5"
    assert "scale=-2:1080" in cmd
    assert cmd[cmd.index("-c:a") + 1] == "aac"
    assert cmd[cmd.index("-b:a") + 1] == "320k"
    assert cmd[cmd.index("-c:s") + 1] == "copy"
    assert cmd[-1] == "TMP_in.mp4"


def test_build_command_stream_mapping(settings):
    cmd = build_command(Path("in.mkv"), Path("out.mp4"), settings)
    maps = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-map"]

    assert maps == ["0:v:0", "0:a?", "0:s?"]


def test_build_command_with_chapters(settings):
    cmd = build_command(Path("in.mkv"), Path("out.mp4"), settings, chapter_path=Path("TMP_in.ffmeta"))

    inputs = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-i"]
    assert inputs == ["in.mkv", "TMP_in.ffmeta"]
    assert cmd[cmd.index("-map_chapters") + 1] == "1"


def test_build_command_cpu_encoder_uses_crf():
    config = AppConfig(encoder=EncoderConfig(encoder="libsvtav1", cq=35, preset="6", height=720))
    settings = JobSettings.from_config(config)
    cmd = build_command(Path("in.mkv"), Path("out.mp4"), settings)

    assert "-cq" not in cmd
    assert cmd[cmd.index("-crf") + 1] == "35"
    assert "scale=-2:720" in cmd


def test_ffmpeg_encode_success(settings):
    job = _job()
    bus = MagicMock()

    with patch("subprocess.Popen") as mock_popen:
        process_instance = mock_popen.return_value
        process_instance.stdout = ["frame= 100 fps=10.0 q=30.0 size= 100kB time=00:00:05.00 bitrate= 100.0kbits/s speed=1.0x"]
        process_instance.wait.return_value = 0
        process_instance.returncode = 0

        adapter = FFmpegAdapter(event_bus=bus)
        adapter.encode(job, settings)

        assert mock_popen.called
        assert job.progress_percent == pytest.approx(50.0)
        assert bus.publish.called


def test_ffmpeg_encode_failure(settings):
    job = _job()

    with patch("subprocess.Popen") as mock_popen:
        process_instance = mock_popen.return_value
        process_instance.stdout = ["Error while opening encoder"]
        process_instance.wait.return_value = 1
        process_instance.returncode = 1

        adapter = FFmpegAdapter(event_bus=MagicMock())
        with pytest.raises(EncodeError) as exc_info:
            adapter.encode(job, settings)

        assert exc_info.value.returncode == 1
        assert "ffmpeg exited with code 1" in str(exc_info.value)
        assert "Error while opening encoder" in str(exc_info.value)


def test_ffmpeg_encode_missing_binary(settings):
    with patch("subprocess.Popen", side_effect=FileNotFoundError("ffmpeg")):
        with pytest.raises(EncodeError):
            FFmpegAdapter(event_bus=MagicMock()).encode(_job(), settings)


def test_ffmpeg_encode_terminated_on_shutdown(settings):
    shutdown = threading.Event()
    shutdown.set()

    with patch("subprocess.Popen") as mock_popen:
        process_instance = mock_popen.return_value
        process_instance.stdout = []
        process_instance.returncode = -15

        adapter = FFmpegAdapter(event_bus=MagicMock())
        with pytest.raises(EncodeInterrupted):
            adapter.encode(_job(), settings, shutdown_event=shutdown)

        process_instance.terminate.assert_called_once()
