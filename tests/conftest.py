import threading
import pytest
from pathlib import Path
from typing import Dict
from unittest.mock import MagicMock
from chaptr.config.models import AppConfig, JobSettings
from chaptr.domain.errors import EncodeError, ProbeError
from chaptr.domain.models import MediaFile, ProbeResult
from chaptr.infrastructure.event_bus import EventBus

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def app_config():
    """Default AppConfig (av1 / 1080p / .mp4, OLD_ and TMP_ prefixes)."""
    return AppConfig()


@pytest.fixture
def settings(app_config):
    return JobSettings.from_config(app_config)


@pytest.fixture
def event_bus():
    return EventBus()

# ============================================================================
# Media Fixtures
# ============================================================================

def make_media(directory: Path, name: str, content: bytes = b"source-bytes") -> MediaFile:
    path = directory / name
    path.write_bytes(content)
    return MediaFile.from_path(path)


def probe_result(codec="h264", height=2160, duration_s=30, audio_streams=2,
                 fps_num=30, fps_den=1, chapter_count=None) -> ProbeResult:
    return ProbeResult(
        codec=codec,
        height=height,
        fps_num=fps_num,
        fps_den=fps_den,
        duration_s=duration_s,
        audio_streams=audio_streams,
        chapter_count=chapter_count,
    )


class FakeProber:
    """Stands in for FFprobeAdapter; answers by file name.

    Transient outputs (TMP_*) get `output_result` unless mapped explicitly.
    """

    def __init__(self, results: Dict[str, ProbeResult], output_result: ProbeResult = None):
        self.results = dict(results)
        self.output_result = output_result or probe_result(codec="av1", height=1080)
        self.calls = []
        self._lock = threading.Lock()

    def probe(self, path: Path) -> ProbeResult:
        with self._lock:
            self.calls.append(Path(path))
        name = Path(path).name
        if name in self.results:
            result = self.results[name]
            if isinstance(result, Exception):
                raise result
            return result
        if name.startswith("TMP_"):
            return self.output_result
        raise ProbeError(f"no probe data for {name}")


class FakeEncoder:
    """Stands in for FFmpegAdapter; writes the transient output or fails."""

    def __init__(self, returncode: int = 0, output: bytes = b"encoded", write_on_failure: bool = True):
        self.returncode = returncode
        self.output = output
        self.write_on_failure = write_on_failure
        self.jobs = []
        self.chapter_texts = []
        self._lock = threading.Lock()

    def encode(self, job, settings, shutdown_event=None):
        with self._lock:
            self.jobs.append(job)
            if job.chapter_path is not None:
                self.chapter_texts.append(job.chapter_path.read_text())
        if self.returncode == 0 or self.write_on_failure:
            job.transient_path.write_bytes(self.output)
        if self.returncode != 0:
            raise EncodeError(f"ffmpeg exited with code {self.returncode}", returncode=self.returncode)


@pytest.fixture
def mock_bus():
    return MagicMock()
