from enum import Enum
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

class JobState(str, Enum):
    DISCOVERED = "DISCOVERED"
    PROBED = "PROBED"
    SKIPPED = "SKIPPED"
    MARKERS_BUILT = "MARKERS_BUILT"
    ENCODING = "ENCODING"
    VERIFYING = "VERIFYING"
    COMMITTED = "COMMITTED"
    ROLLED_BACK = "ROLLED_BACK"
    ABANDONED = "ABANDONED"  # probe failed, nothing touched
    COMMIT_FAILED = "COMMIT_FAILED"
    INTERRUPTED = "INTERRUPTED"  # Ctrl+C / SIGTERM during processing

TERMINAL_STATES = frozenset({
    JobState.SKIPPED,
    JobState.COMMITTED,
    JobState.ROLLED_BACK,
    JobState.ABANDONED,
    JobState.COMMIT_FAILED,
    JobState.INTERRUPTED,
})

class MediaFile(BaseModel):
    """Snapshot of a source file taken at discovery time."""
    model_config = ConfigDict(frozen=True)

    path: Path
    size_bytes: int

    @classmethod
    def from_path(cls, path: Path) -> "MediaFile":
        path = Path(path).absolute()
        return cls(path=path, size_bytes=path.stat().st_size)

    @property
    def directory(self) -> Path:
        return self.path.parent

    @property
    def base_name(self) -> str:
        return self.path.stem

    @property
    def extension(self) -> str:
        return self.path.suffix

class ProbeResult(BaseModel):
    codec: str
    height: int
    fps_num: int
    fps_den: int = 1
    duration_s: int
    audio_streams: int = 0
    chapter_count: Optional[int] = None

    @property
    def fps(self) -> float:
        return self.fps_num / self.fps_den if self.fps_den else 0.0

class ChapterEntry(BaseModel):
    start_ms: int
    end_ms: int
    title: str

class EncodeJob(BaseModel):
    source: MediaFile
    state: JobState = JobState.DISCOVERED
    transient_path: Optional[Path] = None
    chapter_path: Optional[Path] = None
    marker_path: Optional[Path] = None
    chapter_count: int = 0
    source_probe: Optional[ProbeResult] = None
    output_probe: Optional[ProbeResult] = None
    failed_checks: List[str] = Field(default_factory=list)
    final_path: Optional[Path] = None
    backup_path: Optional[Path] = None
    output_size_bytes: Optional[int] = None
    error_message: Optional[str] = None
    duration_seconds: Optional[float] = None
    progress_percent: float = 0.0
    cleaned: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES
