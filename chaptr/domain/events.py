"""Domain events for the transcode pipeline.

Events flow through the EventBus and decouple the orchestrator and job
pipeline from console presentation.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field
from .models import EncodeJob


class Event(BaseModel):
    """Base class for all domain events."""

    pass

class JobEvent(Event):
    """Base class for events related to a specific encode job."""

    job: EncodeJob


class JobStarted(JobEvent):
    """Emitted when a job is admitted and starts probing."""

    pass


class JobProgressUpdated(JobEvent):
    """Emitted periodically as ffmpeg reports progress."""

    progress_percent: float


class JobSkipped(JobEvent):
    """Emitted when the source is already at target codec and height."""

    reason: str


class JobCompleted(JobEvent):
    """Emitted after a successful commit."""

    pass


class JobFailed(JobEvent):
    """Emitted for abandoned, rolled back, interrupted and commit-failed jobs."""

    error_message: str


class CapabilityResolved(Event):
    """Emitted once the concurrency budget for the run is known."""

    budget: int
    gpu_name: Optional[str] = None
    overridden: bool = False


class DiscoveryStarted(Event):
    directory: Path


class DiscoveryFinished(Event):
    """Emitted after discovery and naming filters are applied."""

    files_found: int
    files_to_process: int = 0
    ignored_backup: int = 0
    ignored_transient: int = 0
    name_conflicts: int = 0  # sources sharing a final name with an earlier one


class InterruptRequested(Event):
    """Emitted on Ctrl+C or SIGTERM."""

    pass


class ProcessingFinished(Event):
    """Emitted when every admitted job has reached a terminal state."""

    committed: int = 0
    skipped: int = 0
    failed: int = 0
    failed_files: List[str] = Field(default_factory=list)
