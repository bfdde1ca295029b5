"""
Exception types raised along the transcode pipeline.

ProbeError, EncodeError and VerificationError are local to one job: the job is
abandoned or rolled back and the run continues. CommitError is also job-local
but means a rename went wrong, so it is reported separately. ResolutionError
is fatal to the whole run.
"""

from typing import List, Optional


class ChaptrError(Exception):
    """Base class for all chaptr errors."""

    pass


class ProbeError(ChaptrError):
    """ffprobe could not read the file or returned malformed output."""

    pass


class EncodeError(ChaptrError):
    """ffmpeg exited with a non-zero status or was terminated."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message)
        self.returncode = returncode


class EncodeInterrupted(EncodeError):
    """The encoder was killed because the run is shutting down."""

    pass


class VerificationError(ChaptrError):
    """
    Raised when the encoded output does not match the source.

    `failed_checks` names every check that failed (codec, height, duration,
    audio), not only the first one.
    """

    def __init__(self, failed_checks: List[str], details: str = ""):
        self.failed_checks = list(failed_checks)
        message = f"verification failed: {', '.join(self.failed_checks)}"
        if details:
            message = f"{message} ({details})"
        super().__init__(message)


class CommitError(ChaptrError):
    """A rename in the commit step failed. Source data may be at risk."""

    pass


class ResolutionError(ChaptrError):
    """No concurrency budget could be determined and no override was given."""

    pass
