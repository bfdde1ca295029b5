"""Per-file job pipeline.

One JobPipeline.run() call takes a discovered file through

    probe -> skip check -> marker lookup -> chapters -> encode -> verify
          -> commit or rollback -> cleanup

and returns the finished EncodeJob. Every failure is contained in the job;
only KeyboardInterrupt propagates. Cleanup of the transient output and the
chapter file runs in all cases, including interruption.
"""

import logging
import os
import threading
import time
from pathlib import Path
from typing import Optional

from chaptr.config.models import JobSettings
from chaptr.domain.errors import (
    CommitError,
    EncodeError,
    EncodeInterrupted,
    ProbeError,
    VerificationError,
)
from chaptr.domain.events import JobCompleted, JobFailed, JobSkipped, JobStarted
from chaptr.domain.models import EncodeJob, JobState, MediaFile, ProbeResult
from chaptr.infrastructure.event_bus import EventBus
from chaptr.infrastructure.ffmpeg import FFmpegAdapter
from chaptr.infrastructure.ffprobe import FFprobeAdapter
from chaptr.pipeline.chapters import build_chapter_file
from chaptr.pipeline.markers import find_marker_file
from chaptr.utils.formatting import format_size


class JobPipeline:
    """Runs the encode state machine for one file at a time.

    The pipeline holds no per-job state, so one instance is shared by all
    worker threads.
    """

    def __init__(
        self,
        settings: JobSettings,
        event_bus: EventBus,
        ffprobe_adapter: FFprobeAdapter,
        ffmpeg_adapter: FFmpegAdapter,
    ):
        self.settings = settings
        self.event_bus = event_bus
        self.ffprobe_adapter = ffprobe_adapter
        self.ffmpeg_adapter = ffmpeg_adapter
        self.logger = logging.getLogger(__name__)

    # -- naming ---------------------------------------------------------------

    # Transient names carry the full source name so that same-stem siblings
    # (clip.mkv, clip.mov) never share an artifact.

    def transient_path_for(self, media_file: MediaFile) -> Path:
        s = self.settings
        return media_file.directory / f"{s.transient_prefix}{media_file.path.name}{s.output_extension}"

    def chapter_path_for(self, media_file: MediaFile) -> Path:
        s = self.settings
        return media_file.directory / f"{s.transient_prefix}{media_file.path.name}{s.chapter_extension}"

    def final_path_for(self, media_file: MediaFile) -> Path:
        return media_file.directory / f"{media_file.base_name}{self.settings.output_extension}"

    def backup_path_for(self, media_file: MediaFile) -> Path:
        return media_file.directory / f"{self.settings.backup_prefix}{media_file.path.name}"

    # -- decisions --------------------------------------------------------------

    def needs_encode(self, probe: ProbeResult) -> bool:
        return not (
            probe.codec.lower() == self.settings.codec.lower()
            and probe.height == self.settings.height
        )

    def verify(self, source: ProbeResult, output: ProbeResult):
        """Raises VerificationError listing every check the output fails."""
        s = self.settings
        failed = []
        details = []
        if output.codec.lower() != s.codec.lower():
            failed.append("codec")
            details.append(f"codec={output.codec} expected={s.codec}")
        if output.height != s.height:
            failed.append("height")
            details.append(f"height={output.height} expected={s.height}")
        delta = abs(source.duration_s - output.duration_s)
        if delta > s.duration_tolerance_s:
            failed.append("duration")
            details.append(
                f"duration source={source.duration_s}s output={output.duration_s}s "
                f"delta={delta}s tolerance={s.duration_tolerance_s:g}s"
            )
        if output.audio_streams != source.audio_streams:
            failed.append("audio")
            details.append(f"audio_streams={output.audio_streams} expected={source.audio_streams}")
        if failed:
            raise VerificationError(failed, "; ".join(details))

    # -- filesystem steps -------------------------------------------------------

    def commit(self, job: EncodeJob):
        """Moves the source to its backup name and the output to the final name.

        The source always exists under either its original or its backup name.
        """
        source = job.source.path
        transient = job.transient_path
        final = job.final_path
        backup = job.backup_path

        if transient is None or not transient.exists():
            raise CommitError(f"encoded output {transient} is missing")
        if final.exists() and final != source:
            raise CommitError(f"{final.name} already exists and is not the source, refusing to overwrite")

        try:
            os.replace(source, backup)  # replaces a stale backup of the same name
        except OSError as e:
            raise CommitError(f"cannot rename {source.name} -> {backup.name}: {e}") from e

        try:
            os.replace(transient, final)
        except OSError as e:
            try:
                os.replace(backup, source)
            except OSError as restore_error:
                self.logger.critical(
                    f"COMMIT_RESTORE_FAILED: source is only available as {backup} "
                    f"(output left at {transient}): {restore_error}"
                )
                raise CommitError(
                    f"cannot rename {transient.name} -> {final.name} and cannot restore source: {restore_error}"
                ) from e
            raise CommitError(f"cannot rename {transient.name} -> {final.name}: {e}") from e

    def cleanup(self, job: EncodeJob):
        """Removes the transient artifacts this job created.

        Paths are only recorded once the job owns them, so a job that ends
        before encoding never touches a sibling's files. Safe to call
        repeatedly, never raises.
        """
        for path in (job.transient_path, job.chapter_path):
            if path is None:
                continue
            try:
                if path.exists():
                    path.unlink()
                    self.logger.debug(f"CLEANUP: removed {path.name}")
            except OSError as e:
                self.logger.warning(f"CLEANUP: cannot remove {path}: {e}")
        job.cleaned = True

    # -- state machine ----------------------------------------------------------

    def _fail(self, job: EncodeJob, state: JobState, message: str):
        job.state = state
        job.error_message = message
        self.event_bus.publish(JobFailed(job=job, error_message=message))

    def run(self, media_file: MediaFile, shutdown_event: Optional[threading.Event] = None) -> EncodeJob:
        filename = media_file.path.name
        start_time = time.monotonic()
        job = EncodeJob(
            source=media_file,
            final_path=self.final_path_for(media_file),
            backup_path=self.backup_path_for(media_file),
        )
        self.logger.info(f"JOB_START: {media_file.path} ({format_size(media_file.size_bytes)})")
        self.event_bus.publish(JobStarted(job=job))

        try:
            self._run_states(job, shutdown_event, start_time)
        except KeyboardInterrupt:
            job.state = JobState.INTERRUPTED
            job.error_message = "Interrupted by user (Ctrl+C)"
            self.logger.info(f"JOB_INTERRUPTED: {filename}")
            raise
        except Exception as e:
            self.logger.exception(f"Exception processing {filename}: {e}")
            touched = job.state in (JobState.ENCODING, JobState.VERIFYING)
            self._fail(job, JobState.ROLLED_BACK if touched else JobState.ABANDONED, f"Exception: {e}")
        finally:
            self.cleanup(job)
            job.duration_seconds = time.monotonic() - start_time
        return job

    def _run_states(self, job: EncodeJob, shutdown_event: Optional[threading.Event], start_time: float):
        media_file = job.source
        filename = media_file.path.name
        s = self.settings

        # Discovered -> Probed
        try:
            job.source_probe = self.ffprobe_adapter.probe(media_file.path)
        except ProbeError as e:
            self.logger.error(f"PROBE_ERROR: {filename} - {e}")
            self._fail(job, JobState.ABANDONED, f"Probe failed: {e}")
            return
        job.state = JobState.PROBED
        src = job.source_probe
        if s.debug:
            self.logger.debug(
                f"PROBE: {filename} codec={src.codec} height={src.height} "
                f"fps={src.fps_num}/{src.fps_den} duration={src.duration_s}s audio={src.audio_streams}"
            )

        # Probed -> Skipped
        if not self.needs_encode(src):
            job.state = JobState.SKIPPED
            reason = f"already {src.codec} at {src.height}p"
            self.logger.info(f"JOB_SKIP: {filename} ({reason})")
            self.event_bus.publish(JobSkipped(job=job, reason=reason))
            return

        # Probed -> MarkersBuilt
        job.marker_path = find_marker_file(
            media_file,
            s.marker_extension,
            ignore_prefixes=(s.backup_prefix, s.transient_prefix),
        )
        if job.marker_path is not None:
            chapter_path = self.chapter_path_for(media_file)
            try:
                entries = build_chapter_file(job.marker_path, src.fps_num, src.fps_den, chapter_path)
            except OSError as e:
                self.logger.warning(f"CHAPTERS: {filename} cannot use {job.marker_path.name}: {e}")
                entries = []
            if entries:
                job.chapter_path = chapter_path
                job.chapter_count = len(entries)
            self.logger.info(
                f"MARKERS: {filename} -> {job.marker_path.name} ({job.chapter_count} chapter(s))"
            )
        else:
            self.logger.info(f"MARKERS: {filename} has no marker file")
        job.state = JobState.MARKERS_BUILT

        if shutdown_event is not None and shutdown_event.is_set():
            self.logger.info(f"JOB_INTERRUPTED: {filename} (shutdown before encode)")
            self._fail(job, JobState.INTERRUPTED, "Interrupted before encoding")
            return

        # MarkersBuilt -> Encoding
        job.state = JobState.ENCODING
        job.transient_path = self.transient_path_for(media_file)
        try:
            self.ffmpeg_adapter.encode(job, s, shutdown_event=shutdown_event)
        except EncodeInterrupted as e:
            self.logger.info(f"JOB_INTERRUPTED: {filename} (encoder terminated)")
            self._fail(job, JobState.INTERRUPTED, str(e))
            return
        except EncodeError as e:
            self.logger.error(f"ENCODE_ERROR: {filename} - {e}")
            self._fail(job, JobState.ROLLED_BACK, f"Encode failed: {e}")
            return

        # Encoding -> Verifying
        job.state = JobState.VERIFYING
        try:
            job.output_probe = self.ffprobe_adapter.probe(job.transient_path)
            self.verify(src, job.output_probe)
        except ProbeError as e:
            self.logger.error(f"VERIFY_ERROR: {filename} - output unreadable: {e}")
            self._fail(job, JobState.ROLLED_BACK, f"Output probe failed: {e}")
            return
        except VerificationError as e:
            job.failed_checks = e.failed_checks
            self.logger.error(f"VERIFY_ERROR: {filename} - {e}")
            self._fail(job, JobState.ROLLED_BACK, str(e))
            return

        # Verifying -> Committed
        try:
            self.commit(job)
        except CommitError as e:
            self.logger.error(f"COMMIT_ERROR: {filename} - {e} (check source and backup names)")
            self._fail(job, JobState.COMMIT_FAILED, f"Commit failed: {e}")
            return
        job.state = JobState.COMMITTED

        out = job.output_probe
        try:
            job.output_size_bytes = job.final_path.stat().st_size
        except OSError:
            job.output_size_bytes = None
        in_size = media_file.size_bytes
        if job.output_size_bytes is not None and in_size > 0:
            size_info = (
                f"{format_size(in_size)} -> {format_size(job.output_size_bytes)} "
                f"(delta={format_size(job.output_size_bytes - in_size)}, ratio={job.output_size_bytes / in_size:.2f})"
            )
        else:
            size_info = f"{format_size(in_size)} -> unknown"
        self.logger.info(
            f"JOB_DONE: {filename} -> {job.final_path.name} {size_info} "
            f"duration={src.duration_s}s/{out.duration_s}s audio={out.audio_streams} "
            f"chapters={out.chapter_count if out.chapter_count is not None else 'n/a'} "
            f"elapsed={time.monotonic() - start_time:.1f}s"
        )
        if job.chapter_count and out.chapter_count is not None and out.chapter_count != job.chapter_count:
            self.logger.warning(
                f"CHAPTERS: {job.final_path.name} has {out.chapter_count} chapter(s), "
                f"{job.chapter_count} were written"
            )
        self.event_bus.publish(JobCompleted(job=job))
