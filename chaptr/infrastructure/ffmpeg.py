import subprocess
import re
import logging
import time
import threading
import queue
from collections import deque
from pathlib import Path
from typing import List, Optional
from chaptr.config.models import JobSettings
from chaptr.domain.errors import EncodeError, EncodeInterrupted
from chaptr.domain.models import EncodeJob
from chaptr.infrastructure.event_bus import EventBus
from chaptr.domain.events import JobProgressUpdated

# Regex to parse 'time=00:00:00.00' from ffmpeg output
TIME_RE = re.compile(r"time=(\d+):(\d+):(\d+(?:\.\d+)?)")


def build_command(
    source: Path,
    output: Path,
    settings: JobSettings,
    chapter_path: Optional[Path] = None,
    binary: str = "ffmpeg",
) -> List[str]:
    """Constructs the ffmpeg command line arguments."""
    cmd = [binary, "-hide_banner", "-nostdin", "-y", "-i", str(source)]
    if chapter_path is not None:
        cmd.extend(["-i", str(chapter_path), "-map_chapters", "1"])

    # First video stream only; audio and subtitles are optional
    cmd.extend(["-map", "0:v:0", "-map", "0:a?", "-map", "0:s?"])

    cmd.extend(["-c:v", settings.encoder, "-preset", settings.preset])
    if settings.encoder.endswith("_nvenc"):
        cmd.extend(["-cq", str(settings.cq), "-b:v", "0"])
    else:
        cmd.extend(["-crf", str(settings.cq)])
    cmd.extend(["-vf", f"scale=-2:{settings.height}"])

    # Audio is always re-encoded, never stream-copied
    cmd.extend(["-c:a", settings.audio_codec, "-b:a", settings.audio_bitrate])
    cmd.extend(["-c:s", "copy"])

    cmd.append(str(output))
    return cmd


class FFmpegAdapter:
    """Wrapper around ffmpeg for the encode step."""

    def __init__(self, event_bus: EventBus, binary: str = "ffmpeg"):
        self.event_bus = event_bus
        self.binary = binary
        self.logger = logging.getLogger(__name__)

    def _terminate(self, process: subprocess.Popen):
        process.terminate()
        try:
            process.wait(timeout=3)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    def encode(self, job: EncodeJob, settings: JobSettings, shutdown_event: Optional[threading.Event] = None):
        """Runs ffmpeg for the job and waits for it to exit.

        Raises EncodeError on a non-zero exit and EncodeInterrupted when the
        shutdown event fires while ffmpeg is still running. Removing the
        transient output is left to the caller.
        """
        filename = job.source.path.name
        start_time = time.monotonic()
        cmd = build_command(job.source.path, job.transient_path, settings, job.chapter_path, binary=self.binary)

        self.logger.info(f"FFMPEG_START: {filename} (encoder={settings.encoder}, cq={settings.cq}, height={settings.height})")
        if settings.debug:
            self.logger.debug(f"FFMPEG_CMD: {' '.join(cmd)}")

        total_duration = job.source_probe.duration_s if job.source_probe else 0

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                universal_newlines=True,
                bufsize=1
            )
        except OSError as e:
            raise EncodeError(f"ffmpeg could not be started: {e}") from e

        tail = deque(maxlen=20)
        output_queue: "queue.Queue[Optional[str]]" = queue.Queue()

        def _reader():
            if not process.stdout:
                output_queue.put(None)
                return
            for line in process.stdout:
                output_queue.put(line)
            output_queue.put(None)

        reader_thread = threading.Thread(target=_reader, daemon=True)
        reader_thread.start()

        try:
            while True:
                if shutdown_event is not None and shutdown_event.is_set():
                    self.logger.info(f"FFMPEG_INTERRUPTED: {filename} (shutdown signal)")
                    self._terminate(process)
                    raise EncodeInterrupted("Interrupted by shutdown request", returncode=process.returncode)

                try:
                    line = output_queue.get(timeout=0.1)
                except queue.Empty:
                    if process.poll() is not None and not reader_thread.is_alive():
                        break
                    continue

                if line is None:
                    break
                tail.append(line.rstrip())

                match = TIME_RE.search(line)
                if match and total_duration > 0:
                    h, m, s = map(float, match.groups())
                    current_seconds = h * 3600 + m * 60 + s
                    job.progress_percent = min(100.0, (current_seconds / total_duration) * 100.0)
                    self.event_bus.publish(JobProgressUpdated(job=job, progress_percent=job.progress_percent))

            process.wait()
        except KeyboardInterrupt:
            self.logger.info(f"FFMPEG_INTERRUPTED: {filename} (KeyboardInterrupt)")
            self._terminate(process)
            raise

        elapsed = time.monotonic() - start_time
        if process.returncode != 0:
            self.logger.info(f"FFMPEG_END: {filename} status=failed code={process.returncode} elapsed={elapsed:.2f}s")
            last_lines = " | ".join(l for l in list(tail)[-3:] if l)
            raise EncodeError(
                f"ffmpeg exited with code {process.returncode}" + (f": {last_lines}" if last_lines else ""),
                returncode=process.returncode,
            )
        self.logger.info(f"FFMPEG_END: {filename} status=ok elapsed={elapsed:.2f}s")
