import logging
import random
import time
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(levelname)s - [%(threadName)s] %(message)s'


class RetryingFileHandler(logging.Handler):
    """Appends one line per record, retrying when the file is contended.

    The file is opened for every record so that several runs (or other tools
    tailing/rotating the file) can share it. A line that still cannot be
    written after `attempts` tries is dropped; logging never fails a job.
    """

    def __init__(self, filename: Path, attempts: int = 5,
                 min_delay: float = 0.05, max_delay: float = 0.2):
        super().__init__()
        self.baseFilename = str(Path(filename).absolute())
        self.attempts = attempts
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.dropped = 0

    def emit(self, record: logging.LogRecord):
        try:
            line = self.format(record) + "\n"
        except Exception:
            self.handleError(record)
            return

        for attempt in range(self.attempts):
            try:
                with open(self.baseFilename, "a", encoding="utf-8") as f:
                    f.write(line)
                return
            except OSError:
                if attempt < self.attempts - 1:
                    time.sleep(random.uniform(self.min_delay, self.max_delay))
        self.dropped += 1


def setup_logging(output_dir: Path, debug: bool = False, log_path: Optional[Path] = None) -> logging.Logger:
    """
    Setup logging configuration for chaptr.

    Writes to chaptr.log inside output_dir unless log_path is given.
    Returns configured logger instance.

    Args:
        output_dir: Directory the run operates on (default log location)
        debug: If True, enable DEBUG level logging with ffmpeg command lines and timings
        log_path: Optional path to log file (overrides output_dir)
    """
    log_file = Path(log_path) if log_path else (Path(output_dir) / "chaptr.log")
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if debug else logging.INFO

    handler = RetryingFileHandler(log_file)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[handler],
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file} (debug={'ON' if debug else 'OFF'})")

    return logger
