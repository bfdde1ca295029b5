import logging
import os
from pathlib import Path
from typing import List

class HousekeepingService:
    """Removes transient artifacts left behind by an interrupted previous run."""

    def __init__(self, transient_prefix: str):
        self.transient_prefix = transient_prefix
        self.logger = logging.getLogger(__name__)

    def cleanup_transient_files(self, directory: Path) -> List[Path]:
        """Recursively removes all files starting with the transient prefix."""
        removed = []
        for root, dirs, files in os.walk(directory):
            for file in files:
                if not file.startswith(self.transient_prefix):
                    continue
                path = Path(root) / file
                try:
                    path.unlink()
                    removed.append(path)
                except OSError as e:
                    self.logger.warning(f"HOUSEKEEPING: cannot remove {path}: {e}")
        if removed:
            self.logger.info(f"HOUSEKEEPING: removed {len(removed)} leftover transient file(s)")
        return removed
