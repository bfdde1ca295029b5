import os
from pathlib import Path
from typing import List, Generator, Optional
from chaptr.domain.models import MediaFile

class FileScanner:
    """Recursively scans for media files in a directory."""

    def __init__(self, extensions: List[str], min_size_bytes: int = 0):
        self.extensions = [(ext if ext.startswith(".") else f".{ext}").lower() for ext in extensions]
        self.min_size_bytes = min_size_bytes

    def scan(self, root_dir: Path) -> Generator[MediaFile, None, None]:
        """Scans the directory and yields MediaFile snapshots."""
        for root, dirs, files in os.walk(str(root_dir)):
            root_path = Path(root)

            # Deterministic traversal keeps admission order stable between runs
            dirs.sort()
            files.sort()

            for file_name in files:
                file_path = root_path / file_name

                if file_path.suffix.lower() not in self.extensions:
                    continue

                try:
                    media_file = MediaFile.from_path(file_path)
                except OSError:
                    # Vanished or unreadable between listing and stat
                    continue
                if media_file.size_bytes < self.min_size_bytes:
                    continue
                yield media_file


def naming_marker(name: str, backup_prefix: str, transient_prefix: str) -> Optional[str]:
    """Returns "backup" or "transient" when a file name carries that prefix."""
    if name.startswith(backup_prefix):
        return "backup"
    if name.startswith(transient_prefix):
        return "transient"
    return None
