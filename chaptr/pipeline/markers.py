import logging
from pathlib import Path
from typing import Iterable, Optional

from chaptr.domain.models import MediaFile

logger = logging.getLogger(__name__)

MATCH_RATIO_THRESHOLD = 0.8


def common_prefix_length(a: str, b: str) -> int:
    """Number of leading characters shared by a and b, position by position."""
    count = 0
    for ch_a, ch_b in zip(a, b):
        if ch_a != ch_b:
            break
        count += 1
    return count


def find_marker_file(
    media_file: MediaFile,
    extension: str = ".edl",
    ignore_prefixes: Iterable[str] = (),
) -> Optional[Path]:
    """Picks the marker (EDL) file that belongs to media_file.

    A marker with exactly the same base name wins outright. Otherwise every
    marker in the directory is scored by its common prefix with the media
    base name; recorder sessions share a prefix and differ only in a trailing
    timestamp. A candidate needs more than 80% of the base name to match, and
    on equal scores the first one in name order is kept.
    """
    exact = media_file.directory / f"{media_file.base_name}{extension}"
    if exact.is_file():
        return exact

    base_name = media_file.base_name
    if not base_name:
        return None

    ignore_prefixes = tuple(ignore_prefixes)
    best_path: Optional[Path] = None
    best_score = 0
    try:
        candidates = sorted(media_file.directory.iterdir())
    except OSError as e:
        logger.warning(f"MARKER_SCAN: cannot list {media_file.directory}: {e}")
        return None

    for candidate in candidates:
        if candidate.suffix.lower() != extension.lower() or not candidate.is_file():
            continue
        if ignore_prefixes and candidate.name.startswith(ignore_prefixes):
            continue
        score = common_prefix_length(base_name, candidate.stem)
        if score / len(base_name) > MATCH_RATIO_THRESHOLD and score > best_score:
            best_score = score
            best_path = candidate

    if best_path is not None:
        logger.debug(
            f"MARKER_MATCH: {media_file.path.name} -> {best_path.name} "
            f"(prefix={best_score}/{len(base_name)})"
        )
    return best_path
