"""Chapter markers from EDL files.

Each EDL event line becomes one chapter. Timecodes are `HH:MM:SS:FF` (or
`HH:MM:SS;FF` for drop-frame) and are converted with the source frame rate.
The result is written as an ffmetadata file that ffmpeg reads as a second
input and maps with `-map_chapters 1`.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional

from chaptr.domain.models import ChapterEntry

logger = logging.getLogger(__name__)

TIMECODE_RE = re.compile(r"^(\d{2}):(\d{2}):(\d{2})[:;](\d{2})$")
_TC = r"\d{2}:\d{2}:\d{2}[:;]\d{2}"
# '001  AX  V  C  00:00:05:00 00:00:10:00 01:00:05:00 01:00:10:00'
# The first timecode pair (source in/out) is used.
ENTRY_RE = re.compile(rf"^\s*\d+\s+.*?({_TC})\s+({_TC})")
LABEL_RE = re.compile(r"^\s*\*\s*(?:LOC|COMMENT)\s*:\s*(.*)$", re.IGNORECASE)
LEADING_TC_RE = re.compile(rf"^{_TC}\s*")

FFMETADATA_HEADER = ";FFMETADATA1"


def timecode_to_ms(timecode: str, fps_num: int, fps_den: int = 1) -> int:
    """Converts 'HH:MM:SS:FF' to milliseconds; anything else yields 0."""
    match = TIMECODE_RE.match(timecode.strip())
    if not match or fps_num <= 0 or fps_den <= 0:
        return 0
    hours, minutes, seconds, frames = (int(g) for g in match.groups())
    frame_rate = fps_num / fps_den
    total_seconds = hours * 3600 + minutes * 60 + seconds + frames / frame_rate
    return int(round(total_seconds * 1000))


def _label_title(line: str) -> Optional[str]:
    match = LABEL_RE.match(line)
    if not match:
        return None
    title = LEADING_TC_RE.sub("", match.group(1).strip()).strip()
    return title or None


def parse_marker_lines(lines: List[str], fps_num: int, fps_den: int = 1) -> List[ChapterEntry]:
    entries: List[ChapterEntry] = []
    for index, line in enumerate(lines):
        match = ENTRY_RE.match(line)
        if not match:
            continue
        title = None
        if index + 1 < len(lines):
            title = _label_title(lines[index + 1])
        if title is None:
            title = f"Chapter {len(entries) + 1}"
        entries.append(ChapterEntry(
            start_ms=timecode_to_ms(match.group(1), fps_num, fps_den),
            end_ms=timecode_to_ms(match.group(2), fps_num, fps_den),
            title=title,
        ))
    return entries


def parse_marker_file(marker_path: Path, fps_num: int, fps_den: int = 1) -> List[ChapterEntry]:
    text = Path(marker_path).read_text(encoding="utf-8", errors="replace")
    return parse_marker_lines(text.splitlines(), fps_num, fps_den)


def _escape(value: str) -> str:
    # ffmetadata treats '=', ';', '#', '\' and newlines as special
    return re.sub(r"([=;#\\\n])", r"\\\1", value)


def render_ffmetadata(entries: List[ChapterEntry]) -> str:
    lines = [FFMETADATA_HEADER]
    for entry in entries:
        lines.extend([
            "[CHAPTER]",
            "TIMEBASE=1/1000",
            f"START={entry.start_ms}",
            f"END={entry.end_ms}",
            f"title={_escape(entry.title)}",
        ])
    return "\n".join(lines) + "\n"


def build_chapter_file(
    marker_path: Path,
    fps_num: int,
    fps_den: int,
    output_path: Path,
) -> List[ChapterEntry]:
    """Writes the chapter metadata for marker_path to output_path.

    Returns the chapters written. Nothing is written when the marker file
    has no usable entries.
    """
    entries = parse_marker_file(marker_path, fps_num, fps_den)
    if not entries:
        logger.info(f"CHAPTERS: {Path(marker_path).name} has no entries, encoding without chapters")
        return entries
    output_path.write_text(render_ffmetadata(entries), encoding="utf-8")
    logger.info(f"CHAPTERS: {len(entries)} chapter(s) from {Path(marker_path).name}")
    return entries
