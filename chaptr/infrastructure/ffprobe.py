import subprocess
import json
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple
from chaptr.domain.errors import ProbeError
from chaptr.domain.models import ProbeResult

class FFprobeAdapter:
    """Wrapper around ffprobe to extract stream information."""

    def __init__(self, binary: str = "ffprobe"):
        self.binary = binary

    @staticmethod
    def _to_float(value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    @staticmethod
    def parse_rational(value: Any) -> Optional[Tuple[int, int]]:
        """'30000/1001' -> (30000, 1001); None for missing or zero rates."""
        if value is None:
            return None
        text = str(value).strip()
        try:
            if "/" in text:
                num_text, den_text = text.split("/", 1)
                num, den = int(num_text), int(den_text)
            else:
                num, den = int(text), 1
        except ValueError:
            return None
        if num <= 0 or den <= 0:
            return None
        return num, den

    def _run_json(self, args: List[str], file_path: Path) -> Dict[str, Any]:
        cmd = [self.binary, "-v", "error", *args, "-of", "json", str(file_path)]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise ProbeError(f"ffprobe could not be started for {file_path}: {e}") from e
        if result.returncode != 0:
            raise ProbeError(f"ffprobe failed for {file_path}: {result.stderr.strip()}")
        try:
            data = json.loads(result.stdout or "")
        except json.JSONDecodeError as e:
            raise ProbeError(f"ffprobe returned malformed JSON for {file_path}: {e}") from e
        if not isinstance(data, dict):
            raise ProbeError(f"ffprobe returned unexpected output for {file_path}")
        return data

    def get_stream_info(self, file_path: Path) -> Dict[str, Any]:
        """Probes the first video stream, container duration and chapters."""
        data = self._run_json(
            [
                "-select_streams", "v:0",
                "-show_entries", "stream=codec_name,height,r_frame_rate,avg_frame_rate,duration:format=duration",
                "-show_chapters",
            ],
            file_path,
        )

        streams = data.get("streams") or []
        if not streams:
            raise ProbeError(f"No video stream found in {file_path}")
        video_stream = streams[0]

        codec = video_stream.get("codec_name")
        height = int(self._to_float(video_stream.get("height")))
        if not codec or height <= 0:
            raise ProbeError(f"Missing codec or height for {file_path}")

        # r_frame_rate is the timecode base; avg_frame_rate only as fallback
        rate = self.parse_rational(video_stream.get("r_frame_rate")) or \
            self.parse_rational(video_stream.get("avg_frame_rate"))
        if rate is None:
            raise ProbeError(f"No usable frame rate for {file_path}")

        duration = self._to_float((data.get("format") or {}).get("duration"))
        if duration <= 0:
            duration = self._to_float(video_stream.get("duration"))
        if duration <= 0:
            raise ProbeError(f"No duration reported for {file_path}")

        return {
            "codec": str(codec).lower(),
            "height": height,
            "fps_num": rate[0],
            "fps_den": rate[1],
            "duration": duration,
            "chapter_count": len(data.get("chapters") or []),
        }

    def count_audio_streams(self, file_path: Path) -> int:
        data = self._run_json(["-select_streams", "a", "-show_entries", "stream=index"], file_path)
        return len(data.get("streams") or [])

    def probe(self, file_path: Path) -> ProbeResult:
        info = self.get_stream_info(file_path)
        return ProbeResult(
            codec=info["codec"],
            height=info["height"],
            fps_num=info["fps_num"],
            fps_den=info["fps_den"],
            duration_s=int(info["duration"] + 0.5),  # half up
            audio_streams=self.count_audio_streams(file_path),
            chapter_count=info["chapter_count"],
        )
