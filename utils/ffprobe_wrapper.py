import subprocess
import json
import os
from typing import Optional, Dict, Any
from models.track import MediaInfo, TrackDescriptor
from errors import ProbeError
from utils.tools import resolve_tool
from logger import setup_logger

logger = setup_logger()


def _language_from_tags(stream: Dict[str, Any]) -> str:
    tags = stream.get("tags")
    if not isinstance(tags, dict):
        return ""
    lang = tags.get("language", tags.get("LANGUAGE"))
    return lang.strip() if isinstance(lang, str) else ""


def _disposition_flag(stream: Dict[str, Any], name: str) -> bool:
    disposition = stream.get("disposition")
    if not isinstance(disposition, dict):
        return False
    flag = disposition.get(name)
    if isinstance(flag, bool):
        return flag
    if isinstance(flag, int):
        return flag == 1
    if isinstance(flag, str):
        return flag.strip() == "1"
    return False


def _int_or_none(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _str_or_none(value) -> Optional[str]:
    return str(value) if value not in (None, "") else None


class FFprobeWrapper:
    def __init__(self, ffprobe_path: Optional[str] = None, tools_dir: Optional[str] = None):
        self.ffprobe_path = resolve_tool("ffprobe", ffprobe_path, tools_dir)

    def probe_json(self, file_path: str) -> Dict[str, Any]:
        """
        Runs ffprobe and returns its JSON document. Raises ProbeError on any failure.
        """
        if not os.path.exists(file_path):
            logger.error(f"File not found: {file_path}")
            raise ProbeError(f"File not found: {file_path}")

        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            file_path
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, encoding='utf-8', errors='replace')
        except OSError as e:
            raise ProbeError(f"Could not run ffprobe for {file_path}: {e}") from e

        if result.returncode != 0:
            logger.error(f"FFprobe failed for {file_path}: {result.stderr}")
            raise ProbeError(f"ffprobe failed for {file_path} (code {result.returncode})")

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            logger.error(f"Error parsing metadata for {file_path}: {e}")
            raise ProbeError(f"ffprobe returned invalid JSON for {file_path}") from e

        if not isinstance(data, dict):
            raise ProbeError("ffprobe returned no data.")
        return data

    def probe(self, file_path: str, input_index: int = 0) -> MediaInfo:
        """
        Runs ffprobe on the file and returns a MediaInfo with one track per stream.
        """
        info = parse_probe_data(self.probe_json(file_path), file_path, input_index)
        logger.info(f"Probed {file_path}: {len(info.tracks)} streams, "
                    f"{info.duration_seconds:.2f}s, container={info.container_format}")
        return info

    def get_duration(self, file_path: str) -> float:
        """
        Container duration in seconds, 0.0 when it cannot be determined.
        """
        try:
            fmt = self.probe_json(file_path).get("format", {})
            return float(fmt.get("duration", 0) or 0)
        except (ProbeError, TypeError, ValueError) as e:
            logger.warning(f"Could not read duration of {file_path}: {e}")
            return 0.0


def parse_probe_data(data: Dict[str, Any], file_path: str, input_index: int = 0) -> MediaInfo:
    streams = data.get("streams", [])
    fmt = data.get("format", {})
    if not isinstance(streams, list) or not isinstance(fmt, dict):
        raise ProbeError(f"Unexpected ffprobe structure for {file_path}")

    tracks = []
    # Stream index is the position in ffprobe's list, which matches ffmpeg's -map numbering
    for stream_index, s in enumerate(streams):
        if not isinstance(s, dict):
            continue
        tags = s.get("tags") if isinstance(s.get("tags"), dict) else {}
        tracks.append(TrackDescriptor(
            input_index=input_index,
            stream_index=stream_index,
            type=s.get("codec_type") or "unknown",
            codec=s.get("codec_name") or "unknown",
            language=_language_from_tags(s),
            is_default=_disposition_flag(s, "default"),
            is_forced=_disposition_flag(s, "forced"),
            channels=_int_or_none(s.get("channels")),
            sample_rate=_str_or_none(s.get("sample_rate")),
            width=_int_or_none(s.get("width")),
            height=_int_or_none(s.get("height")),
            frame_rate=_str_or_none(s.get("avg_frame_rate")),
            attachment_name=_str_or_none(tags.get("filename") or tags.get("mimetype")),
        ))

    try:
        duration = float(fmt.get("duration", 0) or 0)
    except (TypeError, ValueError):
        duration = 0.0

    size_bytes = _int_or_none(fmt.get("size")) or 0
    container = fmt.get("format_long_name") or fmt.get("format_name") or "unknown"

    return MediaInfo(
        path=file_path,
        duration_seconds=duration,
        bitrate=_int_or_none(fmt.get("bit_rate")) or 0,
        container_format=container,
        size_mb=size_bytes / (1024 * 1024),
        tracks=tracks
    )
