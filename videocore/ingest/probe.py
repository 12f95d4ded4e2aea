from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from videocore.core.constants import DEFAULT_AUDIO_RESOLUTION
from videocore.core.errors import MediaProbeError
from videocore.domain.descriptors import TechnicalMetadata

__all__ = [
    "MediaProbe",
    "run_ffprobe",
    "parse_technical_metadata",
    "probe_media",
]


class MediaProbe(Protocol):
    def __call__(self, path: Path) -> TechnicalMetadata: ...


def run_ffprobe(target: Path) -> Dict[str, Any]:
    """Run ffprobe and return its JSON output.

    Args:
        target: The media file.

    Returns:
        The decoded ffprobe JSON.

    Raises:
        MediaProbeError: ffprobe is missing, fails, or prints garbage.
    """
    command = [
        "ffprobe",
        "-v",
        "error",
        "-show_format",
        "-show_streams",
        "-print_format",
        "json",
        str(target),
    ]
    try:
        proc = subprocess.run(
            command,
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
        return json.loads(proc.stdout)
    except subprocess.CalledProcessError as exc:
        raise MediaProbeError(f"ffprobe failed: {(exc.stderr or '').strip()}") from exc
    except (FileNotFoundError, json.JSONDecodeError) as exc:
        raise MediaProbeError(f"ffprobe unavailable or unreadable output: {exc}") from exc


def parse_technical_metadata(raw: Dict[str, Any]) -> TechnicalMetadata:
    """Derive resolution, frame rate and duration from ffprobe JSON.

    Files without a real video stream (cover art does not count) are audio
    only: they get the fixed audio resolution and no frame rate.

    Args:
        raw: The raw ffprobe JSON.

    Returns:
        The technical metadata of the file.
    """
    format_info = raw.get("format") or {}
    streams: List[Dict[str, Any]] = raw.get("streams") or []
    duration = _parse_duration(format_info.get("duration"))
    metadata = {"format": format_info, "streams": streams}

    video_streams = [stream for stream in streams if _is_video_stream(stream)]
    if not video_streams:
        return TechnicalMetadata(
            audio_only=True,
            resolution=DEFAULT_AUDIO_RESOLUTION,
            fps=None,
            duration=duration,
            metadata=metadata,
        )

    selected = _select_video_stream(video_streams)
    width = _int_or_none(selected.get("width"))
    height = _int_or_none(selected.get("height"))
    if not width or not height:
        raise MediaProbeError("video stream has no dimensions")

    return TechnicalMetadata(
        audio_only=False,
        resolution=min(width, height),
        fps=_frame_rate(selected),
        duration=duration,
        metadata=metadata,
    )


def probe_media(path: Path) -> TechnicalMetadata:
    return parse_technical_metadata(run_ffprobe(path))


def _is_video_stream(stream: Dict[str, Any]) -> bool:
    if stream.get("codec_type") != "video":
        return False
    disposition = stream.get("disposition")
    if isinstance(disposition, dict) and disposition.get("attached_pic"):
        return False
    return True


def _select_video_stream(streams: List[Dict[str, Any]]) -> Dict[str, Any]:
    default_streams = [
        stream
        for stream in streams
        if isinstance(stream.get("disposition"), dict) and stream["disposition"].get("default")
    ]
    if default_streams:
        return default_streams[0]

    def score(item: Dict[str, Any]) -> int:
        return (_int_or_none(item.get("width")) or 0) * (_int_or_none(item.get("height")) or 0)

    return max(streams, key=score)


def _frame_rate(stream: Dict[str, Any]) -> float:
    for key in ("avg_frame_rate", "r_frame_rate"):
        rate = _parse_rational(stream.get(key))
        if rate:
            return float(round(rate))
    return 0.0


def _parse_rational(value: Any) -> Optional[float]:
    if not value or value in {"N/A", "0/0"}:
        return None
    try:
        numerator, _, denominator = str(value).partition("/")
        num = float(numerator)
        den = float(denominator) if denominator else 1.0
    except ValueError:
        return None
    if den == 0 or num <= 0:
        return None
    return num / den


def _parse_duration(raw_value: Any) -> int:
    if raw_value in (None, "N/A", ""):
        return 0
    try:
        return int(round(float(raw_value)))
    except (TypeError, ValueError):
        return 0


def _int_or_none(value: Any) -> Optional[int]:
    if value in (None, "N/A", ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
