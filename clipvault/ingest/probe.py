from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple

StreamType = Literal["video", "audio", "data", "subtitle", "other"]

FFPROBE_TIMEOUT_S = 60


class ProbeError(RuntimeError):
    """ffprobe could not be run or returned unusable output."""


@dataclass(slots=True)
class MediaFacts:
    """Container-level facts about a media file."""

    duration_ms: Optional[int]
    width: Optional[int]
    height: Optional[int]
    has_audio: bool
    video_codec: Optional[str]
    container: Optional[str]

    @property
    def is_h264_mp4(self) -> bool:
        container = self.container or ""
        return self.video_codec == "h264" and ("mp4" in container.split(",") or "mov" in container.split(","))


def run_ffprobe(path: Path) -> Dict[str, Any]:
    """Return ffprobe's JSON description of ``path``.

    Args:
        path: The media file to inspect.

    Returns:
        The decoded ffprobe payload with ``format`` and ``streams`` keys.

    Raises:
        ProbeError: If ffprobe is missing, fails, or prints invalid JSON.
    """
    command = [
        "ffprobe",
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(path),
    ]
    try:
        proc = subprocess.run(
            command,
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=FFPROBE_TIMEOUT_S,
        )
    except FileNotFoundError as exc:
        raise ProbeError("ffprobe is not installed") from exc
    except subprocess.CalledProcessError as exc:
        raise ProbeError(exc.stderr.strip() or f"ffprobe exited with {exc.returncode}") from exc
    except subprocess.TimeoutExpired as exc:
        raise ProbeError("ffprobe timed out") from exc
    try:
        return json.loads(proc.stdout or "{}")
    except json.JSONDecodeError as exc:
        raise ProbeError("ffprobe returned invalid JSON") from exc


def parse_media_facts(raw: Dict[str, Any]) -> MediaFacts:
    """Reduce an ffprobe payload to the facts the pipeline stores."""
    format_info = raw.get("format") or {}
    streams = [stream for stream in raw.get("streams") or [] if isinstance(stream, dict)]
    video_streams, audio_streams = _split_streams(streams)

    duration_s = _parse_duration(format_info.get("duration"))
    if duration_s is None and video_streams:
        duration_s = _parse_duration(video_streams[0].get("duration"))

    width = height = None
    video_codec = None
    if video_streams:
        selected = _select_video_stream(video_streams)
        width = _int_or_none(selected.get("width"))
        height = _int_or_none(selected.get("height"))
        video_codec = selected.get("codec_name") or None

    return MediaFacts(
        duration_ms=int(round(duration_s * 1000)) if duration_s is not None else None,
        width=width,
        height=height,
        has_audio=bool(audio_streams),
        video_codec=video_codec,
        container=format_info.get("format_name") or None,
    )


def probe_media(path: Path) -> MediaFacts:
    return parse_media_facts(run_ffprobe(path))


def _split_streams(streams: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    video: List[Dict[str, Any]] = []
    audio: List[Dict[str, Any]] = []
    for stream in streams:
        stream_type = _normalise_stream_type(stream.get("codec_type"))
        # Cover art is exposed as a single-frame video stream.
        if stream_type == "video" and (stream.get("disposition") or {}).get("attached_pic"):
            continue
        if stream_type == "video":
            video.append(stream)
        elif stream_type == "audio":
            audio.append(stream)
    return video, audio


def _parse_duration(raw_value: Any) -> Optional[float]:
    if raw_value in (None, "N/A", ""):
        return None
    try:
        value = float(raw_value)
    except (TypeError, ValueError):
        return None
    return value if value >= 0 else None


def _normalise_stream_type(value: Any) -> StreamType:
    if not isinstance(value, str):
        return "other"
    value_lower = value.lower()
    if value_lower in {"video", "audio", "data", "subtitle"}:
        return value_lower  # type: ignore[return-value]
    return "other"


def _int_or_none(value: Any) -> Optional[int]:
    if value in (None, "N/A", ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _disposition_default(disposition: Any) -> Optional[bool]:
    if not isinstance(disposition, dict):
        return None
    default_value = disposition.get("default")
    if default_value is None:
        return None
    return bool(default_value)


def _select_video_stream(streams: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Prefer the default-flagged stream, else the largest frame area."""
    default_streams = [stream for stream in streams if _disposition_default(stream.get("disposition")) is True]
    if default_streams:
        return default_streams[0]

    def score(item: Dict[str, Any]) -> int:
        return (_int_or_none(item.get("width")) or 0) * (_int_or_none(item.get("height")) or 0)

    return max(streams, key=score)


__all__ = ["MediaFacts", "ProbeError", "run_ffprobe", "parse_media_facts", "probe_media"]
