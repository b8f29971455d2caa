from __future__ import annotations

import subprocess
from pathlib import Path

from .probe import MediaFacts

TRANSCODE_TIMEOUT_S = 15 * 60


class TranscodeError(RuntimeError):
    """ffmpeg failed to produce the compatibility rendition."""


def needs_transcode(content_type: str | None, facts: MediaFacts | None) -> bool:
    """True for video that browsers may not play as stored (non-mp4 or non-h264)."""
    if not content_type or not content_type.startswith("video/"):
        return False
    if content_type != "video/mp4":
        return True
    if facts is None:
        return False
    return not facts.is_h264_mp4


def transcode_to_mp4(source: Path, target: Path) -> Path:
    """Re-encode ``source`` to H.264/AAC MP4 with the index moved to the front."""
    target.parent.mkdir(parents=True, exist_ok=True)
    command = [
        "ffmpeg",
        "-nostdin",
        "-v",
        "error",
        "-i",
        str(source),
        "-c:v",
        "libx264",
        "-preset",
        "veryfast",
        "-crf",
        "23",
        "-pix_fmt",
        "yuv420p",
        # Odd dimensions are rejected by yuv420p.
        "-vf",
        "scale=trunc(iw/2)*2:trunc(ih/2)*2",
        "-c:a",
        "aac",
        "-b:a",
        "128k",
        "-movflags",
        "+faststart",
        "-y",
        str(target),
    ]
    try:
        subprocess.run(command, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE, timeout=TRANSCODE_TIMEOUT_S)
    except FileNotFoundError as exc:
        raise TranscodeError("ffmpeg is not installed") from exc
    except subprocess.CalledProcessError as exc:
        target.unlink(missing_ok=True)
        message = exc.stderr.decode("utf-8", "replace").strip() if exc.stderr else f"ffmpeg exited with {exc.returncode}"
        raise TranscodeError(message) from exc
    except subprocess.TimeoutExpired as exc:
        target.unlink(missing_ok=True)
        raise TranscodeError("ffmpeg transcode timed out") from exc
    if not target.exists() or target.stat().st_size == 0:
        target.unlink(missing_ok=True)
        raise TranscodeError("ffmpeg produced an empty file")
    return target


__all__ = ["needs_transcode", "transcode_to_mp4", "TranscodeError"]
