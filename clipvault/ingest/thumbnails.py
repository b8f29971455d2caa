from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Sequence, Tuple

import cv2  # type: ignore

THUMB_WIDTH = 640
THUMBNAIL_OFFSETS_S: Tuple[float, ...] = (1.0, 0.5, 0.0)


def render_thumbnail(
    media_path: Path,
    output_path: Path,
    *,
    offsets: Sequence[float] = THUMBNAIL_OFFSETS_S,
) -> Tuple[int, int] | None:
    """Grab one still frame, trying each offset until a readable image comes out.

    Leading frames are often black or missing, so later offsets are tried
    first. Returns ``(width, height)`` of the written JPEG, or ``None`` when
    every attempt failed.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    for offset in offsets:
        dimensions = _extract_and_measure(media_path, offset, output_path)
        if dimensions:
            return dimensions
    return None


def _extract_and_measure(media_path: Path, timestamp: float, output_path: Path) -> Tuple[int, int] | None:
    command = [
        "ffmpeg",
        "-nostdin",
        "-v",
        "error",
        "-ss",
        f"{max(timestamp, 0.0):.3f}",
        "-i",
        str(media_path),
        "-frames:v",
        "1",
        "-vf",
        f"thumbnail,scale={THUMB_WIDTH}:-2:flags=lanczos",
        "-q:v",
        "2",
        "-y",
        str(output_path),
    ]
    try:
        subprocess.run(command, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except (subprocess.CalledProcessError, FileNotFoundError):
        output_path.unlink(missing_ok=True)
        return None

    if not output_path.exists() or output_path.stat().st_size == 0:
        output_path.unlink(missing_ok=True)
        return None
    try:
        return _image_dimensions(output_path)
    except RuntimeError:
        output_path.unlink(missing_ok=True)
        return None


def _image_dimensions(image_path: Path) -> Tuple[int, int]:
    image = cv2.imread(str(image_path))
    if image is None:
        raise RuntimeError(f"Failed to read generated thumbnail at {image_path}")
    height, width = image.shape[:2]
    return width, height


__all__ = ["render_thumbnail", "THUMBNAIL_OFFSETS_S"]
