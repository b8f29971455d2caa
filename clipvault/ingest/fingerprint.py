"""Perceptual fingerprints: per-second frame dHashes plus a Chromaprint audio print."""

from __future__ import annotations

import json
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

import httpx
import imagehash
from PIL import Image

from clipvault.core.logging import get_logger

from .mime import is_image, is_video
from .probe import MediaFacts

FRAME_SAMPLE_FPS = 1
FRAME_SAMPLE_WIDTH = 160
SUBPROCESS_TIMEOUT_S = 10 * 60

logger = get_logger(component="fingerprint")


@dataclass(slots=True)
class Fingerprint:
    duration_ms: Optional[int]
    has_audio: bool
    audio_fingerprint: Optional[str] = None
    frame_hashes: List[str] = field(default_factory=list)

    @classmethod
    def unavailable(cls) -> "Fingerprint":
        return cls(duration_ms=None, has_audio=False)


def image_dhash(image_path: Path) -> str:
    """64-bit difference hash of one image as 16 lowercase hex digits."""
    with Image.open(image_path) as img:
        return str(imagehash.dhash(img.convert("L"), hash_size=8))


def sample_frame_hashes(media_path: Path, *, scratch_dir: Path | None = None, fps: int = FRAME_SAMPLE_FPS) -> Optional[List[str]]:
    """Hash one frame per second of ``media_path``, in sample order.

    Returns ``None`` when ffmpeg cannot decode the file and an empty list when
    it decodes but yields no frames.
    """
    if scratch_dir is not None:
        scratch_dir.mkdir(parents=True, exist_ok=True)
    frames_dir = Path(tempfile.mkdtemp(prefix="frames_", dir=scratch_dir))
    pattern = frames_dir / "frame_%05d.jpg"
    command = [
        "ffmpeg",
        "-nostdin",
        "-v",
        "error",
        "-i",
        str(media_path),
        "-vf",
        f"fps={fps},scale={FRAME_SAMPLE_WIDTH}:-1",
        "-q:v",
        "2",
        "-y",
        str(pattern),
    ]
    try:
        subprocess.run(command, check=True, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE, timeout=SUBPROCESS_TIMEOUT_S)
        frames = sorted(frames_dir.glob("frame_*.jpg"))
        return [image_dhash(frame) for frame in frames]
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError, OSError) as exc:
        logger.warning("frame_sampling_failed", path=str(media_path), error=repr(exc))
        return None
    finally:
        shutil.rmtree(frames_dir, ignore_errors=True)


def chromaprint(media_path: Path) -> Optional[str]:
    """Run ``fpcalc -json`` and return the fingerprint string, if any."""
    try:
        proc = subprocess.run(
            ["fpcalc", "-json", str(media_path)],
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=SUBPROCESS_TIMEOUT_S,
        )
        payload = json.loads(proc.stdout or "{}")
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError, json.JSONDecodeError) as exc:
        logger.warning("audio_fingerprint_failed", path=str(media_path), error=repr(exc))
        return None
    fingerprint = payload.get("fingerprint")
    return str(fingerprint) if fingerprint else None


def local_fingerprint(
    media_path: Path,
    *,
    content_type: Optional[str],
    facts: Optional[MediaFacts],
    scratch_dir: Path | None = None,
) -> Fingerprint:
    """Fingerprint with local ffmpeg/fpcalc; missing pieces degrade to empty values."""
    duration_ms = facts.duration_ms if facts else None
    has_audio = bool(facts and facts.has_audio)

    frame_hashes: List[str] = []
    if is_image(content_type) and content_type != "image/gif":
        try:
            frame_hashes = [image_dhash(media_path)]
        except OSError as exc:
            logger.warning("image_hash_failed", path=str(media_path), error=repr(exc))
    elif is_video(content_type) or content_type == "image/gif":
        frame_hashes = sample_frame_hashes(media_path, scratch_dir=scratch_dir) or []

    audio = chromaprint(media_path) if has_audio else None
    return Fingerprint(duration_ms=duration_ms, has_audio=has_audio, audio_fingerprint=audio, frame_hashes=frame_hashes)


class RemoteFingerprintClient:
    """Client for an external ``POST /fingerprint`` service."""

    def __init__(self, base_url: str, *, client: httpx.AsyncClient | None = None, timeout_s: float = 120.0):
        self.base_url = base_url.rstrip("/")
        self._client = client
        self.timeout_s = timeout_s

    async def fingerprint_file(self, media_path: Path) -> Optional[Fingerprint]:
        """Upload ``media_path``; ``None`` means the service is unavailable or declined."""
        try:
            with media_path.open("rb") as handle:
                files = {"file": (media_path.name or "upload.bin", handle, "application/octet-stream")}
                if self._client is not None:
                    response = await self._client.post(f"{self.base_url}/fingerprint", files=files, timeout=self.timeout_s)
                else:
                    async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                        response = await client.post(f"{self.base_url}/fingerprint", files=files)
            response.raise_for_status()
            payload: Any = response.json()
        except (httpx.HTTPError, OSError, ValueError) as exc:
            logger.warning("remote_fingerprint_failed", url=self.base_url, error=repr(exc))
            return None
        if not isinstance(payload, dict) or not payload.get("ok"):
            return None
        frames = payload.get("frameHashes") or []
        return Fingerprint(
            duration_ms=_int_or_none(payload.get("durationMs")),
            has_audio=bool(payload.get("hasAudio")),
            audio_fingerprint=payload.get("audioFingerprint") or None,
            frame_hashes=[str(item).lower() for item in frames if item],
        )


def _int_or_none(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return None


__all__ = [
    "Fingerprint",
    "RemoteFingerprintClient",
    "chromaprint",
    "image_dhash",
    "local_fingerprint",
    "sample_frame_hashes",
]
