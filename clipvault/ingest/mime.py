"""MIME type and file extension helpers for stored media."""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.parse import urlparse

OCTET_STREAM = "application/octet-stream"

MIME_TO_EXTENSION = {
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "video/quicktime": ".mov",
    "video/x-msvideo": ".avi",
    "video/x-matroska": ".mkv",
    "image/gif": ".gif",
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}

EXTENSION_TO_MIME = {
    ".mp4": "video/mp4",
    ".m4v": "video/mp4",
    ".webm": "video/webm",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
    ".mkv": "video/x-matroska",
    ".gif": "image/gif",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}


def _normalise(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    value = content_type.split(";", 1)[0].strip().lower()
    return value or None


def extension_from_mime(content_type: Optional[str]) -> str:
    return MIME_TO_EXTENSION.get(_normalise(content_type) or "", "")


def mime_from_extension(ext: str) -> Optional[str]:
    if not ext:
        return None
    normalised = ext.lower() if ext.startswith(".") else f".{ext.lower()}"
    return EXTENSION_TO_MIME.get(normalised)


def url_suffix(url: str) -> str:
    return PurePosixPath(urlparse(url).path).suffix.lower()


def sniff_mime(path: Path) -> Optional[str]:
    """Identify common media containers from their leading bytes."""
    try:
        with path.open("rb") as handle:
            head = handle.read(32)
    except OSError:
        return None
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if head.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if head[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    if head[:4] == b"RIFF" and head[8:12] == b"AVI ":
        return "video/x-msvideo"
    if head.startswith(b"\x1a\x45\xdf\xa3"):
        # Matroska and WebM share the EBML header; the doctype tells them apart.
        return "video/webm" if b"webm" in head else "video/x-matroska"
    if head[4:8] == b"ftyp":
        brand = head[8:12]
        if brand == b"qt  ":
            return "video/quicktime"
        return "video/mp4"
    return None


def detect_mime(
    path: Path,
    *,
    declared: Optional[str] = None,
    header: Optional[str] = None,
    url: Optional[str] = None,
) -> str:
    """Pick the best MIME type for a local file.

    The declared type wins, then a response ``Content-Type``, then the file or
    URL extension. Magic bytes are consulted only when every other source
    leaves the generic octet-stream.
    """
    for candidate in (_normalise(declared), _normalise(header)):
        if candidate and candidate != OCTET_STREAM:
            return candidate
    by_extension = mime_from_extension(path.suffix) or (mime_from_extension(url_suffix(url)) if url else None)
    if by_extension:
        return by_extension
    return sniff_mime(path) or OCTET_STREAM


def choose_extension(content_type: Optional[str], url: Optional[str] = None) -> str:
    """Extension for a stored object: from MIME, else the URL path, else ``.bin``."""
    return extension_from_mime(content_type) or (url_suffix(url) if url else "") or ".bin"


def is_video(content_type: Optional[str]) -> bool:
    return (_normalise(content_type) or "").startswith("video/")


def is_image(content_type: Optional[str]) -> bool:
    return (_normalise(content_type) or "").startswith("image/")


def wants_thumbnail(content_type: Optional[str]) -> bool:
    return is_video(content_type) or _normalise(content_type) == "image/gif"


__all__ = [
    "OCTET_STREAM",
    "detect_mime",
    "sniff_mime",
    "choose_extension",
    "extension_from_mime",
    "mime_from_extension",
    "url_suffix",
    "is_video",
    "is_image",
    "wants_thumbnail",
]
