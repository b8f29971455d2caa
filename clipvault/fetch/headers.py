"""Per-destination request header profiles."""

from __future__ import annotations

from pathlib import PurePosixPath
from urllib.parse import urlparse

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

VIDEO_EXTENSIONS = frozenset({".mp4", ".webm", ".mov", ".m4v", ".avi", ".mkv", ".m3u8", ".gifv"})
IMAGE_EXTENSIONS = frozenset({".gif", ".jpg", ".jpeg", ".png", ".webp", ".avif"})

ACCEPT_VIDEO = "video/webm,video/ogg,video/*;q=0.9,application/ogg;q=0.7,audio/*;q=0.6,*/*;q=0.5"
ACCEPT_IMAGE = "image/avif,image/webp,image/apng,image/*,*/*;q=0.8"
ACCEPT_JSON = "application/json,text/plain;q=0.9,*/*;q=0.8"
ACCEPT_HTML = "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8"

# Hosts that refuse hotlinked requests without a matching Referer/Origin.
_HOST_OVERRIDES: dict[str, dict[str, str]] = {
    "redgifs.com": {
        "Referer": "https://www.redgifs.com/",
        "Origin": "https://www.redgifs.com",
        "Accept-Language": "en-US,en;q=0.9",
    },
    "imgur.com": {
        "Referer": "https://imgur.com/",
        "Accept-Language": "en-US,en;q=0.9",
    },
    "redd.it": {
        "Referer": "https://www.reddit.com/",
        "Origin": "https://www.reddit.com",
        "Accept-Language": "en-US,en;q=0.9",
    },
    "reddit.com": {
        "Accept-Language": "en-US,en;q=0.9",
    },
}


def host_matches(host: str, domain: str) -> bool:
    host = host.lower()
    return host == domain or host.endswith("." + domain)


def url_extension(url: str) -> str:
    return PurePosixPath(urlparse(url).path).suffix.lower()


def accept_for(url: str) -> str:
    ext = url_extension(url)
    if ext in VIDEO_EXTENSIONS:
        return ACCEPT_VIDEO
    if ext in IMAGE_EXTENSIONS:
        return ACCEPT_IMAGE
    if ext == ".json":
        return ACCEPT_JSON
    return ACCEPT_HTML


def polite_headers(url: str, extra: dict[str, str] | None = None) -> dict[str, str]:
    """Build the header profile for a request to ``url``; ``extra`` wins over defaults."""
    host = (urlparse(url).hostname or "").lower()
    headers = {
        "User-Agent": BROWSER_USER_AGENT,
        "Accept": accept_for(url),
        "Accept-Language": "en-US,en;q=0.8",
    }
    for domain, overrides in _HOST_OVERRIDES.items():
        if host_matches(host, domain):
            headers.update(overrides)
            break
    if extra:
        headers.update(extra)
    return headers


__all__ = [
    "BROWSER_USER_AGENT",
    "VIDEO_EXTENSIONS",
    "IMAGE_EXTENSIONS",
    "accept_for",
    "host_matches",
    "polite_headers",
    "url_extension",
]
