from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import urlparse

from .race import first_reachable_in_order

if TYPE_CHECKING:
    from .registry import SiteResolver

BASE = "https://v.redd.it"
# Highest bitrate first; older clips use extension-less names.
RENDITIONS = (
    "DASH_1080.mp4",
    "DASH_720.mp4",
    "DASH_480.mp4",
    "DASH_360.mp4",
    "DASH_240.mp4",
    "DASH_1080",
    "DASH_720",
    "DASH_480",
    "DASH_360",
    "DASH_240",
)
PLAYLIST = "HLSPlaylist.m3u8"


def clip_id(url: str) -> str | None:
    segments = [segment for segment in urlparse(url).path.split("/") if segment]
    return segments[0] if segments else None


async def resolve_vreddit(resolver: "SiteResolver", url: str, depth: int) -> str | None:
    clip = clip_id(url)
    if not clip:
        return None
    candidates = [f"{BASE}/{clip}/{name}" for name in RENDITIONS]
    found = await first_reachable_in_order(resolver.fetcher, candidates, timeout_s=resolver.strategy_timeout_s)
    return found or f"{BASE}/{clip}/{PLAYLIST}"


__all__ = ["resolve_vreddit", "clip_id", "RENDITIONS"]
