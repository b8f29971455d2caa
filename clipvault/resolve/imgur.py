from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import urlparse

from .race import first_reachable_in_order

if TYPE_CHECKING:
    from .registry import SiteResolver

DIRECT_HOST = "https://i.imgur.com"
FORMATS = (".gif", ".mp4", ".jpg", ".png")
_NON_ID_SEGMENTS = {"a", "gallery", "t", "r", "user"}


def imgur_id(url: str) -> str | None:
    segments = [segment for segment in urlparse(url).path.split("/") if segment]
    if not segments:
        return None
    candidate = segments[-1].split(".")[0]
    if not candidate or candidate in _NON_ID_SEGMENTS:
        return None
    return candidate


async def resolve_imgur(resolver: "SiteResolver", url: str, depth: int) -> str | None:
    media_id = imgur_id(url)
    if not media_id:
        return None
    if urlparse(url).path.lower().endswith(".gifv"):
        return f"{DIRECT_HOST}/{media_id}.mp4"
    candidates = [f"{DIRECT_HOST}/{media_id}{fmt}" for fmt in FORMATS]
    return await first_reachable_in_order(resolver.fetcher, candidates, timeout_s=resolver.strategy_timeout_s)


__all__ = ["resolve_imgur", "imgur_id"]
