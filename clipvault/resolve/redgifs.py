from __future__ import annotations

import re
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from clipvault.core.errors import FetchError
from clipvault.core.logging import get_logger

from .html import og_video, parse_html
from .race import first_reachable_concurrently, race_with_authority

if TYPE_CHECKING:
    from .registry import SiteResolver

API_BASE = "https://api.redgifs.com/v2"
WATCH_BASE = "https://www.redgifs.com/watch"
MEDIA_HOSTS = ("thumbs2.redgifs.com", "thumbs3.redgifs.com")

_ID_PATTERN = re.compile(r"^/(?:watch|ifr|i)/([A-Za-z]+)")

logger = get_logger(component="resolver.redgifs")


def gif_id(url: str) -> str | None:
    parsed = urlparse(url)
    match = _ID_PATTERN.match(parsed.path)
    if match:
        return match.group(1)
    segments = [segment for segment in parsed.path.split("/") if segment]
    if segments and (parsed.hostname or "").startswith("thumbs"):
        return segments[-1].split(".")[0].split("-")[0]
    return None


def candidate_urls(media_id: str) -> list[str]:
    names = dict.fromkeys([media_id, media_id[:1].upper() + media_id[1:]])
    return [f"https://{host}/{name}{suffix}" for host in MEDIA_HOSTS for name in names for suffix in (".mp4", "-mobile.mp4")]


async def from_api(resolver: "SiteResolver", media_id: str) -> str | None:
    token_payload = await resolver.fetcher.get_json(
        f"{API_BASE}/auth/temporary",
        max_retries=0,
        timeout=resolver.strategy_timeout_s,
    )
    token = token_payload.get("token") if isinstance(token_payload, dict) else None
    if not token:
        return None
    payload = await resolver.fetcher.get_json(
        f"{API_BASE}/gifs/{media_id.lower()}",
        headers={"Authorization": f"Bearer {token}"},
        max_retries=0,
        timeout=resolver.strategy_timeout_s,
    )
    if not isinstance(payload, dict):
        return None
    urls = (payload.get("gif") or {}).get("urls") or {}
    return urls.get("hd") or urls.get("sd")


async def from_candidates(resolver: "SiteResolver", media_id: str) -> str | None:
    return await first_reachable_concurrently(
        resolver.fetcher,
        candidate_urls(media_id),
        timeout_s=resolver.strategy_timeout_s,
    )


async def from_page(resolver: "SiteResolver", media_id: str) -> str | None:
    markup, _ = await resolver.fetcher.get_text(
        f"{WATCH_BASE}/{media_id.lower()}",
        max_retries=0,
        timeout=resolver.strategy_timeout_s,
    )
    return og_video(parse_html(markup))


async def resolve_redgifs(resolver: "SiteResolver", url: str, depth: int) -> str | None:
    media_id = gif_id(url)
    if not media_id:
        return None
    try:
        found, winner = await race_with_authority(
            {
                "api": from_api(resolver, media_id),
                "probe": from_candidates(resolver, media_id),
                "page": from_page(resolver, media_id),
            },
            authoritative="api",
            deadline_s=resolver.deadline_s,
            grace_s=resolver.authoritative_grace_s,
            strategy_timeout_s=resolver.strategy_timeout_s,
        )
    except FetchError:
        return None
    logger.info("redgifs_race_finished", media_id=media_id, winner=winner, found=bool(found))
    return found


__all__ = ["resolve_redgifs", "gif_id", "candidate_urls"]
