from __future__ import annotations

import re
from html import unescape
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse, urlunparse

from clipvault.core.errors import FetchError
from clipvault.core.logging import get_logger
from clipvault.fetch.headers import host_matches

from .html import canonical_link, links_to_hosts, looks_direct, og_image, og_video, parse_html

if TYPE_CHECKING:
    from .registry import SiteResolver

JSON_MIRRORS = ("www.reddit.com", "old.reddit.com", "reddit.com")
SECONDARY_HOSTS = ("v.redd.it", "redgifs.com", "imgur.com", "i.redd.it")

_POST_ID = re.compile(r"/comments/([a-z0-9]+)", re.IGNORECASE)
_SHORT_ID = re.compile(r"^/([a-z0-9]+)/?$", re.IGNORECASE)

logger = get_logger(component="resolver.reddit")


def normalize_reddit_url(url: str) -> str:
    """Drop query/fragment share noise and force https on the canonical host family."""
    parsed = urlparse(url.strip())
    host = (parsed.hostname or "").lower()
    if host in {"reddit.com", "m.reddit.com", "np.reddit.com", "new.reddit.com"}:
        host = "www.reddit.com"
    path = parsed.path or "/"
    return urlunparse(("https", host, path, "", "", ""))


def post_id(url: str) -> str | None:
    parsed = urlparse(url)
    match = _POST_ID.search(parsed.path)
    if match:
        return match.group(1)
    if (parsed.hostname or "").lower() == "redd.it":
        short = _SHORT_ID.match(parsed.path)
        return short.group(1) if short else None
    return None


def json_endpoints(canonical: str) -> list[str]:
    path = urlparse(canonical).path.rstrip("/")
    ident = post_id(canonical)
    if not ident:
        return []
    endpoints: list[str] = []
    for mirror in JSON_MIRRORS:
        if _POST_ID.search(path):
            endpoints.append(f"https://{mirror}{path}.json")
        endpoints.append(f"https://{mirror}/comments/{ident}.json")
    return list(dict.fromkeys(endpoints))


def _post_from_listing(listing: Any) -> dict[str, Any] | None:
    if isinstance(listing, list) and listing:
        listing = listing[0]
    try:
        post = listing["data"]["children"][0]["data"]
    except (KeyError, IndexError, TypeError):
        return None
    return post if isinstance(post, dict) else None


def _reddit_video(post: dict[str, Any]) -> str | None:
    for key in ("secure_media", "media"):
        video = (post.get(key) or {}).get("reddit_video") or {}
        if video.get("fallback_url"):
            return video["fallback_url"]
    return None


def _embedded_video(post: dict[str, Any]) -> str | None:
    preview_video = ((post.get("preview") or {}).get("reddit_video_preview") or {}).get("fallback_url")
    if preview_video:
        return preview_video
    target = post.get("url_overridden_by_dest") or post.get("url")
    if isinstance(target, str):
        host = urlparse(target).hostname or ""
        if looks_direct(target) or any(host_matches(host, domain) for domain in SECONDARY_HOSTS):
            return target
    return None


def _gallery_item(post: dict[str, Any]) -> str | None:
    metadata = post.get("media_metadata") or {}
    if not isinstance(metadata, dict) or not metadata:
        return None
    ordered_ids = [item.get("media_id") for item in (post.get("gallery_data") or {}).get("items", [])]
    for media_id in [*ordered_ids, *metadata.keys()]:
        entry = metadata.get(media_id) or {}
        source = entry.get("s") or {}
        for key in ("mp4", "gif", "u"):
            if source.get(key):
                return source[key]
    return None


def _preview_image(post: dict[str, Any]) -> str | None:
    images = (post.get("preview") or {}).get("images") or []
    if not images:
        return None
    first = images[0]
    animated = ((first.get("variants") or {}).get("mp4") or {}).get("source") or {}
    if animated.get("url"):
        return animated["url"]
    return (first.get("source") or {}).get("url")


def media_from_post(post: dict[str, Any]) -> str | None:
    """Pick the best media URL from a post payload, crossposts included."""
    for candidate in [post, *(post.get("crosspost_parent_list") or [])]:
        for extractor in (_reddit_video, _embedded_video, _gallery_item, _preview_image):
            found = extractor(candidate)
            if found:
                return unescape(found)
    return None


def media_from_listing(listing: Any) -> str | None:
    post = _post_from_listing(listing)
    return media_from_post(post) if post else None


def media_from_markup(markup: str, base_url: str) -> str | None:
    soup = parse_html(markup)
    direct = og_video(soup) or og_image(soup)
    if direct:
        return direct
    linked = links_to_hosts(soup, SECONDARY_HOSTS, base_url)
    return linked[0] if linked else None


async def resolve_reddit(resolver: "SiteResolver", url: str, depth: int) -> str | None:
    page_url = normalize_reddit_url(url)
    markup = ""
    canonical = page_url
    try:
        markup, final_url = await resolver.fetch_text(page_url)
        canonical = canonical_link(parse_html(markup)) or normalize_reddit_url(final_url)
    except FetchError as exc:
        logger.info("reddit_page_fetch_failed", url=page_url, error=str(exc))

    media: str | None = None
    for endpoint in json_endpoints(canonical):
        try:
            listing = await resolver.fetch_json(endpoint)
        except (FetchError, ValueError) as exc:
            logger.info("reddit_json_failed", endpoint=endpoint, error=str(exc))
            continue
        # Mirrors serve the same post, so the first answer is final.
        media = media_from_listing(listing)
        break

    if not media and markup:
        media = media_from_markup(markup, canonical)
    if not media:
        return None

    host = urlparse(media).hostname or ""
    if not looks_direct(media) and any(host_matches(host, domain) for domain in SECONDARY_HOSTS):
        nested = await resolver.resolve_nested(media, depth + 1)
        return nested or media
    return media


__all__ = [
    "resolve_reddit",
    "normalize_reddit_url",
    "json_endpoints",
    "media_from_listing",
    "media_from_markup",
    "post_id",
]
