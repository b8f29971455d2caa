from __future__ import annotations

from typing import TYPE_CHECKING

from .html import (
    absolute_video_links,
    dedupe,
    has_video_extension,
    json_ld_videos,
    looks_direct,
    og_video,
    parse_html,
    video_tag_sources,
)

if TYPE_CHECKING:
    from .registry import SiteResolver


def page_candidates(markup: str, base_url: str) -> list[str]:
    """Media URLs found in a page, in priority order."""
    soup = parse_html(markup)
    return dedupe(
        [
            *json_ld_videos(soup),
            og_video(soup),
            *video_tag_sources(soup, base_url),
            *absolute_video_links(markup),
        ]
    )


async def resolve_direct(resolver: "SiteResolver", url: str, depth: int) -> str | None:
    return url if looks_direct(url) else None


async def resolve_generic(resolver: "SiteResolver", url: str, depth: int) -> str | None:
    if looks_direct(url):
        return url
    markup, final_url = await resolver.fetch_text(url)
    for candidate in page_candidates(markup, final_url):
        if not has_video_extension(candidate):
            return candidate
        if await resolver.probe(candidate):
            return candidate
    return None


__all__ = ["resolve_generic", "resolve_direct", "page_candidates"]
