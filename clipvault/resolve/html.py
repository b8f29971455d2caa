"""Markup helpers shared by the page-scraping strategies."""

from __future__ import annotations

import json
import re
from html import unescape
from typing import Any, Iterable, Iterator
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from clipvault.fetch.headers import IMAGE_EXTENSIONS, VIDEO_EXTENSIONS, host_matches, url_extension

DIRECT_EXTENSIONS = (VIDEO_EXTENSIONS | IMAGE_EXTENSIONS) - {".gifv"}
PAGE_VIDEO_EXTENSIONS = (".mp4", ".webm", ".mov", ".m4v", ".m3u8")

_ABSOLUTE_VIDEO_LINK = re.compile(
    r"https?://[^\s\"'<>\\]+?\.(?:mp4|webm|mov|m4v|m3u8)(?:\?[^\s\"'<>\\]*)?",
    re.IGNORECASE,
)


def looks_direct(url: str) -> bool:
    """True when the URL path already ends in a fetchable media extension."""
    return url_extension(url) in DIRECT_EXTENSIONS


def has_video_extension(url: str) -> bool:
    return url_extension(url) in PAGE_VIDEO_EXTENSIONS


def parse_html(markup: str) -> BeautifulSoup:
    return BeautifulSoup(markup or "", "html.parser")


def meta_content(soup: BeautifulSoup, *names: str) -> str | None:
    for name in names:
        tag = soup.find("meta", attrs={"property": name}) or soup.find("meta", attrs={"name": name})
        if tag and tag.get("content"):
            return unescape(str(tag["content"]).strip())
    return None


def og_video(soup: BeautifulSoup) -> str | None:
    return meta_content(soup, "og:video:secure_url", "og:video:url", "og:video", "twitter:player:stream")


def og_image(soup: BeautifulSoup) -> str | None:
    return meta_content(soup, "og:image:secure_url", "og:image:url", "og:image", "twitter:image")


def canonical_link(soup: BeautifulSoup) -> str | None:
    tag = soup.find("link", attrs={"rel": "canonical"})
    if tag and tag.get("href"):
        return str(tag["href"])
    return meta_content(soup, "og:url")


def _walk_json(node: Any) -> Iterator[dict[str, Any]]:
    if isinstance(node, dict):
        yield node
        for value in node.values():
            yield from _walk_json(value)
    elif isinstance(node, list):
        for item in node:
            yield from _walk_json(item)


def json_ld_videos(soup: BeautifulSoup) -> list[str]:
    """Return ``contentUrl`` values of every ``VideoObject`` in JSON-LD blocks."""
    found: list[str] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            payload = json.loads(script.string or script.get_text() or "")
        except ValueError:
            continue
        for node in _walk_json(payload):
            kind = node.get("@type")
            kinds = kind if isinstance(kind, list) else [kind]
            if "VideoObject" in kinds and isinstance(node.get("contentUrl"), str):
                found.append(node["contentUrl"])
    return found


def video_tag_sources(soup: BeautifulSoup, base_url: str) -> list[str]:
    found: list[str] = []
    for tag in soup.find_all(["video", "source"]):
        src = tag.get("src")
        if src:
            found.append(urljoin(base_url, str(src)))
    return found


def absolute_video_links(markup: str) -> list[str]:
    return [unescape(match) for match in _ABSOLUTE_VIDEO_LINK.findall(markup or "")]


def links_to_hosts(soup: BeautifulSoup, hosts: Iterable[str], base_url: str) -> list[str]:
    """``iframe[src]`` and ``a[href]`` targets that point at one of ``hosts``."""
    domains = tuple(hosts)
    found: list[str] = []
    for tag in soup.find_all(["iframe", "a"]):
        target = tag.get("src") if tag.name == "iframe" else tag.get("href")
        if not target:
            continue
        absolute = urljoin(base_url, str(target))
        host = urlparse(absolute).hostname or ""
        if any(host_matches(host, domain) for domain in domains):
            found.append(absolute)
    return found


def dedupe(urls: Iterable[str | None]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for url in urls:
        if url and url not in seen:
            seen.add(url)
            ordered.append(url)
    return ordered


__all__ = [
    "DIRECT_EXTENSIONS",
    "absolute_video_links",
    "canonical_link",
    "dedupe",
    "has_video_extension",
    "json_ld_videos",
    "links_to_hosts",
    "looks_direct",
    "meta_content",
    "og_image",
    "og_video",
    "parse_html",
    "video_tag_sources",
]
