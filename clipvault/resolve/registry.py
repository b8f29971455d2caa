from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence, TypeVar
from urllib.parse import urlparse

from clipvault.core.config import Settings
from clipvault.core.errors import FetchError
from clipvault.core.logging import get_logger
from clipvault.fetch.fetcher import RateLimitedFetcher
from clipvault.fetch.headers import host_matches

from .generic import resolve_direct, resolve_generic
from .html import looks_direct
from .imgur import resolve_imgur
from .race import probe_within
from .reddit import resolve_reddit
from .redgifs import resolve_redgifs
from .vreddit import resolve_vreddit

ResolveFn = Callable[["SiteResolver", str, int], Awaitable["str | None"]]
HostPredicate = Callable[[str, str], bool]
T = TypeVar("T")

_SILENT_SUFFIX = re.compile(r"-silent(\.mp4)$", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class ResolverRule:
    name: str
    matches: HostPredicate
    resolve: ResolveFn


def _on_host(domain: str) -> HostPredicate:
    return lambda url, host: host_matches(host, domain)


def _reddit_host(url: str, host: str) -> bool:
    return host_matches(host, "reddit.com") or host == "redd.it"


DEFAULT_RULES: tuple[ResolverRule, ...] = (
    ResolverRule("direct", lambda url, host: looks_direct(url), resolve_direct),
    ResolverRule("imgur", _on_host("imgur.com"), resolve_imgur),
    ResolverRule("v.redd.it", _on_host("v.redd.it"), resolve_vreddit),
    ResolverRule("reddit", _reddit_host, resolve_reddit),
    ResolverRule("redgifs", _on_host("redgifs.com"), resolve_redgifs),
    ResolverRule("generic", lambda url, host: True, resolve_generic),
)


class SiteResolver:
    """Turns a source URL into a direct, fetchable media URL.

    Rules are evaluated in priority order; the first rule that matches the
    host and yields a URL wins, and the generic page sniffer closes the table.
    Each page or probe request is bounded by ``strategy_timeout_s``, each rule
    by ``deadline_s`` plus the authoritative grace, and the whole resolution by
    ``overall_timeout_s``. ``resolve`` never raises: on total failure it hands
    back the source URL so the caller's own fetch surfaces the real error.
    """

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        *,
        rules: Sequence[ResolverRule] = DEFAULT_RULES,
        deadline_s: float = 8.0,
        strategy_timeout_s: float = 2.5,
        authoritative_grace_s: float = 0.75,
        overall_timeout_s: float = 10.0,
        max_depth: int = 3,
    ):
        self.fetcher = fetcher
        self.rules = tuple(rules)
        self.deadline_s = deadline_s
        self.strategy_timeout_s = strategy_timeout_s
        self.authoritative_grace_s = authoritative_grace_s
        self.overall_timeout_s = overall_timeout_s
        self.max_depth = max_depth
        self.logger = get_logger(component="site_resolver")

    @classmethod
    def from_settings(cls, settings: Settings, fetcher: RateLimitedFetcher) -> "SiteResolver":
        return cls(
            fetcher,
            deadline_s=settings.resolve_deadline_s,
            strategy_timeout_s=settings.resolve_strategy_timeout_s,
            authoritative_grace_s=settings.resolve_authoritative_grace_s,
            overall_timeout_s=settings.resolve_overall_timeout_s,
            max_depth=settings.resolve_max_depth,
        )

    @property
    def rule_timeout_s(self) -> float:
        return self.deadline_s + self.authoritative_grace_s

    async def resolve(self, source_url: str) -> str:
        source_url = source_url.strip()
        try:
            resolved = await asyncio.wait_for(self._resolve(source_url, 0), timeout=self.overall_timeout_s)
        except asyncio.TimeoutError:
            self.logger.warning("resolve_timed_out", url=source_url)
            resolved = None
        except Exception:
            self.logger.exception("resolve_failed", url=source_url)
            resolved = None
        if not resolved:
            self.logger.info("resolve_fell_back_to_source", url=source_url)
            return source_url
        return await self.prefer_audio_variant(resolved)

    async def resolve_nested(self, url: str, depth: int) -> str | None:
        if depth > self.max_depth:
            return None
        return await self._resolve(url, depth)

    async def _resolve(self, url: str, depth: int) -> str | None:
        host = (urlparse(url).hostname or "").lower()
        for rule in self.rules:
            if not rule.matches(url, host):
                continue
            try:
                result = await asyncio.wait_for(rule.resolve(self, url, depth), timeout=self.rule_timeout_s)
            except asyncio.TimeoutError:
                self.logger.info("resolver_rule_timed_out", rule=rule.name, url=url, timeout_s=self.rule_timeout_s)
                continue
            except Exception as exc:
                self.logger.info("resolver_rule_failed", rule=rule.name, url=url, error=repr(exc))
                continue
            if result:
                self.logger.info("resolver_rule_matched", rule=rule.name, url=url, resolved=result, depth=depth)
                return result
        return None

    async def _bounded(self, awaitable: Awaitable[T], url: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.strategy_timeout_s)
        except asyncio.TimeoutError as exc:
            raise FetchError(f"no answer from {url} within {self.strategy_timeout_s}s", url=url) from exc

    async def fetch_text(self, url: str) -> tuple[str, str]:
        """Fetch a page within one strategy budget; raises ``FetchError`` otherwise."""
        budget = self.strategy_timeout_s
        return await self._bounded(self.fetcher.get_text(url, timeout=budget, max_retries=1, budget_s=budget), url)

    async def fetch_json(self, url: str, *, headers: dict[str, str] | None = None) -> Any:
        budget = self.strategy_timeout_s
        return await self._bounded(
            self.fetcher.get_json(url, headers=headers, timeout=budget, max_retries=1, budget_s=budget),
            url,
        )

    async def probe(self, url: str) -> bool:
        return await probe_within(self.fetcher, url, self.strategy_timeout_s)

    async def prefer_audio_variant(self, url: str) -> str:
        """Swap a ``-silent.mp4`` file for its full-audio sibling when that one is reachable."""
        if not _SILENT_SUFFIX.search(urlparse(url).path):
            return url
        parsed = urlparse(url)
        audible = parsed._replace(path=_SILENT_SUFFIX.sub(r"\1", parsed.path)).geturl()
        try:
            if await self.probe(audible):
                return audible
        except Exception as exc:
            self.logger.info("audio_variant_probe_failed", url=audible, error=repr(exc))
        return url


__all__ = ["SiteResolver", "ResolverRule", "DEFAULT_RULES"]
