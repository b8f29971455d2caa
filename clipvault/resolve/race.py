from __future__ import annotations

import asyncio
from typing import Awaitable, Mapping, Sequence

from clipvault.fetch.fetcher import RateLimitedFetcher


def _result_or_none(task: asyncio.Future) -> str | None:
    if task.cancelled() or task.exception() is not None:
        return None
    return task.result()


async def _with_timeout(awaitable: Awaitable[str | None], timeout_s: float) -> str | None:
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_s)
    except asyncio.TimeoutError:
        return None


async def race_with_authority(
    strategies: Mapping[str, Awaitable[str | None]],
    *,
    authoritative: str,
    deadline_s: float,
    grace_s: float,
    strategy_timeout_s: float,
) -> tuple[str | None, str | None]:
    """Run ``strategies`` concurrently and return ``(url, winner_name)``.

    The first strategy to produce a URL within ``deadline_s`` wins. If the
    winner is not ``authoritative``, the authoritative strategy gets up to
    ``grace_s`` more to finish and overrides the winner when it returns a
    different URL. Every strategy is bounded by ``strategy_timeout_s``.
    """
    loop = asyncio.get_running_loop()
    tasks: dict[asyncio.Task, str] = {
        asyncio.ensure_future(_with_timeout(coro, strategy_timeout_s)): name for name, coro in strategies.items()
    }
    by_name = {name: task for task, name in tasks.items()}
    winner: str | None = None
    winner_name: str | None = None
    pending = set(tasks)
    end = loop.time() + deadline_s
    try:
        while pending and winner is None:
            remaining = end - loop.time()
            if remaining <= 0:
                break
            done, pending = await asyncio.wait(pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                result = _result_or_none(task)
                if result and (winner is None or tasks[task] == authoritative):
                    winner, winner_name = result, tasks[task]

        authority = by_name.get(authoritative)
        if winner is not None and winner_name != authoritative and authority is not None:
            if not authority.done():
                await asyncio.wait({authority}, timeout=grace_s)
            if authority.done():
                override = _result_or_none(authority)
                if override and override != winner:
                    winner, winner_name = override, authoritative
        return winner, winner_name
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


async def probe_within(fetcher: RateLimitedFetcher, url: str, timeout_s: float) -> bool:
    """HEAD ``url`` once; a probe still pending after ``timeout_s`` counts as unreachable."""
    try:
        return await asyncio.wait_for(fetcher.probe(url, timeout=timeout_s), timeout=timeout_s)
    except asyncio.TimeoutError:
        return False


async def first_reachable_in_order(
    fetcher: RateLimitedFetcher,
    candidates: Sequence[str],
    *,
    timeout_s: float,
) -> str | None:
    """HEAD-probe ``candidates`` one at a time and return the first reachable URL."""
    for candidate in candidates:
        if await probe_within(fetcher, candidate, timeout_s):
            return candidate
    return None


async def first_reachable_concurrently(
    fetcher: RateLimitedFetcher,
    candidates: Sequence[str],
    *,
    timeout_s: float,
) -> str | None:
    """HEAD-probe all ``candidates`` at once and return whichever answers first."""

    async def _probe(url: str) -> str | None:
        return url if await probe_within(fetcher, url, timeout_s) else None

    tasks = [asyncio.ensure_future(_probe(url)) for url in candidates]
    try:
        for next_done in asyncio.as_completed(tasks):
            result = await next_done
            if result:
                return result
        return None
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


__all__ = ["race_with_authority", "first_reachable_in_order", "first_reachable_concurrently", "probe_within"]
