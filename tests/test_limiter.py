from __future__ import annotations

import asyncio

import pytest

from clipvault.fetch.limiter import HostLimiter


def test_concurrency_never_exceeds_host_cap():
    limiter = HostLimiter(default_limit=2)
    peak = 0

    async def worker() -> None:
        nonlocal peak
        async with limiter.slot("cdn.example.com"):
            peak = max(peak, limiter.active_count("cdn.example.com"))
            await asyncio.sleep(0.01)

    async def scenario() -> None:
        await asyncio.gather(*(worker() for _ in range(10)))

    asyncio.run(scenario())
    assert peak == 2
    assert limiter.active_count("cdn.example.com") == 0
    assert limiter.queued_count("cdn.example.com") == 0


def test_waiters_are_served_in_arrival_order():
    limiter = HostLimiter(default_limit=1)
    order: list[int] = []

    async def worker(index: int) -> None:
        async with limiter.slot("api.example.com"):
            order.append(index)
            await asyncio.sleep(0)

    async def scenario() -> None:
        await limiter.acquire("api.example.com")
        tasks = []
        for index in range(5):
            tasks.append(asyncio.create_task(worker(index)))
            await asyncio.sleep(0)
        assert limiter.queued_count("api.example.com") == 5
        limiter.release("api.example.com")
        await asyncio.gather(*tasks)

    asyncio.run(scenario())
    assert order == [0, 1, 2, 3, 4]


def test_hosts_are_limited_independently():
    limiter = HostLimiter(default_limit=1)

    async def scenario() -> tuple[int, int]:
        await limiter.acquire("a.example.com")
        await asyncio.wait_for(limiter.acquire("b.example.com"), timeout=1)
        return limiter.active_count("a.example.com"), limiter.active_count("b.example.com")

    assert asyncio.run(scenario()) == (1, 1)


def test_overrides_match_host_suffix():
    limiter = HostLimiter(default_limit=4, overrides={"redgifs.com": 1})
    assert limiter.limit_for("api.redgifs.com") == 1
    assert limiter.limit_for("redgifs.com") == 1
    assert limiter.limit_for("notredgifs.com") == 4


def test_cancelled_waiter_leaves_the_queue():
    limiter = HostLimiter(default_limit=1)

    async def scenario() -> tuple[int, int]:
        await limiter.acquire("x.example.com")
        waiter = asyncio.create_task(limiter.acquire("x.example.com"))
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        limiter.release("x.example.com")
        return limiter.active_count("x.example.com"), limiter.queued_count("x.example.com")

    assert asyncio.run(scenario()) == (0, 0)


def test_rejects_non_positive_default():
    with pytest.raises(ValueError):
        HostLimiter(default_limit=0)
