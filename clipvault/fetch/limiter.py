from __future__ import annotations

import asyncio
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Mapping

from .headers import host_matches


@dataclass(slots=True)
class _HostState:
    limit: int
    active: int = 0
    waiters: deque[asyncio.Future[None]] = field(default_factory=deque)


class HostLimiter:
    """Caps concurrent requests per hostname with a FIFO wait queue.

    A released slot is handed directly to the oldest waiter, so ``active``
    never exceeds the host's limit and late arrivals cannot jump the queue.
    """

    def __init__(self, default_limit: int = 4, overrides: Mapping[str, int] | None = None):
        if default_limit < 1:
            raise ValueError("default_limit must be >= 1")
        self.default_limit = default_limit
        self.overrides = dict(overrides or {})
        self._states: dict[str, _HostState] = {}

    def limit_for(self, host: str) -> int:
        for domain, limit in self.overrides.items():
            if host_matches(host, domain):
                return max(1, limit)
        return self.default_limit

    def _state(self, host: str) -> _HostState:
        host = host.lower()
        state = self._states.get(host)
        if state is None:
            state = _HostState(limit=self.limit_for(host))
            self._states[host] = state
        return state

    def active_count(self, host: str) -> int:
        state = self._states.get(host.lower())
        return state.active if state else 0

    def queued_count(self, host: str) -> int:
        state = self._states.get(host.lower())
        return len(state.waiters) if state else 0

    async def acquire(self, host: str) -> None:
        state = self._state(host)
        if state.active < state.limit and not state.waiters:
            state.active += 1
            return
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        state.waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was handed over just before cancellation; pass it on.
                self.release(host)
            else:
                try:
                    state.waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def release(self, host: str) -> None:
        state = self._state(host)
        while state.waiters:
            waiter = state.waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        state.active = max(0, state.active - 1)

    @asynccontextmanager
    async def slot(self, host: str) -> AsyncIterator[None]:
        await self.acquire(host)
        try:
            yield
        finally:
            self.release(host)


__all__ = ["HostLimiter"]
