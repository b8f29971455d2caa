from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from redis import Redis
from rq import Queue

from .config import Settings
from .logging import get_logger

DerivativeRunner = Callable[[str, str], Awaitable[None]]

QUEUE_NAME = "clipvault-derivatives"


class DerivativeBackend(ABC):
    """Schedules the post-save derivative pipeline for one asset."""

    @abstractmethod
    async def schedule(self, asset_id: str, owner_id: str) -> None: ...

    async def drain(self) -> None:
        """Wait for locally running work; a no-op for out-of-process backends."""


class BackgroundDerivativeBackend(DerivativeBackend):
    """Runs the pipeline as a detached task on the current event loop."""

    def __init__(self, runner: DerivativeRunner):
        self.runner = runner
        self._tasks: set[asyncio.Task] = set()
        self.logger = get_logger(component="derivative_backend", backend="background")

    async def schedule(self, asset_id: str, owner_id: str) -> None:
        task = asyncio.create_task(self.runner(asset_id, owner_id), name=f"derivatives:{asset_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self.logger.info("derivatives_scheduled", asset_id=asset_id)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class RQDerivativeBackend(DerivativeBackend):
    def __init__(self, queue: Queue):
        self.queue = queue

    async def schedule(self, asset_id: str, owner_id: str) -> None:  # pragma: no cover - exercised via worker
        from clipvault.workers.tasks import run_derivatives

        await asyncio.to_thread(self.queue.enqueue, run_derivatives, asset_id, owner_id)


def get_derivative_backend(settings: Settings, runner: DerivativeRunner) -> DerivativeBackend:
    backend = settings.normalized_derivative_backend
    if backend == "background":
        return BackgroundDerivativeBackend(runner)
    if backend == "rq":  # pragma: no cover - requires redis
        connection = Redis.from_url(settings.redis_url)
        return RQDerivativeBackend(Queue(QUEUE_NAME, connection=connection))
    raise ValueError(f"Unsupported derivative backend: {settings.derivative_backend}")


__all__ = [
    "DerivativeBackend",
    "BackgroundDerivativeBackend",
    "RQDerivativeBackend",
    "DerivativeRunner",
    "get_derivative_backend",
]
