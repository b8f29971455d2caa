"""URL ingest jobs: an observable, in-memory state machine per request.

Each job walks ``pending -> resolving -> downloading -> uploading -> saving ->
done`` and may drop to ``error`` from any non-terminal state. Jobs live only
in this process; terminal jobs stay pollable for a retention window.
"""

from __future__ import annotations

import asyncio
import enum
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Optional, Sequence
from urllib.parse import unquote, urlparse
from uuid import uuid4

from clipvault.core.errors import DuplicateContentError, EmptyContentError, InvalidJobTransition
from clipvault.core.logging import get_logger
from clipvault.fetch.fetcher import RateLimitedFetcher
from clipvault.ingest.mime import choose_extension
from clipvault.resolve import SiteResolver

from .media_service import MediaService
from .notifications import NotificationSink


class JobState(str, enum.Enum):
    pending = "pending"
    resolving = "resolving"
    downloading = "downloading"
    uploading = "uploading"
    saving = "saving"
    done = "done"
    error = "error"


_NEXT_STATE = {
    JobState.pending: JobState.resolving,
    JobState.resolving: JobState.downloading,
    JobState.downloading: JobState.uploading,
    JobState.uploading: JobState.saving,
    JobState.saving: JobState.done,
}

TERMINAL_STATES = frozenset({JobState.done, JobState.error})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class IngestJob:
    job_id: str
    user_id: str
    source_url: str
    tags: list[str] = field(default_factory=list)
    state: JobState = JobState.pending
    total_bytes: Optional[int] = None
    downloaded_bytes: int = 0
    uploaded_bytes: int = 0
    resolved_url: Optional[str] = None
    final_url: Optional[str] = None
    content_type: Optional[str] = None
    asset_id: Optional[str] = None
    existing_asset_id: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    finished_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, target: JobState) -> None:
        if _NEXT_STATE.get(self.state) != target:
            raise InvalidJobTransition(f"{self.state.value} -> {target.value}")
        self.state = target
        self.updated_at = _utcnow()
        if target is JobState.done:
            self.finished_at = time.monotonic()

    def fail(self, message: str) -> None:
        if self.is_terminal:
            raise InvalidJobTransition(f"{self.state.value} -> error")
        self.state = JobState.error
        self.error = message
        self.updated_at = _utcnow()
        self.finished_at = time.monotonic()

    def record_total(self, total: Optional[int]) -> None:
        if total is not None and total > (self.total_bytes or 0):
            self.total_bytes = total

    def add_downloaded(self, count: int) -> None:
        if count > 0:
            self.downloaded_bytes += count

    def record_uploaded(self, cumulative: int) -> None:
        if cumulative > self.uploaded_bytes:
            self.uploaded_bytes = cumulative

    def snapshot(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "state": self.state.value,
            "source_url": self.source_url,
            "resolved_url": self.resolved_url,
            "final_url": self.final_url,
            "content_type": self.content_type,
            "total_bytes": self.total_bytes,
            "downloaded_bytes": self.downloaded_bytes,
            "uploaded_bytes": self.uploaded_bytes,
            "asset_id": self.asset_id,
            "existing_asset_id": self.existing_asset_id,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class IngestJobRegistry:
    """Process-local job map; terminal jobs expire after ``ttl_seconds``."""

    def __init__(self, ttl_seconds: float = 3600, *, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._jobs: dict[str, IngestJob] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def create(self, user_id: str, source_url: str, tags: Sequence[str] = ()) -> IngestJob:
        self.prune()
        job = IngestJob(job_id=uuid4().hex, user_id=user_id, source_url=source_url, tags=list(tags))
        self._jobs[job.job_id] = job
        return job

    def get(self, job_id: str) -> IngestJob | None:
        return self._jobs.get(job_id)

    def prune(self) -> int:
        now = self._clock()
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.finished_at is not None and now - job.finished_at >= self.ttl_seconds
        ]
        for job_id in expired:
            del self._jobs[job_id]
        return len(expired)


def name_from_url(url: str, extension: str) -> str:
    """A readable file name for a downloaded URL."""
    name = unquote(PurePosixPath(urlparse(url).path).name)
    if not name:
        return f"download{extension}"
    if not PurePosixPath(name).suffix:
        return f"{name}{extension}"
    return name


class IngestJobEngine:
    """Drives URL ingest jobs in background tasks and answers status polls."""

    def __init__(
        self,
        *,
        resolver: SiteResolver,
        fetcher: RateLimitedFetcher,
        media: MediaService,
        notifier: NotificationSink,
        registry: IngestJobRegistry,
        scratch_dir: Path,
    ):
        self.resolver = resolver
        self.fetcher = fetcher
        self.media = media
        self.notifier = notifier
        self.registry = registry
        self.scratch_dir = scratch_dir
        self._tasks: dict[str, asyncio.Task] = {}
        self.logger = get_logger(component="ingest_jobs")

    def start(self, user_id: str, source_url: str, tags: Sequence[str] = ()) -> IngestJob:
        job = self.registry.create(user_id, source_url.strip(), tags)
        job.advance(JobState.resolving)
        self.logger.info("ingest_job_started", job_id=job.job_id, user_id=user_id, url=job.source_url)
        task = asyncio.create_task(self.run(job), name=f"ingest:{job.job_id}")
        self._tasks[job.job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.job_id, None))
        return job

    def get_status(self, job_id: str, user_id: str) -> IngestJob | None:
        """The job, only when ``user_id`` started it."""
        job = self.registry.get(job_id)
        if job is None or job.user_id != user_id:
            return None
        return job

    async def wait(self, job_id: str) -> None:
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    def _transition(self, job: IngestJob, target: JobState) -> None:
        job.advance(target)
        self.logger.info("ingest_job_state", job_id=job.job_id, state=target.value)

    async def run(self, job: IngestJob) -> None:
        scratch: Path | None = None
        try:
            resolved = await self.resolver.resolve(job.source_url)
            job.resolved_url = resolved
            self.scratch_dir.mkdir(parents=True, exist_ok=True)

            async with self.fetcher.stream(resolved) as response:
                job.final_url = str(response.url)
                job.content_type = response.headers.get("content-type")
                job.record_total(_int_or_none(response.headers.get("content-length")))
                self._transition(job, JobState.downloading)
                extension = choose_extension(job.content_type, job.final_url)
                scratch = self.scratch_dir / f"{job.job_id}{extension}"
                with scratch.open("wb") as handle:
                    async for chunk in response.aiter_bytes():
                        await asyncio.to_thread(handle.write, chunk)
                        job.add_downloaded(len(chunk))

            size = scratch.stat().st_size
            if size == 0:
                raise EmptyContentError("downloaded file is empty (0 bytes)")
            job.record_total(size)
            self._transition(job, JobState.uploading)

            asset = await self.media.store_file(
                scratch,
                owner_id=job.user_id,
                original_name=name_from_url(job.final_url or resolved, extension),
                header_type=job.content_type,
                source_url=job.source_url,
                tags=job.tags,
                on_upload_progress=job.record_uploaded,
                on_uploaded=lambda: self._transition(job, JobState.saving),
            )
            job.asset_id = asset.id
            self._transition(job, JobState.done)
        except DuplicateContentError as exc:
            job.existing_asset_id = exc.existing_id
            await self._fail(job, exc)
        except Exception as exc:
            await self._fail(job, exc)
        finally:
            if scratch is not None:
                scratch.unlink(missing_ok=True)

    async def _fail(self, job: IngestJob, exc: Exception) -> None:
        message = str(exc) or exc.__class__.__name__
        if not job.is_terminal:
            job.fail(message)
        self.logger.warning("ingest_job_failed", job_id=job.job_id, state=job.state.value, error=message)
        metadata: dict[str, Any] = {"sourceUrl": job.source_url, "jobId": job.job_id}
        if job.existing_asset_id:
            metadata["fileId"] = job.existing_asset_id
        await self.notifier.notify(job.user_id, f"Download failed: {message}", metadata)


def _int_or_none(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


__all__ = [
    "JobState",
    "IngestJob",
    "IngestJobRegistry",
    "IngestJobEngine",
    "TERMINAL_STATES",
    "name_from_url",
]
