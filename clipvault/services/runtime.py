from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from clipvault.core.config import Settings
from clipvault.core.db import create_engine, create_schema, create_session_factory
from clipvault.core.jobs import DerivativeBackend, get_derivative_backend
from clipvault.core.logging import get_logger
from clipvault.core.storage import BlobStore, get_blob_store
from clipvault.db.repository import AssetRepository, SqlAssetRepository
from clipvault.fetch.fetcher import RateLimitedFetcher
from clipvault.ingest.fingerprint import RemoteFingerprintClient
from clipvault.ingest.similarity import SimilarityPolicy
from clipvault.resolve import SiteResolver

from .derivatives import DerivativePipeline
from .ingest_jobs import IngestJobEngine, IngestJobRegistry
from .media_service import MediaService
from .notifications import NotificationSink


@dataclass
class MediaRuntime:
    """Every long-lived collaborator of the service, built once per process."""

    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    fetcher: RateLimitedFetcher
    resolver: SiteResolver
    blob_store: BlobStore
    repository: AssetRepository
    notifier: NotificationSink
    pipeline: DerivativePipeline
    derivatives: DerivativeBackend
    media: MediaService
    jobs: IngestJobEngine

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        blob_store: BlobStore | None = None,
    ) -> "MediaRuntime":
        engine = create_engine(settings)
        session_factory = create_session_factory(engine)
        fetcher = RateLimitedFetcher.from_settings(settings, transport=transport)
        resolver = SiteResolver.from_settings(settings, fetcher)
        store = blob_store or get_blob_store(settings)
        repository = SqlAssetRepository(session_factory)
        notifier = NotificationSink(session_factory)

        remote = None
        if settings.fingerprint_service_url:
            remote = RemoteFingerprintClient(str(settings.fingerprint_service_url))
        pipeline = DerivativePipeline(
            settings,
            repository,
            store,
            notifier,
            policy=SimilarityPolicy.from_settings(settings),
            remote_fingerprints=remote,
        )
        derivatives = get_derivative_backend(settings, pipeline.run)
        media = MediaService(settings, repository, store, derivatives)
        jobs = IngestJobEngine(
            resolver=resolver,
            fetcher=fetcher,
            media=media,
            notifier=notifier,
            registry=IngestJobRegistry(settings.ingest_job_ttl_seconds),
            scratch_dir=Path(settings.scratch_dir),
        )
        return cls(
            settings=settings,
            engine=engine,
            session_factory=session_factory,
            fetcher=fetcher,
            resolver=resolver,
            blob_store=store,
            repository=repository,
            notifier=notifier,
            pipeline=pipeline,
            derivatives=derivatives,
            media=media,
            jobs=jobs,
        )

    async def start(self) -> None:
        Path(self.settings.scratch_dir).mkdir(parents=True, exist_ok=True)
        await create_schema(self.engine)
        get_logger(component="runtime").info("runtime_started", environment=self.settings.environment)

    async def aclose(self) -> None:
        await self.jobs.drain()
        await self.derivatives.drain()
        await self.fetcher.aclose()
        await self.engine.dispose()


__all__ = ["MediaRuntime"]
