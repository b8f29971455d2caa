from __future__ import annotations

import asyncio

from clipvault.core.config import get_settings
from clipvault.core.db import create_engine, create_session_factory
from clipvault.core.logging import configure_logging, level_from_name
from clipvault.core.storage import get_blob_store
from clipvault.db.repository import SqlAssetRepository
from clipvault.ingest.fingerprint import RemoteFingerprintClient
from clipvault.services.derivatives import DerivativePipeline
from clipvault.services.notifications import NotificationSink


def run_derivatives(asset_id: str, owner_id: str) -> None:
    """Entry-point executed by the rq worker for one saved asset."""

    settings = get_settings()
    configure_logging(level_from_name(settings.log_level))
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)

    remote = None
    if settings.fingerprint_service_url:
        remote = RemoteFingerprintClient(str(settings.fingerprint_service_url))
    pipeline = DerivativePipeline(
        settings,
        SqlAssetRepository(session_factory),
        get_blob_store(settings),
        NotificationSink(session_factory),
        remote_fingerprints=remote,
    )

    async def _runner() -> None:
        try:
            await pipeline.run(asset_id, owner_id)
        finally:
            await engine.dispose()

    asyncio.run(_runner())


__all__ = ["run_derivatives"]
