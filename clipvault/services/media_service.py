from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence
from uuid import uuid4

from clipvault.core.config import Settings
from clipvault.core.errors import DuplicateContentError
from clipvault.core.jobs import DerivativeBackend
from clipvault.core.logging import get_logger
from clipvault.core.storage import BlobStore, ProgressCallback
from clipvault.db.models import Asset
from clipvault.db.repository import AssetRepository
from clipvault.ingest.identity import check_duplicate, quick_hash
from clipvault.ingest.mime import choose_extension, detect_mime


@dataclass(slots=True)
class AssetView:
    """An asset together with freshly signed URLs for its blobs."""

    asset: Asset
    url: str
    thumbnail_url: Optional[str] = None
    derivative_url: Optional[str] = None


class MediaService:
    """The upload path: exact dedup, primary blob write, record insert."""

    def __init__(
        self,
        settings: Settings,
        repository: AssetRepository,
        blob_store: BlobStore,
        derivatives: DerivativeBackend | None = None,
    ):
        self.settings = settings
        self.repository = repository
        self.blob_store = blob_store
        self.derivatives = derivatives
        self.logger = get_logger(component="media_service")

    async def store_file(
        self,
        path: Path,
        *,
        owner_id: str,
        original_name: str,
        declared_type: Optional[str] = None,
        header_type: Optional[str] = None,
        source_url: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        on_upload_progress: ProgressCallback | None = None,
        on_uploaded: Callable[[], None] | None = None,
    ) -> Asset:
        """Store a local scratch file as a new asset; the scratch file is always removed.

        Raises:
            DuplicateContentError: The owner already has byte-identical content.
        """
        try:
            digest = await asyncio.to_thread(quick_hash, path)
            existing_id = await check_duplicate(self.repository, digest.combined, owner_id)
            if existing_id is not None:
                await self._backfill_source_url(existing_id, source_url)
                self.logger.info("duplicate_rejected", owner_id=owner_id, existing_id=existing_id)
                raise DuplicateContentError(existing_id)

            mime_type = detect_mime(path, declared=declared_type, header=header_type, url=source_url)
            asset_id = uuid4().hex
            storage_key = f"{asset_id}{choose_extension(mime_type, original_name)}"
            await asyncio.to_thread(self.blob_store.upload, path, storage_key, mime_type, on_upload_progress)
            if on_uploaded is not None:
                on_uploaded()

            try:
                asset = await self.repository.create(
                    asset_id,
                    owner_id=owner_id,
                    storage_key=storage_key,
                    original_name=original_name,
                    mime_type=mime_type,
                    size_bytes=digest.size_bytes,
                    content_hash=digest.combined,
                    source_url=source_url,
                    tags=list(tags) if tags else None,
                )
            except DuplicateContentError:
                # Lost an insert race against an identical upload.
                await asyncio.to_thread(self.blob_store.delete, storage_key)
                raise
            except Exception:
                self.logger.warning("asset_insert_failed", owner_id=owner_id, storage_key=storage_key, exc_info=True)
                await asyncio.to_thread(self.blob_store.delete, storage_key)
                raise

            self.logger.info("asset_stored", asset_id=asset.id, owner_id=owner_id, size_bytes=digest.size_bytes, mime_type=mime_type)
            if self.derivatives is not None:
                await self.derivatives.schedule(asset.id, owner_id)
            return asset
        finally:
            path.unlink(missing_ok=True)

    async def _backfill_source_url(self, asset_id: str, source_url: Optional[str]) -> None:
        if not source_url:
            return
        existing = await self.repository.find_by_id(asset_id)
        if existing is not None and not existing.source_url:
            await self.repository.update(asset_id, source_url=source_url)

    async def _view(self, asset: Asset) -> AssetView:
        ttl = self.settings.signed_url_ttl_seconds
        url = await asyncio.to_thread(self.blob_store.signed_url, asset.storage_key, ttl)
        thumbnail_url = None
        derivative_url = None
        if asset.thumbnail_key:
            thumbnail_url = await asyncio.to_thread(self.blob_store.signed_url, asset.thumbnail_key, ttl)
        if asset.derivative_key:
            derivative_url = await asyncio.to_thread(self.blob_store.signed_url, asset.derivative_key, ttl)
        return AssetView(asset=asset, url=url, thumbnail_url=thumbnail_url, derivative_url=derivative_url)

    async def list_assets(self, owner_id: str) -> list[AssetView]:
        assets = await self.repository.find_all(owner_id)
        return [await self._view(asset) for asset in assets]

    async def get_asset(self, asset_id: str, owner_id: str) -> AssetView | None:
        asset = await self.repository.find_by_id(asset_id, owner_id)
        if asset is None:
            return None
        return await self._view(asset)

    async def refresh_url(self, asset_id: str, owner_id: str) -> str | None:
        asset = await self.repository.find_by_id(asset_id, owner_id)
        if asset is None:
            return None
        return await asyncio.to_thread(self.blob_store.signed_url, asset.storage_key, self.settings.signed_url_ttl_seconds)

    async def signed_download_url(self, asset_id: str, owner_id: str) -> str | None:
        asset = await self.repository.find_by_id(asset_id, owner_id)
        if asset is None:
            return None
        return await asyncio.to_thread(
            self.blob_store.signed_url,
            asset.storage_key,
            self.settings.signed_url_ttl_seconds,
            asset.original_name,
        )

    async def delete_asset(self, asset_id: str, owner_id: str) -> bool:
        asset = await self.repository.find_by_id(asset_id, owner_id)
        if asset is None:
            return False
        for key in (asset.storage_key, asset.thumbnail_key, asset.derivative_key):
            if not key:
                continue
            try:
                await asyncio.to_thread(self.blob_store.delete, key)
            except Exception:
                self.logger.warning("blob_delete_failed", asset_id=asset_id, key=key, exc_info=True)
        await self.repository.delete(asset_id)
        self.logger.info("asset_deleted", asset_id=asset_id, owner_id=owner_id)
        return True


__all__ = ["MediaService", "AssetView"]
