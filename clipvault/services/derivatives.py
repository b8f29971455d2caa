from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

from clipvault.core.config import Settings
from clipvault.core.logging import get_logger
from clipvault.core.storage import BlobStore
from clipvault.db.models import Asset, DerivativeStatus
from clipvault.db.repository import AssetRepository
from clipvault.ingest.fingerprint import Fingerprint, RemoteFingerprintClient, local_fingerprint
from clipvault.ingest.identity import quick_hash
from clipvault.ingest.mime import OCTET_STREAM, is_image, is_video, sniff_mime, wants_thumbnail
from clipvault.ingest.probe import MediaFacts, probe_media
from clipvault.ingest.similarity import PotentialMatch, SimilarityPolicy, find_potential_match
from clipvault.ingest.thumbnails import render_thumbnail
from clipvault.ingest.transcode import needs_transcode, transcode_to_mp4

from .notifications import NotificationSink

T = TypeVar("T")

MATCH_MESSAGES = {
    "audio-variant-found": "A version of this clip with audio is already in your library.",
    "longer-variant-found": "A longer version of this clip is already in your library.",
}


def thumbnail_key(asset_id: str) -> str:
    return f"thumbnails/{asset_id}.jpg"


def derivative_key(asset_id: str) -> str:
    return f"derivatives/{asset_id}.mp4"


class DerivativePipeline:
    """Post-save enrichment for one asset.

    Steps run in order and each one is isolated: a failing step is logged and
    the next step still runs. Nothing here notifies the user about failures;
    the only notification is a similarity match.
    """

    def __init__(
        self,
        settings: Settings,
        repository: AssetRepository,
        blob_store: BlobStore,
        notifier: NotificationSink,
        *,
        policy: SimilarityPolicy | None = None,
        remote_fingerprints: RemoteFingerprintClient | None = None,
    ):
        self.settings = settings
        self.repository = repository
        self.blob_store = blob_store
        self.notifier = notifier
        self.policy = policy or SimilarityPolicy.from_settings(settings)
        self.remote_fingerprints = remote_fingerprints
        self.scratch_dir = Path(settings.scratch_dir)

    async def run(self, asset_id: str, owner_id: str) -> None:
        logger = get_logger(component="derivatives", asset_id=asset_id)
        asset = await self.repository.find_by_id(asset_id, owner_id)
        if asset is None:
            logger.warning("derivatives_asset_missing")
            return

        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        local = self.scratch_dir / f"deriv_{asset_id}{Path(asset.storage_key).suffix}"
        try:
            try:
                await asyncio.to_thread(self.blob_store.download_to, asset.storage_key, local)
            except Exception:
                logger.exception("derivatives_download_failed")
                return

            await self._step(logger, "rehash", self._reconcile_hash, asset, local)
            mime_type = await self._step(logger, "mime", self._confirm_mime, asset, local) or asset.mime_type
            facts = await self._step(logger, "probe", self._probe, asset, local, mime_type)
            await self._step(logger, "thumbnail", self._thumbnail, asset, local, mime_type)
            await self._step(logger, "transcode", self._transcode, asset, local, mime_type, facts)
            fingerprint = await self._step(logger, "fingerprint", self._fingerprint, asset, local, mime_type, facts)
            if fingerprint is not None:
                await self._step(logger, "similarity", self._similarity, asset_id, owner_id)
            logger.info("derivatives_finished")
        finally:
            local.unlink(missing_ok=True)

    async def _step(self, logger: Any, name: str, func: Callable[..., Awaitable[T]], *args: Any) -> Optional[T]:
        try:
            return await func(*args)
        except Exception:
            logger.exception("derivative_step_failed", step=name)
            return None

    async def _reconcile_hash(self, asset: Asset, local: Path) -> None:
        digest = await asyncio.to_thread(quick_hash, local)
        if digest.combined == asset.content_hash:
            return
        holder = await self.repository.find_by_hash(asset.owner_id, digest.combined)
        if holder is not None and holder.id != asset.id:
            get_logger(component="derivatives", asset_id=asset.id).warning("rehash_conflict", holder_id=holder.id)
            return
        await self.repository.update(asset.id, content_hash=digest.combined, size_bytes=digest.size_bytes)
        asset.content_hash = digest.combined

    async def _confirm_mime(self, asset: Asset, local: Path) -> str:
        if asset.mime_type and asset.mime_type != OCTET_STREAM:
            return asset.mime_type
        sniffed = await asyncio.to_thread(sniff_mime, local)
        if sniffed:
            await self.repository.update(asset.id, mime_type=sniffed)
            asset.mime_type = sniffed
            return sniffed
        return asset.mime_type

    async def _probe(self, asset: Asset, local: Path, mime_type: str) -> MediaFacts | None:
        if not (is_video(mime_type) or is_image(mime_type)):
            return None
        facts = await asyncio.to_thread(probe_media, local)
        await self.repository.update(
            asset.id,
            duration_ms=facts.duration_ms,
            width=facts.width,
            height=facts.height,
            has_audio=facts.has_audio,
        )
        return facts

    async def _thumbnail(self, asset: Asset, local: Path, mime_type: str) -> None:
        if not wants_thumbnail(mime_type):
            return
        target = self.scratch_dir / f"thumb_{asset.id}.jpg"
        try:
            dimensions = await asyncio.to_thread(render_thumbnail, local, target)
            if dimensions is None:
                get_logger(component="derivatives", asset_id=asset.id).warning("thumbnail_unavailable")
                return
            key = thumbnail_key(asset.id)
            await asyncio.to_thread(self.blob_store.upload, target, key, "image/jpeg")
            await self.repository.update(asset.id, thumbnail_key=key)
        finally:
            target.unlink(missing_ok=True)

    async def _transcode(self, asset: Asset, local: Path, mime_type: str, facts: MediaFacts | None) -> None:
        if not needs_transcode(mime_type, facts):
            return
        target = self.scratch_dir / f"transcode_{asset.id}.mp4"
        await self.repository.update(asset.id, derivative_status=DerivativeStatus.processing)
        try:
            await asyncio.to_thread(transcode_to_mp4, local, target)
            key = derivative_key(asset.id)
            await asyncio.to_thread(self.blob_store.upload, target, key, "video/mp4")
            await self.repository.update(asset.id, derivative_key=key, derivative_status=DerivativeStatus.ready)
        except Exception:
            await self.repository.update(asset.id, derivative_status=DerivativeStatus.failed)
            raise
        finally:
            target.unlink(missing_ok=True)

    async def _fingerprint(
        self,
        asset: Asset,
        local: Path,
        mime_type: str,
        facts: MediaFacts | None,
    ) -> Fingerprint:
        fingerprint: Fingerprint | None = None
        if self.remote_fingerprints is not None:
            fingerprint = await self.remote_fingerprints.fingerprint_file(local)
        if fingerprint is None:
            fingerprint = await asyncio.to_thread(
                local_fingerprint,
                local,
                content_type=mime_type,
                facts=facts,
                scratch_dir=self.scratch_dir,
            )
        fields: dict[str, Any] = {
            "has_audio": fingerprint.has_audio,
            "frame_hashes": fingerprint.frame_hashes or None,
            "audio_fingerprint": fingerprint.audio_fingerprint,
        }
        if fingerprint.duration_ms is not None:
            fields["duration_ms"] = fingerprint.duration_ms
        await self.repository.update(asset.id, **fields)
        return fingerprint

    async def _similarity(self, asset_id: str, owner_id: str) -> PotentialMatch | None:
        asset = await self.repository.find_by_id(asset_id, owner_id)
        if asset is None:
            return None
        candidates = await self.repository.find_all(owner_id)
        match = find_potential_match(asset, candidates, self.policy)
        if match is None:
            return None
        get_logger(component="derivatives", asset_id=asset_id).info(
            "potential_match_found",
            candidate_id=match.candidate_id,
            reason=match.reason.value,
            score=match.score,
        )
        await self.notifier.notify(
            owner_id,
            MATCH_MESSAGES[match.reason.value],
            {
                "fileId": asset_id,
                "originalName": asset.original_name,
                "candidateId": match.candidate_id,
                "sourceUrl": match.source_url,
                "reason": match.reason.value,
            },
        )
        return match


__all__ = ["DerivativePipeline", "thumbnail_key", "derivative_key"]
