from __future__ import annotations

import asyncio
import json
from hashlib import sha256
from pathlib import Path

import httpx
from PIL import Image

import clipvault.services.derivatives as derivatives_module
from clipvault.core.db import create_engine, create_session_factory
from clipvault.core.storage import LocalBlobStore
from clipvault.db.models import DerivativeStatus
from clipvault.db.repository import SqlAssetRepository
from clipvault.ingest.fingerprint import Fingerprint, RemoteFingerprintClient, image_dhash, local_fingerprint
from clipvault.ingest.identity import quick_hash
from clipvault.ingest.probe import MediaFacts, ProbeError
from clipvault.ingest.transcode import TranscodeError
from clipvault.services.derivatives import MATCH_MESSAGES, DerivativePipeline, derivative_key, thumbnail_key
from clipvault.services.media_service import MediaService
from clipvault.services.notifications import NotificationSink

FRAMES = [sha256(str(index).encode()).hexdigest()[:16] for index in range(15)]
WEBM_HEADER = b"\x1a\x45\xdf\xa3\x9f\x42\x86\x81\x01webm" + b"\x00" * 2048


def _fake_thumbnail(media_path: Path, output_path: Path):
    output_path.write_bytes(b"\xff\xd8\xff thumbnail")
    return (640, 360)


def _fake_transcode(source: Path, target: Path) -> Path:
    target.write_bytes(b"\x00\x00\x00\x18ftypisom transcoded")
    return target


def _fake_fingerprint(media_path, *, content_type, facts, scratch_dir=None):
    return Fingerprint(duration_ms=facts.duration_ms if facts else None, has_audio=False, frame_hashes=list(FRAMES))


def _silent_facts(path: Path) -> MediaFacts:
    return MediaFacts(duration_ms=15_000, width=640, height=360, has_audio=False, video_codec="vp9", container="matroska,webm")


def _run_pipeline(settings, tmp_path, payload: bytes, *, prepare=None):
    """Store ``payload`` for alice, run the derivative pipeline, return the refreshed asset and notifications."""

    async def scenario():
        engine = create_engine(settings)
        session_factory = create_session_factory(engine)
        repository = SqlAssetRepository(session_factory)
        store = LocalBlobStore(Path(settings.local_blob_path))
        notifier = NotificationSink(session_factory)
        media = MediaService(settings, repository, store)
        pipeline = DerivativePipeline(settings, repository, store, notifier)
        try:
            context = await prepare(repository) if prepare else None
            source = tmp_path / "incoming.webm"
            source.write_bytes(payload)
            asset = await media.store_file(source, owner_id="alice", original_name="clip.webm")
            await pipeline.run(asset.id, "alice")
            refreshed = await repository.find_by_id(asset.id)
            notes = await notifier.list_for("alice")
            return refreshed, notes, context
        finally:
            await engine.dispose()

    return asyncio.run(scenario())


def _patch_tools(monkeypatch, *, probe=_silent_facts, transcode=_fake_transcode):
    monkeypatch.setattr(derivatives_module, "probe_media", probe)
    monkeypatch.setattr(derivatives_module, "render_thumbnail", _fake_thumbnail)
    monkeypatch.setattr(derivatives_module, "transcode_to_mp4", transcode)
    monkeypatch.setattr(derivatives_module, "local_fingerprint", _fake_fingerprint)


def test_pipeline_enriches_asset(configure_environment, tmp_path, monkeypatch):
    _patch_tools(monkeypatch)

    asset, notes, _ = _run_pipeline(configure_environment, tmp_path, WEBM_HEADER)

    assert asset.mime_type == "video/webm"
    assert asset.duration_ms == 15_000
    assert (asset.width, asset.height) == (640, 360)
    assert asset.has_audio is False
    assert asset.thumbnail_key == thumbnail_key(asset.id)
    assert asset.derivative_key == derivative_key(asset.id)
    assert asset.derivative_status is DerivativeStatus.ready
    assert asset.frame_hashes == FRAMES
    assert notes == []
    blobs = Path(configure_environment.local_blob_path)
    assert (blobs / thumbnail_key(asset.id)).exists()
    assert (blobs / derivative_key(asset.id)).exists()
    assert list(Path(configure_environment.scratch_dir).glob("deriv_*")) == []


def test_failing_steps_do_not_stop_later_steps(configure_environment, tmp_path, monkeypatch):
    def broken_probe(path: Path) -> MediaFacts:
        raise ProbeError("ffprobe is not installed")

    def broken_transcode(source: Path, target: Path) -> Path:
        raise TranscodeError("ffmpeg is not installed")

    _patch_tools(monkeypatch, probe=broken_probe, transcode=broken_transcode)

    asset, _, _ = _run_pipeline(configure_environment, tmp_path, WEBM_HEADER)

    assert asset.duration_ms is None
    assert asset.thumbnail_key == thumbnail_key(asset.id)
    assert asset.derivative_status is DerivativeStatus.failed
    assert asset.derivative_key is None
    assert asset.frame_hashes == FRAMES


def test_silent_upload_of_known_clip_notifies_owner(configure_environment, tmp_path, monkeypatch):
    _patch_tools(monkeypatch)

    async def prepare(repository):
        original = await repository.create(
            "original-clip",
            owner_id="alice",
            storage_key="original-clip.mp4",
            original_name="original.mp4",
            mime_type="video/mp4",
            size_bytes=10,
            content_hash="0" * 64,
            source_url="https://example.com/original",
        )
        await repository.update(original.id, has_audio=True, duration_ms=15_000, frame_hashes=list(FRAMES))
        return original

    asset, notes, original = _run_pipeline(configure_environment, tmp_path, WEBM_HEADER, prepare=prepare)

    assert len(notes) == 1
    note = notes[0]
    assert note.message == f"[clip.webm] {MATCH_MESSAGES['audio-variant-found']}"
    assert note.meta_jsonb["fileId"] == asset.id
    assert note.meta_jsonb["candidateId"] == original.id
    assert note.meta_jsonb["sourceUrl"] == "https://example.com/original"
    assert note.meta_jsonb["reason"] == "audio-variant-found"


def test_missing_asset_is_ignored(configure_environment):
    async def scenario():
        engine = create_engine(configure_environment)
        session_factory = create_session_factory(engine)
        repository = SqlAssetRepository(session_factory)
        store = LocalBlobStore(Path(configure_environment.local_blob_path))
        pipeline = DerivativePipeline(configure_environment, repository, store, NotificationSink(session_factory))
        try:
            await pipeline.run("does-not-exist", "alice")
        finally:
            await engine.dispose()

    asyncio.run(scenario())


def test_still_image_gets_single_frame_hash(tmp_path):
    image_path = tmp_path / "still.png"
    Image.new("RGB", (64, 48), color=(200, 30, 30)).save(image_path)

    fingerprint = local_fingerprint(image_path, content_type="image/png", facts=None, scratch_dir=tmp_path)

    assert fingerprint.frame_hashes == [image_dhash(image_path)]
    assert len(fingerprint.frame_hashes[0]) == 16
    assert fingerprint.has_audio is False
    assert fingerprint.audio_fingerprint is None


def _remote(handler) -> RemoteFingerprintClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RemoteFingerprintClient("https://fp.example.com/", client=client)


def test_remote_fingerprint_parses_service_payload(tmp_path):
    media = tmp_path / "clip.mp4"
    media.write_bytes(b"data")
    received: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(request)
        payload = {
            "ok": True,
            "durationMs": 1500.4,
            "hasAudio": True,
            "audioFingerprint": "AQAAE0",
            "frameHashes": ["ABCDEF0123456789", ""],
        }
        return httpx.Response(200, content=json.dumps(payload), headers={"content-type": "application/json"})

    fingerprint = asyncio.run(_remote(handler).fingerprint_file(media))

    assert str(received[0].url) == "https://fp.example.com/fingerprint"
    assert b'name="file"' in received[0].content
    assert fingerprint == Fingerprint(
        duration_ms=1500,
        has_audio=True,
        audio_fingerprint="AQAAE0",
        frame_hashes=["abcdef0123456789"],
    )


def test_remote_fingerprint_failure_falls_back(tmp_path):
    media = tmp_path / "clip.mp4"
    media.write_bytes(b"data")

    declined = _remote(lambda request: httpx.Response(200, content=b'{"ok": false}'))
    broken = _remote(lambda request: httpx.Response(500))

    assert asyncio.run(declined.fingerprint_file(media)) is None
    assert asyncio.run(broken.fingerprint_file(media)) is None


def _run_rehash(settings, tmp_path, payload: bytes, *, holder_has_true_hash: bool):
    """Seed alice's asset with a stale hash, run the pipeline, return both records and the true digest."""

    async def scenario():
        engine = create_engine(settings)
        session_factory = create_session_factory(engine)
        repository = SqlAssetRepository(session_factory)
        store = LocalBlobStore(Path(settings.local_blob_path))
        pipeline = DerivativePipeline(settings, repository, store, NotificationSink(session_factory))
        try:
            source = tmp_path / "seed.webm"
            source.write_bytes(payload)
            digest = quick_hash(source)
            store.upload(source, "stale.webm", "video/webm")
            await repository.create(
                "stale",
                owner_id="alice",
                storage_key="stale.webm",
                original_name="clip.webm",
                mime_type="video/webm",
                size_bytes=1,
                content_hash="0" * 64,
            )
            if holder_has_true_hash:
                store.upload(source, "holder.webm", "video/webm")
                await repository.create(
                    "holder",
                    owner_id="alice",
                    storage_key="holder.webm",
                    original_name="other.webm",
                    mime_type="video/webm",
                    size_bytes=digest.size_bytes,
                    content_hash=digest.combined,
                )
            await pipeline.run("stale", "alice")
            return await repository.find_by_id("stale"), await repository.find_by_id("holder"), digest
        finally:
            await engine.dispose()

    return asyncio.run(scenario())


def test_rehash_rewrites_stale_hash_and_size(configure_environment, tmp_path, monkeypatch):
    _patch_tools(monkeypatch)

    asset, _, digest = _run_rehash(configure_environment, tmp_path, WEBM_HEADER, holder_has_true_hash=False)

    assert asset.content_hash == digest.combined
    assert asset.size_bytes == len(WEBM_HEADER)


def test_rehash_leaves_hash_alone_when_sibling_holds_it(configure_environment, tmp_path, monkeypatch):
    _patch_tools(monkeypatch)

    asset, holder, digest = _run_rehash(configure_environment, tmp_path, WEBM_HEADER, holder_has_true_hash=True)

    assert asset.content_hash == "0" * 64
    assert asset.size_bytes == 1
    assert holder.content_hash == digest.combined
    # Later steps still ran.
    assert asset.thumbnail_key == thumbnail_key("stale")
