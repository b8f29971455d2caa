from __future__ import annotations

import asyncio

import httpx
import pytest

from clipvault.core.errors import InvalidJobTransition
from clipvault.services.ingest_jobs import IngestJob, IngestJobRegistry, JobState, name_from_url
from clipvault.services.runtime import MediaRuntime

PAYLOAD = b"\x00\x00\x00\x18ftypisom" + b"\x42" * 4096


def _run_jobs(settings, fake_web, *urls: str, user_id: str = "alice", prepare=None):
    """Start one ingest job per URL in sequence; returns the jobs, states seen and notifications."""

    async def scenario():
        runtime = MediaRuntime.build(settings, transport=fake_web.transport())
        await runtime.start()
        if prepare is not None:
            prepare(runtime)
        seen: dict[str, list[str]] = {}
        original = runtime.jobs._transition

        def recording(job, target):
            seen.setdefault(job.job_id, []).append(target.value)
            original(job, target)

        runtime.jobs._transition = recording
        jobs = []
        try:
            for url in urls:
                job = runtime.jobs.start(user_id, url)
                await runtime.jobs.wait(job.job_id)
                jobs.append(job)
            notes = await runtime.notifier.list_for(user_id)
            foreign = [runtime.jobs.get_status(job.job_id, "mallory") for job in jobs]
            return jobs, seen, notes, foreign
        finally:
            await runtime.aclose()

    return asyncio.run(scenario())


def test_successful_ingest_walks_every_state(configure_environment, fake_web):
    url = "https://cdn.example.com/media/clip.mp4"
    fake_web.add("GET", url, httpx.Response(200, content=PAYLOAD, headers={"content-type": "video/mp4"}))

    (job,), seen, notes, foreign = _run_jobs(configure_environment, fake_web, url)

    assert job.state is JobState.done
    assert seen[job.job_id] == ["downloading", "uploading", "saving", "done"]
    assert job.asset_id
    assert job.resolved_url == url
    assert job.total_bytes == len(PAYLOAD)
    assert job.downloaded_bytes == len(PAYLOAD)
    assert job.uploaded_bytes == len(PAYLOAD)
    assert job.error is None
    assert notes == []
    assert foreign == [None]


def test_zero_byte_download_fails_before_upload(configure_environment, fake_web):
    url = "https://cdn.example.com/media/empty.mp4"
    fake_web.add("GET", url, httpx.Response(200, content=b"", headers={"content-type": "video/mp4"}))

    (job,), seen, notes, _ = _run_jobs(configure_environment, fake_web, url)

    assert job.state is JobState.error
    assert "empty" in job.error
    assert "uploading" not in seen[job.job_id]
    assert job.asset_id is None
    assert len(notes) == 1
    assert notes[0].message == f"[{url}] Download failed: {job.error}"
    assert notes[0].meta_jsonb["jobId"] == job.job_id


def test_unreachable_media_fails_with_notification(configure_environment, fake_web):
    url = "https://cdn.example.com/media/missing.mp4"

    (job,), seen, notes, _ = _run_jobs(configure_environment, fake_web, url)

    assert job.state is JobState.error
    assert "404" in job.error
    assert job.job_id not in seen
    assert notes[0].meta_jsonb["sourceUrl"] == url


def _fresh_clip(fake_web, name: str) -> str:
    url = f"https://cdn.example.com/media/{name}"
    fake_web.add("GET", url, httpx.Response(200, content=PAYLOAD, headers={"content-type": "video/mp4"}))
    return url


def test_blob_upload_failure_errors_from_uploading(configure_environment, fake_web):
    url = _fresh_clip(fake_web, "upload-fails.mp4")

    def broken_store(runtime):
        def upload(path, key, content_type, on_progress=None):
            raise OSError("blob store unavailable")

        runtime.blob_store.upload = upload

    (job,), seen, notes, _ = _run_jobs(configure_environment, fake_web, url, prepare=broken_store)

    assert [*seen[job.job_id], job.state.value] == ["downloading", "uploading", "error"]
    assert job.error == "blob store unavailable"
    assert job.asset_id is None
    assert len(notes) == 1
    assert notes[0].message == f"[{url}] Download failed: blob store unavailable"
    assert list(configure_environment.scratch_dir.iterdir()) == []


def test_record_write_failure_errors_from_saving(configure_environment, fake_web):
    url = _fresh_clip(fake_web, "insert-fails.mp4")

    def broken_repository(runtime):
        async def create(asset_id, **fields):
            raise RuntimeError("database is locked")

        runtime.repository.create = create

    (job,), seen, notes, _ = _run_jobs(configure_environment, fake_web, url, prepare=broken_repository)

    assert [*seen[job.job_id], job.state.value] == ["downloading", "uploading", "saving", "error"]
    assert job.error == "database is locked"
    assert job.asset_id is None
    assert job.uploaded_bytes == len(PAYLOAD)
    assert len(notes) == 1
    assert notes[0].meta_jsonb["jobId"] == job.job_id
    assert list(configure_environment.local_blob_path.iterdir()) == []


def test_download_chunks_are_written_off_the_event_loop(configure_environment, fake_web, monkeypatch):
    url = _fresh_clip(fake_web, "threaded.mp4")
    offloaded: list[str] = []
    real_to_thread = asyncio.to_thread

    async def recording_to_thread(func, *args, **kwargs):
        offloaded.append(getattr(func, "__name__", repr(func)))
        return await real_to_thread(func, *args, **kwargs)

    monkeypatch.setattr(asyncio, "to_thread", recording_to_thread)

    (job,), _, _, _ = _run_jobs(configure_environment, fake_web, url)

    assert job.state is JobState.done
    assert "write" in offloaded


def test_repeat_ingest_reports_existing_asset(configure_environment, fake_web):
    first_url = "https://cdn.example.com/media/a.mp4"
    second_url = "https://mirror.example.com/media/a.mp4"
    for url in (first_url, second_url):
        fake_web.add("GET", url, httpx.Response(200, content=PAYLOAD, headers={"content-type": "video/mp4"}))

    (first, second), _, notes, _ = _run_jobs(configure_environment, fake_web, first_url, second_url)

    assert first.state is JobState.done
    assert second.state is JobState.error
    assert second.existing_asset_id == first.asset_id
    assert notes[0].meta_jsonb["fileId"] == first.asset_id


def test_job_rejects_skipped_and_backward_transitions():
    job = IngestJob(job_id="j1", user_id="alice", source_url="https://example.com/a.mp4")
    with pytest.raises(InvalidJobTransition):
        job.advance(JobState.downloading)
    job.advance(JobState.resolving)
    job.advance(JobState.downloading)
    with pytest.raises(InvalidJobTransition):
        job.advance(JobState.resolving)


def test_terminal_jobs_cannot_fail_again():
    job = IngestJob(job_id="j1", user_id="alice", source_url="https://example.com/a.mp4")
    job.fail("boom")
    assert job.is_terminal
    with pytest.raises(InvalidJobTransition):
        job.fail("again")
    with pytest.raises(InvalidJobTransition):
        job.advance(JobState.resolving)


def test_progress_counters_never_decrease():
    job = IngestJob(job_id="j1", user_id="alice", source_url="https://example.com/a.mp4")
    job.record_total(100)
    job.record_total(40)
    job.record_total(None)
    job.record_uploaded(30)
    job.record_uploaded(10)
    job.add_downloaded(25)
    job.add_downloaded(-5)
    assert job.total_bytes == 100
    assert job.uploaded_bytes == 30
    assert job.downloaded_bytes == 25


def test_registry_prunes_expired_terminal_jobs():
    now = [0.0]
    registry = IngestJobRegistry(ttl_seconds=10, clock=lambda: now[0])
    finished = registry.create("alice", "https://example.com/a.mp4")
    running = registry.create("alice", "https://example.com/b.mp4")
    finished.fail("boom")
    finished.finished_at = 0.0

    now[0] = 9.0
    assert registry.prune() == 0
    now[0] = 10.0
    assert registry.prune() == 1
    assert registry.get(finished.job_id) is None
    assert registry.get(running.job_id) is running


@pytest.mark.parametrize(
    "url, extension, expected",
    [
        ("https://cdn.example.com/media/clip.mp4", ".mp4", "clip.mp4"),
        ("https://v.redd.it/abc123/HLSPlaylist", ".mp4", "HLSPlaylist.mp4"),
        ("https://cdn.example.com/", ".webm", "download.webm"),
        ("https://cdn.example.com/my%20clip.mov?x=1", ".mov", "my clip.mov"),
    ],
)
def test_name_from_url(url, extension, expected):
    assert name_from_url(url, extension) == expected
