from __future__ import annotations

import time

import httpx

PAYLOAD = b"\x00\x00\x00\x18ftypisom" + b"\x07" * 8192


def _upload(client, headers, *, name="clip.mp4", payload=PAYLOAD, tags=None):
    data = {"tags": tags} if tags is not None else None
    return client.post(
        "/v1/files/upload",
        files={"file": (name, payload, "video/mp4")},
        data=data,
        headers=headers,
    )


def _wait_for_job(client, headers, job_id: str, *, timeout_s: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout_s
    while True:
        resp = client.get(f"/v1/ingest/{job_id}", headers=headers)
        assert resp.status_code == 200, resp.text
        body = resp.json()
        if body["state"] in {"done", "error"} or time.monotonic() > deadline:
            return body
        time.sleep(0.05)


def test_v1_health_ok(client):
    resp = client.get("/v1/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_requests_without_token_are_rejected(client):
    assert client.get("/v1/files").status_code == 401
    assert client.get("/v1/files", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401


def test_upload_then_read_and_delete(client, alice_headers, bob_headers):
    resp = _upload(client, alice_headers, tags="cats, funny ,")
    assert resp.status_code == 201, resp.text
    asset = resp.json()
    assert asset["original_name"] == "clip.mp4"
    assert asset["mime_type"] == "video/mp4"
    assert asset["size_bytes"] == len(PAYLOAD)
    assert asset["tags"] == ["cats", "funny"]
    assert asset["url"].startswith("file://")

    listed = client.get("/v1/files", headers=alice_headers).json()
    assert [item["id"] for item in listed] == [asset["id"]]
    assert client.get("/v1/files", headers=bob_headers).json() == []

    fetched = client.get(f"/v1/files/{asset['id']}", headers=alice_headers)
    assert fetched.status_code == 200
    assert fetched.json()["content_hash"] == asset["content_hash"]
    assert client.get(f"/v1/files/{asset['id']}", headers=bob_headers).status_code == 404

    download = client.get(f"/v1/files/{asset['id']}/download", headers=alice_headers)
    assert download.status_code == 200
    assert download.json()["url"].endswith("?download=clip.mp4")
    assert download.json()["expires_in"] > 0

    refreshed = client.post(f"/v1/files/{asset['id']}/refresh-url", headers=alice_headers)
    assert refreshed.status_code == 200
    assert refreshed.json()["url"] == asset["url"]

    assert client.delete(f"/v1/files/{asset['id']}", headers=bob_headers).status_code == 404
    assert client.delete(f"/v1/files/{asset['id']}", headers=alice_headers).status_code == 204
    assert client.get(f"/v1/files/{asset['id']}", headers=alice_headers).status_code == 404
    assert client.delete(f"/v1/files/{asset['id']}", headers=alice_headers).status_code == 404


def test_duplicate_upload_returns_conflict(client, alice_headers, bob_headers):
    first = _upload(client, alice_headers).json()

    resp = _upload(client, alice_headers, name="renamed.mp4")
    assert resp.status_code == 409
    body = resp.json()
    assert body["error"] == "duplicate"
    assert body["detail"]["existing_id"] == first["id"]

    assert _upload(client, bob_headers).status_code == 201
    assert len(client.get("/v1/files", headers=alice_headers).json()) == 1


def test_oversized_upload_is_rejected(client, alice_headers, configure_environment, monkeypatch):
    monkeypatch.setattr(configure_environment, "max_upload_size_bytes", 1024)
    resp = _upload(client, alice_headers)
    assert resp.status_code == 413
    assert client.get("/v1/files", headers=alice_headers).json() == []


def test_ingest_url_runs_to_completion(client, fake_web, alice_headers, bob_headers):
    url = "https://cdn.example.com/media/remote-clip.mp4"
    fake_web.add("GET", url, httpx.Response(200, content=PAYLOAD, headers={"content-type": "video/mp4"}))

    resp = client.post("/v1/files/ingest", json={"url": url, "tags": ["remote"]}, headers=alice_headers)
    assert resp.status_code == 202, resp.text
    job_id = resp.json()["job_id"]
    assert resp.headers["location"] == f"/v1/ingest/{job_id}"

    assert client.get(f"/v1/ingest/{job_id}", headers=bob_headers).status_code == 404

    job = _wait_for_job(client, alice_headers, job_id)
    assert job["state"] == "done", job
    assert job["downloaded_bytes"] == len(PAYLOAD)
    assert job["resolved_url"] == url

    asset = client.get(f"/v1/files/{job['asset_id']}", headers=alice_headers).json()
    assert asset["source_url"] == url
    assert asset["original_name"] == "remote-clip.mp4"
    assert asset["tags"] == ["remote"]


def test_unknown_job_is_not_found(client, alice_headers):
    resp = client.get("/v1/ingest/does-not-exist", headers=alice_headers)
    assert resp.status_code == 404
    assert resp.json()["detail"] == "job_not_found"


def test_ingest_rejects_non_http_urls(client, alice_headers):
    resp = client.post("/v1/files/ingest", json={"url": "ftp://example.com/a.mp4"}, headers=alice_headers)
    assert resp.status_code == 422


def test_failed_ingests_produce_notifications(client, alice_headers, bob_headers):
    urls = ["https://cdn.example.com/missing-1.mp4", "https://cdn.example.com/missing-2.mp4"]
    for url in urls:
        job_id = client.post("/v1/files/ingest", json={"url": url}, headers=alice_headers).json()["job_id"]
        job = _wait_for_job(client, alice_headers, job_id)
        assert job["state"] == "error"
        assert job["error"]

    notes = client.get("/v1/notifications", headers=alice_headers).json()
    assert len(notes) == 2
    assert {note["metadata"]["sourceUrl"] for note in notes} == set(urls)
    assert all("Download failed:" in note["message"] for note in notes)
    assert not any(note["read"] for note in notes)
    assert client.get("/v1/notifications", headers=bob_headers).json() == []

    first_id = notes[0]["id"]
    assert client.post(f"/v1/notifications/{first_id}/read", headers=bob_headers).status_code == 404
    assert client.post(f"/v1/notifications/{first_id}/read", headers=alice_headers).status_code == 204

    resp = client.post("/v1/notifications/read-all", headers=alice_headers)
    assert resp.status_code == 200
    assert resp.json() == {"updated": 1}
    assert all(note["read"] for note in client.get("/v1/notifications", headers=alice_headers).json())
