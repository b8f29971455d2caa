import asyncio
import json
from typing import Callable

import httpx
import jwt
import pytest
from fastapi.testclient import TestClient

from clipvault.core.config import get_settings
from clipvault.core.db import Base, create_engine


@pytest.fixture(autouse=True)
def configure_environment(monkeypatch, tmp_path):
    db_path = tmp_path / "clipvault_test.db"

    monkeypatch.setenv("CLIPVAULT_ENV", "test")
    monkeypatch.setenv("CLIPVAULT_LOG_LEVEL", "debug")
    monkeypatch.setenv("CLIPVAULT_DB_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("CLIPVAULT_BLOB_BACKEND", "local")
    monkeypatch.setenv("CLIPVAULT_LOCAL_BLOB_PATH", str(tmp_path / "blobs"))
    monkeypatch.setenv("CLIPVAULT_SCRATCH_DIR", str(tmp_path / "scratch"))
    monkeypatch.setenv("CLIPVAULT_DERIVATIVES", "background")
    monkeypatch.setenv("CLIPVAULT_FETCH_BACKOFF_BASE_S", "0")
    monkeypatch.setenv("CLIPVAULT_FETCH_MAX_JITTER_S", "0")
    monkeypatch.setenv("CLIPVAULT_JWT_SECRET", "test-secret")
    monkeypatch.setenv("CLIPVAULT_JWT_ISSUER", "clipvault-test")
    monkeypatch.setenv("CLIPVAULT_JWT_AUDIENCE", "clipvault")

    get_settings.cache_clear()
    settings = get_settings()
    engine = create_engine(settings)

    async def _setup() -> None:
        import clipvault.db.models  # noqa: F401

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(_setup())

    yield settings

    async def _teardown() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()

    asyncio.run(_teardown())
    get_settings.cache_clear()


def build_token(user_id: str) -> str:
    payload = {"sub": user_id, "iss": "clipvault-test", "aud": "clipvault"}
    return jwt.encode(payload, "test-secret", algorithm="HS256")


def auth_headers(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token(user_id)}"}


@pytest.fixture()
def alice_headers() -> dict[str, str]:
    return auth_headers("alice")


@pytest.fixture()
def bob_headers() -> dict[str, str]:
    return auth_headers("bob")


Handler = Callable[[httpx.Request], httpx.Response]


class FakeWeb:
    """Routes mock HTTP traffic by ``(method, url)`` and records every request."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Handler] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, url: str, handler: Handler | httpx.Response) -> None:
        if isinstance(handler, httpx.Response):
            template = handler
            self.routes[(method.upper(), url)] = lambda request: httpx.Response(
                template.status_code, headers=template.headers, content=template.content
            )
        else:
            self.routes[(method.upper(), url)] = handler

    def html(self, url: str, body: str) -> None:
        self.add("GET", url, httpx.Response(200, text=body, headers={"content-type": "text/html"}))

    def json(self, url: str, payload) -> None:
        self.add("GET", url, httpx.Response(200, content=json.dumps(payload), headers={"content-type": "application/json"}))

    def head_ok(self, *urls: str) -> None:
        for url in urls:
            self.add("HEAD", url, httpx.Response(200))

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, str(request.url))
        handler = self.routes.get(key)
        if handler is None:
            return httpx.Response(404)
        return handler(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def hits(self, method: str, url: str) -> int:
        return sum(1 for request in self.requests if request.method == method and str(request.url) == url)


@pytest.fixture()
def fake_web() -> FakeWeb:
    return FakeWeb()


@pytest.fixture()
def client(configure_environment, fake_web):
    from clipvault.main import create_app

    app = create_app(configure_environment, transport=fake_web.transport())
    with TestClient(app) as client:
        yield client
