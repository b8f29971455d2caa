from __future__ import annotations

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from clipvault.api.v1 import get_api_router
from clipvault.core.config import Settings, get_settings
from clipvault.core.errors import DuplicateContentError
from clipvault.core.logging import configure_logging, get_logger, level_from_name
from clipvault.services.runtime import MediaRuntime

logger = get_logger(component="api")


async def _duplicate_handler(request: Request, exc: DuplicateContentError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"error": "duplicate", "detail": {"existing_id": exc.existing_id, "message": str(exc)}},
    )


async def _unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("request_failed", path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "internal_error", "detail": "Request failed."},
    )


def create_app(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(level=level_from_name(settings.log_level))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        runtime = MediaRuntime.build(settings, transport=transport)
        await runtime.start()
        app.state.settings = settings
        app.state.runtime = runtime
        try:
            yield
        finally:
            await runtime.aclose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        lifespan=lifespan,
        openapi_url="/openapi.json",
        docs_url="/docs",
    )
    app.add_exception_handler(DuplicateContentError, _duplicate_handler)
    app.add_exception_handler(Exception, _unhandled_handler)
    app.include_router(get_api_router())
    return app


app = create_app()


__all__ = ["app", "create_app"]
