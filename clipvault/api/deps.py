from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from clipvault.core.auth import AuthContext, get_auth_context
from clipvault.core.config import Settings
from clipvault.services.ingest_jobs import IngestJobEngine
from clipvault.services.media_service import MediaService
from clipvault.services.notifications import NotificationSink
from clipvault.services.runtime import MediaRuntime


def get_runtime(request: Request) -> MediaRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if not isinstance(runtime, MediaRuntime):  # pragma: no cover - lifespan not run
        raise RuntimeError("runtime_not_configured")
    return runtime


def get_app_settings(runtime: MediaRuntime = Depends(get_runtime)) -> Settings:
    return runtime.settings


def get_media_service(runtime: MediaRuntime = Depends(get_runtime)) -> MediaService:
    return runtime.media


def get_job_engine(runtime: MediaRuntime = Depends(get_runtime)) -> IngestJobEngine:
    return runtime.jobs


def get_notifier(runtime: MediaRuntime = Depends(get_runtime)) -> NotificationSink:
    return runtime.notifier


MediaDependency = Annotated[MediaService, Depends(get_media_service)]
JobsDependency = Annotated[IngestJobEngine, Depends(get_job_engine)]
NotifierDependency = Annotated[NotificationSink, Depends(get_notifier)]
AuthDependency = Annotated[AuthContext, Depends(get_auth_context)]


__all__ = [
    "get_runtime",
    "get_app_settings",
    "get_media_service",
    "get_job_engine",
    "get_notifier",
    "MediaDependency",
    "JobsDependency",
    "NotifierDependency",
    "AuthDependency",
]
