from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from clipvault.db.models import Notification
from clipvault.services.ingest_jobs import IngestJob
from clipvault.services.media_service import AssetView


class HealthResponse(BaseModel):
    status: str = Field(default="ok", description="Health status indicator.")
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AssetResponse(BaseModel):
    id: str
    original_name: str
    mime_type: str
    size_bytes: int
    content_hash: str
    url: str
    thumbnail_url: Optional[str] = None
    derivative_url: Optional[str] = None
    derivative_status: str
    source_url: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    duration_ms: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    has_audio: bool = False
    created_at: Optional[datetime] = None

    @classmethod
    def from_view(cls, view: AssetView) -> "AssetResponse":
        asset = view.asset
        return cls(
            id=asset.id,
            original_name=asset.original_name,
            mime_type=asset.mime_type,
            size_bytes=asset.size_bytes,
            content_hash=asset.content_hash,
            url=view.url,
            thumbnail_url=view.thumbnail_url,
            derivative_url=view.derivative_url,
            derivative_status=asset.derivative_status.value if asset.derivative_status else "none",
            source_url=asset.source_url,
            tags=list(asset.tags or []),
            duration_ms=asset.duration_ms,
            width=asset.width,
            height=asset.height,
            has_audio=bool(asset.has_audio),
            created_at=asset.created_at,
        )


class IngestRequest(BaseModel):
    url: str = Field(..., json_schema_extra={"example": "https://v.redd.it/abc123"})
    tags: List[str] = Field(default_factory=list)

    @field_validator("url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        value = value.strip()
        if not value.lower().startswith(("http://", "https://")):
            raise ValueError("url must be http or https")
        return value


class JobAcceptedResponse(BaseModel):
    job_id: str
    location: str


class IngestJobResponse(BaseModel):
    job_id: str
    state: str
    source_url: str
    resolved_url: Optional[str] = None
    final_url: Optional[str] = None
    content_type: Optional[str] = None
    total_bytes: Optional[int] = None
    downloaded_bytes: int = 0
    uploaded_bytes: int = 0
    asset_id: Optional[str] = None
    existing_asset_id: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_job(cls, job: IngestJob) -> "IngestJobResponse":
        return cls(**job.snapshot())


class SignedUrlResponse(BaseModel):
    url: str
    expires_in: int


class NotificationResponse(BaseModel):
    id: int
    message: str
    metadata: Optional[Dict[str, Any]] = None
    read: bool
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, item: Notification) -> "NotificationResponse":
        return cls(id=item.id, message=item.message, metadata=item.meta_jsonb, read=item.read, created_at=item.created_at)


class ReadAllResponse(BaseModel):
    updated: int


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[Any] = None


__all__ = [
    "HealthResponse",
    "AssetResponse",
    "IngestRequest",
    "JobAcceptedResponse",
    "IngestJobResponse",
    "SignedUrlResponse",
    "NotificationResponse",
    "ReadAllResponse",
    "ErrorResponse",
]
