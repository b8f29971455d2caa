from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile, status

from clipvault.api import deps
from clipvault.core.config import Settings
from clipvault.core.logging import get_logger

from . import schemas


router = APIRouter(prefix="/files", tags=["files"])

logger = get_logger(component="api.files")

UPLOAD_CHUNK_SIZE = 1024 * 1024


def _parse_tags(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [tag.strip() for tag in raw.split(",") if tag.strip()]


@router.post("/upload", response_model=schemas.AssetResponse, status_code=status.HTTP_201_CREATED)
async def upload_file(
    media: deps.MediaDependency,
    context: deps.AuthDependency,
    file: UploadFile = File(...),
    tags: Optional[str] = Form(default=None),
    settings: Settings = Depends(deps.get_app_settings),
) -> schemas.AssetResponse:
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="filename_required")

    scratch_dir = Path(settings.scratch_dir)
    scratch_dir.mkdir(parents=True, exist_ok=True)
    scratch = scratch_dir / f"upload_{uuid4().hex}{Path(file.filename).suffix}"
    written = 0
    try:
        with scratch.open("wb") as handle:
            while chunk := await file.read(UPLOAD_CHUNK_SIZE):
                written += len(chunk)
                if written > settings.max_upload_size_bytes:
                    raise HTTPException(status_code=status.HTTP_413_CONTENT_TOO_LARGE, detail="upload_too_large")
                await asyncio.to_thread(handle.write, chunk)
    except BaseException:
        scratch.unlink(missing_ok=True)
        raise
    finally:
        await file.close()

    asset = await media.store_file(
        scratch,
        owner_id=context.user_id,
        original_name=file.filename,
        declared_type=file.content_type,
        tags=_parse_tags(tags),
    )
    view = await media.get_asset(asset.id, context.user_id)
    if view is None:  # pragma: no cover - deleted between insert and read
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="file_not_found")
    return schemas.AssetResponse.from_view(view)


@router.post("/ingest", response_model=schemas.JobAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def ingest_url(
    payload: schemas.IngestRequest,
    jobs: deps.JobsDependency,
    context: deps.AuthDependency,
    response: Response,
) -> schemas.JobAcceptedResponse:
    job = jobs.start(context.user_id, payload.url, payload.tags)
    location = f"/v1/ingest/{job.job_id}"
    response.headers["Location"] = location
    return schemas.JobAcceptedResponse(job_id=job.job_id, location=location)


@router.get("", response_model=List[schemas.AssetResponse])
async def list_files(media: deps.MediaDependency, context: deps.AuthDependency) -> List[schemas.AssetResponse]:
    views = await media.list_assets(context.user_id)
    return [schemas.AssetResponse.from_view(view) for view in views]


@router.get("/{file_id}", response_model=schemas.AssetResponse)
async def get_file(file_id: str, media: deps.MediaDependency, context: deps.AuthDependency) -> schemas.AssetResponse:
    view = await media.get_asset(file_id, context.user_id)
    if view is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="file_not_found")
    return schemas.AssetResponse.from_view(view)


@router.post("/{file_id}/refresh-url", response_model=schemas.SignedUrlResponse)
async def refresh_file_url(
    file_id: str,
    media: deps.MediaDependency,
    context: deps.AuthDependency,
    settings: Settings = Depends(deps.get_app_settings),
) -> schemas.SignedUrlResponse:
    url = await media.refresh_url(file_id, context.user_id)
    if url is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="file_not_found")
    return schemas.SignedUrlResponse(url=url, expires_in=settings.signed_url_ttl_seconds)


@router.get("/{file_id}/download", response_model=schemas.SignedUrlResponse)
async def download_file(
    file_id: str,
    media: deps.MediaDependency,
    context: deps.AuthDependency,
    settings: Settings = Depends(deps.get_app_settings),
) -> schemas.SignedUrlResponse:
    url = await media.signed_download_url(file_id, context.user_id)
    if url is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="file_not_found")
    return schemas.SignedUrlResponse(url=url, expires_in=settings.signed_url_ttl_seconds)


@router.delete("/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_file(file_id: str, media: deps.MediaDependency, context: deps.AuthDependency) -> Response:
    if not await media.delete_asset(file_id, context.user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="file_not_found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
