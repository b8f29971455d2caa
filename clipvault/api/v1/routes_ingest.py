from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from clipvault.api import deps

from . import schemas


router = APIRouter(prefix="/ingest", tags=["ingest"])


@router.get("/{job_id}", response_model=schemas.IngestJobResponse)
async def get_ingest_job(job_id: str, jobs: deps.JobsDependency, context: deps.AuthDependency) -> schemas.IngestJobResponse:
    job = jobs.get_status(job_id, context.user_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="job_not_found")
    return schemas.IngestJobResponse.from_job(job)


__all__ = ["router"]
